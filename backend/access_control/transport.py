"""
Auth transport: the remote authority that issues and validates tokens.

This module is a thin, framework-agnostic adapter over the LMS auth API. It
returns the decoded JSON envelopes unchanged and turns every non-success
reply into a `TransportError` carrying the HTTP status and the server's error
code. Interpreting the envelopes is the session controller's job.

Security: Never log credentials or tokens. Login and refresh are sent without
the bearer header; every other call carries the current access token.
"""

from __future__ import annotations

from typing import Any, Callable, Mapping, Optional, Protocol
import logging

import httpx

from .config import AuthConfig
from .errors import MalformedResponse, TransportError

logger = logging.getLogger("lms.access.transport")

AUTH_ENDPOINTS = {
    "login": "/auth/login",
    "refresh": "/auth/refresh",
    "logout": "/auth/logout",
    "me": "/auth/me",
    "escalate": "/auth/escalate",
    "switch_department": "/auth/switch-department",
}


class AuthTransport(Protocol):
    async def login(self, credentials: Mapping[str, Any]) -> dict:
        ...

    async def refresh(self, refresh_token: str) -> dict:
        ...

    async def logout(self) -> None:
        ...

    async def get_current_user(self) -> dict:
        ...

    async def escalate(self, password: str) -> dict:
        ...

    async def switch_department(self, department_id: str) -> dict:
        ...


def _error_from_response(resp: httpx.Response) -> TransportError:
    code: Optional[str] = None
    message: Optional[str] = None
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict):
            code = err.get("code") if isinstance(err.get("code"), str) else None
            message = err.get("message") if isinstance(err.get("message"), str) else None
        elif isinstance(err, str):
            code = err
        if message is None and isinstance(body.get("message"), str):
            message = body["message"]
    return TransportError(message or f"HTTP {resp.status_code}", code=code or f"http_{resp.status_code}", status=resp.status_code)


class HttpAuthTransport:
    """`AuthTransport` over `httpx.AsyncClient`.

    Parameters
    ----------
    base_url:
        API root, e.g. `https://lms.example.org/api/v2`.
    token_provider:
        Returns the current access token value (or None) for bearer calls.
    client:
        Optional preconfigured client (tests pass one with `MockTransport`).
    """

    def __init__(
        self,
        base_url: str,
        *,
        token_provider: Callable[[], Optional[str]] = lambda: None,
        timeout: float = 10,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._token_provider = token_provider
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout)

    @classmethod
    def from_config(cls, cfg: AuthConfig, token_provider: Callable[[], Optional[str]] = lambda: None) -> "HttpAuthTransport":
        return cls(cfg.api_base_url, token_provider=token_provider, timeout=cfg.http_timeout_seconds)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "HttpAuthTransport":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _request(self, method: str, endpoint: str, *, json: Any = None, bearer: bool = True) -> dict:
        headers: dict[str, str] = {}
        if bearer:
            token = self._token_provider()
            if token:
                headers["Authorization"] = f"Bearer {token}"
        try:
            resp = await self._client.request(method, AUTH_ENDPOINTS[endpoint], json=json, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("Auth request %s failed: %s", endpoint, exc.__class__.__name__)
            raise TransportError("Auth service unreachable", code="network_error") from exc
        if resp.status_code >= 400:
            err = _error_from_response(resp)
            logger.info("Auth request %s rejected: status=%s code=%s", endpoint, err.status, err.code)
            raise err
        if not resp.content:
            return {}
        try:
            body = resp.json()
        except ValueError as exc:
            raise MalformedResponse("Response body is not JSON") from exc
        if not isinstance(body, dict):
            raise MalformedResponse("Response body is not an object")
        return body

    async def login(self, credentials: Mapping[str, Any]) -> dict:
        return await self._request("POST", "login", json=dict(credentials), bearer=False)

    async def refresh(self, refresh_token: str) -> dict:
        return await self._request("POST", "refresh", json={"refreshToken": refresh_token}, bearer=False)

    async def logout(self) -> None:
        await self._request("POST", "logout")

    async def get_current_user(self) -> dict:
        return await self._request("GET", "me")

    async def escalate(self, password: str) -> dict:
        return await self._request("POST", "escalate", json={"escalationPassword": password})

    async def switch_department(self, department_id: str) -> dict:
        return await self._request("POST", "switch_department", json={"departmentId": department_id})


__all__ = ["AuthTransport", "HttpAuthTransport", "AUTH_ENDPOINTS"]

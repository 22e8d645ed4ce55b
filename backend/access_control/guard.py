"""
Route access decisions.

Intent:
    Decide, without any UI framework, whether the current session may enter a
    protected area and where to send it otherwise. Adapters translate the
    `AccessDecision` into their own redirect mechanism.

Order of checks:
    1. authentication (no session or no hierarchy -> `/login`)
    2. user types (any, or all when `require_all_user_types`)
    3. single required permission, then a permission list (any / all)
    4. department context: a selected department is needed, and with
       `department_types` it must be one of the user's staff/learner groups
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from . import permissions as perms
from .domain import GLOBAL_ADMIN, LEARNER, STAFF
from .models import SessionState

LOGIN_PATH = "/login"
UNAUTHORIZED_PATH = "/unauthorized"
SELECT_DEPARTMENT_PATH = "/select-department"


@dataclass(frozen=True)
class AccessRequirement:
    user_types: Sequence[str] = ()
    require_all_user_types: bool = False
    required_permission: Optional[str] = None
    required_permissions: Sequence[str] = ()
    require_all_permissions: bool = False
    require_department: bool = False
    department_types: Sequence[str] = ()
    redirect_to: Optional[str] = None
    redirect_to_dashboard: bool = False


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    redirect_to: Optional[str] = None

    @classmethod
    def allow(cls) -> "AccessDecision":
        return cls(allowed=True)


STAFF_ONLY = AccessRequirement(user_types=(STAFF,), redirect_to_dashboard=True)
LEARNER_ONLY = AccessRequirement(user_types=(LEARNER,), redirect_to_dashboard=True)
ADMIN_ONLY = AccessRequirement(user_types=(GLOBAL_ADMIN,), redirect_to_dashboard=True)


def department_requirement(department_types: Sequence[str] = ()) -> AccessRequirement:
    return AccessRequirement(require_department=True, department_types=tuple(department_types), redirect_to_dashboard=True)


def _deny(req: AccessRequirement, default_dashboard: Optional[str]) -> AccessDecision:
    if req.redirect_to_dashboard and default_dashboard:
        return AccessDecision(False, f"/{default_dashboard}/dashboard")
    return AccessDecision(False, req.redirect_to or UNAUTHORIZED_PATH)


def check_access(
    state: SessionState,
    req: AccessRequirement,
    selected_department_id: Optional[str] = None,
) -> AccessDecision:
    """Return whether `state` satisfies `req` and where to go if not.

    `selected_department_id` defaults to the session's own selection.
    """
    hierarchy = state.role_hierarchy
    if not state.is_authenticated or hierarchy is None:
        return AccessDecision(False, LOGIN_PATH)
    dashboard = hierarchy.default_dashboard

    if req.user_types:
        held = [t in hierarchy.all_user_types for t in req.user_types]
        if not (all(held) if req.require_all_user_types else any(held)):
            return _deny(req, dashboard)

    if req.required_permission and not perms.has_permission(hierarchy, req.required_permission):
        return _deny(req, dashboard)

    if req.required_permissions:
        check = perms.has_all_permissions if req.require_all_permissions else perms.has_any_permission
        if not check(hierarchy, req.required_permissions):
            return _deny(req, dashboard)

    if req.require_department:
        dept = selected_department_id or state.selected_department_id
        if not dept:
            return AccessDecision(False, SELECT_DEPARTMENT_PATH)
        if req.department_types:
            member = any(dept in perms.department_ids(hierarchy, kind) for kind in req.department_types)
            if not member:
                return _deny(req, dashboard)

    return AccessDecision.allow()


__all__ = [
    "AccessRequirement",
    "AccessDecision",
    "STAFF_ONLY",
    "LEARNER_ONLY",
    "ADMIN_ONLY",
    "department_requirement",
    "check_access",
    "LOGIN_PATH",
    "UNAUTHORIZED_PATH",
    "SELECT_DEPARTMENT_PATH",
]

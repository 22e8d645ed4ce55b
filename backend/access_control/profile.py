"""
Display helpers for the signed-in user and the hierarchy's labels.

Precedence for `display_name`:
- person data, preferred names first (each falling back to the legal one)
- deprecated `first_name` / `last_name` on the user record
- empty string
"""

from __future__ import annotations

from typing import Mapping, Optional

from .domain import humanize_role
from .models import RoleHierarchy, User


def _clean(value: object) -> str:
    return value.strip() if isinstance(value, str) else ""


def _join(*parts: str) -> str:
    return " ".join(p for p in parts if p)


def _person_name(person: Mapping[str, object]) -> str:
    first = _clean(person.get("preferredFirstName")) or _clean(person.get("firstName"))
    last = _clean(person.get("preferredLastName")) or _clean(person.get("lastName"))
    return _join(first, last)


def display_name(user: Optional[User]) -> str:
    if user is None:
        return ""
    if user.person:
        name = _person_name(user.person)
        if name:
            return name
    return _join(_clean(user.first_name), _clean(user.last_name))


def role_label(hierarchy: Optional[RoleHierarchy], role: str) -> str:
    if hierarchy is not None and role in hierarchy.role_display_map:
        return hierarchy.role_display_map[role]
    return humanize_role(role)


def user_type_label(hierarchy: Optional[RoleHierarchy], user_type: str) -> str:
    if hierarchy is not None and user_type in hierarchy.user_type_display_map:
        return hierarchy.user_type_display_map[user_type]
    return humanize_role(user_type)


__all__ = ["display_name", "role_label", "user_type_label"]

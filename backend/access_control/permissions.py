"""
Permission evaluator over a `RoleHierarchy` snapshot.

Why:
    Every feature gate asks the same questions ("may this user do X, here?").
    Keeping the answers in pure functions over an immutable snapshot makes
    them trivially testable and safe to call from anywhere.

Rules:
    - No hierarchy -> always False.
    - `system:*` in the flat permission list grants everything, scope ignored.
    - Unscoped checks use the flat list; a `domain:*` entry covers every
      permission of that domain.
    - Department-scoped checks look only at the role assignments of groups
      with that department id (staff groups first, then learner groups) and
      test each assignment's own permissions, never the flat list.
    - A scope with an empty id matches nothing.
"""

from __future__ import annotations

from typing import Iterable, Iterator, Optional, Sequence

from .domain import DEPARTMENT_SCOPE, LEARNER, STAFF, SYSTEM_WILDCARD, domain_wildcard
from .models import DepartmentRoleGroup, PermissionScope, RoleHierarchy


def _grants(granted: Sequence[str], permission: str) -> bool:
    return permission in granted or domain_wildcard(permission) in granted


def _department_groups(hierarchy: RoleHierarchy, department_id: str) -> Iterator[DepartmentRoleGroup]:
    for groups in (hierarchy.staff_roles, hierarchy.learner_roles):
        if groups is None:
            continue
        for group in groups.department_roles:
            if group.department_id == department_id:
                yield group


def has_permission(
    hierarchy: Optional[RoleHierarchy],
    permission: str,
    scope: Optional[PermissionScope] = None,
) -> bool:
    if hierarchy is None:
        return False
    if SYSTEM_WILDCARD in hierarchy.all_permissions:
        return True
    if scope is None:
        return _grants(hierarchy.all_permissions, permission)
    if scope.type != DEPARTMENT_SCOPE or not scope.id:
        return False
    for group in _department_groups(hierarchy, scope.id):
        for assignment in group.roles:
            if _grants(assignment.permissions, permission):
                return True
    return False


def has_any_permission(
    hierarchy: Optional[RoleHierarchy],
    permissions: Iterable[str],
    scope: Optional[PermissionScope] = None,
) -> bool:
    return any(has_permission(hierarchy, p, scope) for p in permissions)


def has_all_permissions(
    hierarchy: Optional[RoleHierarchy],
    permissions: Iterable[str],
    scope: Optional[PermissionScope] = None,
) -> bool:
    """True when every permission is granted; an empty list is vacuously True."""
    return all(has_permission(hierarchy, p, scope) for p in permissions)


def has_role(hierarchy: Optional[RoleHierarchy], role: str, department_id: Optional[str] = None) -> bool:
    """Check a role name, globally or within one department.

    Only role names are compared; permissions play no part.
    """
    if hierarchy is None:
        return False
    if department_id is None:
        return any(a.role == role for a in hierarchy.global_roles)
    if not department_id:
        return False
    for group in _department_groups(hierarchy, department_id):
        if any(a.role == role for a in group.roles):
            return True
    return False


def has_user_type(hierarchy: Optional[RoleHierarchy], user_type: str) -> bool:
    return hierarchy is not None and user_type in hierarchy.all_user_types


def department_ids(hierarchy: Optional[RoleHierarchy], kind: str) -> list[str]:
    """Department ids filed under `staff` or `learner` groups."""
    if hierarchy is None:
        return []
    if kind == STAFF:
        groups = hierarchy.staff_roles
    elif kind == LEARNER:
        groups = hierarchy.learner_roles
    else:
        raise ValueError("invalid_department_kind")
    return [g.department_id for g in groups.department_roles] if groups else []


__all__ = [
    "has_permission",
    "has_any_permission",
    "has_all_permissions",
    "has_role",
    "has_user_type",
    "department_ids",
]

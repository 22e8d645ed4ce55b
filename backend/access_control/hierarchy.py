"""
Role hierarchy builder: raw login/restore payload -> `RoleHierarchy`.

Why:
    The server sends user types and department memberships in a loose wire
    shape (roles as bare strings or labeled objects, two spellings for the
    user-type fields). Normalizing once here means the evaluator and every
    downstream consumer only ever see one typed snapshot.

Behavior:
    - Login data and restore (`/auth/me`) data go through the same
      `roles_payload_from_dict`, so equal underlying data yields equal
      hierarchies.
    - A malformed membership or role entry is skipped and logged; a single
      bad record never aborts the build.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional

from .domain import (
    DEFAULT_CLASSIFICATION,
    DEPARTMENT_SCOPE,
    LEARNER,
    STAFF,
    RoleClassification,
    humanize_role,
)
from .errors import MalformedResponse
from .models import (
    DepartmentMembership,
    DepartmentRoleGroup,
    LabeledRole,
    RoleAssignment,
    RoleGroups,
    RoleHierarchy,
    RoleName,
    RoleRef,
    UserTypeRef,
)

logger = logging.getLogger("lms.access.hierarchy")


@dataclass(frozen=True)
class RolesPayload:
    user_types: tuple[UserTypeRef, ...]
    memberships: tuple[DepartmentMembership, ...]
    all_access_rights: Optional[tuple[str, ...]] = None
    admin_roles: tuple[str, ...] = ()
    global_rights: tuple[str, ...] = ()
    default_dashboard: Optional[str] = None
    can_escalate_to_admin: bool = False
    last_selected_department: Optional[str] = None


def _label(raw: Mapping[str, Any]) -> Optional[str]:
    for key in ("displayLabel", "displayAs"):
        value = raw.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return None


def _strings(raw: Any) -> tuple[str, ...]:
    if not isinstance(raw, (list, tuple)):
        return ()
    return tuple(item for item in raw if isinstance(item, str))


def parse_user_types(raw: Any) -> tuple[UserTypeRef, ...]:
    """Accept `{key|_id, displayLabel|displayAs}` objects or bare strings."""
    out: list[UserTypeRef] = []
    for item in raw if isinstance(raw, (list, tuple)) else ():
        if isinstance(item, str) and item:
            out.append(UserTypeRef(key=item))
        elif isinstance(item, Mapping):
            key = item.get("key") or item.get("_id")
            if isinstance(key, str) and key:
                out.append(UserTypeRef(key=key, display_label=_label(item)))
            else:
                logger.debug("Skipping user type without key")
    return tuple(out)


def parse_role_ref(raw: Any) -> Optional[RoleRef]:
    if isinstance(raw, str):
        return RoleName(raw) if raw else None
    if isinstance(raw, Mapping):
        name = raw.get("role")
        if not isinstance(name, str) or not name:
            return None
        label = _label(raw)
        return LabeledRole(name, label) if label else RoleName(name)
    return None


def parse_membership(raw: Any) -> Optional[DepartmentMembership]:
    if not isinstance(raw, Mapping):
        return None
    dept_id = raw.get("departmentId")
    roles_raw = raw.get("roles")
    if not isinstance(dept_id, str) or not dept_id or not isinstance(roles_raw, (list, tuple)):
        return None
    roles = []
    for entry in roles_raw:
        ref = parse_role_ref(entry)
        if ref is None:
            logger.debug("Skipping malformed role entry in department %s", dept_id)
            continue
        roles.append(ref)
    name = raw.get("departmentName")
    return DepartmentMembership(
        department_id=dept_id,
        department_name=name if isinstance(name, str) else "",
        roles=tuple(roles),
        access_rights=_strings(raw.get("accessRights")),
        is_primary=bool(raw.get("isPrimary", False)),
    )


def roles_payload_from_dict(data: Mapping[str, Any]) -> RolesPayload:
    """Extract the role-relevant part of a login or restore `data` object."""
    memberships: list[DepartmentMembership] = []
    raw_memberships = data.get("departmentMemberships")
    for raw in raw_memberships if isinstance(raw_memberships, (list, tuple)) else ():
        parsed = parse_membership(raw)
        if parsed is None:
            logger.warning("Skipping malformed department membership")
            continue
        memberships.append(parsed)

    raw_all = data.get("allAccessRights")
    dashboard = data.get("defaultDashboard")
    last_dept = data.get("lastSelectedDepartment")
    return RolesPayload(
        user_types=parse_user_types(data.get("userTypes")),
        memberships=tuple(memberships),
        all_access_rights=_strings(raw_all) if isinstance(raw_all, (list, tuple)) else None,
        admin_roles=_strings(data.get("adminRoles")),
        global_rights=_strings(data.get("globalRights")),
        default_dashboard=dashboard if isinstance(dashboard, str) else None,
        can_escalate_to_admin=bool(data.get("canEscalateToAdmin", False)),
        last_selected_department=last_dept if isinstance(last_dept, str) else None,
    )


def _role_display_map(memberships: Iterable[DepartmentMembership], extra: Iterable[str]) -> dict[str, str]:
    out: dict[str, str] = {}
    for membership in memberships:
        for ref in membership.roles:
            if isinstance(ref, LabeledRole):
                out[ref.name] = ref.display_label
            else:
                out.setdefault(ref.name, humanize_role(ref.name))
    for name in extra:
        out.setdefault(name, humanize_role(name))
    return out


def build_role_hierarchy(
    payload: RolesPayload,
    classification: RoleClassification = DEFAULT_CLASSIFICATION,
) -> RoleHierarchy:
    """Normalize a roles payload into the hierarchy the evaluator consumes."""
    user_types = tuple(ref.key for ref in payload.user_types)
    user_type_display_map = {
        ref.key: ref.display_label if ref.display_label is not None else humanize_role(ref.key)
        for ref in payload.user_types
    }
    role_display_map = _role_display_map(payload.memberships, payload.admin_roles)

    staff_groups: list[DepartmentRoleGroup] = []
    learner_groups: list[DepartmentRoleGroup] = []
    for membership in payload.memberships:
        group = DepartmentRoleGroup(
            department_id=membership.department_id,
            department_name=membership.department_name,
            is_primary=membership.is_primary,
            roles=tuple(
                RoleAssignment(
                    role=ref.name,
                    display_name=role_display_map[ref.name],
                    scope_type=DEPARTMENT_SCOPE,
                    scope_id=membership.department_id,
                    scope_name=membership.department_name,
                    permissions=tuple(membership.access_rights),
                )
                for ref in membership.roles
            ),
        )
        names = membership.role_names
        if classification.is_staff(names):
            staff_groups.append(group)
        if classification.is_learner(names):
            learner_groups.append(group)

    global_roles = tuple(
        RoleAssignment(
            role=name,
            display_name=role_display_map[name],
            scope_type="none",
            permissions=payload.global_rights,
        )
        for name in payload.admin_roles
    )

    if payload.all_access_rights is not None:
        all_permissions = payload.all_access_rights
    else:
        seen: dict[str, None] = {}
        for membership in payload.memberships:
            for right in membership.access_rights:
                seen.setdefault(right, None)
        all_permissions = tuple(seen)

    primary = user_types[0] if user_types else None
    return RoleHierarchy(
        primary_user_type=primary,
        all_user_types=user_types,
        all_permissions=all_permissions,
        global_roles=global_roles,
        staff_roles=RoleGroups(tuple(staff_groups)) if STAFF in user_types else None,
        learner_roles=RoleGroups(tuple(learner_groups)) if LEARNER in user_types else None,
        default_dashboard=payload.default_dashboard or primary,
        user_type_display_map=user_type_display_map,
        role_display_map=role_display_map,
        can_escalate_to_admin=payload.can_escalate_to_admin,
        last_selected_department=payload.last_selected_department,
    )


def _assignment_from_dict(raw: Any) -> Optional[RoleAssignment]:
    if not isinstance(raw, Mapping):
        return None
    role = raw.get("role")
    if not isinstance(role, str) or not role:
        return None
    display = raw.get("displayName")
    return RoleAssignment(
        role=role,
        display_name=display if isinstance(display, str) and display else humanize_role(role),
        scope_type=str(raw.get("scopeType") or DEPARTMENT_SCOPE),
        scope_id=raw.get("scopeId"),
        scope_name=raw.get("scopeName"),
        permissions=_strings(raw.get("permissions")),
    )


def _groups_from_dict(raw: Any) -> RoleGroups:
    groups: list[DepartmentRoleGroup] = []
    items = raw.get("departmentRoles") if isinstance(raw, Mapping) else None
    for item in items if isinstance(items, (list, tuple)) else ():
        if not isinstance(item, Mapping) or not isinstance(item.get("departmentId"), str):
            logger.warning("Skipping malformed department role group")
            continue
        roles = tuple(a for a in map(_assignment_from_dict, item.get("roles") or ()) if a is not None)
        groups.append(
            DepartmentRoleGroup(
                department_id=item["departmentId"],
                department_name=str(item.get("departmentName") or ""),
                is_primary=bool(item.get("isPrimary", False)),
                roles=roles,
            )
        )
    return RoleGroups(tuple(groups))


def hierarchy_from_dict(raw: Any) -> RoleHierarchy:
    """Parse a server-computed hierarchy (refresh endpoint) into a snapshot.

    The staff/learner presence invariant is re-applied: groups for a user
    type the hierarchy does not list are dropped, and a listed type without
    groups gets an empty group set.

    Raises
    ------
    MalformedResponse:
        When `raw` is not an object or lacks `allUserTypes`.
    """
    if not isinstance(raw, Mapping) or not isinstance(raw.get("allUserTypes"), (list, tuple)):
        raise MalformedResponse("Invalid role hierarchy format")
    user_types = _strings(raw.get("allUserTypes"))
    primary = raw.get("primaryUserType")
    if not isinstance(primary, str) or not primary:
        primary = user_types[0] if user_types else None
    type_map = raw.get("userTypeDisplayMap")
    role_map = raw.get("roleDisplayMap")
    last_dept = raw.get("lastSelectedDepartment")
    return RoleHierarchy(
        primary_user_type=primary,
        all_user_types=user_types,
        all_permissions=_strings(raw.get("allPermissions")),
        global_roles=tuple(a for a in map(_assignment_from_dict, raw.get("globalRoles") or ()) if a is not None),
        staff_roles=_groups_from_dict(raw.get("staffRoles")) if STAFF in user_types else None,
        learner_roles=_groups_from_dict(raw.get("learnerRoles")) if LEARNER in user_types else None,
        default_dashboard=raw.get("defaultDashboard") or primary,
        user_type_display_map=dict(type_map) if isinstance(type_map, Mapping) else {},
        role_display_map=dict(role_map) if isinstance(role_map, Mapping) else {},
        can_escalate_to_admin=bool(raw.get("canEscalateToAdmin", False)),
        last_selected_department=last_dept if isinstance(last_dept, str) else None,
    )


__all__ = [
    "RolesPayload",
    "parse_user_types",
    "parse_role_ref",
    "parse_membership",
    "roles_payload_from_dict",
    "build_role_hierarchy",
    "hierarchy_from_dict",
]

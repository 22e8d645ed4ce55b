"""
Data model of the access core.

All snapshot types are frozen dataclasses: consumers read them, and the only
way to change session or escalation state is to replace the whole snapshot
through a named controller operation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional, Union

from .domain import DEPARTMENT_SCOPE, TOKEN_TYPE


@dataclass(frozen=True)
class PermissionScope:
    id: str
    type: str = DEPARTMENT_SCOPE

    @classmethod
    def department(cls, department_id: str) -> "PermissionScope":
        return cls(id=department_id, type=DEPARTMENT_SCOPE)


# RoleRef: a membership role is either a bare name or a name with a
# server-supplied label. Resolved once by the hierarchy builder.
@dataclass(frozen=True)
class RoleName:
    name: str


@dataclass(frozen=True)
class LabeledRole:
    name: str
    display_label: str


RoleRef = Union[RoleName, LabeledRole]


@dataclass(frozen=True)
class UserTypeRef:
    key: str
    display_label: Optional[str] = None


@dataclass(frozen=True)
class DepartmentMembership:
    department_id: str
    department_name: str
    roles: tuple[RoleRef, ...]
    access_rights: tuple[str, ...]
    is_primary: bool = False

    @property
    def role_names(self) -> list[str]:
        return [r.name for r in self.roles]


@dataclass(frozen=True)
class RoleAssignment:
    role: str
    display_name: str
    scope_type: str = DEPARTMENT_SCOPE
    scope_id: Optional[str] = None
    scope_name: Optional[str] = None
    permissions: tuple[str, ...] = ()


@dataclass(frozen=True)
class DepartmentRoleGroup:
    department_id: str
    department_name: str
    is_primary: bool = False
    roles: tuple[RoleAssignment, ...] = ()


@dataclass(frozen=True)
class RoleGroups:
    department_roles: tuple[DepartmentRoleGroup, ...] = ()

    def find(self, department_id: str) -> Optional[DepartmentRoleGroup]:
        for group in self.department_roles:
            if group.department_id == department_id:
                return group
        return None


@dataclass(frozen=True)
class RoleHierarchy:
    primary_user_type: Optional[str]
    all_user_types: tuple[str, ...]
    all_permissions: tuple[str, ...] = ()
    global_roles: tuple[RoleAssignment, ...] = ()
    staff_roles: Optional[RoleGroups] = None
    learner_roles: Optional[RoleGroups] = None
    default_dashboard: Optional[str] = None
    user_type_display_map: Mapping[str, str] = field(default_factory=dict)
    role_display_map: Mapping[str, str] = field(default_factory=dict)
    can_escalate_to_admin: bool = False
    last_selected_department: Optional[str] = None


@dataclass(frozen=True)
class AccessToken:
    # None: the server gave no lifetime; the token is kept until rejected.
    value: str
    expires_at: Optional[float]
    type: str = TOKEN_TYPE

    def to_dict(self) -> dict:
        return {"value": self.value, "type": self.type, "expiresAt": self.expires_at}


@dataclass(frozen=True)
class RefreshToken:
    value: str
    expires_at: Optional[float] = None

    def to_dict(self) -> dict:
        return {"value": self.value, "expiresAt": self.expires_at}


@dataclass(frozen=True)
class User:
    id: Optional[str] = None
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    person: Optional[Mapping[str, object]] = None
    user_types: tuple[str, ...] = ()
    default_dashboard: Optional[str] = None
    can_escalate_to_admin: bool = False
    is_active: bool = True
    last_login: Optional[str] = None
    created_at: Optional[str] = None


class SessionPhase(str, Enum):
    ANONYMOUS = "anonymous"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    REFRESHING = "refreshing"


@dataclass(frozen=True)
class SessionState:
    access_token: Optional[AccessToken] = None
    user: Optional[User] = None
    role_hierarchy: Optional[RoleHierarchy] = None
    is_authenticated: bool = False
    is_loading: bool = False
    error: Optional[str] = None
    phase: SessionPhase = SessionPhase.ANONYMOUS
    selected_department_id: Optional[str] = None

    def __post_init__(self) -> None:
        if self.is_authenticated and self.role_hierarchy is None:
            raise ValueError("authenticated_session_requires_role_hierarchy")


EMPTY_SESSION = SessionState()


class EscalationPhase(str, Enum):
    INACTIVE = "inactive"
    ACTIVE = "active"
    WARNING = "warning"


@dataclass(frozen=True)
class EscalationState:
    is_active: bool = False
    expiry: Optional[float] = None
    is_warning: bool = False
    remaining_seconds: float = 0.0
    is_loading: bool = False
    error: Optional[str] = None

    @property
    def phase(self) -> EscalationPhase:
        if not self.is_active:
            return EscalationPhase.INACTIVE
        return EscalationPhase.WARNING if self.is_warning else EscalationPhase.ACTIVE


INACTIVE_ESCALATION = EscalationState()

"""Access core of the LMS client: permissions, role hierarchy, session
lifecycle and admin-mode escalation.

Re-export the entry points for convenient imports in adapters and tests.
"""

from .escalation import ActivityMonitor, EscalationController
from .hierarchy import build_role_hierarchy, roles_payload_from_dict
from .models import PermissionScope, RoleHierarchy, SessionState
from .permissions import has_all_permissions, has_any_permission, has_permission, has_role
from .session import SessionController

__all__ = [
    "ActivityMonitor",
    "EscalationController",
    "build_role_hierarchy",
    "roles_payload_from_dict",
    "PermissionScope",
    "RoleHierarchy",
    "SessionState",
    "has_permission",
    "has_any_permission",
    "has_all_permissions",
    "has_role",
    "SessionController",
]

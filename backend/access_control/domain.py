"""
Access-control domain constants and small pure helpers.

Why:
- Centralize user types, wildcard strings and the role classification sets so
  the builder, evaluator and guard never drift apart.
- Keep terms aligned with the glossary (user type, scope, wildcard permission).
"""

from __future__ import annotations

from dataclasses import dataclass

# User types a login may carry. Immutable to prevent accidental mutation.
LEARNER = "learner"
STAFF = "staff"
GLOBAL_ADMIN = "global-admin"
USER_TYPES = frozenset({LEARNER, STAFF, GLOBAL_ADMIN})

SYSTEM_WILDCARD = "system:*"
DEPARTMENT_SCOPE = "department"
TOKEN_TYPE = "Bearer"

DEFAULT_STAFF_ROLES = frozenset({"instructor", "content-admin", "department-admin"})
DEFAULT_LEARNER_ROLES = frozenset({"course-taker", "auditor", "learner-supervisor"})


@dataclass(frozen=True)
class RoleClassification:
    """Static role-name sets deciding where a membership is filed.

    A membership is staff-relevant when any of its role names is in
    `staff_roles` and learner-relevant when any is in `learner_roles`; both
    can hold at once.
    """

    staff_roles: frozenset[str] = DEFAULT_STAFF_ROLES
    learner_roles: frozenset[str] = DEFAULT_LEARNER_ROLES

    def is_staff(self, role_names: list[str]) -> bool:
        return any(name in self.staff_roles for name in role_names)

    def is_learner(self, role_names: list[str]) -> bool:
        return any(name in self.learner_roles for name in role_names)


DEFAULT_CLASSIFICATION = RoleClassification()


def permission_domain(permission: str) -> str:
    """Return the substring before the first colon (whole string if none)."""
    return permission.split(":", 1)[0]


def domain_wildcard(permission: str) -> str:
    return f"{permission_domain(permission)}:*"


def humanize_role(name: str) -> str:
    """Turn a dashed role key into a display label.

    `course-taker` -> `Course Taker`. Only the first letter of each word is
    touched; the rest keeps its case.
    """
    words = str(name or "").split("-")
    return " ".join(w[:1].upper() + w[1:] for w in words).strip()


__all__ = [
    "LEARNER",
    "STAFF",
    "GLOBAL_ADMIN",
    "USER_TYPES",
    "SYSTEM_WILDCARD",
    "DEPARTMENT_SCOPE",
    "TOKEN_TYPE",
    "DEFAULT_STAFF_ROLES",
    "DEFAULT_LEARNER_ROLES",
    "RoleClassification",
    "DEFAULT_CLASSIFICATION",
    "permission_domain",
    "domain_wildcard",
    "humanize_role",
]

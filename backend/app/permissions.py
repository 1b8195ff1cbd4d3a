"""Role-based authorization.

A closed set of roles, resources and actions, and one static table that says
which (resource, action) pairs each role holds. ``check`` never consults the
database; department scoping is a separate, second check.
"""
from __future__ import annotations
from enum import Enum as PyEnum
from typing import Optional

from .errors import AuthorizationError
from .models import Role, User


class Resource(str, PyEnum):
    USERS = "users"
    DEPARTMENTS = "departments"
    JOURNALS = "journals"
    PUBLICATIONS = "publications"
    STATISTICS = "statistics"


class Action(str, PyEnum):
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    IMPORT = "import"


class Decision(str, PyEnum):
    ALLOW = "allow"
    DENY = "deny"


ALL_GRANTS: frozenset[tuple[Resource, Action]] = frozenset(
    (r, a) for r in Resource for a in Action
)

DEPARTMENT_ADMIN_GRANTS: frozenset[tuple[Resource, Action]] = frozenset({
    (Resource.PUBLICATIONS, Action.READ),
    (Resource.PUBLICATIONS, Action.CREATE),
    (Resource.PUBLICATIONS, Action.UPDATE),
    (Resource.PUBLICATIONS, Action.DELETE),
    (Resource.JOURNALS, Action.READ),
    (Resource.DEPARTMENTS, Action.READ),
    (Resource.STATISTICS, Action.READ),
})

USER_GRANTS: frozenset[tuple[Resource, Action]] = frozenset({
    (Resource.PUBLICATIONS, Action.READ),
    (Resource.PUBLICATIONS, Action.CREATE),
    (Resource.JOURNALS, Action.READ),
    (Resource.DEPARTMENTS, Action.READ),
    (Resource.STATISTICS, Action.READ),
})

# Roles whose publication/statistics access is limited to their own department.
DEPARTMENT_SCOPED_ROLES: frozenset[Role] = frozenset({Role.DEPARTMENT_ADMIN})


def grants_for(role: Role) -> frozenset[tuple[Resource, Action]]:
    match role:
        case Role.ADMIN:
            return ALL_GRANTS
        case Role.DEPARTMENT_ADMIN:
            return DEPARTMENT_ADMIN_GRANTS
        case Role.USER:
            return USER_GRANTS
    raise ValueError(f"unknown role: {role!r}")


def check(role: Role, resource: Resource, action: Action) -> Decision:
    return Decision.ALLOW if (resource, action) in grants_for(role) else Decision.DENY


def require(role: Role, resource: Resource, action: Action) -> None:
    if check(role, resource, action) is Decision.DENY:
        raise AuthorizationError(
            f"Role '{role.value}' may not {action.value} {resource.value}",
            {"role": role.value, "resource": resource.value, "action": action.value},
        )


def ensure_department_scope(user: User, department_id: Optional[int]) -> None:
    """Department admins may only touch their own department's records."""
    if Role(user.role) not in DEPARTMENT_SCOPED_ROLES:
        return
    if department_id is None or user.department_id is None or int(department_id) != user.department_id:
        raise AuthorizationError(
            "Access is limited to your own department",
            {"requestedDepartmentId": department_id, "userDepartmentId": user.department_id},
        )

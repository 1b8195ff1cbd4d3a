from __future__ import annotations

import pytest

from app.errors import AuthorizationError
from app.models import Role
from app.permissions import Action, Decision, Resource, check, ensure_department_scope, grants_for, require


def test_admin_holds_every_grant():
    for resource in Resource:
        for action in Action:
            assert check(Role.ADMIN, resource, action) is Decision.ALLOW


@pytest.mark.parametrize(
    "role, resource, action, expected",
    [
        (Role.DEPARTMENT_ADMIN, Resource.PUBLICATIONS, Action.IMPORT, Decision.DENY),
        (Role.DEPARTMENT_ADMIN, Resource.PUBLICATIONS, Action.DELETE, Decision.ALLOW),
        (Role.DEPARTMENT_ADMIN, Resource.JOURNALS, Action.CREATE, Decision.DENY),
        (Role.DEPARTMENT_ADMIN, Resource.USERS, Action.READ, Decision.DENY),
        (Role.USER, Resource.USERS, Action.READ, Decision.DENY),
        (Role.USER, Resource.PUBLICATIONS, Action.CREATE, Decision.ALLOW),
        (Role.USER, Resource.PUBLICATIONS, Action.UPDATE, Decision.DENY),
        (Role.USER, Resource.STATISTICS, Action.READ, Decision.ALLOW),
    ],
)
def test_role_matrix(role, resource, action, expected):
    assert check(role, resource, action) is expected


def test_user_grants_are_a_subset_of_department_admin_grants():
    assert grants_for(Role.USER) <= grants_for(Role.DEPARTMENT_ADMIN) <= grants_for(Role.ADMIN)


def test_require_raises_with_context():
    with pytest.raises(AuthorizationError) as exc:
        require(Role.USER, Resource.USERS, Action.READ)
    assert exc.value.status_code == 403
    assert exc.value.details == {"role": "user", "resource": "users", "action": "read"}


def test_department_scope(world):
    ensure_department_scope(world.cardio_admin, world.cardio.id)
    with pytest.raises(AuthorizationError):
        ensure_department_scope(world.cardio_admin, world.neuro.id)
    with pytest.raises(AuthorizationError):
        ensure_department_scope(world.cardio_admin, None)
    # other roles are not department-scoped
    ensure_department_scope(world.alice, world.cardio.id)
    ensure_department_scope(world.admin, None)

"""
tests/test_authorization.py -- Unit tests for auth/authorization.py.

The decision procedure is re-run from scratch on every call, so these tests
mutate the directory between calls and check the very next decision changes.

Coverage:
  - End-to-end: permission -> role -> user -> login -> authorize / forbidden
  - Login failures share one error (unknown user, wrong password, disabled)
  - Register then login resolves to the same user id
  - Role edits change the outcome without re-issuing a token
  - Disabled and deleted users invalidate existing tokens (401, not 403)
  - Dangling permission ids do not break resolution
  - Expired tokens are unauthorized
"""

from __future__ import annotations

import pytest

from auth.authorization import AuthorizationEngine
from auth.services import Services
from auth.tokens import TokenService
from core.errors import ForbiddenError, InvalidTokenError, UnauthorizedError


@pytest.fixture
def alice(services: Services):
    """alice holds ADMIN, which grants only CAN_CREATE_USER."""
    d = services.directory
    perm = d.create_permission("CAN_CREATE_USER")
    role = d.create_role("ADMIN", permissions=[perm.id])
    user = d.create_user("alice", "alice@example.com", "pw", roles=[role.id])
    return user, role, perm


class TestEndToEnd:
    def test_scenario(self, services: Services, alice) -> None:
        engine = services.engine
        token = engine.login("alice", "pw")

        principal = engine.authorize(token, "CAN_CREATE_USER")
        assert principal.user.username == "alice"

        with pytest.raises(ForbiddenError) as exc_info:
            engine.authorize(token, "CAN_DELETE_ROLE")
        assert exc_info.value.permission == "CAN_DELETE_ROLE"

    def test_register_then_login_resolves_same_user(self, seeded: Services) -> None:
        user = seeded.directory.register_user("bob", "b@x.com", "pw")
        token = seeded.engine.login("bob", "pw")
        assert seeded.engine.current_principal(token).id == user.id

    def test_registered_user_gets_self_grants_only(self, seeded: Services) -> None:
        seeded.directory.register_user("bob", "b@x.com", "pw")
        principal = seeded.engine.current_principal(seeded.engine.login("bob", "pw"))
        assert principal.permission_names == {"CAN_UPDATE_SELF", "CAN_DELETE_SELF"}


class TestLogin:
    def test_unknown_user(self, services: Services, alice) -> None:
        with pytest.raises(UnauthorizedError) as exc_info:
            services.engine.login("nobody", "pw")
        assert exc_info.value.message == "Invalid username or password."

    def test_wrong_password_same_message(self, services: Services, alice) -> None:
        with pytest.raises(UnauthorizedError) as exc_info:
            services.engine.login("alice", "wrong")
        assert exc_info.value.message == "Invalid username or password."

    def test_disabled_user_cannot_login(self, services: Services, alice) -> None:
        user, _, _ = alice
        services.directory.update_user(user.id, enabled=False)
        with pytest.raises(UnauthorizedError) as exc_info:
            services.engine.login("alice", "pw")
        assert exc_info.value.message == "Invalid username or password."

    def test_failure_is_not_forbidden(self, services: Services, alice) -> None:
        with pytest.raises(UnauthorizedError) as exc_info:
            services.engine.login("alice", "wrong")
        assert not isinstance(exc_info.value, ForbiddenError)


class TestDynamicResolution:
    def test_adding_permission_to_role_takes_effect(self, services: Services, alice) -> None:
        _, role, perm = alice
        token = services.engine.login("alice", "pw")
        with pytest.raises(ForbiddenError):
            services.engine.authorize(token, "CAN_DELETE_ROLE")

        extra = services.directory.create_permission("CAN_DELETE_ROLE")
        services.directory.update_role(role.id, permissions=[perm.id, extra.id])

        assert services.engine.authorize(token, "CAN_DELETE_ROLE").user.username == "alice"

    def test_removing_permission_from_role_takes_effect(self, services: Services, alice) -> None:
        _, role, _ = alice
        token = services.engine.login("alice", "pw")
        services.engine.authorize(token, "CAN_CREATE_USER")

        services.directory.update_role(role.id, permissions=[])

        with pytest.raises(ForbiddenError):
            services.engine.authorize(token, "CAN_CREATE_USER")

    def test_deleted_role_stops_granting(self, services: Services, alice) -> None:
        _, role, _ = alice
        token = services.engine.login("alice", "pw")
        services.directory.delete_role(role.id)
        with pytest.raises(ForbiddenError):
            services.engine.authorize(token, "CAN_CREATE_USER")

    def test_deleted_permission_is_skipped(self, services: Services, alice) -> None:
        user, _, perm = alice
        token = services.engine.login("alice", "pw")
        services.directory.delete_permission(perm.id)

        principal = services.engine.current_principal(token)
        assert principal.permission_names == frozenset()
        assert services.engine.effective_permission_names(user) == frozenset()


class TestTokenRevalidation:
    def test_disabled_user_token_is_unauthorized(self, services: Services, alice) -> None:
        user, _, _ = alice
        token = services.engine.login("alice", "pw")
        services.directory.update_user(user.id, enabled=False)
        with pytest.raises(UnauthorizedError):
            services.engine.authorize(token, "CAN_CREATE_USER")

    def test_reenabled_user_token_works_again(self, services: Services, alice) -> None:
        user, _, _ = alice
        token = services.engine.login("alice", "pw")
        services.directory.update_user(user.id, enabled=False)
        services.directory.update_user(user.id, enabled=True)
        services.engine.authorize(token, "CAN_CREATE_USER")

    def test_deleted_user_token_is_unauthorized(self, services: Services, alice) -> None:
        user, _, _ = alice
        token = services.engine.login("alice", "pw")
        services.directory.delete_user(user.id)
        with pytest.raises(UnauthorizedError):
            services.engine.current_principal(token)

    def test_forged_token_is_unauthorized(self, services: Services, alice) -> None:
        user, _, _ = alice
        forged = TokenService("f" * 64, 60).issue(user.id)
        with pytest.raises(InvalidTokenError):
            services.engine.authorize(forged, "CAN_CREATE_USER")

    def test_expired_token_is_unauthorized(self, services: Services, alice, clock) -> None:
        tokens = TokenService(services.settings.jwt_secret, 60, clock=clock)
        engine = AuthorizationEngine(services.directory, services.hasher, tokens)

        token = engine.login("alice", "pw")
        clock.now += 59
        engine.authorize(token, "CAN_CREATE_USER")
        clock.now += 1
        with pytest.raises(InvalidTokenError):
            engine.authorize(token, "CAN_CREATE_USER")

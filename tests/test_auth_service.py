"""Unit tests for auth/service.py -- account operations.

Covers:
- register(): default role, email normalization, hash stripped, conflicts
- register(): an insert race lost at the database maps to the same conflict
- login(): by username or email; unknown user and bad password are identical
- login() for an unknown identity still runs one bcrypt verification
- change_password(): wrong current password, success revokes every session
- logout()/logout_all(): best-effort single revoke, counted revoke-all
- profile read/update with uniqueness against other users only
"""

from unittest.mock import patch

import pytest
from sqlalchemy.exc import IntegrityError

from auth.errors import (
    EmailTaken,
    InternalError,
    InvalidCredentials,
    InvalidCurrentPassword,
    RefreshTokenInvalid,
    UserNotFound,
    UsernameTaken,
    ValidationError,
)
from auth.models import Role
from auth.passwords import PasswordHasher
from auth.service import AuthService

PASSWORD = "pw12345678"


@pytest.fixture
def alice(auth_service: AuthService):
    return auth_service.register("alice", "A@X.com", PASSWORD, name="Alice")


class TestRegister:
    def test_defaults(self, alice) -> None:
        assert alice.id is not None
        assert alice.role is Role.author
        assert alice.email == "a@x.com"
        assert alice.name == "Alice"
        assert alice.hashed_password is None
        assert alice.created_at

    def test_name_defaults_to_username(self, auth_service: AuthService) -> None:
        user = auth_service.register("bob", "b@x.com", PASSWORD)
        assert user.name == "bob"

    def test_explicit_role(self, auth_service: AuthService) -> None:
        user = auth_service.register("root", "root@x.com", PASSWORD, role=Role.admin)
        assert user.role is Role.admin

    def test_password_is_hashed_at_rest(self, auth_service: AuthService, alice) -> None:
        stored = auth_service.users.get_by_id(alice.id)
        assert stored.hashed_password and stored.hashed_password != PASSWORD

    def test_username_taken(self, auth_service: AuthService, alice) -> None:
        with pytest.raises(UsernameTaken):
            auth_service.register("alice", "other@x.com", PASSWORD)

    def test_email_taken_case_insensitive(self, auth_service: AuthService, alice) -> None:
        with pytest.raises(EmailTaken) as exc_info:
            auth_service.register("alice2", "a@X.COM", PASSWORD)
        assert exc_info.value.status_code == 409

    def test_lost_insert_race_maps_to_conflict(self, auth_service: AuthService, alice) -> None:
        # Pre-check passes (lookup says free), then the UNIQUE constraint fires.
        with patch.object(auth_service, "_conflict_for", side_effect=[None, UsernameTaken()]):
            with patch.object(
                auth_service.users, "create_user", side_effect=IntegrityError("INSERT", {}, Exception("UNIQUE"))
            ):
                with pytest.raises(UsernameTaken):
                    auth_service.register("alice", "new@x.com", PASSWORD)

    def test_password_over_72_bytes_rejected(self, auth_service: AuthService) -> None:
        with pytest.raises(ValidationError):
            auth_service.register("carol", "c@x.com", "é" * 37)


class TestLogin:
    def test_by_username(self, auth_service: AuthService, alice) -> None:
        pair, user = auth_service.login("alice", PASSWORD)
        assert user.id == alice.id
        assert user.hashed_password is None
        assert auth_service.tokens.verify_access_token(pair.access_token).user_id == alice.id

    def test_by_email(self, auth_service: AuthService, alice) -> None:
        _, user = auth_service.login("A@x.com", PASSWORD)
        assert user.username == "alice"

    def test_unknown_and_wrong_password_are_indistinguishable(self, auth_service: AuthService, alice) -> None:
        with pytest.raises(InvalidCredentials) as unknown:
            auth_service.login("nobody", PASSWORD)
        with pytest.raises(InvalidCredentials) as wrong:
            auth_service.login("alice", "wrong-password")
        assert (unknown.value.code, unknown.value.message) == (wrong.value.code, wrong.value.message)

    def test_unknown_identity_still_runs_bcrypt(self, auth_service: AuthService) -> None:
        with patch.object(PasswordHasher, "dummy_check", autospec=True, return_value=False) as dummy:
            with pytest.raises(InvalidCredentials):
                auth_service.login("ghost@x.com", PASSWORD)
        dummy.assert_called_once()

    def test_each_login_is_a_new_session(self, auth_service: AuthService, alice) -> None:
        auth_service.login("alice", PASSWORD)
        auth_service.login("alice", PASSWORD)
        assert len(auth_service.list_sessions(alice.id)) == 2


class TestPasswordChange:
    def test_wrong_current_password(self, auth_service: AuthService, alice) -> None:
        with pytest.raises(InvalidCurrentPassword):
            auth_service.change_password(alice.id, "not-it", "newpassword1")
        auth_service.login("alice", PASSWORD)

    def test_success_revokes_all_sessions(self, auth_service: AuthService, alice) -> None:
        pair1, _ = auth_service.login("alice", PASSWORD)
        pair2, _ = auth_service.login("alice", PASSWORD)

        auth_service.change_password(alice.id, PASSWORD, "newpassword1")

        for pair in (pair1, pair2):
            with pytest.raises(RefreshTokenInvalid):
                auth_service.refresh_token(pair.refresh_token)
        with pytest.raises(InvalidCredentials):
            auth_service.login("alice", PASSWORD)
        auth_service.login("alice", "newpassword1")

    def test_unknown_user(self, auth_service: AuthService) -> None:
        with pytest.raises(UserNotFound):
            auth_service.change_password(404, PASSWORD, "newpassword1")


class TestLogout:
    def test_logout_revokes_only_that_token(self, auth_service: AuthService, alice) -> None:
        pair1, _ = auth_service.login("alice", PASSWORD)
        pair2, _ = auth_service.login("alice", PASSWORD)
        auth_service.logout(alice.id, pair1.refresh_token)
        with pytest.raises(RefreshTokenInvalid):
            auth_service.refresh_token(pair1.refresh_token)
        auth_service.refresh_token(pair2.refresh_token)

    def test_logout_never_fails(self, auth_service: AuthService, alice) -> None:
        auth_service.logout(alice.id, None)
        auth_service.logout(alice.id, "")
        auth_service.logout(alice.id, "garbage")

    def test_logout_swallows_storage_errors(self, auth_service: AuthService, alice) -> None:
        with patch.object(auth_service.tokens, "revoke_refresh_token", side_effect=InternalError()):
            auth_service.logout(alice.id, "whatever")

    def test_logout_cannot_revoke_someone_elses_token(self, auth_service: AuthService, alice) -> None:
        auth_service.register("bob", "b@x.com", PASSWORD)
        bob_pair, _ = auth_service.login("bob", PASSWORD)
        auth_service.logout(alice.id, bob_pair.refresh_token)
        auth_service.refresh_token(bob_pair.refresh_token)

    def test_logout_all(self, auth_service: AuthService, alice) -> None:
        for _ in range(3):
            auth_service.login("alice", PASSWORD)
        assert auth_service.logout_all(alice.id) == 3
        assert auth_service.list_sessions(alice.id) == []


class TestProfile:
    def test_get_profile(self, auth_service: AuthService, alice) -> None:
        profile = auth_service.get_profile(alice.id)
        assert profile.username == "alice"
        assert profile.hashed_password is None

    def test_get_unknown(self, auth_service: AuthService) -> None:
        with pytest.raises(UserNotFound):
            auth_service.get_profile(12345)

    def test_update_fields(self, auth_service: AuthService, alice) -> None:
        updated = auth_service.update_profile(alice.id, name="Alice Liddell", email="Alice@Wonder.land")
        assert updated.name == "Alice Liddell"
        assert updated.email == "alice@wonder.land"
        assert updated.username == "alice"

    def test_keeping_own_username_is_not_a_conflict(self, auth_service: AuthService, alice) -> None:
        updated = auth_service.update_profile(alice.id, username="alice", email="a@x.com")
        assert updated.username == "alice"

    def test_conflicts_with_other_users(self, auth_service: AuthService, alice) -> None:
        auth_service.register("bob", "b@x.com", PASSWORD)
        with pytest.raises(UsernameTaken):
            auth_service.update_profile(alice.id, username="bob")
        with pytest.raises(EmailTaken):
            auth_service.update_profile(alice.id, email="B@x.com")

"""Unit tests for credentials and bearer tokens."""
from datetime import timedelta

import pytest
from fastapi import HTTPException
from jose import jwt

from common.auth import authenticate_user, issue_token, read_token
from common.config import get_settings
from common.models import RoleEnum, User

settings = get_settings()


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class TestTokens:
    """Tokens name the account by id, username and role."""

    @pytest.mark.parametrize("role", [RoleEnum.PROFESSOR, RoleEnum.ADMIN])
    def test_claims_round_trip(self, make_user, role):
        user = make_user("hypatia", "Hypatia", role=role)

        claims = read_token(issue_token(user))

        assert claims.user_id == user.id
        assert claims.username == "hypatia"
        assert claims.role == role

    def test_expired_token_is_rejected(self, make_user):
        token = issue_token(make_user("late"), expires_delta=timedelta(minutes=-1))

        with pytest.raises(HTTPException) as exc_info:
            read_token(token)

        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "Token expired"

    def test_foreign_signature_is_rejected(self, make_user):
        token = jwt.encode({"sub": "mallory", "uid": 1, "role": "admin"}, "not-our-secret", algorithm="HS256")

        with pytest.raises(HTTPException) as exc_info:
            read_token(token)

        assert exc_info.value.detail == "Invalid token"

    def test_token_without_account_id_is_rejected(self):
        token = jwt.encode({"sub": "legacy", "role": "professor"}, settings.jwt_secret, algorithm=settings.jwt_algorithm)

        with pytest.raises(HTTPException) as exc_info:
            read_token(token)

        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "Token is missing required claims"


class TestCurrentUser:
    """The services resolve the caller from the token's account id."""

    def test_login_token_resolves_the_professor(self, users_client, make_user):
        make_user("emmy", "Emmy Noether")
        token = users_client.post(
            "/users/login",
            data={"username": "emmy", "password": "Passw0rd!"},
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        ).json()["access_token"]

        assert read_token(token).role == RoleEnum.PROFESSOR
        me = users_client.get("/users/me", headers=bearer(token))
        assert me.status_code == 200
        assert me.json()["name"] == "Emmy Noether"

    def test_deleted_account_gets_404(self, users_client, db_session, make_user):
        user = make_user("gone")
        token = issue_token(user)
        db_session.delete(user)
        db_session.commit()

        response = users_client.get("/users/me", headers=bearer(token))

        assert response.status_code == 404
        assert response.json()["detail"] == "User not found"

    def test_renamed_account_invalidates_token(self, users_client, db_session, make_user):
        user = make_user("before")
        token = issue_token(user)
        user.username = "after"
        db_session.commit()

        assert users_client.get("/users/me", headers=bearer(token)).status_code == 404

    def test_expired_token_over_http(self, bookings_client, make_user):
        token = issue_token(make_user("late"), expires_delta=timedelta(minutes=-1))

        response = bookings_client.get("/bookings/active", headers=bearer(token))

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_professor_cannot_force_end(self, bookings_client, make_user):
        token = issue_token(make_user("prof"))

        assert bookings_client.put("/bookings/1/force-end", headers=bearer(token)).status_code == 403


class TestAuthenticateUser:
    def test_correct_password(self, db_session, make_user):
        make_user("ada")
        user = authenticate_user(db_session, "ada", "Passw0rd!")

        assert isinstance(user, User)
        assert user.username == "ada"

    @pytest.mark.parametrize("username, password", [("ada", "wrong-password"), ("nobody", "Passw0rd!")])
    def test_rejected_credentials(self, db_session, make_user, username, password):
        make_user("ada")

        assert authenticate_user(db_session, username, password) is None

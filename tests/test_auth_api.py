"""Tests for registration, login and token endpoints."""
import logging
from datetime import timedelta

import pytest
from teamtask_core import crud
from teamtask_core.api.main import create_app
from teamtask_core.config import Settings
from teamtask_core.models import utcnow


class TestRegistration:
    """Test the OTP registration flow."""

    def test_register_sends_otp(self, client, email_sender):
        response = client.post(
            "/api/v1/auth/register",
            json={"name": "  Alice  ", "email": "Alice@Example.com"},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["success"] is True
        assert data["email"] == "alice@example.com"
        assert data["otp_expires_in_minutes"] == 10

        otp = email_sender.last_otp("alice@example.com")
        assert len(otp) == 6

    def test_otp_is_stored_hashed(self, client, email_sender, db_session):
        client.post("/api/v1/auth/register", json={"name": "Alice", "email": "alice@example.com"})
        otp = email_sender.last_otp("alice@example.com")

        user = crud.get_user_by_email(db_session, "alice@example.com")
        assert user.otp_hash != otp
        assert user.is_verified is False
        assert user.password_hash is None

    def test_reregister_unverified_reissues_code(self, client, email_sender, db_session):
        client.post("/api/v1/auth/register", json={"name": "Alice", "email": "alice@example.com"})
        response = client.post("/api/v1/auth/register", json={"name": "Alicia", "email": "alice@example.com"})

        assert response.status_code == 201
        assert len(email_sender.messages) == 2
        assert crud.get_user_by_email(db_session, "alice@example.com").name == "Alicia"

    def test_register_verified_email_conflicts(self, client, owner):
        response = client.post("/api/v1/auth/register", json={"name": "Again", "email": owner.email})

        assert response.status_code == 409
        assert response.json() == {
            "success": False,
            "message": "User with this email already exists",
            "error": "Conflict",
        }

    def test_register_validation_error(self, client):
        response = client.post("/api/v1/auth/register", json={"name": "A", "email": "not-an-email"})

        assert response.status_code == 422
        body = response.json()
        assert body["success"] is False
        assert body["message"] == "Validation error"
        assert {e["field"] for e in body["errors"]} == {"name", "email"}

    def test_verify_generates_password(self, client, email_sender):
        client.post("/api/v1/auth/register", json={"name": "Alice", "email": "alice@example.com"})
        otp = email_sender.last_otp("alice@example.com")

        response = client.post("/api/v1/auth/verify-otp", json={"email": "alice@example.com", "otp": otp})

        assert response.status_code == 200
        password = email_sender.last_password("alice@example.com")
        login = client.post("/api/v1/auth/login", json={"email": "alice@example.com", "password": password})
        assert login.status_code == 200

    def test_otp_cannot_be_reused(self, client, email_sender):
        client.post("/api/v1/auth/register", json={"name": "Alice", "email": "alice@example.com"})
        otp = email_sender.last_otp("alice@example.com")
        client.post("/api/v1/auth/verify-otp", json={"email": "alice@example.com", "otp": otp})

        response = client.post("/api/v1/auth/verify-otp", json={"email": "alice@example.com", "otp": otp})

        assert response.status_code == 400
        assert response.json()["message"] == "User already verified. Please login."

    def test_wrong_otp(self, client, email_sender):
        client.post("/api/v1/auth/register", json={"name": "Alice", "email": "alice@example.com"})
        otp = email_sender.last_otp("alice@example.com")
        wrong = "000000" if otp != "000000" else "111111"

        response = client.post("/api/v1/auth/verify-otp", json={"email": "alice@example.com", "otp": wrong})

        assert response.status_code == 400
        assert response.json()["message"] == "Invalid OTP. Please try again."

    def test_expired_otp(self, client, email_sender, db_session):
        client.post("/api/v1/auth/register", json={"name": "Alice", "email": "alice@example.com"})
        otp = email_sender.last_otp("alice@example.com")
        user = crud.get_user_by_email(db_session, "alice@example.com")
        user.otp_expiry = utcnow() - timedelta(minutes=1)
        db_session.commit()

        response = client.post("/api/v1/auth/verify-otp", json={"email": "alice@example.com", "otp": otp})

        assert response.status_code == 400
        assert response.json()["message"] == "OTP has expired. Please register again."

    def test_verify_unknown_email(self, client):
        response = client.post("/api/v1/auth/verify-otp", json={"email": "ghost@example.com", "otp": "123456"})

        assert response.status_code == 404

    def test_resend_otp(self, client, email_sender):
        client.post("/api/v1/auth/register", json={"name": "Alice", "email": "alice@example.com"})

        response = client.post("/api/v1/auth/resend-otp", json={"email": "alice@example.com"})

        assert response.status_code == 200
        assert len(email_sender.messages) == 2

    def test_resend_otp_for_verified_user(self, client, owner):
        response = client.post("/api/v1/auth/resend-otp", json={"email": owner.email})

        assert response.status_code == 400


class TestLogin:
    """Test login, refresh and identity."""

    def test_login_unknown_email(self, client):
        response = client.post("/api/v1/auth/login", json={"email": "ghost@example.com", "password": "x"})

        assert response.status_code == 401
        assert response.json()["message"] == "Invalid email or password"

    def test_login_wrong_password(self, client, owner):
        response = client.post("/api/v1/auth/login", json={"email": owner.email, "password": "wrong-password"})

        assert response.status_code == 401
        assert response.json()["message"] == "Invalid email or password"

    def test_login_unverified(self, client):
        client.post("/api/v1/auth/register", json={"name": "Alice", "email": "alice@example.com"})

        response = client.post("/api/v1/auth/login", json={"email": "alice@example.com", "password": "whatever"})

        assert response.status_code == 403

    def test_me(self, client, owner):
        response = client.get("/api/v1/auth/me", headers=owner.headers)

        assert response.status_code == 200
        data = response.json()
        assert data["email"] == owner.email
        assert data["is_verified"] is True
        assert "password_hash" not in data
        assert "otp_hash" not in data

    def test_me_without_token(self, client):
        response = client.get("/api/v1/auth/me")

        assert response.status_code == 401
        assert response.json()["message"] == "No token provided"

    def test_me_with_invalid_token(self, client):
        response = client.get("/api/v1/auth/me", headers={"Authorization": "Bearer garbage"})

        assert response.status_code == 401
        assert response.json()["message"] == "Invalid token"

    def test_refresh_token_is_not_an_access_token(self, client, owner):
        response = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {owner.refresh_token}"})

        assert response.status_code == 401

    def test_refresh(self, client, owner):
        response = client.post("/api/v1/auth/refresh", json={"refresh_token": owner.refresh_token})

        assert response.status_code == 200
        data = response.json()
        assert data["user"]["id"] == str(owner.id)
        me = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {data['token']}"})
        assert me.status_code == 200

    def test_refresh_with_access_token(self, client, owner):
        response = client.post("/api/v1/auth/refresh", json={"refresh_token": owner.token})

        assert response.status_code == 401
        assert response.json()["message"] == "Invalid refresh token"

    def test_logout(self, client, owner):
        response = client.post("/api/v1/auth/logout", headers=owner.headers)

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Logout successful"}


class TestServiceEndpoints:
    """Test root and health endpoints and startup checks."""

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}

    def test_root(self, client):
        assert client.get("/").json()["realtime"] == "/ws"

    def test_placeholder_secrets_warn_at_startup(self, session_factory, caplog):
        settings = Settings(database_url="sqlite://", activity_purge_interval_seconds=0)
        assert settings.uses_placeholder_secrets

        with caplog.at_level(logging.WARNING, logger="teamtask-core"):
            create_app(settings=settings, session_factory=session_factory)

        assert "placeholder defaults" in caplog.text

    def test_configured_secrets_do_not_warn(self, settings, session_factory, caplog):
        assert not settings.uses_placeholder_secrets

        with caplog.at_level(logging.WARNING, logger="teamtask-core"):
            create_app(settings=settings, session_factory=session_factory)

        assert "placeholder defaults" not in caplog.text


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

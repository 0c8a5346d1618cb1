"""
Pytest configuration for teamtask core tests.

Provides an in-memory SQLite database, an application wired to it, a
capturing email sender and helpers to create verified users through the
public registration flow.
"""
import re
from dataclasses import dataclass, field
from uuid import UUID

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from teamtask_core.api.main import create_app
from teamtask_core.config import Settings
from teamtask_core.database import build_session_factory
from teamtask_core.mailer import EmailSender
from teamtask_core.models import Base


OTP_PATTERN = re.compile(r"verification code is (\d+)")
PASSWORD_PATTERN = re.compile(r"Password: (\S+)")


class CapturingEmailSender(EmailSender):
    """Email sender that keeps every message in memory."""

    def __init__(self):
        self.messages: list[dict] = []

    def send(self, to: str, subject: str, body: str) -> None:
        self.messages.append({"to": to, "subject": subject, "body": body})

    def last_to(self, address: str) -> dict:
        for message in reversed(self.messages):
            if message["to"] == address:
                return message
        raise AssertionError(f"No email sent to {address}")

    def last_otp(self, address: str) -> str:
        return OTP_PATTERN.search(self.last_to(address)["body"]).group(1)

    def last_password(self, address: str) -> str:
        return PASSWORD_PATTERN.search(self.last_to(address)["body"]).group(1)


@dataclass
class RegisteredUser:
    """A verified user and its credentials."""

    id: UUID
    name: str
    email: str
    password: str
    token: str
    refresh_token: str
    headers: dict = field(default_factory=dict)


@pytest.fixture
def settings():
    """Settings for tests: in-memory database and no background purge."""
    return Settings(
        database_url="sqlite://",
        jwt_secret="test-access-secret",
        jwt_refresh_secret="test-refresh-secret",
        activity_purge_interval_seconds=0,
    )


@pytest.fixture
def engine():
    """In-memory SQLite engine shared across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def email_sender():
    return CapturingEmailSender()


@pytest.fixture
def app(settings, session_factory, email_sender):
    return create_app(settings=settings, session_factory=session_factory, email_sender=email_sender)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def register_user(client, email_sender):
    """
    Factory that creates a verified, logged-in user through the API.

    Usage:
        alice = register_user("Alice", "alice@example.com")
        client.get("/api/v1/auth/me", headers=alice.headers)
    """

    def _register(name: str, email: str) -> RegisteredUser:
        response = client.post("/api/v1/auth/register", json={"name": name, "email": email})
        assert response.status_code == 201, response.text

        otp = email_sender.last_otp(email)
        response = client.post("/api/v1/auth/verify-otp", json={"email": email, "otp": otp})
        assert response.status_code == 200, response.text

        password = email_sender.last_password(email)
        response = client.post("/api/v1/auth/login", json={"email": email, "password": password})
        assert response.status_code == 200, response.text
        body = response.json()

        return RegisteredUser(
            id=UUID(body["user"]["id"]),
            name=name,
            email=email,
            password=password,
            token=body["token"],
            refresh_token=body["refresh_token"],
            headers={"Authorization": f"Bearer {body['token']}"},
        )

    return _register


@pytest.fixture
def owner(register_user):
    return register_user("Olivia Owner", "owner@example.com")


@pytest.fixture
def member(register_user):
    return register_user("Max Member", "member@example.com")


@pytest.fixture
def outsider(register_user):
    return register_user("Oscar Outsider", "outsider@example.com")


@pytest.fixture
def team(client, owner, member):
    """Team owned by ``owner`` with ``member`` invited as a plain member."""
    response = client.post(
        "/api/v1/teams/",
        json={"name": "Platform", "description": "Platform team"},
        headers=owner.headers,
    )
    assert response.status_code == 201, response.text
    team = response.json()

    response = client.post(
        f"/api/v1/teams/{team['id']}/members",
        json={"email": member.email},
        headers=owner.headers,
    )
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture
def project(client, owner, team):
    response = client.post(
        "/api/v1/projects/",
        json={"team_id": team["id"], "name": "Website"},
        headers=owner.headers,
    )
    assert response.status_code == 201, response.text
    return response.json()

import os
from datetime import datetime, timedelta

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "0123456789abcdef0123456789abcdef0123456789abcdef0123456789abcdef")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from karma_cms import models  # noqa: F401
from karma_cms.config import Settings
from karma_cms.database import Base
from karma_cms.main import create_app
from karma_cms.services.client_info import ClientInfo, device_fingerprint
from karma_cms.services.credentials import create_admin_user

ADMIN_USERNAME = "admin"
ADMIN_EMAIL = "admin@karmatraining.test"
ADMIN_PASSWORD = "CorrectHorse42!"


class FakeClock:
    """Clock the tests move by hand."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def make_client_info(ip: str = "203.0.113.10", user_agent: str = "pytest-agent", language: str = "en") -> ClientInfo:
    return ClientInfo(
        ip_address=ip,
        user_agent=user_agent,
        device_fingerprint=device_fingerprint(user_agent, language),
    )


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 1, 5, 9, 0, 0))


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def settings():
    return Settings(environment="production", trust_proxy_headers=True)


@pytest.fixture
def admin_user(session_factory):
    db = session_factory()
    try:
        user = create_admin_user(db, ADMIN_USERNAME, ADMIN_EMAIL, ADMIN_PASSWORD)
        db.commit()
        return {"id": user.id, "username": user.username, "email": user.email}
    finally:
        db.close()


@pytest.fixture
def make_client(session_factory, clock):
    """Build a TestClient for an app with the given setting overrides."""

    def _make(**overrides) -> TestClient:
        overrides.setdefault("environment", "production")
        overrides.setdefault("trust_proxy_headers", True)
        app = create_app(Settings(**overrides), session_factory=session_factory, clock=clock)
        # https so the Secure session cookie is sent back
        return TestClient(app, base_url="https://testserver")

    return _make


@pytest.fixture
def client(make_client):
    return make_client()


def login(client: TestClient, username: str = ADMIN_USERNAME, password: str = ADMIN_PASSWORD, **kwargs):
    return client.post("/api/admin/login", json={"username": username, "password": password}, **kwargs)


def csrf_headers(client: TestClient) -> dict[str, str]:
    response = client.get("/api/admin/csrf-token")
    assert response.status_code == 200
    return {"X-CSRF-Token": response.json()["csrfToken"]}

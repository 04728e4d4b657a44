from conftest import login, make_client_info
from fastapi.testclient import TestClient

from karma_cms.config import Settings
from karma_cms.main import create_app
from karma_cms.models.auth import AdminSession
from karma_cms.models.user import AdminUser
from karma_cms.services.credentials import create_admin_user
from karma_cms.services.sessions import create_session


def _bootstrap_settings(**overrides):
    return Settings(
        trust_proxy_headers=True,
        bootstrap_admin_username="owner",
        bootstrap_admin_email="owner@karmatraining.test",
        bootstrap_admin_password="OwnerPass2026!",
        **overrides,
    )


def test_startup_creates_bootstrap_admin(session_factory, clock):
    app = create_app(_bootstrap_settings(), session_factory=session_factory, clock=clock)

    with TestClient(app, base_url="https://testserver") as client:
        response = login(client, username="owner", password="OwnerPass2026!")

    assert response.status_code == 200


def test_bootstrap_skipped_when_admin_exists(session_factory, clock, admin_user):
    app = create_app(_bootstrap_settings(), session_factory=session_factory, clock=clock)

    with TestClient(app, base_url="https://testserver"):
        pass

    db = session_factory()
    try:
        assert [user.username for user in db.query(AdminUser).all()] == ["admin"]
    finally:
        db.close()


def test_startup_purges_expired_sessions(session_factory, clock, settings):
    db = session_factory()
    try:
        user = create_admin_user(db, "stale", "stale@karmatraining.test", "StalePass2026!")
        create_session(db, user, make_client_info(), settings, clock())
        db.commit()
    finally:
        db.close()

    clock.advance(7200)
    app = create_app(settings, session_factory=session_factory, clock=clock)
    with TestClient(app, base_url="https://testserver"):
        pass

    db = session_factory()
    try:
        assert db.query(AdminSession).count() == 0
    finally:
        db.close()


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_unexpected_errors_return_generic_500(session_factory, clock, settings):
    app = create_app(settings, session_factory=session_factory, clock=clock)

    @app.get("/api/boom")
    def boom():
        raise RuntimeError("database password is hunter2")

    client = TestClient(app, base_url="https://testserver", raise_server_exceptions=False)
    response = client.get("/api/boom")

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}
    assert "hunter2" not in response.text

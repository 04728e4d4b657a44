from datetime import timedelta
import secrets

from conftest import csrf_headers, login

from karma_cms.clock import to_iso
from karma_cms.models.auth import AdminSession
from karma_cms.services.credentials import create_admin_user


def _add_session(session_factory, user_id, clock, ip="198.51.100.50"):
    """Store a session for another device without going through login."""
    db = session_factory()
    try:
        record = AdminSession(
            user_id=user_id,
            token_hash=secrets.token_hex(32),
            created_at=to_iso(clock()),
            expires_at=to_iso(clock() + timedelta(hours=2)),
            last_activity_at=to_iso(clock()),
            ip_address=ip,
            user_agent="other-browser",
            security_level="strict",
        )
        db.add(record)
        db.commit()
        return record.id
    finally:
        db.close()


def _session_exists(session_factory, session_id):
    db = session_factory()
    try:
        return db.get(AdminSession, session_id) is not None
    finally:
        db.close()


def test_list_sessions_marks_the_current_one(client, admin_user, session_factory, clock):
    login(client)
    other_id = _add_session(session_factory, admin_user["id"], clock)

    response = client.get("/api/admin/sessions")

    assert response.status_code == 200
    sessions = {item["id"]: item for item in response.json()["sessions"]}
    assert len(sessions) == 2
    assert sessions[other_id]["current"] is False
    assert sessions[other_id]["ipAddress"] == "198.51.100.50"
    assert sessions[other_id]["userAgent"] == "other-browser"
    assert [item["current"] for item in sessions.values()].count(True) == 1


def test_list_sessions_requires_login(client):
    response = client.get("/api/admin/sessions")

    assert response.status_code == 401


def test_end_other_sessions_keeps_the_current_one(client, admin_user, session_factory, clock):
    login(client)
    other_ids = [_add_session(session_factory, admin_user["id"], clock) for _ in range(2)]

    refused = client.delete("/api/admin/sessions")
    assert refused.status_code == 403
    assert all(_session_exists(session_factory, session_id) for session_id in other_ids)

    response = client.delete("/api/admin/sessions", headers=csrf_headers(client))

    assert response.status_code == 200
    assert response.json() == {"success": True, "terminatedCount": 2}
    remaining = client.get("/api/admin/sessions").json()["sessions"]
    assert [item["current"] for item in remaining] == [True]


def test_end_one_session_is_idempotent(client, admin_user, session_factory, clock):
    login(client)
    other_id = _add_session(session_factory, admin_user["id"], clock)
    headers = csrf_headers(client)

    first = client.delete(f"/api/admin/sessions/{other_id}", headers=headers)
    second = client.delete(f"/api/admin/sessions/{other_id}", headers=headers)

    assert first.json()["terminatedCount"] == 1
    assert second.status_code == 200
    assert second.json()["terminatedCount"] == 0
    assert client.get("/api/admin/session").status_code == 200


def test_cannot_end_another_users_session(client, admin_user, session_factory, clock):
    db = session_factory()
    try:
        editor_id = create_admin_user(db, "editor", "editor@karmatraining.test", "EditorPass99!").id
        db.commit()
    finally:
        db.close()
    editor_session = _add_session(session_factory, editor_id, clock)
    login(client)

    response = client.delete(f"/api/admin/sessions/{editor_session}", headers=csrf_headers(client))

    assert response.status_code == 200
    assert response.json()["terminatedCount"] == 0
    assert _session_exists(session_factory, editor_session)


def test_ending_the_current_session_logs_out(client, admin_user):
    login(client)
    headers = csrf_headers(client)
    current = [item for item in client.get("/api/admin/sessions").json()["sessions"] if item["current"]][0]

    response = client.delete(f"/api/admin/sessions/{current['id']}", headers=headers)

    assert response.json()["terminatedCount"] == 1
    assert "admin_token" in response.headers["set-cookie"]
    assert client.get("/api/admin/session").status_code == 401

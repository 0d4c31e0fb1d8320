from datetime import datetime, timedelta

from itsdangerous import Signer

from conftest import admin_login, fetch_csrf, login, make_admin, make_user, session_cookie
from extensions import db
from models import AuditLog, ServerSession
from utils.session_store import DatabaseSessionInterface, purge_expired_sessions


def _signed(app, sid: str) -> str:
    signer = Signer(app.secret_key, salt=DatabaseSessionInterface.salt, key_derivation="hmac")
    return signer.sign(sid.encode()).decode()


def test_session_id_changes_at_login_and_old_row_is_dropped(app, client):
    make_user(app)
    fetch_csrf(client)
    before = session_cookie(client, app).value

    login(client)
    after = session_cookie(client, app).value
    assert after != before

    with app.app_context():
        assert ServerSession.query.count() == 1


def test_cookie_carries_only_a_signed_id(app, client):
    make_user(app)
    login(client)
    cookie = session_cookie(client, app)
    assert cookie.http_only
    assert "alice" not in cookie.value
    with app.app_context():
        stored = ServerSession.query.one()
        assert cookie.value == _signed(app, stored.sid)


def test_unknown_session_id_is_never_adopted(app, client):
    client.set_cookie(app.config["SESSION_COOKIE_NAME"], _signed(app, "attacker-chosen-id"))
    assert client.get("/api/session").get_json()["authenticated"] is False

    fetch_csrf(client)
    assert session_cookie(client, app).value != _signed(app, "attacker-chosen-id")
    with app.app_context():
        assert db.session.get(ServerSession, "attacker-chosen-id") is None


def test_tampered_cookie_is_ignored(app, client):
    make_user(app)
    login(client)
    cookie = session_cookie(client, app).value
    client.set_cookie(app.config["SESSION_COOKIE_NAME"], cookie[:-2] + "xx")
    assert client.get("/api/profile").status_code == 401


def test_expired_session_is_treated_as_anonymous(app, client):
    make_user(app)
    login(client)
    with app.app_context():
        row = ServerSession.query.one()
        row.expire = datetime.utcnow() - timedelta(minutes=1)
        db.session.commit()
    assert client.get("/api/profile").status_code == 401


def test_purge_removes_only_expired_rows(app, client):
    make_user(app)
    login(client)
    with app.app_context():
        db.session.add(ServerSession(sid="stale", sess="{}", expire=datetime.utcnow() - timedelta(hours=1)))
        db.session.commit()
        assert purge_expired_sessions() == 1
        assert ServerSession.query.count() == 1


def test_state_changing_request_without_token_is_forbidden(app, client):
    make_user(app)
    login(client)
    response = client.post("/api/profile/update", json={"name": "Nope"})
    assert response.status_code == 403
    assert response.get_json()["success"] is False


def test_token_issued_before_login_is_rejected_after_login(app, client):
    make_user(app)
    stale = fetch_csrf(client)
    fresh = login(client)
    assert stale != fresh

    stale_attempt = client.post("/api/profile/update", json={"name": "Stale"}, headers={"X-CSRF-Token": stale})
    assert stale_attempt.status_code == 403
    fresh_attempt = client.post("/api/profile/update", json={"name": "Fresh"}, headers={"X-CSRF-Token": fresh})
    assert fresh_attempt.status_code == 200


def test_wrong_principal_is_forbidden_and_audited(app, client):
    make_user(app)
    login(client)
    response = client.get("/api/admin/dashboard")
    assert response.status_code == 403
    with app.app_context():
        assert AuditLog.query.filter_by(action_type="UNAUTHORIZED_ACCESS").count() == 1


def test_admin_cannot_use_user_endpoints(app, client):
    make_admin(app)
    admin_login(client)
    assert client.get("/api/dashboard").status_code == 403
    assert client.get("/api/session").get_json()["principal"] == "admin"


def test_anonymous_requests_get_401(client):
    for path in ("/api/dashboard", "/api/profile", "/api/admin/dashboard", "/api/admin/claims"):
        response = client.get(path)
        assert response.status_code == 401
        assert response.get_json() == {"success": False, "message": "Not authenticated"}


def test_user_login_replaces_an_admin_session(app, client):
    make_user(app)
    make_admin(app)
    admin_login(client)
    login(client)
    info = client.get("/api/session").get_json()
    assert info["principal"] == "user"
    assert client.get("/api/admin/dashboard").status_code == 403


def test_upload_directory_is_never_served(client):
    assert client.get("/uploads/proof_abc.png").status_code == 403
    assert client.get("/uploads").status_code == 403


def test_security_headers_and_json_errors(client):
    response = client.get("/api/does-not-exist")
    assert response.status_code == 404
    assert response.get_json()["success"] is False
    assert response.headers["X-Frame-Options"] == "DENY"
    assert response.headers["X-Content-Type-Options"] == "nosniff"


def test_health_endpoint(client):
    assert client.get("/api/health").get_json() == {"status": "ok"}

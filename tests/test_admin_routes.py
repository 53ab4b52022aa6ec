import re

import pytest

from app import resolve_ws_user
from models import db
from models.banned_ip import BannedIp
from models.user import User
from security.rbac import is_admin
from utils.auth_context import authenticate_token
from tests.conftest import bearer

LOG_LINE = re.compile(
    r"^SECURITY: \d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z \| User: (\S+) \((\S+)\) \| "
    r"Action: (\S+) \| Target: (.+) \| (SUCCESS|FAILED)$"
)


@pytest.fixture()
def admin_token(make_user, login):
    make_user("root", is_admin=True, is_developer=True, is_protected=True)
    return login("root")


@pytest.mark.parametrize("flags", [
    {"is_developer": True, "is_admin": False},
    {"is_developer": False, "is_admin": True},
    {},
])
def test_admin_requires_both_flags(flags, client, make_user, login, security_log):
    user = make_user("half", **flags)
    token = login("half")

    resp = client.get("/api/admin/stats", headers=bearer(token))

    assert resp.status_code == 403
    assert resp.get_json() == {"success": False, "message": "Access denied"}
    failed = [LOG_LINE.match(line) for line in security_log() if "VIEW_ADMIN_STATS" in line]
    assert failed and failed[-1].groups() == (str(user.id), "half", "VIEW_ADMIN_STATS", "SYSTEM", "FAILED")


def test_anonymous_admin_call_is_denied_and_logged(client, security_log):
    resp = client.post("/api/admin/ban-user", json={"user_id": 1})
    assert resp.status_code == 403
    match = LOG_LINE.match(security_log()[-1])
    assert match.groups() == ("unknown", "unknown", "BAN_USER", "SYSTEM", "FAILED")


def test_is_admin_predicate(make_user):
    assert is_admin(None) is False
    assert is_admin(make_user("a", is_admin=True)) is False
    assert is_admin(make_user("d", is_developer=True)) is False
    assert is_admin(make_user("both", is_admin=True, is_developer=True)) is True


def test_authenticate_token(app, make_user):
    user = make_user("carol")
    token = app.extensions["sessions"].create_session(user.id)

    assert authenticate_token(token).id == user.id
    assert authenticate_token(None) is None
    assert authenticate_token("bogus") is None

    orphan = app.extensions["sessions"].create_session(9999)
    assert authenticate_token(orphan) is None


def test_stats(client, admin_token, make_user, security_log):
    make_user("x1")
    make_user("x2", banned=True)

    resp = client.get("/api/admin/stats", headers=bearer(admin_token))
    stats = resp.get_json()["stats"]

    assert resp.status_code == 200
    assert stats["total_users"] == 3
    assert stats["banned_users"] == 1
    assert stats["active_sessions"] == 1
    assert security_log()[-1].endswith("Action: VIEW_ADMIN_STATS | Target: SYSTEM | SUCCESS")


def test_ban_user_bans_last_ip_and_kills_sessions(client, admin_token, make_user, login, app):
    make_user("spammer")
    spam_token = login("spammer")
    target = User.query.filter_by(username="spammer").one()
    assert target.last_ip == "127.0.0.1"

    resp = client.post("/api/admin/ban-user", json={"user_id": target.id, "banned": True},
                       headers=bearer(admin_token))

    assert resp.status_code == 200
    assert resp.get_json() == {"success": True, "banned": True}
    assert User.query.filter_by(username="spammer").one().banned is True
    assert BannedIp.query.filter_by(ip="127.0.0.1").first() is not None
    assert app.extensions["sessions"].validate_session(spam_token) is None


def test_unban_user(client, admin_token, make_user):
    target = make_user("sorry", banned=True)
    resp = client.post("/api/admin/ban-user", json={"user_id": target.id, "banned": False},
                       headers=bearer(admin_token))
    assert resp.get_json()["banned"] is False


def test_protected_user_cannot_be_banned_or_deleted(client, admin_token, make_user):
    vip = make_user("vip", is_protected=True)
    h = bearer(admin_token)

    assert client.post("/api/admin/ban-user", json={"user_id": vip.id}, headers=h).status_code == 400
    assert client.post("/api/admin/delete-user", json={"user_id": vip.id}, headers=h).status_code == 400


def test_delete_user(client, admin_token, make_user, security_log):
    target = make_user("gone")
    resp = client.post("/api/admin/delete-user", json={"user_id": target.id}, headers=bearer(admin_token))

    assert resp.status_code == 200
    assert User.query.filter_by(username="gone").first() is None
    assert security_log()[-1].endswith("Action: DELETE_USER | Target: user:gone | SUCCESS")


def test_unknown_target(client, admin_token):
    resp = client.post("/api/admin/toggle-verification", json={"user_id": 424242}, headers=bearer(admin_token))
    assert resp.status_code == 404


@pytest.mark.parametrize("user_id", [True, False, "1", 1.0, None])
def test_non_integer_target_is_not_found(client, admin_token, user_id):
    resp = client.post("/api/admin/toggle-verification", json={"user_id": user_id}, headers=bearer(admin_token))
    assert resp.status_code == 404
    assert User.query.filter_by(username="root").one().verified is False


@pytest.mark.parametrize("flag", ["false", 0, None])
def test_ban_flag_must_be_boolean(client, admin_token, make_user, flag):
    target = make_user("maybe")
    resp = client.post("/api/admin/ban-user", json={"user_id": target.id, "banned": flag},
                       headers=bearer(admin_token))

    assert resp.status_code == 400
    assert User.query.filter_by(username="maybe").one().banned is False


def test_toggles(client, admin_token, make_user, security_log):
    target = make_user("t")
    h = bearer(admin_token)

    resp = client.post("/api/admin/toggle-verification", json={"user_id": target.id}, headers=h)
    assert resp.get_json()["verified"] is True
    assert security_log()[-1].endswith("Target: user:t, status:true | SUCCESS")

    resp = client.post("/api/admin/toggle-developer", json={"user_id": target.id}, headers=h)
    assert resp.get_json()["is_developer"] is True
    resp = client.post("/api/admin/toggle-developer", json={"user_id": target.id}, headers=h)
    assert resp.get_json()["is_developer"] is False


def test_make_admin_cli(app, make_user):
    make_user("promote_me")
    runner = app.test_cli_runner()

    result = runner.invoke(args=["make-admin", "promote_me"])
    assert "promoted to admin" in result.output

    user = User.query.filter_by(username="promote_me").one()
    db.session.refresh(user)
    assert is_admin(user)

    result = runner.invoke(args=["make-admin", "nobody"])
    assert "User not found" in result.output


def test_websocket_identity_uses_the_same_user_checks(app, make_user):
    sessions = app.extensions["sessions"]
    live = make_user("live")
    banned = make_user("benched", banned=True)
    live_id, banned_id = live.id, banned.id

    assert resolve_ws_user(app, sessions.create_session(live_id)) == live_id
    assert resolve_ws_user(app, sessions.create_session(banned_id)) is None
    assert resolve_ws_user(app, sessions.create_session(9999)) is None
    assert resolve_ws_user(app, "bogus") is None

from flask import Blueprint, jsonify, g, request, current_app

from models import db
from models.banned_ip import BannedIp
from models.message import Message
from models.user import User
from security.rbac import require_admin
from security.session import get_session_store
from utils.audit import log_security_event
from utils.blocklist import ban_ip
from utils.extensions import get_ws_hub

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


def _target_user():
    """
    Returns (user, None) or (None, error response) for the "user_id" in the body.
    """
    data = request.get_json(silent=True) or {}
    user_id = data.get("user_id")
    valid_id = isinstance(user_id, int) and not isinstance(user_id, bool)
    target = db.session.get(User, user_id) if valid_id else None
    if target is None:
        return None, (jsonify(success=False, message="User not found"), 404)
    return target, None


@admin_bp.get("/stats")
@require_admin("VIEW_ADMIN_STATS")
def stats():
    log_security_event(g.user, "VIEW_ADMIN_STATS", "SYSTEM")
    return jsonify(
        success=True,
        stats={
            "total_users": User.query.count(),
            "total_messages": Message.query.count(),
            "online_users": User.query.filter_by(status="online").count(),
            "banned_users": User.query.filter_by(banned=True).count(),
            "banned_ips": BannedIp.query.count(),
            "active_sessions": len(get_session_store()),
            "connected_clients": len(get_ws_hub()),
        },
    ), 200


@admin_bp.post("/delete-user")
@require_admin("DELETE_USER")
def delete_user():
    target, error = _target_user()
    if error:
        return error

    if target.is_protected:
        return jsonify(success=False, message="Protected users cannot be deleted"), 400
    if target.id == g.user.id:
        return jsonify(success=False, message="You cannot delete your own account"), 400

    username = target.username
    Message.query.filter(
        (Message.sender_id == target.id) | (Message.to_user_id == target.id)
    ).delete(synchronize_session=False)
    get_session_store().invalidate_user(target.id)
    db.session.delete(target)
    db.session.commit()

    log_security_event(g.user, "DELETE_USER", f"user:{username}")
    return jsonify(success=True, message=f"User {username} deleted"), 200


@admin_bp.post("/ban-user")
@require_admin("BAN_USER")
def ban_user():
    target, error = _target_user()
    if error:
        return error

    if target.is_protected:
        return jsonify(success=False, message="Protected users cannot be banned"), 400

    banned = (request.get_json(silent=True) or {}).get("banned", True)
    if not isinstance(banned, bool):
        return jsonify(success=False, message="'banned' must be true or false"), 400
    target.banned = banned
    db.session.commit()

    if banned:
        get_session_store().invalidate_user(target.id)
        if target.last_ip:
            ban_ip(target.last_ip, days=current_app.config.get("IP_BAN_DAYS", 30))

    action = "BAN_USER" if banned else "UNBAN_USER"
    log_security_event(g.user, action, f"user:{target.username}")
    return jsonify(success=True, banned=target.banned), 200


@admin_bp.post("/toggle-verification")
@require_admin("TOGGLE_VERIFICATION")
def toggle_verification():
    target, error = _target_user()
    if error:
        return error

    target.verified = not target.verified
    db.session.commit()

    log_security_event(
        g.user, "TOGGLE_VERIFICATION", f"user:{target.username}, status:{str(target.verified).lower()}"
    )
    return jsonify(success=True, verified=target.verified), 200


@admin_bp.post("/toggle-developer")
@require_admin("TOGGLE_DEVELOPER")
def toggle_developer():
    target, error = _target_user()
    if error:
        return error

    target.is_developer = not target.is_developer
    db.session.commit()

    log_security_event(
        g.user, "TOGGLE_DEVELOPER", f"user:{target.username}, status:{str(target.is_developer).lower()}"
    )
    return jsonify(success=True, is_developer=target.is_developer), 200

from datetime import datetime

from flask import Blueprint, request, jsonify, current_app, g

from models import db
from models.user import User
from security.password import hash_password, verify_and_update
from security.rate_limit import client_ip
from security.sanitizer import sanitize, validate_input
from security.session import bearer_token, create_session, revoke_session
from utils.audit import log_security_event
from utils.auth_context import login_required
from utils.blocklist import is_ip_banned


auth_bp = Blueprint("auth", __name__, url_prefix="/api")

INVALID_CREDENTIALS = "Invalid username or password"


def _mark_online(user: User) -> None:
    user.status = "online"
    user.last_seen_at = datetime.utcnow()
    user.last_ip = client_ip()


@auth_bp.post("/register")
def register():
    data = request.get_json(silent=True) or {}
    username = (data.get("username") or "").strip()
    display_name = (data.get("display_name") or "").strip()
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""

    if is_ip_banned(client_ip()):
        log_security_event(None, "REGISTER", "SYSTEM", success=False)
        return jsonify(success=False, message="Registration is not available"), 403

    if not username or not display_name or not email or not password:
        return jsonify(success=False, message="All fields are required"), 400

    max_len = current_app.config.get("SANITIZER_MAX_LENGTH", 5000)

    # identifiers are stored verbatim, so anything the sanitizer rewrites is refused
    clean_username = sanitize(username, max_len)
    if clean_username != username or not validate_input(clean_username, "username"):
        return jsonify(success=False, message="Invalid username"), 400
    clean_email = sanitize(email, max_len)
    if clean_email != email or not validate_input(clean_email, "email"):
        return jsonify(success=False, message="Invalid email"), 400

    display_name = sanitize(display_name, max_len)
    if not validate_input(display_name, "display_name"):
        return jsonify(success=False, message="Invalid display name"), 400

    min_len = current_app.config.get("PASSWORD_MIN_LEN", 6)
    if len(password) < min_len:
        return jsonify(success=False, message=f"Password must be at least {min_len} characters"), 400

    if User.query.filter_by(username=username).first():
        return jsonify(success=False, message="Username is already taken"), 409
    if User.query.filter_by(email=email).first():
        return jsonify(success=False, message="Email is already registered"), 409

    user = User(
        username=username,
        display_name=display_name,
        email=email,
        password_hash=hash_password(password, rounds=current_app.config.get("BCRYPT_ROUNDS")),
    )
    _mark_online(user)
    db.session.add(user)
    db.session.commit()

    token = create_session(user.id)
    log_security_event(user, "REGISTER", "SYSTEM")

    return jsonify(success=True, token=token, user=user.to_public_dict()), 201


@auth_bp.post("/login")
def login():
    data = request.get_json(silent=True) or {}
    username = (data.get("username") or "").strip()
    password = data.get("password") or ""

    if not validate_input(username, "username") or not password:
        return jsonify(success=False, message=INVALID_CREDENTIALS), 400

    user = User.query.filter_by(username=username).first()
    if not user:
        log_security_event(None, "LOGIN", f"user:{username}", success=False)
        return jsonify(success=False, message=INVALID_CREDENTIALS), 401

    valid, upgraded_hash = verify_and_update(
        password, user.password_hash, rounds=current_app.config.get("BCRYPT_ROUNDS")
    )
    if not valid:
        log_security_event(user, "LOGIN", "SYSTEM", success=False)
        return jsonify(success=False, message=INVALID_CREDENTIALS), 401

    if upgraded_hash:
        user.password_hash = upgraded_hash
        db.session.commit()
        log_security_event(user, "PASSWORD_REHASH", "SYSTEM")

    if user.banned or is_ip_banned(client_ip()):
        log_security_event(user, "LOGIN", "SYSTEM", success=False)
        return jsonify(success=False, message="Access denied"), 403

    _mark_online(user)
    db.session.commit()

    token = create_session(user.id)
    log_security_event(user, "LOGIN", "SYSTEM")

    return jsonify(success=True, token=token, user=user.to_public_dict()), 200


@auth_bp.post("/logout")
@login_required
def logout():
    revoke_session(bearer_token())
    g.user.status = "offline"
    g.user.last_seen_at = datetime.utcnow()
    db.session.commit()

    log_security_event(g.user, "LOGOUT", "SYSTEM")
    return jsonify(success=True, message="Logged out"), 200


def _current_user_or_denied(action: str):
    """
    Returns (user, None) or (None, error response) for the current request.
    """
    user = getattr(g, "user", None)
    if user is None:
        return None, (jsonify(success=False, message="Not authenticated"), 401)

    if user.banned or is_ip_banned(client_ip()):
        log_security_event(user, action, "SYSTEM", success=False)
        return None, (jsonify(success=False, message="Access denied"), 403)

    user.last_seen_at = datetime.utcnow()
    db.session.commit()
    log_security_event(user, action, "SYSTEM")
    return user, None


@auth_bp.get("/me")
def me():
    user, denied = _current_user_or_denied("GET_CURRENT_USER")
    if denied:
        return denied
    return jsonify(success=True, user=user.to_public_dict()), 200


@auth_bp.get("/check-auth")
def check_auth():
    user, denied = _current_user_or_denied("CHECK_AUTH")
    if denied:
        return jsonify(authenticated=False), 200
    return jsonify(authenticated=True, user=user.to_public_dict()), 200

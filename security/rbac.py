from functools import wraps
from flask import g, jsonify

from utils.audit import log_security_event

ACCESS_DENIED = "Access denied"


def is_admin(user) -> bool:
    """
    Admin console access needs BOTH the developer and the admin flag.
    """
    if user is None:
        return False
    return bool(user.is_developer) and bool(user.is_admin)


def require_admin(action: str):
    """
    Usage: @require_admin("BAN_USER")
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            user = getattr(g, "user", None)
            if not is_admin(user):
                log_security_event(user, action, "SYSTEM", success=False)
                return jsonify(success=False, message=ACCESS_DENIED), 403

            return fn(*args, **kwargs)
        return wrapper
    return decorator

from functools import wraps
from typing import Optional

from flask import g, jsonify

from models import db
from models.user import User
from security.session import get_session_store, get_session_from_request

NOT_AUTHENTICATED = "Not authenticated"


def authenticate_token(token: Optional[str]) -> Optional[User]:
    """
    Resolves a bearer token to its user. None on any failure.
    """
    if not token:
        return None
    sess = get_session_store().validate_session(token)
    if sess is None:
        return None
    return db.session.get(User, sess.user_id)


def load_current_user():
    sess = get_session_from_request()
    if not sess:
        g.user = None
        g.session = None
        return
    g.session = sess
    g.user = db.session.get(User, sess.user_id)


def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if getattr(g, "user", None) is None:
            return jsonify(success=False, message=NOT_AUTHENTICATED), 401
        return fn(*args, **kwargs)
    return wrapper

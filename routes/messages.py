from datetime import datetime

from flask import Blueprint, current_app, g, jsonify, request
from sqlalchemy import and_, or_

from models import db
from models.message import Message
from models.user import User
from security.cipher import PayloadDecodeError, decrypt, encrypt
from security.sanitizer import sanitize
from utils.audit import log_security_event
from utils.auth_context import login_required
from utils.extensions import get_encryption_key, get_ws_hub

messages_bp = Blueprint("messages", __name__, url_prefix="/api")

UNDECRYPTABLE = "[undecryptable]"
HISTORY_LIMIT = 500


def _plain_text(msg: Message) -> str:
    if not msg.encrypted:
        return msg.text
    try:
        return decrypt(msg.text, get_encryption_key())
    except PayloadDecodeError:
        current_app.logger.warning("Message %s could not be decrypted", msg.id)
        return UNDECRYPTABLE


def _serialize(msg: Message) -> dict:
    return {
        "id": msg.id,
        "sender_id": msg.sender_id,
        "to_user_id": msg.to_user_id,
        "text": _plain_text(msg),
        "read": msg.read,
        "edited": msg.edited,
        "created_at": msg.created_at.isoformat(),
        "edited_at": msg.edited_at.isoformat() if msg.edited_at else None,
    }


def _clean(text) -> str:
    return sanitize(text, current_app.config.get("SANITIZER_MAX_LENGTH", 5000))


@messages_bp.get("/messages")
@login_required
def list_messages():
    other_id = request.args.get("with", type=int)
    if other_id is None:
        return jsonify(success=False, message="Missing 'with' user id"), 400

    me = g.user.id
    rows = (
        Message.query
        .filter(or_(
            and_(Message.sender_id == me, Message.to_user_id == other_id),
            and_(Message.sender_id == other_id, Message.to_user_id == me),
        ))
        .order_by(Message.created_at.desc(), Message.id.desc())
        .limit(HISTORY_LIMIT)
        .all()
    )
    # newest page, returned oldest first
    rows.reverse()

    # opening a chat marks incoming messages as read
    unread = [m for m in rows if m.to_user_id == me and not m.read]
    for m in unread:
        m.read = True
    if unread:
        db.session.commit()

    return jsonify(success=True, messages=[_serialize(m) for m in rows]), 200


@messages_bp.post("/messages")
@login_required
def send_message():
    data = request.get_json(silent=True) or {}
    to_user_id = data.get("to_user_id")
    text = _clean(data.get("text"))

    if not isinstance(to_user_id, int) or not text:
        return jsonify(success=False, message="Recipient and text are required"), 400

    recipient = db.session.get(User, to_user_id)
    if recipient is None or recipient.banned:
        return jsonify(success=False, message="Recipient not found"), 404

    msg = Message(
        sender_id=g.user.id,
        to_user_id=recipient.id,
        text=encrypt(text, get_encryption_key()),
        encrypted=True,
    )
    db.session.add(msg)
    db.session.commit()

    payload = _serialize(msg)
    get_ws_hub().send_to_user(recipient.id, "new_message", payload)

    return jsonify(success=True, message=payload), 201


@messages_bp.put("/messages/<int:message_id>")
@login_required
def edit_message(message_id: int):
    msg = db.session.get(Message, message_id)
    if msg is None:
        return jsonify(success=False, message="Message not found"), 404

    if msg.sender_id != g.user.id:
        log_security_event(g.user, "EDIT_MESSAGE", f"message:{message_id}", success=False)
        return jsonify(success=False, message="Access denied"), 403

    data = request.get_json(silent=True) or {}
    text = _clean(data.get("text"))
    if not text:
        return jsonify(success=False, message="Text is required"), 400

    msg.text = encrypt(text, get_encryption_key())
    msg.encrypted = True
    msg.edited = True
    msg.edited_at = datetime.utcnow()
    db.session.commit()

    payload = _serialize(msg)
    get_ws_hub().send_to_user(msg.to_user_id, "message_edited", payload)
    log_security_event(g.user, "EDIT_MESSAGE", f"message:{message_id}")

    return jsonify(success=True, message=payload), 200

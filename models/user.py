from datetime import datetime
from models.db import db

class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    username = db.Column(db.String(20), unique=True, nullable=False, index=True)
    display_name = db.Column(db.String(30), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)

    # bcrypt ("$2b$...") or legacy unsalted sha256 hex, see security.password
    password_hash = db.Column(db.String(255), nullable=False)

    banned = db.Column(db.Boolean, default=False, nullable=False)
    # admin console needs both flags, see security.rbac.is_admin
    is_admin = db.Column(db.Boolean, default=False, nullable=False)
    is_developer = db.Column(db.Boolean, default=False, nullable=False)
    verified = db.Column(db.Boolean, default=False, nullable=False)
    # protected accounts cannot be banned or deleted from the console
    is_protected = db.Column(db.Boolean, default=False, nullable=False)

    status = db.Column(db.String(20), default="offline", nullable=False)
    last_ip = db.Column(db.String(64), nullable=True)
    last_seen_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def to_public_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "display_name": self.display_name,
            "email": self.email,
            "verified": self.verified,
            "is_developer": self.is_developer,
            "status": self.status,
            "banned": self.banned,
            "last_seen_at": self.last_seen_at.isoformat() if self.last_seen_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

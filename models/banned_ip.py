from datetime import datetime
from models.db import db


class BannedIp(db.Model):
    __tablename__ = "banned_ips"

    id = db.Column(db.Integer, primary_key=True)
    ip = db.Column(db.String(64), unique=True, nullable=False, index=True)
    banned_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=True)  # null = permanent

from datetime import datetime, timedelta

from models import db
from models.banned_ip import BannedIp


def is_ip_banned(ip: str) -> bool:
    if not ip:
        return False
    row = BannedIp.query.filter_by(ip=ip).first()
    if row is None:
        return False

    if row.expires_at and row.expires_at < datetime.utcnow():
        # lazily lift expired bans
        db.session.delete(row)
        db.session.commit()
        return False
    return True


def ban_ip(ip: str, days: int = 30) -> BannedIp:
    expires_at = datetime.utcnow() + timedelta(days=days) if days else None
    row = BannedIp.query.filter_by(ip=ip).first()
    if row is None:
        row = BannedIp(ip=ip)
        db.session.add(row)
    row.banned_at = datetime.utcnow()
    row.expires_at = expires_at
    db.session.commit()
    return row


def unban_ip(ip: str) -> bool:
    row = BannedIp.query.filter_by(ip=ip).first()
    if row is None:
        return False
    db.session.delete(row)
    db.session.commit()
    return True

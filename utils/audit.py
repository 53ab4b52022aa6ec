import logging
from datetime import datetime, timezone

SECURITY_LOGGER_NAME = "security"

security_logger = logging.getLogger(SECURITY_LOGGER_NAME)


def configure_security_log(path: str) -> logging.Handler:
    """
    Attaches an append-only file handler for security events.
    Any handler from a previous app instance is replaced.
    """
    for h in list(security_logger.handlers):
        if getattr(h, "_security_log", False):
            security_logger.removeHandler(h)
            h.close()

    handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(message)s"))
    handler._security_log = True
    security_logger.addHandler(handler)
    security_logger.setLevel(logging.INFO)
    return handler


def format_security_event(user, action: str, target: str, success: bool = True, when=None) -> str:
    when = when or datetime.now(timezone.utc)
    timestamp = when.isoformat(timespec="milliseconds").replace("+00:00", "Z")
    user_id = getattr(user, "id", None) or "unknown"
    username = getattr(user, "username", None) or "unknown"
    outcome = "SUCCESS" if success else "FAILED"
    return (
        f"SECURITY: {timestamp} | User: {user_id} ({username}) | "
        f"Action: {action} | Target: {target} | {outcome}"
    )


def log_security_event(user, action: str, target: str = "SYSTEM", success: bool = True):
    line = format_security_event(user, action, target, success)
    if success:
        security_logger.info(line)
    else:
        security_logger.warning(line)
    return line

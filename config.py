import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to the app as messenger.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "messenger.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # 24 hours session lifetime
    SESSION_LIFETIME_SECONDS = int(os.getenv("SESSION_LIFETIME_SECONDS", str(24 * 60 * 60)))

    # Expired sessions and idle rate-limit keys are swept every 5 minutes
    SESSION_SWEEP_INTERVAL_SECONDS = 5 * 60
    SESSION_SWEEP_ENABLED = os.getenv("SESSION_SWEEP_ENABLED", "true").lower() == "true"

    # Sliding window rate limit per (ip, endpoint)
    RATE_LIMIT_WINDOW_SECONDS = 60
    RATE_LIMITS = {
        "/api/login": 10,
        "/api/register": 5,
        "/api/messages": 100,
        "default": 200,
    }

    # Content sanitizer
    SANITIZER_MAX_LENGTH = 5000

    # Message encryption at rest: 32 bytes as 64 hex chars.
    # Unset means a random key per process (messages unreadable after restart).
    ENCRYPTION_KEY = os.getenv("ENCRYPTION_KEY")

    # Password hashing
    BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))
    PASSWORD_MIN_LEN = 6

    # Append-only security event log
    SECURITY_LOG_PATH = os.getenv("SECURITY_LOG_PATH", os.path.join(BASE_DIR, "security.log"))

    # IP ban applied when an admin bans a user
    IP_BAN_DAYS = 30

    # WebSocket server (runs next to the HTTP app)
    WS_ENABLED = os.getenv("WS_ENABLED", "true").lower() == "true"
    WS_HOST = os.getenv("WS_HOST", "127.0.0.1")
    WS_PORT = int(os.getenv("WS_PORT", "5003"))

    # Basic app settings
    DEBUG = False

import logging
from functools import partial

import click
from flask import Flask, jsonify, request
from flask_migrate import Migrate

from config import Config
from models import db
from models.user import User
from realtime.hub import WebSocketHub
from realtime.server import WebSocketServer
from routes import health_bp, auth_bp, messages_bp, admin_bp
from security.cipher import load_key
from security.rate_limit import RateLimiter, check_request_rate
from security.session import SessionStore, SessionSweeper
from utils.audit import configure_security_log
from utils.auth_context import authenticate_token, load_current_user

logger = logging.getLogger(__name__)


def create_app(overrides=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(messages_bp)
    app.register_blueprint(admin_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    # Process-lifetime security state
    sessions = SessionStore(lifetime_seconds=app.config["SESSION_LIFETIME_SECONDS"])
    limiter = RateLimiter(
        limits=app.config["RATE_LIMITS"],
        window_seconds=app.config["RATE_LIMIT_WINDOW_SECONDS"],
    )
    app.extensions["sessions"] = sessions
    app.extensions["rate_limiter"] = limiter
    app.extensions["ws_hub"] = WebSocketHub()
    app.extensions["encryption_key"] = load_key(app.config.get("ENCRYPTION_KEY"))
    if not app.config.get("ENCRYPTION_KEY"):
        logger.warning("ENCRYPTION_KEY not set, using a random per-process key")

    configure_security_log(app.config["SECURITY_LOG_PATH"])

    if app.config.get("SESSION_SWEEP_ENABLED") and not app.testing:
        sweeper = SessionSweeper(sessions, limiter, app.config["SESSION_SWEEP_INTERVAL_SECONDS"])
        sweeper.start()
        app.extensions["session_sweeper"] = sweeper

    @app.before_request
    def _rate_limit():
        if request.path == "/health":
            return None
        allowed, retry_after = check_request_rate()
        if not allowed:
            resp = jsonify(success=False, message="Too many requests. Slow down.")
            resp.headers["Retry-After"] = str(retry_after)
            return resp, 429

    @app.before_request
    def _load_user():
        load_current_user()

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        resp.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        # JSON API only
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app)

    return app


def resolve_ws_user(app, token):
    """
    User id for a WebSocket ?token=, or None for unknown, deleted or banned users.
    Called from the server thread, outside any request.
    """
    with app.app_context():
        user = authenticate_token(token)
        if user is None or user.banned:
            return None
        return user.id


def start_websocket_server(app) -> WebSocketServer:
    """
    Starts the WebSocket server in a background thread, sharing the app's
    session store and hub.
    """
    server = WebSocketServer(
        app.extensions["ws_hub"],
        host=app.config["WS_HOST"],
        port=app.config["WS_PORT"],
        authenticate=partial(resolve_ws_user, app),
    )
    server.start_in_thread()
    app.extensions["ws_server"] = server
    return server

#-------------------------

def register_cli(app):
    @app.cli.command("make-admin")
    @click.argument("username")
    def make_admin(username):
        """Grant admin console access (developer + admin) to a user."""
        user = User.query.filter_by(username=username.strip()).first()
        if not user:
            click.echo("User not found")
            return

        user.is_admin = True
        user.is_developer = True
        db.session.commit()

        click.echo(f"{user.username} promoted to admin")

#-------------------------


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    app = create_app()
    with app.app_context():
        db.create_all()
    if app.config["WS_ENABLED"]:
        start_websocket_server(app)
    # Run locally
    app.run(host="127.0.0.1", port=5002, threaded=True)

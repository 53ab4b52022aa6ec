from flask import current_app

from realtime.hub import WebSocketHub


def get_ws_hub() -> WebSocketHub:
    return current_app.extensions["ws_hub"]


def get_encryption_key() -> bytes:
    return current_app.extensions["encryption_key"]

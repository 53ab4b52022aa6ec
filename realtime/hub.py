import asyncio
import logging
import secrets
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from realtime.frames import (
    CLOSE_FRAME,
    PONG_FRAME,
    Opcode,
    decode_message,
    encode_message,
    opcode_of,
)

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    CONNECTING = "CONNECTING"
    OPEN = "OPEN"
    CLOSING = "CLOSING"
    CLOSED = "CLOSED"


def new_client_id() -> str:
    return str(int(time.time() * 1000)) + secrets.token_hex(5)


@dataclass
class Client:
    id: str
    transport: Any  # needs write(bytes); close() is optional
    user_id: Optional[int] = None
    rooms: Set[str] = field(default_factory=set)
    state: ConnectionState = ConnectionState.CONNECTING

    @property
    def identity(self):
        return self.user_id if self.user_id is not None else self.id


class WebSocketHub:
    """
    Registry of connected clients plus inbound frame dispatch.
    One instance per app, kept in app.extensions["ws_hub"].
    """

    def __init__(self):
        self._clients: Dict[str, Client] = {}
        self._lock = threading.Lock()
        self.loop: Optional[asyncio.AbstractEventLoop] = None

    def __len__(self) -> int:
        return len(self._clients)

    def bind_loop(self, loop: asyncio.AbstractEventLoop):
        """
        Writes from other threads (Flask handlers) go through this loop.
        """
        self.loop = loop

    def get(self, client_id: str) -> Optional[Client]:
        return self._clients.get(client_id)

    def clients(self) -> List[Client]:
        with self._lock:
            return list(self._clients.values())

    def online_user_ids(self) -> Set[int]:
        return {c.user_id for c in self.clients() if c.user_id is not None}

    # -- lifecycle -------------------------------------------------------

    def register(self, transport, user_id: Optional[int] = None) -> Client:
        client = Client(id=new_client_id(), transport=transport, user_id=user_id)
        with self._lock:
            self._clients[client.id] = client
        client.state = ConnectionState.OPEN
        logger.info("WebSocket client %s connected (user %s)", client.id, user_id)

        self.send_to_client(client.id, "connected", {"clientId": client.id})
        return client

    def unregister(self, client_id: str) -> bool:
        with self._lock:
            client = self._clients.pop(client_id, None)
        if client is None:
            return False

        client.state = ConnectionState.CLOSED
        logger.info("WebSocket client %s disconnected", client_id)
        self.broadcast("user_offline", {"userId": client.identity})
        return True

    # -- inbound ---------------------------------------------------------

    def handle_frame(self, client_id: str, data: bytes):
        """
        Dispatches one complete inbound frame. Malformed frames are dropped;
        the connection stays open.
        """
        client = self.get(client_id)
        if client is None:
            return

        op = opcode_of(data)
        if op == Opcode.PING:
            logger.debug("PING from %s", client_id)
            self._write(client, PONG_FRAME)
            return

        if op == Opcode.PONG:
            logger.debug("PONG from %s", client_id)
            return

        if op == Opcode.CLOSE:
            client.state = ConnectionState.CLOSING
            self._write(client, CLOSE_FRAME)
            self._close(client)
            return

        if op != Opcode.TEXT:
            logger.debug("Ignoring frame with opcode %s from %s", op, client_id)
            return

        message = decode_message(data)
        if not isinstance(message, dict) or not message.get("type") or not message.get("data"):
            logger.debug("Dropping message without type/data from %s", client_id)
            return

        logger.info("WebSocket message from %s: %s", client_id, message["type"])
        self.broadcast(message["type"], message["data"], exclude_client_id=client_id)

    # -- outbound --------------------------------------------------------

    def send_to_client(self, client_id: str, msg_type: str, data) -> bool:
        client = self.get(client_id)
        if client is None:
            return False
        return self._write(client, encode_message({"type": msg_type, "data": data}))

    def send_to_user(self, user_id: int, msg_type: str, data) -> int:
        frame = encode_message({"type": msg_type, "data": data})
        sent = 0
        for client in self.clients():
            if client.user_id == user_id and self._write(client, frame):
                sent += 1
        return sent

    def broadcast(self, msg_type: str, data, exclude_client_id: Optional[str] = None) -> int:
        frame = encode_message({"type": msg_type, "data": data})
        sent = 0
        for client in self.clients():
            if client.id == exclude_client_id:
                continue
            if self._write(client, frame):
                sent += 1
        return sent

    def _in_loop_thread(self) -> bool:
        try:
            return asyncio.get_running_loop() is self.loop
        except RuntimeError:
            return False

    def _write(self, client: Client, data: bytes) -> bool:
        if client.state not in (ConnectionState.OPEN, ConnectionState.CLOSING):
            return False

        loop = self.loop
        if loop is not None and loop.is_running() and not self._in_loop_thread():
            try:
                loop.call_soon_threadsafe(self._write_now, client, data)
            except RuntimeError as exc:
                logger.warning("Could not schedule write to %s: %s", client.id, exc)
                return False
            return True
        return self._write_now(client, data)

    def _write_now(self, client: Client, data: bytes) -> bool:
        try:
            client.transport.write(data)
            return True
        except Exception as exc:
            # dead socket: drop the write, the close path will unregister it
            logger.warning("Write to client %s failed: %s", client.id, exc)
            return False

    def _close(self, client: Client):
        close = getattr(client.transport, "close", None)
        if close is None:
            return
        try:
            close()
        except Exception as exc:
            logger.warning("Closing client %s failed: %s", client.id, exc)

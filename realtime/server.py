import asyncio
import logging
import threading
from typing import Callable, Dict, Optional, Tuple
from urllib.parse import parse_qs, urlsplit

from realtime.frames import accept_key, frame_size
from realtime.hub import ConnectionState, WebSocketHub

logger = logging.getLogger(__name__)

MAX_HANDSHAKE_BYTES = 16 * 1024
MAX_FRAME_BYTES = 4 * 1024 * 1024  # larger frames close the connection
READ_CHUNK = 64 * 1024


def parse_upgrade_request(raw: bytes) -> Tuple[str, Dict[str, str]]:
    """
    Returns (request target, lower-cased headers) of an HTTP/1.1 request head.
    """
    text = raw.decode("latin-1")
    lines = text.split("\r\n")
    parts = lines[0].split(" ")
    target = parts[1] if len(parts) >= 2 else "/"

    headers = {}
    for line in lines[1:]:
        if not line or ":" not in line:
            continue
        name, value = line.split(":", 1)
        headers[name.strip().lower()] = value.strip()
    return target, headers


def is_websocket_upgrade(headers: Dict[str, str]) -> bool:
    return (
        headers.get("upgrade", "").lower() == "websocket"
        and "upgrade" in headers.get("connection", "").lower()
        and bool(headers.get("sec-websocket-key"))
    )


def handshake_response(key: str) -> bytes:
    lines = [
        "HTTP/1.1 101 Switching Protocols",
        "Upgrade: websocket",
        "Connection: Upgrade",
        f"Sec-WebSocket-Accept: {accept_key(key)}",
    ]
    return ("\r\n".join(lines) + "\r\n\r\n").encode("ascii")


BAD_REQUEST = (
    b"HTTP/1.1 400 Bad Request\r\n"
    b"Content-Type: text/plain\r\n"
    b"Content-Length: 22\r\n"
    b"Connection: close\r\n\r\n"
    b"Expected a WS upgrade\r\n"
)


class WebSocketServer:
    """
    Raw asyncio server speaking the RFC 6455 upgrade and handing complete
    frames to the hub.
    """

    def __init__(self, hub: WebSocketHub, host: str = "127.0.0.1", port: int = 5003,
                 authenticate: Optional[Callable[[str], Optional[int]]] = None):
        self.hub = hub
        self.host = host
        self.port = port
        # token -> user id, or None when the token is not valid
        self.authenticate = authenticate
        self._server: Optional[asyncio.AbstractServer] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None

    async def start(self) -> asyncio.AbstractServer:
        self.hub.bind_loop(asyncio.get_running_loop())
        self._server = await asyncio.start_server(self.handle_conn, self.host, self.port)
        sock = (self._server.sockets or [None])[0]
        if sock is not None:
            self.port = sock.getsockname()[1]
        logger.info("WebSocket server listening on %s:%s", self.host, self.port)
        return self._server

    async def close(self):
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

    async def serve_forever(self):
        server = await self.start()
        async with server:
            await server.serve_forever()

    def start_in_thread(self) -> threading.Thread:
        """
        Runs the server on its own event loop in a daemon thread.
        """
        ready = threading.Event()

        def _run():
            self._loop = asyncio.new_event_loop()
            asyncio.set_event_loop(self._loop)
            self._loop.run_until_complete(self.start())
            ready.set()
            self._loop.run_forever()

        self._thread = threading.Thread(target=_run, name="websocket-server", daemon=True)
        self._thread.start()
        ready.wait(timeout=5)
        return self._thread

    def _resolve_user(self, target: str) -> Optional[int]:
        if self.authenticate is None:
            return None
        token = (parse_qs(urlsplit(target).query).get("token") or [None])[0]
        if not token:
            return None
        return self.authenticate(token)

    async def handle_conn(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        client = None
        try:
            try:
                head = await reader.readuntil(b"\r\n\r\n")
            except (asyncio.IncompleteReadError, asyncio.LimitOverrunError):
                return
            if len(head) > MAX_HANDSHAKE_BYTES:
                writer.write(BAD_REQUEST)
                return

            target, headers = parse_upgrade_request(head)
            if not is_websocket_upgrade(headers):
                writer.write(BAD_REQUEST)
                await writer.drain()
                return

            user_id = self._resolve_user(target)
            writer.write(handshake_response(headers["sec-websocket-key"]))
            await writer.drain()

            client = self.hub.register(writer, user_id=user_id)
            await self._read_frames(reader, client.id)
        except (ConnectionError, asyncio.IncompleteReadError) as exc:
            logger.debug("Connection dropped: %s", exc)
        finally:
            if client is not None:
                self.hub.unregister(client.id)
            try:
                writer.close()
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass

    async def _read_frames(self, reader: asyncio.StreamReader, client_id: str):
        buf = bytearray()
        while True:
            chunk = await reader.read(READ_CHUNK)
            if not chunk:
                return
            buf.extend(chunk)

            while True:
                size = frame_size(buf)
                if size is not None and size > MAX_FRAME_BYTES:
                    logger.warning("Frame of %d bytes from %s, closing", size, client_id)
                    return
                if size is None or len(buf) < size:
                    break
                frame = bytes(buf[:size])
                del buf[:size]
                self.hub.handle_frame(client_id, frame)

            client = self.hub.get(client_id)
            if client is None or client.state is not ConnectionState.OPEN:
                return

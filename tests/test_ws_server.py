import asyncio
import base64
import json
import os

from realtime.frames import PONG_FRAME, Opcode, accept_key, decode_frame, frame_size
from realtime.hub import WebSocketHub
from realtime.server import WebSocketServer, parse_upgrade_request, is_websocket_upgrade
from tests.test_frames import client_frame

TIMEOUT = 5


async def _read_frame(reader, buf):
    while True:
        size = frame_size(buf)
        if size is not None and len(buf) >= size:
            raw = bytes(buf[:size])
            del buf[:size]
            return decode_frame(raw)
        chunk = await asyncio.wait_for(reader.read(4096), TIMEOUT)
        if not chunk:
            return None
        buf.extend(chunk)


async def _read_json(reader, buf):
    frame = await _read_frame(reader, buf)
    assert frame.opcode == Opcode.TEXT
    return json.loads(frame.payload)


async def _connect(port, path="/"):
    reader, writer = await asyncio.open_connection("127.0.0.1", port)
    key = base64.b64encode(os.urandom(16)).decode("ascii")
    writer.write((
        f"GET {path} HTTP/1.1\r\n"
        "Host: localhost\r\n"
        "Upgrade: websocket\r\n"
        "Connection: Upgrade\r\n"
        f"Sec-WebSocket-Key: {key}\r\n"
        "Sec-WebSocket-Version: 13\r\n\r\n"
    ).encode("ascii"))
    await writer.drain()

    head = await asyncio.wait_for(reader.readuntil(b"\r\n\r\n"), TIMEOUT)
    assert head.startswith(b"HTTP/1.1 101")
    assert f"Sec-WebSocket-Accept: {accept_key(key)}".encode() in head

    buf = bytearray()
    hello = await _read_json(reader, buf)
    assert hello["type"] == "connected"
    return reader, writer, buf, hello["data"]["clientId"]


def test_parse_upgrade_request():
    target, headers = parse_upgrade_request(
        b"GET /ws?token=abc HTTP/1.1\r\nHost: x\r\nUpgrade: WebSocket\r\n"
        b"Connection: keep-alive, Upgrade\r\nSec-WebSocket-Key: k==\r\n\r\n"
    )
    assert target == "/ws?token=abc"
    assert headers["sec-websocket-key"] == "k=="
    assert is_websocket_upgrade(headers)
    assert not is_websocket_upgrade({"upgrade": "h2c", "connection": "Upgrade"})


def test_handshake_ping_relay_and_offline():
    async def scenario():
        hub = WebSocketHub()
        tokens = {"good-token": 77}
        server = WebSocketServer(hub, port=0, authenticate=tokens.get)
        await server.start()
        try:
            ra, wa, bufa, a_id = await _connect(server.port, "/?token=good-token")
            rb, wb, bufb, b_id = await _connect(server.port)
            assert hub.get(a_id).user_id == 77
            assert hub.get(b_id).user_id is None

            # ping -> pong, only to the sender
            wa.write(client_frame(b"", opcode=Opcode.PING))
            await wa.drain()
            pong = await _read_frame(ra, bufa)
            assert pong.opcode == Opcode.PONG

            # garbage is dropped and the connection survives
            wb.write(client_frame(b"{broken"))
            # text message relayed to everyone but the sender
            wb.write(client_frame({"type": "typing", "data": {"to": 77}}))
            await wb.drain()
            relayed = await _read_json(ra, bufa)
            assert relayed == {"type": "typing", "data": {"to": 77}}

            # a closes: b hears that user 77 went offline
            wa.close()
            offline = await _read_json(rb, bufb)
            assert offline == {"type": "user_offline", "data": {"userId": 77}}
            assert hub.get(a_id) is None

            wb.close()
            for _ in range(50):
                if len(hub) == 0:
                    break
                await asyncio.sleep(0.02)
            assert len(hub) == 0
        finally:
            await server.close()

    asyncio.run(scenario())


def test_frame_split_across_writes_is_reassembled():
    async def scenario():
        hub = WebSocketHub()
        server = WebSocketServer(hub, port=0)
        await server.start()
        try:
            ra, wa, bufa, _ = await _connect(server.port)
            rb, wb, bufb, _ = await _connect(server.port)

            raw = client_frame({"type": "chat", "data": "z" * 1000}) + client_frame(b"", opcode=Opcode.PING)
            for i in range(0, len(raw), 100):
                wa.write(raw[i:i + 100])
                await wa.drain()
                await asyncio.sleep(0)

            assert (await _read_json(rb, bufb)) == {"type": "chat", "data": "z" * 1000}
            assert (await _read_frame(ra, bufa)).opcode == Opcode.PONG

            wa.close()
            wb.close()
        finally:
            await server.close()

    asyncio.run(scenario())


def test_plain_http_request_is_refused():
    async def scenario():
        hub = WebSocketHub()
        server = WebSocketServer(hub, port=0)
        await server.start()
        try:
            reader, writer = await asyncio.open_connection("127.0.0.1", server.port)
            writer.write(b"GET / HTTP/1.1\r\nHost: localhost\r\n\r\n")
            await writer.drain()
            resp = await asyncio.wait_for(reader.read(), TIMEOUT)
            writer.close()
            assert resp.startswith(b"HTTP/1.1 400")
            assert len(hub) == 0
        finally:
            await server.close()

    asyncio.run(scenario())


def test_pong_frame_constant_is_minimal():
    assert PONG_FRAME == bytes([0x8A, 0x00])

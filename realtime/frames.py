"""
RFC 6455 frame codec.

Only what the chat channel needs: single-frame text messages, ping/pong and
close. Client -> server frames are masked, server -> client frames never are.
"""
import base64
import hashlib
import json
import logging
import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Optional

logger = logging.getLogger(__name__)

WS_GUID = "258EAFA5-E914-47DA-95CA-C5AB0DC85B11"

FIN_BIT = 0x80
MASK_BIT = 0x80

# 7-bit length values 126/127 switch to a 16/64-bit length field
LEN_16 = 126
LEN_64 = 127
MAX_LEN_7 = 125
MAX_LEN_16 = 0xFFFF


class Opcode(IntEnum):
    CONTINUATION = 0x0
    TEXT = 0x1
    BINARY = 0x2
    CLOSE = 0x8
    PING = 0x9
    PONG = 0xA


@dataclass
class Frame:
    opcode: int
    payload: bytes = b""
    fin: bool = True
    mask: Optional[bytes] = None


PONG_FRAME = bytes([FIN_BIT | Opcode.PONG, 0x00])
CLOSE_FRAME = bytes([FIN_BIT | Opcode.CLOSE, 0x00])
EMPTY_TEXT_FRAME = bytes([FIN_BIT | Opcode.TEXT, 0x00])


def accept_key(key: str) -> str:
    digest = hashlib.sha1((key + WS_GUID).encode("ascii")).digest()
    return base64.b64encode(digest).decode("ascii")


def opcode_of(data: bytes) -> Optional[int]:
    if not data:
        return None
    return data[0] & 0x0F


def _header_size(data: bytes):
    """
    Returns (payload_length, header_length_without_mask) or None when the
    buffer is too short to tell.
    """
    if len(data) < 2:
        return None

    length = data[1] & 0x7F
    offset = 2
    if length == LEN_16:
        if len(data) < 4:
            return None
        (length,) = struct.unpack("!H", data[2:4])
        offset = 4
    elif length == LEN_64:
        if len(data) < 10:
            return None
        (length,) = struct.unpack("!Q", data[2:10])
        offset = 10
    return length, offset


def frame_size(data: bytes) -> Optional[int]:
    """
    Number of bytes the first frame in `data` occupies, or None if the
    header itself is incomplete.
    """
    header = _header_size(data)
    if header is None:
        return None
    length, offset = header
    if data[1] & MASK_BIT:
        offset += 4
    return offset + length


def unmask(payload: bytes, mask: bytes) -> bytes:
    return bytes(b ^ mask[i % 4] for i, b in enumerate(payload))


def decode_frame(data: bytes) -> Optional[Frame]:
    header = _header_size(data)
    if header is None:
        return None
    length, offset = header

    first = data[0]
    mask = None
    if data[1] & MASK_BIT:
        mask = bytes(data[offset:offset + 4])
        offset += 4

    if len(data) < offset + length:
        logger.debug("Incomplete frame: need %d bytes, have %d", offset + length, len(data))
        return None

    payload = bytes(data[offset:offset + length])
    if mask is not None:
        payload = unmask(payload, mask)

    return Frame(opcode=first & 0x0F, payload=payload, fin=bool(first & FIN_BIT), mask=mask)


def encode_frame(frame: Frame) -> bytes:
    first = (FIN_BIT if frame.fin else 0) | (int(frame.opcode) & 0x0F)
    length = len(frame.payload)
    mask_bit = MASK_BIT if frame.mask is not None else 0

    if length <= MAX_LEN_7:
        header = struct.pack("!BB", first, mask_bit | length)
    elif length <= MAX_LEN_16:
        header = struct.pack("!BBH", first, mask_bit | LEN_16, length)
    else:
        header = struct.pack("!BBQ", first, mask_bit | LEN_64, length)

    if frame.mask is not None:
        return header + frame.mask + unmask(frame.payload, frame.mask)
    return header + frame.payload


def encode_message(obj: Any) -> bytes:
    """
    JSON text frame for server -> client messages. Never raises: anything
    that cannot be serialized becomes an empty text frame.
    """
    try:
        payload = json.dumps(obj, ensure_ascii=False).encode("utf-8")
    except (TypeError, ValueError) as exc:
        logger.warning("Could not encode websocket message: %s", exc)
        return EMPTY_TEXT_FRAME
    return encode_frame(Frame(opcode=Opcode.TEXT, payload=payload))


def decode_message(data: bytes) -> Optional[Any]:
    """
    Parses a (masked) text frame into its JSON value. None for anything else.
    """
    op = opcode_of(data)
    if op != Opcode.TEXT:
        logger.debug("Not a text frame, opcode %s", op)
        return None

    frame = decode_frame(data)
    if frame is None:
        return None

    try:
        return json.loads(frame.payload.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        logger.debug("Dropping malformed text frame: %s", exc)
        return None

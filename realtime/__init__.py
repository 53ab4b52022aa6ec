from .frames import Frame, Opcode, decode_frame, encode_frame, decode_message, encode_message
from .hub import Client, ConnectionState, WebSocketHub
from .server import WebSocketServer

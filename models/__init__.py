from .db import db
from .user import User
from .message import Message
from .banned_ip import BannedIp

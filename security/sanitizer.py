"""
Denylist content sanitizer for user supplied text.

This is a filter, not an HTML parser: it removes tags, entities, script URI
schemes, inline event handlers, a list of dangerous API keywords and
structural patterns, and redacts IPv4 addresses and URLs. Creative payloads
may survive; the guarantee is that no live <script>, <iframe> or inline
event handler does.
"""
import re

BLOCK_MARKER = "[BLOCKED]"
IP_MARKER = "[IP]"
URL_MARKER = "[URL]"

MAX_LENGTH = 5000

# Each full round can expose a new match by removing text between two
# fragments; rounds repeat until nothing changes.
_MAX_ROUNDS = 10

_TAG = re.compile(r"<[^>]*>")
_ENTITY = re.compile(r"&[^;]+;")
_URI_SCHEME = re.compile(r"(?:javascript|data|vbscript):", re.IGNORECASE)
_EVENT_HANDLERS = [
    re.compile(r"on\w+=\"[^\"]*\"", re.IGNORECASE),
    re.compile(r"on\w+='[^']*'", re.IGNORECASE),
    re.compile(r"on\w+=\w+", re.IGNORECASE),
]

DANGEROUS_KEYWORDS = [
    "script", "iframe", "object", "embed", "link", "meta", "style",
    "expression", "eval", "exec", "compile", "function constructor",
    "document.write", "innerhtml", "outerhtml", "insertadjacent",
    "setattribute", "createelement", "appendchild", "removechild",
    "window.open", "location.href", "document.domain", "localstorage",
    "sessionstorage", "cookie", "xmlhttprequest", "fetch", "websocket",
    "postmessage", "import", "export", "require", "module",
]

_KEYWORDS = [
    re.compile(r"\b" + re.escape(keyword) + r"\b", re.IGNORECASE)
    for keyword in DANGEROUS_KEYWORDS
]

_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"<script[\s\S]*?</script>",
        r"<iframe[\s\S]*?</iframe>",
        r"<object[\s\S]*?</object>",
        r"<embed[\s\S]*?</embed>",
        r"<svg[\s\S]*?</svg>",
        r"<link[\s\S]*?>",
        r"<meta[\s\S]*?>",
        r"<style[\s\S]*?</style>",
        r"expression\([^)]*\)",
        r"eval\([^)]*\)",
        r"Function\([^)]*\)",
        r"document\.write\([^)]*\)",
        r"\.innerHTML\s*=",
        r"\.outerHTML\s*=",
        r"\.insertAdjacentHTML\([^)]*\)",
        r"\.setAttribute\([^)]*\)",
        r"document\.createElement\([^)]*\)",
        r"window\.open\([^)]*\)",
        r"location\.href\s*=",
        r"document\.domain\s*=",
        r"XMLHttpRequest",
        r"Fetch",
        r"WebSocket",
        r"postMessage\([^)]*\)",
    )
]

_IPV4 = re.compile(r"\b\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}\b")
_URL = re.compile(r"(?:https?|ftp)://[^\s<>{}\[\]\"']+", re.IGNORECASE)

_VALIDATORS = {
    "username": re.compile(r"^[a-zA-Z0-9_]{3,20}$"),
    "email": re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$"),
    "display_name": re.compile(r"^[a-zA-Z0-9а-яА-ЯёЁ\s\-_]{2,30}$", re.IGNORECASE),
    "text": re.compile(r"^[\s\S]{1,5000}$"),
}


def _one_round(text: str, max_length: int) -> str:
    text = _TAG.sub("", text)
    text = _ENTITY.sub("", text)
    text = _URI_SCHEME.sub(BLOCK_MARKER, text)
    for pattern in _EVENT_HANDLERS:
        text = pattern.sub("", text)

    for pattern in _KEYWORDS:
        text = pattern.sub(BLOCK_MARKER, text)
    for pattern in _PATTERNS:
        text = pattern.sub(BLOCK_MARKER, text)

    text = _IPV4.sub(IP_MARKER, text)
    text = _URL.sub(URL_MARKER, text)

    return text.strip()[:max_length].strip()


def sanitize(text, max_length: int = MAX_LENGTH) -> str:
    if not isinstance(text, str):
        return ""

    for _ in range(_MAX_ROUNDS):
        cleaned = _one_round(text, max_length)
        if cleaned == text:
            break
        text = cleaned
    return text


def validate_input(value, kind: str) -> bool:
    if not isinstance(value, str):
        return False
    pattern = _VALIDATORS.get(kind)
    if pattern is None:
        return True
    return pattern.fullmatch(value) is not None

import hashlib
import hmac
from dataclasses import dataclass
from typing import Optional, Tuple, Union

import bcrypt

# bcrypt hashes look like "$2b$12$<salt><digest>"; legacy ones are bare hex.
HASH_DELIMITER = "$"
DEFAULT_ROUNDS = 12


@dataclass(frozen=True)
class LegacyDigest:
    """Unsalted single-round SHA-256 hex digest from the first user table."""
    digest: str


@dataclass(frozen=True)
class SaltedHash:
    encoded: str


StoredHash = Union[LegacyDigest, SaltedHash]


def parse_stored_hash(stored: str) -> StoredHash:
    if HASH_DELIMITER in stored:
        return SaltedHash(stored)
    return LegacyDigest(stored)


def legacy_digest(plain_password: str) -> str:
    return hashlib.sha256(plain_password.encode("utf-8")).hexdigest()


def hash_password(plain_password: str, rounds: Optional[int] = None) -> str:
    if not isinstance(plain_password, str) or len(plain_password) == 0:
        raise ValueError("Password must be a non-empty string")

    # bcrypt expects bytes
    salt = bcrypt.gensalt(rounds=rounds or DEFAULT_ROUNDS)
    hashed = bcrypt.hashpw(plain_password.encode("utf-8"), salt)
    return hashed.decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    if not plain_password or not password_hash:
        return False

    stored = parse_stored_hash(password_hash)
    if isinstance(stored, LegacyDigest):
        return hmac.compare_digest(legacy_digest(plain_password), stored.digest.lower())

    try:
        return bcrypt.checkpw(
            plain_password.encode("utf-8"),
            stored.encoded.encode("utf-8")
        )
    except ValueError:
        # malformed bcrypt string
        return False


def verify_and_update(plain_password: str, password_hash: str,
                      rounds: Optional[int] = None) -> Tuple[bool, Optional[str]]:
    """
    Returns (valid, new_hash). new_hash is set only when a legacy digest
    matched; the caller must persist it in place of the old one.
    """
    if not verify_password(plain_password, password_hash):
        return False, None

    if isinstance(parse_stored_hash(password_hash), LegacyDigest):
        return True, hash_password(plain_password, rounds=rounds)
    return True, None

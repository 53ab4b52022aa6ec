"""
AES-256-CBC for message bodies at rest.

Payload format: "<iv hex>:<ciphertext hex>", with a fresh random IV per call.
"""
import binascii
import os
from typing import Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

KEY_SIZE = 32
IV_SIZE = 16


class CipherError(ValueError):
    pass


class PayloadDecodeError(CipherError):
    """The payload is not a valid "iv:ciphertext" pair for this key."""


class KeyLengthError(CipherError):
    pass


def _check_key(key: bytes) -> None:
    if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_SIZE:
        raise KeyLengthError(f"Key must be {KEY_SIZE} bytes")


def generate_key() -> bytes:
    return os.urandom(KEY_SIZE)


def load_key(value: Optional[str]) -> bytes:
    """
    Parses a 64 hex char key from config. Empty value means a random key.
    """
    if not value:
        return generate_key()
    try:
        key = bytes.fromhex(value.strip())
    except ValueError as exc:
        raise KeyLengthError("ENCRYPTION_KEY must be hex encoded") from exc
    _check_key(key)
    return key


def encrypt(plain: str, key: bytes) -> str:
    _check_key(key)
    iv = os.urandom(IV_SIZE)

    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    data = padder.update(plain.encode("utf-8")) + padder.finalize()

    encryptor = Cipher(algorithms.AES(bytes(key)), modes.CBC(iv)).encryptor()
    ct = encryptor.update(data) + encryptor.finalize()
    return iv.hex() + ":" + ct.hex()


def decrypt(payload: str, key: bytes) -> str:
    _check_key(key)

    parts = payload.split(":") if isinstance(payload, str) else []
    if len(parts) != 2:
        raise PayloadDecodeError("Payload must be iv:ciphertext")

    try:
        iv = binascii.unhexlify(parts[0])
        ct = binascii.unhexlify(parts[1])
    except (binascii.Error, ValueError) as exc:
        raise PayloadDecodeError("Payload is not hex encoded") from exc

    if len(iv) != IV_SIZE:
        raise PayloadDecodeError("Bad IV length")
    if not ct or len(ct) % IV_SIZE:
        raise PayloadDecodeError("Bad ciphertext length")

    decryptor = Cipher(algorithms.AES(bytes(key)), modes.CBC(iv)).decryptor()
    data = decryptor.update(ct) + decryptor.finalize()

    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    try:
        data = unpadder.update(data) + unpadder.finalize()
        return data.decode("utf-8")
    except (ValueError, UnicodeDecodeError) as exc:
        raise PayloadDecodeError("Corrupt ciphertext or wrong key") from exc

"""At-rest encryption for stored objects.

Framing: ``MAGIC(6) || IV(12) || CIPHERTEXT(n) || TAG(16)`` using AES-256-GCM.
Objects written before encryption was enabled carry no magic header and are
served as-is, so classification must work without a key.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import re
import secrets

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import PayloadIntegrityError, StorageConfigError

MAGIC = b"CFENC1"
IV_LENGTH = 12
TAG_LENGTH = 16
KEY_LENGTH = 32
MIN_PAYLOAD_LENGTH = len(MAGIC) + IV_LENGTH + TAG_LENGTH

_HEX_KEY_RE = re.compile(r"^[0-9a-fA-F]{64}$")


def is_encrypted_payload(payload: bytes) -> bool:
    if len(payload) < MIN_PAYLOAD_LENGTH:
        return False
    return payload[: len(MAGIC)] == MAGIC


def derive_aes256_key(raw_key: str) -> bytes:
    """Turn operator-supplied key material into a 32-byte AES key.

    Accepts 64 hex characters, base64 of exactly 32 bytes, or any other
    passphrase (hashed with SHA-256; stable but weaker than a random key).
    """

    trimmed = (raw_key or "").strip()
    if not trimmed:
        raise StorageConfigError("encryption key is empty")

    if _HEX_KEY_RE.match(trimmed):
        return bytes.fromhex(trimmed)

    try:
        decoded = base64.b64decode(trimmed)
    except (binascii.Error, ValueError):
        decoded = b""
    if len(decoded) == KEY_LENGTH:
        return decoded

    return hashlib.sha256(trimmed.encode("utf-8")).digest()


def generate_encryption_key() -> str:
    return base64.b64encode(secrets.token_bytes(KEY_LENGTH)).decode("ascii")


def encrypt_payload(plaintext: bytes, key: bytes, aad: bytes | None = None) -> bytes:
    iv = secrets.token_bytes(IV_LENGTH)
    # AESGCM appends the 16-byte tag to the ciphertext.
    sealed = AESGCM(key).encrypt(iv, plaintext, aad or None)
    return MAGIC + iv + sealed


def decrypt_payload(payload: bytes, key: bytes, aad: bytes | None = None) -> bytes:
    if payload[: len(MAGIC)] != MAGIC:
        raise PayloadIntegrityError("payload is not encrypted (missing magic header)")
    # A bare MAGIC+IV+TAG frame (34 bytes) is accepted: it is how empty plaintext
    # encrypts, so only frames shorter than that are rejected.
    if len(payload) < MIN_PAYLOAD_LENGTH:
        raise PayloadIntegrityError("encrypted payload is too short")

    iv_end = len(MAGIC) + IV_LENGTH
    iv = payload[len(MAGIC) : iv_end]
    try:
        return AESGCM(key).decrypt(iv, payload[iv_end:], aad or None)
    except InvalidTag as e:
        raise PayloadIntegrityError(
            "encrypted payload failed authentication (wrong key or corrupted data)"
        ) from e

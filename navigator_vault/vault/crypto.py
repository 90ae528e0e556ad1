"""
Vault Crypto Core — Key derivation, salts, envelopes and value serialization.

Zero-knowledge layout:
- Key derivation: PBKDF2-HMAC-SHA256(master_secret, salt, 100k) → 32-byte key
- Envelope: base64([nonce 12B][encrypted_payload + tag 16B])

Envelopes are produced and opened by the key holder only; the storage tier
keeps them as opaque strings.

Security Note:
    Never log plaintext, envelopes, salts or key material.
    Nonces are random 96-bit; collision probability negligible under normal usage.
"""
import os
import base64
import asyncio
import binascii
import logging
import secrets
from functools import partial
from typing import Any, Optional, Union
from concurrent.futures import Executor

import orjson
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305

from ..exceptions import AuthenticationError, DecodeError

logger = logging.getLogger("navigator.vault")

PBKDF2_ITERATIONS = 100_000
SALT_SIZE = 16  # 128-bit salt
NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16  # 128-bit AEAD tag
KEY_LENGTH = 32  # 256-bit key

_BYTES_WRAPPER_KEY = "__vault_bytes_b64__"

MasterSecret = Union[str, bytes]
SaltLike = Union[str, bytes]


SUPPORTED_CIPHERS = {
    "aesgcm": AESGCM,
    "chacha20": ChaCha20Poly1305,
}


def _get_cipher_cls() -> type:
    """Return the AEAD cipher class based on VAULT_CIPHER_BACKEND env var.

    Raises:
        ValueError: If the backend name is not supported.
    """
    backend = os.environ.get("VAULT_CIPHER_BACKEND", "aesgcm").strip().lower()
    try:
        return SUPPORTED_CIPHERS[backend or "aesgcm"]
    except KeyError:
        raise ValueError(
            f"Unsupported cipher backend: {backend!r} "
            f"(expected one of {sorted(SUPPORTED_CIPHERS)})"
        ) from None


# Resolve cipher once at module load to prevent encrypt/decrypt mismatch
# if the env var changes mid-process.
CIPHER_CLS = _get_cipher_cls()


def _b64decode(value: Union[str, bytes], what: str) -> bytes:
    """Strict, canonical base64 decoding.

    Non-canonical encodings (stray padding bits, whitespace) are rejected so
    that any textual change of a stored value is detected.
    """
    if isinstance(value, str):
        try:
            value = value.encode("ascii")
        except UnicodeEncodeError:
            raise DecodeError(f"{what} is not valid base64") from None
    if not isinstance(value, (bytes, bytearray)):
        raise DecodeError(f"{what} must be a base64 string")
    try:
        raw = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        raise DecodeError(f"{what} is not valid base64") from None
    if base64.b64encode(raw) != bytes(value):
        raise DecodeError(f"{what} is not canonical base64")
    return raw


def _check_key(key: Union[bytes, bytearray]) -> None:
    if not isinstance(key, (bytes, bytearray)):
        raise TypeError("key must be bytes")
    if len(key) != KEY_LENGTH:
        raise ValueError(
            f"key must be exactly {KEY_LENGTH} bytes, got {len(key)}"
        )


# ---------------------------------------------------------------------------
# Salt lifecycle
# ---------------------------------------------------------------------------

def generate_salt() -> bytes:
    """Generate a random 16-byte account salt.

    Called once, when the account is created. The salt is not secret, but
    it must be unpredictable and unique per account.
    """
    return secrets.token_bytes(SALT_SIZE)


def encode_salt(salt: bytes) -> str:
    """Return the base64 text form of a raw salt."""
    if len(salt) != SALT_SIZE:
        raise DecodeError(
            f"salt must be exactly {SALT_SIZE} bytes, got {len(salt)}"
        )
    return base64.b64encode(salt).decode("ascii")


def decode_salt(salt: SaltLike) -> bytes:
    """Return raw salt bytes from either raw bytes or base64 text.

    Raises:
        DecodeError: If the salt is not valid base64 or not 16 bytes long.
    """
    if isinstance(salt, (bytes, bytearray)) and len(salt) == SALT_SIZE:
        return bytes(salt)
    raw = _b64decode(salt, "salt")
    if len(raw) != SALT_SIZE:
        raise DecodeError(
            f"salt must decode to exactly {SALT_SIZE} bytes, got {len(raw)}"
        )
    return raw


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def derive_key(master_secret: MasterSecret, salt: SaltLike) -> bytes:
    """Derive a 32-byte encryption key using PBKDF2-HMAC-SHA256.

    Deterministic: the same (master_secret, salt) always yields the same key,
    so a session can rebuild it at every login without ever storing it.

    Args:
        master_secret: User master secret (str is UTF-8 encoded).
        salt: Account salt, raw 16 bytes or its base64 text.

    Returns:
        32-byte derived key.

    Raises:
        DecodeError: If the salt is malformed.
    """
    if isinstance(master_secret, str):
        master_secret = master_secret.encode("utf-8")
    elif not isinstance(master_secret, (bytes, bytearray)):
        raise TypeError("master_secret must be str or bytes")
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=decode_salt(salt),
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(bytes(master_secret))


# ---------------------------------------------------------------------------
# Envelope encryption
# ---------------------------------------------------------------------------

def encrypt(plaintext: bytes, key: Union[bytes, bytearray]) -> str:
    """Encrypt plaintext into a base64 envelope.

    Format: base64([nonce 12B][encrypted_payload + tag 16B])

    A fresh random nonce is drawn for every call; nothing is counted or
    persisted between calls.

    Args:
        plaintext: Data to encrypt.
        key: 32-byte derived key.

    Returns:
        Envelope string.
    """
    _check_key(key)
    cipher = CIPHER_CLS(key)
    nonce = os.urandom(NONCE_SIZE)
    ct = cipher.encrypt(nonce, bytes(plaintext), None)
    return base64.b64encode(nonce + ct).decode("ascii")


def decrypt(envelope: str, key: Union[bytes, bytearray]) -> bytes:
    """Decrypt a base64 envelope.

    Args:
        envelope: Envelope produced by :func:`encrypt`.
        key: 32-byte derived key.

    Returns:
        Decrypted plaintext bytes.

    Raises:
        DecodeError: If the envelope is not base64 or is too short.
        AuthenticationError: If tag verification fails.
    """
    _check_key(key)
    raw = _b64decode(envelope, "envelope")
    _min = NONCE_SIZE + TAG_SIZE
    if len(raw) < _min:
        raise DecodeError(
            f"envelope too short: {len(raw)} bytes (minimum {_min})"
        )
    cipher = CIPHER_CLS(key)
    nonce = raw[:NONCE_SIZE]
    ct = raw[NONCE_SIZE:]
    try:
        return cipher.decrypt(nonce, ct, None)
    except InvalidTag:
        raise AuthenticationError(
            "envelope authentication failed"
        ) from None


# ---------------------------------------------------------------------------
# Value serialization
# ---------------------------------------------------------------------------

def serialize_value(value: Any) -> bytes:
    """Serialize a Python value to canonical bytes for encryption.

    Supports: str, int, float, dict, list, bytes, bool, None.
    bytes values are wrapped as {"__vault_bytes_b64__": "<base64>"} for
    safe JSON round-trip. Dict keys are sorted.

    Args:
        value: Python value to serialize.

    Returns:
        orjson-encoded bytes.
    """
    if isinstance(value, bytes):
        value = {_BYTES_WRAPPER_KEY: base64.b64encode(value).decode("ascii")}
    return orjson.dumps(value, option=orjson.OPT_SORT_KEYS)


def deserialize_value(data: bytes) -> Any:
    """Deserialize bytes back to a Python value.

    Raises:
        DecodeError: If data is not valid JSON.
    """
    try:
        parsed = orjson.loads(data)
    except orjson.JSONDecodeError:
        raise DecodeError("decrypted payload is not valid JSON") from None
    if isinstance(parsed, dict) and _BYTES_WRAPPER_KEY in parsed and len(parsed) == 1:
        return base64.b64decode(parsed[_BYTES_WRAPPER_KEY])
    return parsed


def encrypt_value(value: Any, key: Union[bytes, bytearray]) -> str:
    """Serialize and encrypt a value into an envelope."""
    return encrypt(serialize_value(value), key)


def decrypt_value(envelope: str, key: Union[bytes, bytearray]) -> Any:
    """Decrypt an envelope and deserialize it.

    The payload is parsed only after the tag has been verified.
    """
    return deserialize_value(decrypt(envelope, key))


# ---------------------------------------------------------------------------
# Off-loop helpers
# ---------------------------------------------------------------------------

async def _run(executor: Optional[Executor], func, *args) -> Any:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(executor, partial(func, *args))


async def derive_key_async(
    master_secret: MasterSecret,
    salt: SaltLike,
    executor: Optional[Executor] = None,
) -> bytes:
    """Run :func:`derive_key` in a worker thread."""
    return await _run(executor, derive_key, master_secret, salt)


async def encrypt_async(
    plaintext: bytes,
    key: Union[bytes, bytearray],
    executor: Optional[Executor] = None,
) -> str:
    """Run :func:`encrypt` in a worker thread."""
    return await _run(executor, encrypt, plaintext, key)


async def decrypt_async(
    envelope: str,
    key: Union[bytes, bytearray],
    executor: Optional[Executor] = None,
) -> bytes:
    """Run :func:`decrypt` in a worker thread."""
    return await _run(executor, decrypt, envelope, key)


async def encrypt_value_async(
    value: Any,
    key: Union[bytes, bytearray],
    executor: Optional[Executor] = None,
) -> str:
    """Run :func:`encrypt_value` in a worker thread."""
    return await _run(executor, encrypt_value, value, key)


async def decrypt_value_async(
    envelope: str,
    key: Union[bytes, bytearray],
    executor: Optional[Executor] = None,
) -> Any:
    """Run :func:`decrypt_value` in a worker thread."""
    return await _run(executor, decrypt_value, envelope, key)

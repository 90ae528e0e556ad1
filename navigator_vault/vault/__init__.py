"""Vault — Zero-knowledge storage of client-encrypted secrets.

Security Note (Threat Model):
    The server stores envelopes (nonce | ciphertext | tag) it cannot open.
    Keys are derived from the owner's master secret, which never reaches
    the storage tier. Losing the master secret loses the data: there is no
    escrow or recovery path.
"""

from .crypto import (
    derive_key,
    derive_key_async,
    encrypt,
    decrypt,
    encrypt_async,
    decrypt_async,
    encrypt_value,
    decrypt_value,
    generate_salt,
    encode_salt,
    decode_salt,
)
from .config import VaultConfig
from .models import (
    Account,
    EnvelopeUpdate,
    ExportDocument,
    ImportResult,
    VaultItem,
    VaultItemCreate,
    VaultItemUpdate,
)
from .backends import VaultBackend, MemoryBackend, PostgresBackend
from .storage import VaultStorage
from .key_rotation import rotate_account_salt, RotationResult

__all__ = [
    "derive_key",
    "derive_key_async",
    "encrypt",
    "decrypt",
    "encrypt_async",
    "decrypt_async",
    "encrypt_value",
    "decrypt_value",
    "generate_salt",
    "encode_salt",
    "decode_salt",
    "VaultConfig",
    "Account",
    "EnvelopeUpdate",
    "ExportDocument",
    "ImportResult",
    "VaultItem",
    "VaultItemCreate",
    "VaultItemUpdate",
    "VaultBackend",
    "MemoryBackend",
    "PostgresBackend",
    "VaultStorage",
    "rotate_account_salt",
    "RotationResult",
]

"""Navigator Vault.

Zero-knowledge vault: envelopes encrypted by the key holder, stored by an
owner-scoped storage tier that cannot decrypt them.
"""
from .version import __version__
from .exceptions import (
    VaultError,
    DecodeError,
    AuthenticationError,
    NotFoundError,
    SessionClosedError,
    ValidationError,
)
from .session import VaultSession, DecryptedItem
from .passwords import PasswordOptions, generate_password, password_strength

__all__ = [
    "__version__",
    "VaultError",
    "DecodeError",
    "AuthenticationError",
    "NotFoundError",
    "SessionClosedError",
    "ValidationError",
    "VaultSession",
    "DecryptedItem",
    "PasswordOptions",
    "generate_password",
    "password_strength",
]

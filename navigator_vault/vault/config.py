"""
Vault Configuration — Validated settings loaded from the environment.

Reads settings from environment variables:
    VAULT_SESSION_TTL = <seconds>
    VAULT_MAX_IMPORT_ITEMS = <integer>

The cipher backend (``VAULT_CIPHER_BACKEND``) is not part of this model: it
is resolved once when ``vault.crypto`` is imported, so every envelope of a
process uses the same cipher.

Security Note:
    No key material is configured here. Keys are derived per session from
    the user's master secret and never reach the server.
"""
import os
import logging

from pydantic import BaseModel, Field

logger = logging.getLogger("navigator.vault")


def _env_int(name: str, default: int) -> int:
    """Read an integer environment variable.

    Raises:
        ValueError: If the value is not a valid integer.
    """
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(
            f"{name} must be an integer, got {raw!r}"
        ) from None


class VaultConfig(BaseModel):
    """Validated vault configuration.

    ``session_ttl`` is the default lifetime of a ``VaultSession``;
    ``max_import_items`` caps one ``bulk_import`` batch.
    """

    session_ttl: int = Field(default=3600, ge=60)
    max_import_items: int = Field(default=1000, ge=1, le=100_000)

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Returns:
            Populated VaultConfig instance.
        """
        config = cls(
            session_ttl=_env_int("VAULT_SESSION_TTL", 3600),
            max_import_items=_env_int("VAULT_MAX_IMPORT_ITEMS", 1000),
        )
        logger.debug(
            "Vault config loaded: session_ttl=%d max_import_items=%d",
            config.session_ttl, config.max_import_items,
        )
        return config

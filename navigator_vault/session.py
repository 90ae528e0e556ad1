"""
VaultSession — Session-scoped holder of a derived vault key.

A session is opened at login from the owner's master secret and salt, and
closed at logout or when it expires. It is passed explicitly to every call
that needs the key; it is never stored in module or process globals.

Security Note (Threat Model):
    The derived key lives in process memory for the session lifetime and is
    zeroed on close. The cipher backend may hold transient copies while an
    operation runs; a memory dump during that window could expose them.
    This is an accepted limitation.
"""
import uuid
import logging
from typing import Any, Optional
from datetime import datetime, timezone
from concurrent.futures import Executor

from pydantic import BaseModel, ConfigDict

from .exceptions import DecodeError, AuthenticationError, SessionClosedError
from .vault.crypto import (
    KEY_LENGTH,
    MasterSecret,
    SaltLike,
    derive_key_async,
    encrypt_value_async,
    decrypt_value_async,
)
from .vault.config import VaultConfig
from .vault.models import VaultItem

logger = logging.getLogger("navigator.vault")


class DecryptedItem(BaseModel):
    """Result of decrypting one vault item inside a session.

    On failure ``error`` is set and no plaintext is present.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    item: VaultItem
    password: Any = None
    notes: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class VaultSession:
    """Vault key bound to one authenticated session.

    Use :meth:`open` rather than the constructor so key derivation runs in
    a worker thread.
    """

    def __init__(
        self,
        owner_id: str,
        key: bytes,
        *,
        id: Optional[str] = None,
        max_age: Optional[int] = None,
        executor: Optional[Executor] = None
    ) -> None:
        if len(key) != KEY_LENGTH:
            raise ValueError(
                f"key must be exactly {KEY_LENGTH} bytes, got {len(key)}"
            )
        self._id_ = id or uuid.uuid4().hex
        self._owner_id = owner_id
        self._key: Optional[bytearray] = bytearray(key)
        self._max_age = max_age
        self._executor = executor
        self.__created__ = datetime.now(timezone.utc)
        self._created = int(self.__created__.timestamp())

    def __repr__(self) -> str:
        return (
            f'<Vault-Session [owner:{self._owner_id}, created:{self.created}, '
            f'closed:{self.closed}]>'
        )

    @classmethod
    async def open(
        cls,
        owner_id: str,
        master_secret: MasterSecret,
        salt: SaltLike,
        *,
        max_age: Optional[int] = None,
        executor: Optional[Executor] = None,
        config: Optional[VaultConfig] = None
    ) -> "VaultSession":
        """Derive the owner's key off-loop and open a session.

        The master secret is used for derivation only and is not retained.
        Without an explicit max_age the session lives for
        ``config.session_ttl`` seconds.

        Raises:
            DecodeError: If the salt is malformed.
        """
        if max_age is None:
            max_age = (config or VaultConfig()).session_ttl
        key = await derive_key_async(master_secret, salt, executor)
        session = cls(owner_id, key, max_age=max_age, executor=executor)
        logger.debug(
            "Vault session opened: owner=%s session=%s",
            owner_id, session.session_id,
        )
        return session

    # --- Properties ---

    @property
    def session_id(self) -> str:
        return self._id_

    @property
    def owner_id(self) -> str:
        return self._owner_id

    @property
    def logon_time(self) -> datetime:
        return self.__created__

    @property
    def created(self) -> int:
        return self._created

    @property
    def max_age(self) -> Optional[int]:
        return self._max_age

    @property
    def expired(self) -> bool:
        if self._max_age is None:
            return False
        age = datetime.now(timezone.utc) - self.__created__
        return age.total_seconds() > self._max_age

    @property
    def closed(self) -> bool:
        return self._key is None

    # --- Lifecycle ---

    def _get_key(self) -> bytes:
        """Return a private copy of the key.

        Workers get the copy, so a close() while a job is queued zeroes the
        session buffer without touching the key the job already holds.
        """
        if self._key is None:
            raise SessionClosedError("Vault session is closed")
        if self.expired:
            self.close()
            raise SessionClosedError("Vault session has expired")
        return bytes(self._key)

    def close(self) -> None:
        """Zero and drop the derived key. Safe to call twice."""
        if self._key is None:
            return
        for idx in range(len(self._key)):
            self._key[idx] = 0
        self._key = None
        logger.debug(
            "Vault session closed: owner=%s session=%s",
            self._owner_id, self._id_,
        )

    async def __aenter__(self) -> "VaultSession":
        return self

    async def __aexit__(self, *exc) -> None:
        self.close()

    # --- Envelopes ---

    async def encrypt_value(self, value: Any) -> str:
        """Serialize and encrypt a value with the session key."""
        return await encrypt_value_async(value, self._get_key(), self._executor)

    async def decrypt_value(self, envelope: str) -> Any:
        """Decrypt an envelope with the session key.

        Raises:
            DecodeError: If the envelope is malformed.
            AuthenticationError: If verification fails.
        """
        return await decrypt_value_async(envelope, self._get_key(), self._executor)

    async def decrypt_item(self, item: VaultItem) -> DecryptedItem:
        """Decrypt password and notes of one item.

        Decode and authentication failures are reported on the result
        rather than raised.
        """
        try:
            password = await self.decrypt_value(item.password_cipher)
            notes = None
            if item.notes_cipher is not None:
                notes = await self.decrypt_value(item.notes_cipher)
        except (DecodeError, AuthenticationError) as err:
            logger.warning(
                "Vault item could not be decrypted: owner=%s item=%s (%s)",
                self._owner_id, item.id, type(err).__name__,
            )
            return DecryptedItem(item=item, error=str(err))
        return DecryptedItem(item=item, password=password, notes=notes)

    async def decrypt_items(self, items: list[VaultItem]) -> list[DecryptedItem]:
        """Decrypt a list of items; one bad item does not stop the others."""
        return [await self.decrypt_item(item) for item in items]

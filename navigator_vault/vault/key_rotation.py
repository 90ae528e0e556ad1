"""
Vault Salt Rotation — Explicit re-encryption of an account under a new salt.

An account salt is frozen at creation. Swapping it in place would orphan
every envelope encrypted under the old derived key, so rotation is a
foreground migration run by the key holder:

1. derive the old key (current salt) and the new key (fresh salt);
2. decrypt and re-encrypt every envelope of the account in memory;
3. write all new envelopes in one atomic batch.

Any envelope that fails to decrypt aborts the migration before the first
write. Persisting the returned account (new salt) is the caller's job and
must happen right after a successful run.

Security Note:
    Plaintext exists in memory only while an item is re-encrypted.
    Never log plaintext or envelope values.
"""
import logging
from typing import Optional
from concurrent.futures import Executor

from pydantic import BaseModel

from .crypto import (
    MasterSecret,
    decrypt_async,
    derive_key_async,
    encode_salt,
    encrypt_async,
    generate_salt,
)
from .models import Account
from .storage import ENVELOPE_FIELDS, VaultStorage

logger = logging.getLogger("navigator.vault")


class RotationResult(BaseModel):
    """Account carrying the new salt, and migration stats."""

    account: Account
    stats: dict[str, int]


async def rotate_account_salt(
    storage: VaultStorage,
    account: Account,
    master_secret: MasterSecret,
    *,
    executor: Optional[Executor] = None,
) -> RotationResult:
    """Re-encrypt every envelope of account under a freshly generated salt.

    Args:
        storage: Vault storage holding the account items.
        account: Account whose salt is rotated.
        master_secret: The owner's master secret.
        executor: Optional executor for the CPU-bound crypto.

    Returns:
        RotationResult with a copy of the account holding the new salt and
        stats with keys: total, envelopes.

    Raises:
        DecodeError, AuthenticationError: If any envelope cannot be opened
            with the current key; nothing is written.
        NotFoundError: If an item disappeared before the write; nothing is
            written.
    """
    old_key = await derive_key_async(master_secret, account.salt, executor)
    new_salt = encode_salt(generate_salt())
    new_key = await derive_key_async(master_secret, new_salt, executor)

    items = await storage.list_items(account.id)
    stats = {"total": len(items), "envelopes": 0}

    logger.info(
        "Starting salt rotation for owner=%s (%d item(s))",
        account.id, len(items),
    )

    envelopes: dict[str, dict] = {}
    for item in items:
        replaced = {}
        for name in ENVELOPE_FIELDS:
            envelope = getattr(item, name)
            if envelope is None:
                continue
            try:
                plaintext = await decrypt_async(envelope, old_key, executor)
            except Exception as err:
                logger.error(
                    "Salt rotation aborted at item=%s field=%s: %s",
                    item.id, name, type(err).__name__,
                )
                raise
            replaced[name] = await encrypt_async(plaintext, new_key, executor)
            stats["envelopes"] += 1
        envelopes[item.id] = replaced

    await storage.replace_envelopes(account.id, envelopes)

    logger.info(
        "Salt rotation complete for owner=%s: %s", account.id, stats,
    )
    return RotationResult(
        account=account.model_copy(update={"salt": new_salt}),
        stats=stats,
    )

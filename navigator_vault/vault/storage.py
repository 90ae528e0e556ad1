"""
VaultStorage — Ownership-scoped storage of opaque vault items.

Provides the storage API of the vault:
- ``create(owner_id, data)`` — validate and store a new item
- ``list_items(owner_id, tag=, query=)`` — the owner's items, newest first
- ``get`` / ``update`` / ``delete`` — single-item access by (owner_id, item_id)
- ``bulk_import(owner_id, items)`` — all-or-nothing batch insert
- ``export(owner_id)`` / ``export_json`` / ``import_json`` — backup documents

Security Note:
    This layer never sees a master secret or a derived key. Envelope fields
    are validated for presence and type only and stored verbatim.
    Never log envelope values; only owner ids, item ids and counts.
"""
import logging
from typing import Any, Optional, Union
from collections.abc import Iterable, Mapping

import orjson
from pydantic import BaseModel, ValidationError as PydanticValidationError

from ..exceptions import NotFoundError, ValidationError
from .backends import VaultBackend
from .config import VaultConfig
from .models import (
    EnvelopeUpdate,
    ExportDocument,
    ImportResult,
    VaultItem,
    VaultItemCreate,
    VaultItemImport,
    VaultItemUpdate,
    new_id,
    utcnow,
)

logger = logging.getLogger("navigator.vault")

ENVELOPE_FIELDS = ("password_cipher", "notes_cipher")


def _validate(model: type[BaseModel], data: Any, prefix: tuple = ()) -> Any:
    """Validate data into model, mapping pydantic errors to ValidationError."""
    if isinstance(data, model):
        return data
    if isinstance(data, BaseModel):
        data = data.model_dump()
    try:
        return model.model_validate(data)
    except PydanticValidationError as err:
        raise ValidationError.from_pydantic(err, prefix=prefix) from None


def _matches(item: VaultItem, query: str) -> bool:
    """Case-insensitive search over the plaintext metadata of an item."""
    needle = query.casefold()
    fields = [item.title, item.username, item.url or "", *item.tags]
    return any(needle in value.casefold() for value in fields)


class VaultStorage:
    """Storage contract over a :class:`VaultBackend`.

    ``owner_id`` is trusted as given: the caller has already authenticated
    the request. Items of other owners are never visible; an unowned item
    and a missing one raise the same :class:`NotFoundError`.
    """

    def __init__(
        self,
        backend: VaultBackend,
        config: Optional[VaultConfig] = None,
    ):
        self._backend = backend
        self._config = config or VaultConfig()

    @property
    def backend(self) -> VaultBackend:
        return self._backend

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------

    def _validate_owner(self, owner_id: str) -> None:
        """Raises ValidationError if owner_id is empty or not a string."""
        if not isinstance(owner_id, str) or not owner_id:
            raise ValidationError(
                "Invalid owner",
                [{"loc": ("owner_id",), "msg": "owner_id is required",
                  "type": "missing"}],
            )

    @staticmethod
    def _item(record: Optional[dict]) -> VaultItem:
        if record is None:
            raise NotFoundError()
        return VaultItem.model_validate(record)

    @staticmethod
    def _record(owner_id: str, data: VaultItemCreate) -> dict:
        now = utcnow()
        record = data.model_dump()
        record["id"] = new_id()
        record["owner_id"] = owner_id
        record["created_at"] = record.get("created_at") or now
        record["updated_at"] = record.get("updated_at") or record["created_at"]
        return record

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def create(
        self,
        owner_id: str,
        data: Union[VaultItemCreate, Mapping[str, Any]],
    ) -> VaultItem:
        """Validate and store a new item.

        Args:
            owner_id: Authenticated owner.
            data: Item payload (envelopes already produced by the client).

        Raises:
            ValidationError: If the payload is structurally invalid.
        """
        self._validate_owner(owner_id)
        payload = _validate(VaultItemCreate, data)
        record = await self._backend.insert(self._record(owner_id, payload))
        logger.debug("Vault create: owner=%s item=%s", owner_id, record["id"])
        return self._item(record)

    async def list_items(
        self,
        owner_id: str,
        *,
        tag: Optional[str] = None,
        query: Optional[str] = None,
    ) -> list[VaultItem]:
        """Return the items of owner_id, newest first.

        Args:
            owner_id: Authenticated owner.
            tag: Keep only items carrying exactly this tag.
            query: Keep only items whose title, username, url or one of
                whose tags contains this text, case-insensitively.
        """
        self._validate_owner(owner_id)
        rows = await self._backend.find(owner_id)
        items = [VaultItem.model_validate(row) for row in rows]
        if tag:
            items = [item for item in items if tag in item.tags]
        if query:
            items = [item for item in items if _matches(item, query)]
        return items

    async def get(self, owner_id: str, item_id: str) -> VaultItem:
        """Return one item.

        Raises:
            NotFoundError: If absent or owned by someone else.
        """
        self._validate_owner(owner_id)
        return self._item(await self._backend.find_one(owner_id, item_id))

    async def update(
        self,
        owner_id: str,
        item_id: str,
        fields: Union[VaultItemUpdate, Mapping[str, Any]],
    ) -> VaultItem:
        """Apply a partial update.

        Envelope fields, when present, replace the stored envelope wholesale.

        Raises:
            ValidationError: If fields are invalid.
            NotFoundError: If absent or owned by someone else.
        """
        self._validate_owner(owner_id)
        changes = _validate(VaultItemUpdate, fields).changes()
        changes["updated_at"] = utcnow()
        record = await self._backend.update(owner_id, item_id, changes)
        item = self._item(record)
        logger.debug(
            "Vault update: owner=%s item=%s fields=%s",
            owner_id, item_id, sorted(changes),
        )
        return item

    async def delete(self, owner_id: str, item_id: str) -> bool:
        """Delete one item.

        Raises:
            NotFoundError: If absent or owned by someone else.
        """
        self._validate_owner(owner_id)
        if not await self._backend.delete(owner_id, item_id):
            raise NotFoundError()
        logger.debug("Vault delete: owner=%s item=%s", owner_id, item_id)
        return True

    async def bulk_import(
        self,
        owner_id: str,
        items: Iterable[Union[VaultItemCreate, Mapping[str, Any]]],
    ) -> ImportResult:
        """Validate every item, then insert the batch atomically.

        A single invalid item rejects the whole batch before any write.
        Error locations are prefixed with the item index.

        Raises:
            ValidationError: If the batch or any item is invalid.
        """
        self._validate_owner(owner_id)
        if isinstance(items, (str, bytes, Mapping)) or not isinstance(
            items, Iterable
        ):
            raise ValidationError(
                "Invalid import data",
                [{"loc": ("items",), "msg": "items must be a list",
                  "type": "list_type"}],
            )
        items = list(items)
        limit = self._config.max_import_items
        if len(items) > limit:
            raise ValidationError(
                "Invalid import data",
                [{"loc": ("items",),
                  "msg": f"at most {limit} item(s) per import",
                  "type": "too_long"}],
            )
        errors: list[dict] = []
        payloads: list[VaultItemImport] = []
        for idx, data in enumerate(items):
            try:
                payloads.append(
                    _validate(VaultItemImport, data, prefix=("items", idx))
                )
            except ValidationError as err:
                errors.extend(err.errors)
        if errors:
            raise ValidationError("Invalid import data", errors)

        records = [self._record(owner_id, p) for p in payloads]
        stored = await self._backend.insert_many(records)
        logger.info(
            "Vault import: owner=%s stored %d item(s)", owner_id, len(stored),
        )
        return ImportResult(
            count=len(stored),
            items=[VaultItem.model_validate(r) for r in stored],
        )

    async def export(self, owner_id: str) -> ExportDocument:
        """Snapshot every item of owner_id, envelopes copied verbatim."""
        items = await self.list_items(owner_id)
        logger.info(
            "Vault export: owner=%s %d item(s)", owner_id, len(items),
        )
        return ExportDocument(item_count=len(items), items=items)

    async def export_json(self, owner_id: str) -> bytes:
        """Return the backup file for owner_id as JSON bytes."""
        document = await self.export(owner_id)
        return orjson.dumps(
            document.model_dump(mode="json", by_alias=True),
            option=orjson.OPT_INDENT_2,
        )

    async def import_json(
        self,
        owner_id: str,
        document: Union[str, bytes, Mapping[str, Any]],
    ) -> ImportResult:
        """Import a backup document (``{items: [...]}``) into owner_id.

        Raises:
            ValidationError: If the document is not JSON or has no item list.
        """
        if isinstance(document, (str, bytes)):
            try:
                document = orjson.loads(document)
            except orjson.JSONDecodeError:
                raise ValidationError(
                    "Invalid import data",
                    [{"loc": (), "msg": "document is not valid JSON",
                      "type": "json_invalid"}],
                ) from None
        if not isinstance(document, Mapping) or not isinstance(
            document.get("items"), list
        ):
            raise ValidationError(
                "Invalid import data",
                [{"loc": ("items",), "msg": "items must be a list",
                  "type": "list_type"}],
            )
        return await self.bulk_import(owner_id, document["items"])

    async def replace_envelopes(
        self,
        owner_id: str,
        envelopes: Mapping[str, Mapping[str, Optional[str]]],
    ) -> list[VaultItem]:
        """Atomically replace envelope fields of many items.

        Args:
            owner_id: Authenticated owner.
            envelopes: ``{item_id: {"password_cipher": ..., "notes_cipher": ...}}``.

        Every entry is validated before anything is written. Error locations
        are prefixed with the item id.

        Raises:
            ValidationError: If a non-envelope field is given, an envelope
                is not a string, or password_cipher is null.
            NotFoundError: If any item is absent or unowned; nothing is written.
        """
        self._validate_owner(owner_id)
        now = utcnow()
        errors: list[dict] = []
        updates: dict[str, dict] = {}
        for item_id, fields in envelopes.items():
            try:
                changes = _validate(EnvelopeUpdate, fields, prefix=(item_id,))
            except ValidationError as err:
                errors.extend(err.errors)
                continue
            updates[item_id] = {**changes.changes(), "updated_at": now}
        if errors:
            raise ValidationError("Invalid envelope update", errors)
        if not updates:
            return []
        rows = await self._backend.update_many(owner_id, updates)
        logger.info(
            "Vault envelopes replaced: owner=%s %d item(s)", owner_id, len(rows),
        )
        return [VaultItem.model_validate(row) for row in rows]

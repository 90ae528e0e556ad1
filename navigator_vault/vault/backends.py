"""
Vault Backends — Persistence for vault item records.

Every lookup, update and delete takes ``owner_id`` as a mandatory predicate
of the query itself. Records are plain dicts keyed like
:class:`~navigator_vault.vault.models.VaultItem` fields; envelope fields
pass through untouched.

Batch writes (``insert_many``, ``update_many``) are all-or-nothing:
- MemoryBackend stages on a copy and swaps it in only when every record
  has been applied.
- PostgresBackend runs the whole batch in one transaction and rolls it
  back on any error.
"""
import asyncio
import itertools
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from ..exceptions import NotFoundError

logger = logging.getLogger("navigator.vault")

ITEM_COLUMNS = (
    "id",
    "owner_id",
    "title",
    "username",
    "password_cipher",
    "url",
    "notes_cipher",
    "tags",
    "created_at",
    "updated_at",
)

UPDATABLE_COLUMNS = frozenset({
    "title",
    "username",
    "password_cipher",
    "url",
    "notes_cipher",
    "tags",
    "updated_at",
})


def _check_fields(fields: dict[str, Any]) -> None:
    unknown = set(fields) - UPDATABLE_COLUMNS
    if unknown:
        raise ValueError(f"Cannot update column(s): {sorted(unknown)}")


class VaultBackend(ABC):
    """Persistence contract used by :class:`VaultStorage`."""

    @abstractmethod
    async def insert(self, record: dict) -> dict:
        """Insert one record and return it."""

    @abstractmethod
    async def find(self, owner_id: str) -> list[dict]:
        """Return all records of owner_id, newest first."""

    @abstractmethod
    async def find_one(self, owner_id: str, item_id: str) -> Optional[dict]:
        """Return the record or None if absent or owned by someone else."""

    @abstractmethod
    async def update(
        self, owner_id: str, item_id: str, fields: dict
    ) -> Optional[dict]:
        """Apply fields and return the updated record, or None."""

    @abstractmethod
    async def delete(self, owner_id: str, item_id: str) -> bool:
        """Delete the record; False if absent or owned by someone else."""

    @abstractmethod
    async def insert_many(self, records: list[dict]) -> list[dict]:
        """Insert all records or none of them."""

    @abstractmethod
    async def update_many(
        self, owner_id: str, updates: dict[str, dict]
    ) -> list[dict]:
        """Apply every ``{item_id: fields}`` update or none of them.

        Raises:
            NotFoundError: If any item_id is absent or not owned by owner_id.
        """


class MemoryBackend(VaultBackend):
    """In-process backend, for tests and single-process deployments."""

    def __init__(self) -> None:
        self._items: dict[str, dict] = {}
        self._order: dict[str, int] = {}
        self._seq = itertools.count()
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._items)

    @staticmethod
    def _copy(record: dict) -> dict:
        rec = dict(record)
        rec["tags"] = list(rec.get("tags") or [])
        return rec

    def _owned(self, items: dict, owner_id: str, item_id: str) -> Optional[dict]:
        record = items.get(item_id)
        if record is None or record["owner_id"] != owner_id:
            return None
        return record

    def _stage(self, staged: dict[str, dict], record: dict) -> None:
        """Apply a single insert to a staged copy."""
        if record["id"] in staged:
            raise ValueError(f"Duplicate item id: {record['id']}")
        staged[record["id"]] = self._copy(record)

    def _commit(self, staged: dict[str, dict]) -> None:
        for item_id in staged:
            if item_id not in self._order:
                self._order[item_id] = next(self._seq)
        self._items = staged

    async def insert(self, record: dict) -> dict:
        async with self._lock:
            staged = dict(self._items)
            self._stage(staged, record)
            self._commit(staged)
            return self._copy(staged[record["id"]])

    async def find(self, owner_id: str) -> list[dict]:
        async with self._lock:
            rows = [
                r for r in self._items.values() if r["owner_id"] == owner_id
            ]
            rows.sort(
                key=lambda r: (r["created_at"], self._order[r["id"]]),
                reverse=True,
            )
            return [self._copy(r) for r in rows]

    async def find_one(self, owner_id: str, item_id: str) -> Optional[dict]:
        async with self._lock:
            record = self._owned(self._items, owner_id, item_id)
            return None if record is None else self._copy(record)

    async def update(
        self, owner_id: str, item_id: str, fields: dict
    ) -> Optional[dict]:
        _check_fields(fields)
        async with self._lock:
            record = self._owned(self._items, owner_id, item_id)
            if record is None:
                return None
            record.update(fields)
            return self._copy(record)

    async def delete(self, owner_id: str, item_id: str) -> bool:
        async with self._lock:
            if self._owned(self._items, owner_id, item_id) is None:
                return False
            del self._items[item_id]
            self._order.pop(item_id, None)
            return True

    async def insert_many(self, records: list[dict]) -> list[dict]:
        async with self._lock:
            staged = dict(self._items)
            for record in records:
                self._stage(staged, record)
            self._commit(staged)
            return [self._copy(staged[r["id"]]) for r in records]

    async def update_many(
        self, owner_id: str, updates: dict[str, dict]
    ) -> list[dict]:
        for fields in updates.values():
            _check_fields(fields)
        async with self._lock:
            staged = dict(self._items)
            for item_id, fields in updates.items():
                record = self._owned(staged, owner_id, item_id)
                if record is None:
                    raise NotFoundError()
                staged[item_id] = {**record, **fields}
            self._commit(staged)
            return [self._copy(staged[i]) for i in updates]


# ---------------------------------------------------------------------------
# PostgreSQL
# ---------------------------------------------------------------------------

_COLUMNS = ", ".join(ITEM_COLUMNS)

_INSERT_ITEM = """
INSERT INTO {table} ({columns})
VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
RETURNING {columns}
"""

_SELECT_BY_OWNER = """
SELECT {columns}
FROM {table}
WHERE owner_id = $1
ORDER BY created_at DESC, seq DESC
"""

_SELECT_ONE = """
SELECT {columns}
FROM {table}
WHERE owner_id = $1 AND id = $2
"""

_UPDATE_ITEM = """
UPDATE {table}
SET {assignments}
WHERE owner_id = $1 AND id = $2
RETURNING {columns}
"""

_DELETE_ITEM = """
DELETE FROM {table}
WHERE owner_id = $1 AND id = $2
RETURNING id
"""


class PostgresBackend(VaultBackend):
    """Backend over an asyncpg-compatible connection pool.

    Expects a table with the columns of ``ITEM_COLUMNS`` (``tags`` as
    ``text[]``, timestamps as ``timestamptz``) plus a ``seq bigserial``
    column. ``seq`` is filled by the database and breaks ``created_at`` ties
    in listings, so items with equal timestamps list newest insert first::

        CREATE TABLE vault.items (
            id text PRIMARY KEY,
            owner_id text NOT NULL,
            title text NOT NULL,
            username text NOT NULL,
            password_cipher text NOT NULL,
            url text,
            notes_cipher text,
            tags text[] NOT NULL DEFAULT '{}',
            created_at timestamptz NOT NULL,
            updated_at timestamptz NOT NULL,
            seq bigserial NOT NULL
        );
        CREATE INDEX ON vault.items (owner_id, created_at DESC, seq DESC);
    """

    def __init__(self, db_pool: Any, table: str = "vault.items") -> None:
        self._db = db_pool
        self._table = table

    def _sql(self, statement: str, **kwargs) -> str:
        return statement.format(table=self._table, columns=_COLUMNS, **kwargs)

    @staticmethod
    def _values(record: dict) -> list:
        values = [record.get(col) for col in ITEM_COLUMNS]
        values[ITEM_COLUMNS.index("tags")] = list(record.get("tags") or [])
        return values

    @staticmethod
    def _row(row: Any) -> Optional[dict]:
        return None if row is None else dict(row)

    def _update_sql(self, fields: dict) -> tuple[str, list]:
        _check_fields(fields)
        names = sorted(fields)
        assignments = ", ".join(
            f"{name} = ${idx}" for idx, name in enumerate(names, start=3)
        )
        return (
            self._sql(_UPDATE_ITEM, assignments=assignments),
            [fields[name] for name in names],
        )

    async def insert(self, record: dict) -> dict:
        async with self._db.acquire() as conn:
            row = await conn.fetchrow(
                self._sql(_INSERT_ITEM), *self._values(record),
            )
        return self._row(row)

    async def find(self, owner_id: str) -> list[dict]:
        async with self._db.acquire() as conn:
            rows = await conn.fetch(self._sql(_SELECT_BY_OWNER), owner_id)
        return [dict(row) for row in rows]

    async def find_one(self, owner_id: str, item_id: str) -> Optional[dict]:
        async with self._db.acquire() as conn:
            row = await conn.fetchrow(self._sql(_SELECT_ONE), owner_id, item_id)
        return self._row(row)

    async def update(
        self, owner_id: str, item_id: str, fields: dict
    ) -> Optional[dict]:
        sql, values = self._update_sql(fields)
        async with self._db.acquire() as conn:
            row = await conn.fetchrow(sql, owner_id, item_id, *values)
        return self._row(row)

    async def delete(self, owner_id: str, item_id: str) -> bool:
        async with self._db.acquire() as conn:
            row = await conn.fetchrow(self._sql(_DELETE_ITEM), owner_id, item_id)
        return row is not None

    async def insert_many(self, records: list[dict]) -> list[dict]:
        stored = []
        async with self._db.acquire() as conn:
            tx = conn.transaction()
            await tx.start()
            try:
                for record in records:
                    row = await conn.fetchrow(
                        self._sql(_INSERT_ITEM), *self._values(record),
                    )
                    stored.append(dict(row))
                await tx.commit()
            except Exception:
                await tx.rollback()
                logger.error(
                    "Bulk insert rolled back after %d of %d record(s)",
                    len(stored), len(records),
                )
                raise
        return stored

    async def update_many(
        self, owner_id: str, updates: dict[str, dict]
    ) -> list[dict]:
        stored = []
        async with self._db.acquire() as conn:
            tx = conn.transaction()
            await tx.start()
            try:
                for item_id, fields in updates.items():
                    sql, values = self._update_sql(fields)
                    row = await conn.fetchrow(sql, owner_id, item_id, *values)
                    if row is None:
                        raise NotFoundError()
                    stored.append(dict(row))
                await tx.commit()
            except Exception:
                await tx.rollback()
                logger.error(
                    "Batch update rolled back for owner=%s after %d of %d item(s)",
                    owner_id, len(stored), len(updates),
                )
                raise
        return stored

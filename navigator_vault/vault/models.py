"""
Vault Models — Typed records and request payloads for the vault.

Envelope fields (``password_cipher``, ``notes_cipher``) are typed as plain
strings: they are checked for presence and type only, never decoded.
JSON aliases are camelCase, matching the backup file format.
"""
import uuid
from typing import Any, Optional
from datetime import datetime, timezone

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .crypto import decode_salt, encode_salt, generate_salt

EXPORT_VERSION = "1.0"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


def _unique_tags(tags: list[str]) -> list[str]:
    """Tags are a set; keep first occurrence order."""
    return list(dict.fromkeys(tags))


class _VaultModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


class VaultItemCreate(_VaultModel):
    """Payload for creating a vault item."""

    title: str = Field(min_length=1)
    username: str = Field(min_length=1)
    password_cipher: str
    url: Optional[str] = None
    notes_cipher: Optional[str] = None
    tags: list[str] = Field(default_factory=list)

    @field_validator("tags")
    @classmethod
    def dedupe_tags(cls, v: list[str]) -> list[str]:
        return _unique_tags(v)


class VaultItemImport(VaultItemCreate):
    """An item inside an import batch.

    Accepts exported items as-is: ``id`` and ``ownerId`` are ignored (the
    importing owner gets fresh ids), timestamps are kept when present.
    """

    model_config = ConfigDict(extra="ignore")

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("created_at", "updated_at")
    @classmethod
    def assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class VaultItemUpdate(_VaultModel):
    """Partial update payload. Only fields explicitly set are applied."""

    title: Optional[str] = Field(default=None, min_length=1)
    username: Optional[str] = Field(default=None, min_length=1)
    password_cipher: Optional[str] = None
    url: Optional[str] = None
    notes_cipher: Optional[str] = None
    tags: Optional[list[str]] = None

    @field_validator("tags")
    @classmethod
    def dedupe_tags(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        return None if v is None else _unique_tags(v)

    @model_validator(mode="after")
    def required_fields_not_null(self) -> "VaultItemUpdate":
        """title, username, password_cipher and tags can change, not vanish."""
        for name in ("title", "username", "password_cipher", "tags"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def changes(self) -> dict[str, Any]:
        """Return only the fields the caller provided."""
        return self.model_dump(exclude_unset=True)


class EnvelopeUpdate(_VaultModel):
    """Replacement envelopes for one item; no other field may change."""

    password_cipher: Optional[str] = None
    notes_cipher: Optional[str] = None

    @model_validator(mode="after")
    def password_not_null(self) -> "EnvelopeUpdate":
        if "password_cipher" in self.model_fields_set and self.password_cipher is None:
            raise ValueError("password_cipher cannot be null")
        return self

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class VaultItem(_VaultModel):
    """A stored vault item owned by exactly one account."""

    model_config = ConfigDict(extra="ignore")

    id: str
    owner_id: str
    title: str
    username: str
    password_cipher: str
    url: Optional[str] = None
    notes_cipher: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class ImportResult(_VaultModel):
    """Outcome of a bulk import."""

    count: int
    items: list[VaultItem]


class ExportDocument(_VaultModel):
    """Backup document: ``{version, exportDate, itemCount, items}``."""

    model_config = ConfigDict(extra="ignore")

    version: str = EXPORT_VERSION
    export_date: datetime = Field(default_factory=utcnow)
    item_count: int
    items: list[VaultItem]

    @model_validator(mode="after")
    def count_matches(self) -> "ExportDocument":
        if self.item_count != len(self.items):
            raise ValueError(
                f"itemCount {self.item_count} does not match "
                f"{len(self.items)} item(s)"
            )
        return self


class Account(_VaultModel):
    """An account record.

    ``password_hash`` authenticates the user; it is unrelated to the master
    secret used for key derivation. ``salt`` is base64 text, set once by
    :meth:`create` and frozen for the account lifetime.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    email: str
    password_hash: str = Field(min_length=1)
    salt: str
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v or v.startswith("@") or v.endswith("@"):
            raise ValueError("invalid email address")
        return v

    @field_validator("salt")
    @classmethod
    def validate_salt(cls, v: str) -> str:
        decode_salt(v)
        return v

    @classmethod
    def create(cls, email: str, password_hash: str) -> "Account":
        """Create a new account with a freshly generated salt."""
        return cls(
            email=email,
            password_hash=password_hash,
            salt=encode_salt(generate_salt()),
        )

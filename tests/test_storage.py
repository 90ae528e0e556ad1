"""
Tests for VaultStorage over the in-memory backend.

Tests cover:
- Create / list / get / update / delete with ownership isolation
- Envelope fields stored verbatim, never interpreted
- Structured validation errors
- All-or-nothing bulk import, including backend failure mid-batch
- Export document and JSON backup round trip
- Atomic envelope replacement
"""
import asyncio

import orjson
import pytest

from navigator_vault.exceptions import NotFoundError, ValidationError
from navigator_vault.vault.backends import MemoryBackend
from navigator_vault.vault.config import VaultConfig
from navigator_vault.vault.models import ExportDocument, VaultItem, VaultItemCreate
from navigator_vault.vault.storage import VaultStorage

OWNER_A = "owner-a"
OWNER_B = "owner-b"

# Deliberately not valid base64: the storage tier must not care.
GARBAGE_ENVELOPE = "\x00\x01 not an envelope ✓ %%%"


class FailingBackend(MemoryBackend):
    """Memory backend that fails on the n-th staged insert."""

    def __init__(self, fail_at: int):
        super().__init__()
        self.fail_at = fail_at
        self.staged = 0

    def _stage(self, staged, record):
        self.staged += 1
        if self.staged == self.fail_at:
            raise ConnectionError("backend went away")
        super()._stage(staged, record)


# --- Create ---

class TestCreate:
    """Tests for creating items."""

    @pytest.mark.asyncio
    async def test_create_returns_item(self, storage, item_payload):
        """Test that create returns the stored item."""
        item = await storage.create(OWNER_A, item_payload())
        assert isinstance(item, VaultItem)
        assert item.owner_id == OWNER_A
        assert item.title == "GitHub"
        assert item.tags == ["dev"]
        assert item.id
        assert item.created_at == item.updated_at

    @pytest.mark.asyncio
    async def test_create_from_model(self, storage):
        """Test creating from a VaultItemCreate model."""
        payload = VaultItemCreate(
            title="Mail", username="bob", password_cipher="abc",
        )
        item = await storage.create(OWNER_A, payload)
        assert item.password_cipher == "abc"
        assert item.notes_cipher is None
        assert item.url is None
        assert item.tags == []

    @pytest.mark.asyncio
    async def test_envelope_stored_verbatim(self, storage, item_payload):
        """Test that envelope strings are stored unchanged."""
        item = await storage.create(
            OWNER_A,
            item_payload(
                passwordCipher=GARBAGE_ENVELOPE, notesCipher=GARBAGE_ENVELOPE,
            ),
        )
        assert item.password_cipher == GARBAGE_ENVELOPE
        stored = await storage.get(OWNER_A, item.id)
        assert stored.password_cipher == GARBAGE_ENVELOPE
        assert stored.notes_cipher == GARBAGE_ENVELOPE

    @pytest.mark.asyncio
    async def test_snake_case_payload(self, storage):
        """Test that snake_case keys are accepted."""
        item = await storage.create(OWNER_A, {
            "title": "T", "username": "u", "password_cipher": "x",
        })
        assert item.password_cipher == "x"

    @pytest.mark.asyncio
    async def test_tags_deduplicated(self, storage, item_payload):
        """Test that duplicate tags are dropped."""
        item = await storage.create(
            OWNER_A, item_payload(tags=["a", "b", "a"]),
        )
        assert item.tags == ["a", "b"]

    @pytest.mark.asyncio
    async def test_missing_password_cipher(self, storage, item_payload, backend):
        """Test that a missing envelope is rejected before any write."""
        payload = item_payload()
        del payload["passwordCipher"]
        with pytest.raises(ValidationError) as exc:
            await storage.create(OWNER_A, payload)
        locs = [e["loc"] for e in exc.value.errors]
        assert ("passwordCipher",) in locs
        assert len(backend) == 0

    @pytest.mark.asyncio
    async def test_wrong_type(self, storage, item_payload):
        """Test that a non-string envelope is rejected."""
        with pytest.raises(ValidationError) as exc:
            await storage.create(OWNER_A, item_payload(passwordCipher=123))
        assert exc.value.errors[0]["loc"] == ("passwordCipher",)

    @pytest.mark.asyncio
    async def test_empty_title(self, storage, item_payload):
        """Test that an empty title is rejected."""
        with pytest.raises(ValidationError):
            await storage.create(OWNER_A, item_payload(title=""))

    @pytest.mark.asyncio
    async def test_unknown_field(self, storage, item_payload):
        """Test that unknown fields are rejected."""
        with pytest.raises(ValidationError):
            await storage.create(OWNER_A, item_payload(ownerId=OWNER_B))

    @pytest.mark.asyncio
    async def test_missing_owner(self, storage, item_payload):
        """Test that an empty owner id is rejected."""
        with pytest.raises(ValidationError):
            await storage.create("", item_payload())


# --- List / Get ---

class TestList:
    """Tests for listing and fetching items."""

    @pytest.mark.asyncio
    async def test_newest_first(self, storage, item_payload):
        """Test that items list newest first."""
        first = await storage.create(OWNER_A, item_payload(title="first"))
        second = await storage.create(OWNER_A, item_payload(title="second"))
        third = await storage.create(OWNER_A, item_payload(title="third"))
        items = await storage.list_items(OWNER_A)
        assert [i.id for i in items] == [third.id, second.id, first.id]

    @pytest.mark.asyncio
    async def test_list_scoped_to_owner(self, storage, item_payload):
        """Test that listing only returns the owner's items."""
        await storage.create(OWNER_A, item_payload(title="a"))
        await storage.create(OWNER_B, item_payload(title="b"))
        items = await storage.list_items(OWNER_A)
        assert [i.title for i in items] == ["a"]
        assert await storage.list_items("nobody") == []

    @pytest.mark.asyncio
    async def test_filter_by_tag(self, storage, item_payload):
        """Test filtering by an exact tag."""
        dev = await storage.create(OWNER_A, item_payload(tags=["dev", "work"]))
        await storage.create(OWNER_A, item_payload(tags=["personal"]))
        await storage.create(OWNER_A, item_payload(tags=["developer"]))
        items = await storage.list_items(OWNER_A, tag="dev")
        assert [i.id for i in items] == [dev.id]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("query,titles", [
        ("git", ["GitHub"]),
        ("ALICE", ["GitHub"]),
        ("example.org", ["Mail"]),
        ("perso", ["Mail"]),
        ("o", ["Mail", "GitHub"]),
        ("nothing", []),
    ])
    async def test_search(self, storage, item_payload, query, titles):
        """Test case-insensitive search over title, username, url and tags."""
        await storage.create(OWNER_A, item_payload())
        await storage.create(OWNER_A, item_payload(
            title="Mail", username="bob", url="https://mail.example.org",
            tags=["personal"],
        ))
        items = await storage.list_items(OWNER_A, query=query)
        assert [i.title for i in items] == titles

    @pytest.mark.asyncio
    async def test_search_ignores_envelopes(self, storage, item_payload):
        """Test that search never looks at envelopes."""
        await storage.create(OWNER_A, item_payload(passwordCipher="needle"))
        assert await storage.list_items(OWNER_A, query="needle") == []

    @pytest.mark.asyncio
    async def test_tag_and_query_combined(self, storage, item_payload):
        """Test combining the tag filter with a search."""
        await storage.create(OWNER_A, item_payload(title="GitLab", tags=["work"]))
        hub = await storage.create(OWNER_A, item_payload(tags=["dev"]))
        items = await storage.list_items(OWNER_A, tag="dev", query="git")
        assert [i.id for i in items] == [hub.id]

    @pytest.mark.asyncio
    async def test_filters_stay_owner_scoped(self, storage, item_payload):
        """Test that filters never reach other owners' items."""
        await storage.create(OWNER_B, item_payload())
        assert await storage.list_items(OWNER_A, tag="dev", query="git") == []

    @pytest.mark.asyncio
    async def test_get_other_owner(self, storage, item_payload):
        """Test that another owner's item is not found."""
        item = await storage.create(OWNER_A, item_payload())
        with pytest.raises(NotFoundError):
            await storage.get(OWNER_B, item.id)


# --- Update ---

class TestUpdate:
    """Tests for partial updates."""

    @pytest.mark.asyncio
    async def test_update_plaintext_keeps_envelopes(self, storage, item_payload):
        """Test that a metadata update leaves envelopes alone."""
        item = await storage.create(
            OWNER_A, item_payload(notesCipher="notes-envelope"),
        )
        updated = await storage.update(OWNER_A, item.id, {"title": "New"})
        assert updated.title == "New"
        assert updated.password_cipher == item.password_cipher
        assert updated.notes_cipher == "notes-envelope"
        assert updated.updated_at >= item.updated_at
        assert updated.created_at == item.created_at

    @pytest.mark.asyncio
    async def test_update_replaces_envelope(self, storage, item_payload):
        """Test that an envelope update replaces it wholesale."""
        item = await storage.create(OWNER_A, item_payload())
        updated = await storage.update(
            OWNER_A, item.id, {"passwordCipher": "replacement"},
        )
        assert updated.password_cipher == "replacement"

    @pytest.mark.asyncio
    async def test_update_clears_optional(self, storage, item_payload):
        """Test that optional fields can be cleared."""
        item = await storage.create(OWNER_A, item_payload(notesCipher="n"))
        updated = await storage.update(OWNER_A, item.id, {"notesCipher": None})
        assert updated.notes_cipher is None

    @pytest.mark.asyncio
    async def test_update_cannot_null_password(self, storage, item_payload):
        """Test that password_cipher cannot be nulled."""
        item = await storage.create(OWNER_A, item_payload())
        with pytest.raises(ValidationError):
            await storage.update(OWNER_A, item.id, {"passwordCipher": None})

    @pytest.mark.asyncio
    async def test_update_other_owner_is_not_found(self, storage, item_payload):
        """Test that unowned and missing items look the same."""
        item = await storage.create(OWNER_A, item_payload())
        with pytest.raises(NotFoundError) as unowned:
            await storage.update(OWNER_B, item.id, {"title": "stolen"})
        with pytest.raises(NotFoundError) as missing:
            await storage.update(OWNER_B, "does-not-exist", {"title": "x"})
        assert str(unowned.value) == str(missing.value)
        assert (await storage.get(OWNER_A, item.id)).title == "GitHub"

    @pytest.mark.asyncio
    async def test_update_cannot_move_owner(self, storage, item_payload):
        """Test that ownerId cannot be updated."""
        item = await storage.create(OWNER_A, item_payload())
        with pytest.raises(ValidationError):
            await storage.update(OWNER_A, item.id, {"ownerId": OWNER_B})

    @pytest.mark.asyncio
    async def test_concurrent_updates_last_writer_wins(self, storage, item_payload):
        """Test that concurrent updates leave one of the written values."""
        item = await storage.create(OWNER_A, item_payload())
        await asyncio.gather(*[
            storage.update(OWNER_A, item.id, {"title": f"t{n}"})
            for n in range(10)
        ])
        stored = await storage.get(OWNER_A, item.id)
        assert stored.title in {f"t{n}" for n in range(10)}


# --- Delete ---

class TestDelete:
    """Tests for deletes."""

    @pytest.mark.asyncio
    async def test_delete(self, storage, item_payload):
        """Test deleting an item, then deleting it again."""
        item = await storage.create(OWNER_A, item_payload())
        assert await storage.delete(OWNER_A, item.id) is True
        assert await storage.list_items(OWNER_A) == []
        with pytest.raises(NotFoundError):
            await storage.delete(OWNER_A, item.id)

    @pytest.mark.asyncio
    async def test_delete_other_owner(self, storage, item_payload):
        """Test that another owner cannot delete an item."""
        item = await storage.create(OWNER_A, item_payload())
        with pytest.raises(NotFoundError):
            await storage.delete(OWNER_B, item.id)
        assert len(await storage.list_items(OWNER_A)) == 1


# --- Bulk import ---

class TestBulkImport:
    """Tests for all-or-nothing bulk import."""

    @pytest.mark.asyncio
    async def test_import(self, storage, item_payload):
        """Test importing a batch of items."""
        result = await storage.bulk_import(
            OWNER_A, [item_payload(title=f"i{n}") for n in range(3)],
        )
        assert result.count == 3
        assert len(result.items) == 3
        assert all(i.owner_id == OWNER_A for i in result.items)
        assert len(await storage.list_items(OWNER_A)) == 3

    @pytest.mark.asyncio
    async def test_one_bad_item_rejects_batch(self, storage, item_payload, backend):
        """Test that one invalid item rejects the whole batch."""
        items = [item_payload(), item_payload(title=""), item_payload()]
        with pytest.raises(ValidationError) as exc:
            await storage.bulk_import(OWNER_A, items)
        assert exc.value.errors[0]["loc"][:2] == ("items", 1)
        assert len(backend) == 0

    @pytest.mark.asyncio
    async def test_errors_from_every_bad_item(self, storage, item_payload):
        """Test that errors are reported for every invalid item."""
        items = [item_payload(title=""), item_payload(), {"title": "x"}]
        with pytest.raises(ValidationError) as exc:
            await storage.bulk_import(OWNER_A, items)
        indexes = {e["loc"][1] for e in exc.value.errors}
        assert indexes == {0, 2}

    @pytest.mark.asyncio
    async def test_backend_failure_mid_batch_commits_nothing(self, item_payload):
        """Test that a backend failure mid-batch stores nothing."""
        backend = FailingBackend(fail_at=2)
        storage = VaultStorage(backend)
        with pytest.raises(ConnectionError):
            await storage.bulk_import(
                OWNER_A, [item_payload(title=f"i{n}") for n in range(3)],
            )
        assert len(backend) == 0
        assert await storage.list_items(OWNER_A) == []

    @pytest.mark.asyncio
    async def test_batch_limit(self, backend, item_payload):
        """Test that batches over the configured limit are rejected."""
        storage = VaultStorage(backend, VaultConfig(max_import_items=2))
        with pytest.raises(ValidationError):
            await storage.bulk_import(OWNER_A, [item_payload()] * 3)
        assert len(backend) == 0

    @pytest.mark.asyncio
    async def test_not_a_list(self, storage, item_payload):
        """Test that a mapping is not accepted as a batch."""
        with pytest.raises(ValidationError):
            await storage.bulk_import(OWNER_A, item_payload())

    @pytest.mark.asyncio
    @pytest.mark.parametrize("items", [None, 42, "items", b"items"])
    async def test_non_iterable_items(self, storage, backend, items):
        """Test that non-list inputs fail with a list_type error."""
        with pytest.raises(ValidationError) as exc:
            await storage.bulk_import(OWNER_A, items)
        assert exc.value.errors[0]["type"] == "list_type"
        assert len(backend) == 0

    @pytest.mark.asyncio
    async def test_generator_items(self, storage, item_payload):
        """Test that any iterable of items is accepted."""
        result = await storage.bulk_import(
            OWNER_A, (item_payload(title=f"i{n}") for n in range(2)),
        )
        assert result.count == 2

    @pytest.mark.asyncio
    async def test_empty_batch(self, storage):
        """Test importing an empty batch."""
        result = await storage.bulk_import(OWNER_A, [])
        assert result.count == 0


# --- Export ---

class TestExport:
    """Tests for export documents and the JSON backup round trip."""

    @pytest.mark.asyncio
    async def test_export_document(self, storage, item_payload):
        """Test the export document of one owner."""
        await storage.create(OWNER_A, item_payload(notesCipher=GARBAGE_ENVELOPE))
        await storage.create(OWNER_B, item_payload())
        document = await storage.export(OWNER_A)
        assert isinstance(document, ExportDocument)
        assert document.version == "1.0"
        assert document.item_count == 1
        assert document.items[0].notes_cipher == GARBAGE_ENVELOPE

    @pytest.mark.asyncio
    async def test_export_json_format(self, storage, item_payload):
        """Test the camelCase JSON backup layout."""
        await storage.create(OWNER_A, item_payload())
        data = orjson.loads(await storage.export_json(OWNER_A))
        assert set(data) == {"version", "exportDate", "itemCount", "items"}
        assert data["itemCount"] == 1
        assert data["items"][0]["passwordCipher"] == item_payload()["passwordCipher"]

    @pytest.mark.asyncio
    async def test_export_import_round_trip(self, storage, item_payload):
        """Test restoring a backup into another owner."""
        for n in range(3):
            await storage.create(
                OWNER_A,
                item_payload(
                    title=f"i{n}",
                    passwordCipher=f"envelope-{n}",
                    notesCipher=GARBAGE_ENVELOPE if n == 1 else None,
                ),
            )
        backup = await storage.export_json(OWNER_A)
        result = await storage.import_json(OWNER_B, backup)
        assert result.count == 3

        original = await storage.list_items(OWNER_A)
        restored = await storage.list_items(OWNER_B)
        assert sorted(
            (i.title, i.password_cipher, i.notes_cipher or "", i.created_at)
            for i in restored
        ) == sorted(
            (i.title, i.password_cipher, i.notes_cipher or "", i.created_at)
            for i in original
        )
        assert {i.id for i in restored}.isdisjoint({i.id for i in original})

    @pytest.mark.asyncio
    async def test_import_invalid_json(self, storage):
        """Test that a non-JSON backup is rejected."""
        with pytest.raises(ValidationError):
            await storage.import_json(OWNER_A, b"{not json")

    @pytest.mark.asyncio
    async def test_import_without_items(self, storage):
        """Test that a backup without items is rejected."""
        with pytest.raises(ValidationError):
            await storage.import_json(OWNER_A, {"version": "1.0"})


# --- Envelope replacement ---

class TestReplaceEnvelopes:
    """Tests for atomic envelope replacement."""

    @pytest.mark.asyncio
    async def test_replace(self, storage, item_payload):
        """Test replacing envelopes of several items."""
        a = await storage.create(OWNER_A, item_payload())
        b = await storage.create(OWNER_A, item_payload(notesCipher="n"))
        await storage.replace_envelopes(OWNER_A, {
            a.id: {"password_cipher": "p2"},
            b.id: {"password_cipher": "p3", "notes_cipher": "n3"},
        })
        assert (await storage.get(OWNER_A, a.id)).password_cipher == "p2"
        stored = await storage.get(OWNER_A, b.id)
        assert (stored.password_cipher, stored.notes_cipher) == ("p3", "n3")

    @pytest.mark.asyncio
    async def test_unowned_id_aborts_batch(self, storage, item_payload):
        """Test that an unowned id leaves every item unchanged."""
        a = await storage.create(OWNER_A, item_payload())
        b = await storage.create(OWNER_B, item_payload())
        with pytest.raises(NotFoundError):
            await storage.replace_envelopes(OWNER_A, {
                a.id: {"password_cipher": "changed"},
                b.id: {"password_cipher": "changed"},
            })
        assert (await storage.get(OWNER_A, a.id)).password_cipher == a.password_cipher
        assert (await storage.get(OWNER_B, b.id)).password_cipher == b.password_cipher

    @pytest.mark.asyncio
    async def test_rejects_plaintext_fields(self, storage, item_payload):
        """Test that non-envelope fields are rejected."""
        a = await storage.create(OWNER_A, item_payload())
        with pytest.raises(ValidationError):
            await storage.replace_envelopes(OWNER_A, {a.id: {"title": "x"}})

    @pytest.mark.asyncio
    @pytest.mark.parametrize("fields", [
        {"notes_cipher": 123},
        {"password_cipher": ["p"]},
        {"password_cipher": None},
        "p2",
    ])
    async def test_rejects_invalid_envelopes(self, storage, item_payload, fields):
        """Test that malformed entries are rejected before any write."""
        a = await storage.create(OWNER_A, item_payload())
        with pytest.raises(ValidationError) as exc:
            await storage.replace_envelopes(OWNER_A, {a.id: fields})
        assert all(e["loc"][0] == a.id for e in exc.value.errors)
        items = await storage.list_items(OWNER_A)
        assert [i.password_cipher for i in items] == [a.password_cipher]
        assert items[0].notes_cipher is None

    @pytest.mark.asyncio
    async def test_invalid_entry_aborts_batch(self, storage, item_payload):
        """Test that one invalid entry leaves every item unchanged."""
        a = await storage.create(OWNER_A, item_payload())
        b = await storage.create(OWNER_A, item_payload())
        with pytest.raises(ValidationError):
            await storage.replace_envelopes(OWNER_A, {
                a.id: {"password_cipher": "changed"},
                b.id: {"notes_cipher": 123},
            })
        assert (await storage.get(OWNER_A, a.id)).password_cipher == a.password_cipher

    @pytest.mark.asyncio
    async def test_camel_case_envelopes(self, storage, item_payload):
        """Test that camelCase envelope keys are accepted."""
        a = await storage.create(OWNER_A, item_payload(notesCipher="n"))
        await storage.replace_envelopes(OWNER_A, {a.id: {"notesCipher": None}})
        stored = await storage.get(OWNER_A, a.id)
        assert stored.notes_cipher is None
        assert stored.password_cipher == a.password_cipher

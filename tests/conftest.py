import pytest

from navigator_vault.vault.backends import MemoryBackend
from navigator_vault.vault.crypto import derive_key
from navigator_vault.vault.storage import VaultStorage

MASTER_SECRET = "Tr0ub4dor&3"
FIXED_SALT = bytes(range(16))


@pytest.fixture(scope="session")
def key():
    """Key derived from the fixed test secret and salt (derived once)."""
    return derive_key(MASTER_SECRET, FIXED_SALT)


@pytest.fixture
def backend():
    return MemoryBackend()


@pytest.fixture
def storage(backend):
    return VaultStorage(backend)


def _item_payload(**overrides):
    data = {
        "title": "GitHub",
        "username": "alice",
        "passwordCipher": "bm90LWEtcmVhbC1lbnZlbG9wZQ==",
        "url": "https://github.com",
        "tags": ["dev"],
    }
    data.update(overrides)
    return data


@pytest.fixture
def item_payload():
    """Factory for valid create payloads using opaque envelope strings."""
    return _item_payload

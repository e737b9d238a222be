"""Shared fixtures for the vault test-suite."""
import asyncio

import pytest

from sentinel_vault.vault import MemoryStore, VaultRecord, VaultSession
from sentinel_vault.vault.crypto import derive_key

PASSWORD = "correct horse battery staple"
OTHER_PASSWORD = "Tr0ub4dor&3"
SALT = bytes(range(16))
OWNER = "owner-a"
OTHER_OWNER = "owner-b"


class GatedStore(MemoryStore):
    """MemoryStore whose bulk fetch can be held open to simulate a slow network."""

    def __init__(self):
        super().__init__()
        self.started = asyncio.Event()
        self.gate = asyncio.Event()
        self.gate.set()

    async def get_all(self, owner):
        self.started.set()
        await self.gate.wait()
        return await super().get_all(owner)


class FlakyStore(MemoryStore):
    """MemoryStore that raises a network error while ``failing`` is set."""

    def __init__(self):
        super().__init__()
        self.failing = False

    def _maybe_fail(self):
        if self.failing:
            raise ConnectionError("connection reset by peer")

    async def put(self, envelope, expected_version=None):
        self._maybe_fail()
        await super().put(envelope, expected_version)

    async def get_all(self, owner):
        self._maybe_fail()
        return await super().get_all(owner)

    async def delete(self, identifier, owner):
        self._maybe_fail()
        await super().delete(identifier, owner)


@pytest.fixture(scope="session")
def key():
    """Session key derived once for the whole run (PBKDF2 is slow on purpose)."""
    return derive_key(PASSWORD, SALT)


@pytest.fixture(scope="session")
def other_key():
    return derive_key(OTHER_PASSWORD, SALT)


@pytest.fixture
def record():
    return VaultRecord(
        id="rec-1",
        title="Example",
        username="a@b.com",
        password="p@ss",
        url="https://example.com",
        created_at=1_700_000_000_000,
        updated_at=1_700_000_000_000,
    )


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
async def unlocked(store):
    """A session for OWNER, unlocked against an empty MemoryStore."""
    session = VaultSession(store)
    session.authenticate(OWNER)
    await session.unlock(PASSWORD)
    return session

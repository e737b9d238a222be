"""
Record Store — Remote persistence of encrypted envelopes and owner profiles.

The engine only ever talks to a store through ``RecordStore`` and
``ProfileStore``. Stores receive and return ciphertext; they never see
keys or plaintext. Per-call atomicity is the only guarantee assumed.

Concurrency control is optimistic: ``put`` takes the version the caller
last saw (0 for "must not exist yet") and raises ``ConflictError`` when
the stored version differs. ``expected_version=None`` skips the check.
"""
import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Mapping
from typing import Any, Optional, TypeVar, Union

from .exceptions import ConflictError, StoreUnavailable, VaultError
from .models import EncryptedEnvelope, OwnerProfile

logger = logging.getLogger("sentinel.vault")

T = TypeVar("T")

# Stores backed by a remote service hand back the raw documents; they are
# validated one by one while hydrating.
EnvelopeDocument = Union[EncryptedEnvelope, Mapping[str, Any]]


class RecordStore(ABC):
    """Key-value collection of envelopes, queried by owner."""

    @abstractmethod
    async def put(
        self,
        envelope: EncryptedEnvelope,
        expected_version: Optional[int] = None,
    ) -> None:
        """Insert or replace the envelope with the same identifier."""

    @abstractmethod
    async def get_all(self, owner: str) -> list[EnvelopeDocument]:
        """Return every envelope belonging to owner.

        Items are either ``EncryptedEnvelope`` instances or the documents
        as persisted. A malformed document must be returned as-is rather
        than failing the whole fetch.
        """

    @abstractmethod
    async def delete(self, identifier: str, owner: str) -> None:
        """Delete an envelope; deleting a missing identifier is not an error."""


class ProfileStore(ABC):
    """Owner profiles, which carry the per-owner KDF salt."""

    @abstractmethod
    async def get_profile(self, owner: str) -> Optional[OwnerProfile]:
        """Return the owner's profile, or None if it was never created."""

    @abstractmethod
    async def put_profile(self, profile: OwnerProfile) -> None:
        """Create or replace the owner's profile."""


async def call_store(
    operation: Awaitable[T],
    timeout: Optional[float],
    action: str,
) -> T:
    """Await a store operation, folding every failure into StoreUnavailable.

    Vault errors raised by the store itself (e.g. ``ConflictError``)
    propagate unchanged. Timeouts are treated like any other failure.
    """
    try:
        return await asyncio.wait_for(operation, timeout)
    except VaultError:
        raise
    except asyncio.TimeoutError as err:
        logger.error("Store %s timed out after %ss", action, timeout)
        raise StoreUnavailable(f"Store {action} timed out") from err
    except Exception as err:
        logger.error("Store %s failed: %s", action, err)
        raise StoreUnavailable(f"Store {action} failed: {err}") from err


def _check_version(
    identifier: str,
    expected: Optional[int],
    current: int,
) -> None:
    if expected is not None and expected != current:
        raise ConflictError(
            f"Envelope {identifier} is at version {current}, expected {expected}",
            identifier=identifier,
            expected=expected,
            actual=current,
        )


class MemoryStore(RecordStore, ProfileStore):
    """In-process store, keyed by envelope identifier."""

    def __init__(self):
        self._envelopes: dict[str, EncryptedEnvelope] = {}
        self._profiles: dict[str, OwnerProfile] = {}
        self._lock = threading.RLock()

    # Envelopes
    async def put(
        self,
        envelope: EncryptedEnvelope,
        expected_version: Optional[int] = None,
    ) -> None:
        with self._lock:
            existing = self._envelopes.get(envelope.identifier)
            if existing is not None and existing.owner != envelope.owner:
                raise ConflictError(
                    f"Envelope {envelope.identifier} belongs to another owner",
                    identifier=envelope.identifier,
                )
            current = existing.version if existing is not None else 0
            _check_version(envelope.identifier, expected_version, current)
            self._envelopes[envelope.identifier] = envelope

    async def get_all(self, owner: str) -> list[EncryptedEnvelope]:
        with self._lock:
            return [
                env for env in self._envelopes.values() if env.owner == owner
            ]

    async def delete(self, identifier: str, owner: str) -> None:
        with self._lock:
            existing = self._envelopes.get(identifier)
            if existing is not None and existing.owner == owner:
                del self._envelopes[identifier]

    # Profiles
    async def get_profile(self, owner: str) -> Optional[OwnerProfile]:
        with self._lock:
            return self._profiles.get(owner)

    async def put_profile(self, profile: OwnerProfile) -> None:
        with self._lock:
            self._profiles[profile.owner] = profile

    def __len__(self) -> int:
        with self._lock:
            return len(self._envelopes)


# ---------------------------------------------------------------------------
# PostgreSQL
# ---------------------------------------------------------------------------

_SELECT_VERSION = """
SELECT owner, version
FROM vault.records
WHERE id = $1
FOR UPDATE
"""

_UPSERT_ENVELOPE = """
INSERT INTO vault.records (id, owner, ciphertext, nonce, updated_at, version)
VALUES ($1, $2, $3, $4, $5, $6)
ON CONFLICT (id)
DO UPDATE SET ciphertext = EXCLUDED.ciphertext,
             nonce = EXCLUDED.nonce,
             updated_at = EXCLUDED.updated_at,
             version = EXCLUDED.version
"""

_SELECT_BY_OWNER = """
SELECT id, owner, ciphertext, nonce, updated_at, version
FROM vault.records
WHERE owner = $1
"""

_DELETE_ENVELOPE = """
DELETE FROM vault.records
WHERE id = $1 AND owner = $2
"""

_SELECT_PROFILE = """
SELECT owner, salt, display_name
FROM vault.profiles
WHERE owner = $1
"""

_UPSERT_PROFILE = """
INSERT INTO vault.profiles (owner, salt, display_name)
VALUES ($1, $2, $3)
ON CONFLICT (owner)
DO UPDATE SET salt = EXCLUDED.salt,
             display_name = EXCLUDED.display_name
"""


class PostgresStore(RecordStore, ProfileStore):
    """Store backed by an asyncpg-compatible connection pool.

    Expects ``vault.records`` (id PK, owner, ciphertext, nonce,
    updated_at BIGINT, version INT) and ``vault.profiles`` (owner PK,
    salt, display_name).
    """

    def __init__(self, db_pool: Any):
        self._db = db_pool

    async def put(
        self,
        envelope: EncryptedEnvelope,
        expected_version: Optional[int] = None,
    ) -> None:
        async with self._db.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(_SELECT_VERSION, envelope.identifier)
                if row is not None and row["owner"] != envelope.owner:
                    raise ConflictError(
                        f"Envelope {envelope.identifier} belongs to another owner",
                        identifier=envelope.identifier,
                    )
                current = row["version"] if row is not None else 0
                _check_version(envelope.identifier, expected_version, current)
                await conn.execute(
                    _UPSERT_ENVELOPE,
                    envelope.identifier, envelope.owner, envelope.ciphertext,
                    envelope.nonce, envelope.updated_at, envelope.version,
                )
        logger.debug(
            "Stored envelope id=%s owner=%s v%d",
            envelope.identifier, envelope.owner, envelope.version,
        )

    async def get_all(self, owner: str) -> list[dict[str, Any]]:
        async with self._db.acquire() as conn:
            rows = await conn.fetch(_SELECT_BY_OWNER, owner)
        return [
            {
                "identifier": row["id"],
                "owner": row["owner"],
                "ciphertext": row["ciphertext"],
                "nonce": row["nonce"],
                "updatedAt": row["updated_at"],
                "version": row["version"],
            }
            for row in rows
        ]

    async def delete(self, identifier: str, owner: str) -> None:
        async with self._db.acquire() as conn:
            await conn.execute(_DELETE_ENVELOPE, identifier, owner)
        logger.debug("Deleted envelope id=%s owner=%s", identifier, owner)

    async def get_profile(self, owner: str) -> Optional[OwnerProfile]:
        async with self._db.acquire() as conn:
            row = await conn.fetchrow(_SELECT_PROFILE, owner)
        if row is None:
            return None
        return OwnerProfile(
            owner=row["owner"],
            salt=row["salt"],
            display_name=row["display_name"],
        )

    async def put_profile(self, profile: OwnerProfile) -> None:
        async with self._db.acquire() as conn:
            await conn.execute(
                _UPSERT_PROFILE,
                profile.owner, profile.salt, profile.display_name,
            )

"""
Vault CRUD — Create, update and delete records through the record store.

The remote store is written first and the working set is only touched
once the store confirmed the change, so the in-memory view never claims
a write the store did not accept. A failed store call leaves the working
set exactly as it was.
"""
import asyncio
import uuid
import logging
from collections.abc import Callable, Mapping
from typing import Any, Optional, Union

from ..data import WorkingSet
from .crypto import seal_envelope
from .exceptions import HydrationAborted
from .models import VaultRecord, now_ms
from .store import RecordStore, call_store

logger = logging.getLogger("sentinel.vault")


def coerce_record(record: Union[VaultRecord, Mapping[str, Any]]) -> VaultRecord:
    """Accept a record or a mapping of its fields (names or wire aliases)."""
    if isinstance(record, VaultRecord):
        return record
    return VaultRecord.model_validate(dict(record))


def stamp_record(
    record: VaultRecord,
    existing: Optional[VaultRecord],
    now: Optional[int] = None,
) -> VaultRecord:
    """Assign an identifier if missing and refresh the timestamps.

    ``created_at`` of an already stored record is preserved; new records
    get ``created_at == updated_at`` unless the caller supplied one.
    """
    now = now_ms() if now is None else now
    identifier = record.identifier or str(uuid.uuid4())
    if existing is not None:
        created_at = existing.created_at
    else:
        created_at = record.created_at or now
    return record.model_copy(
        update={
            "identifier": identifier,
            "created_at": created_at,
            "updated_at": max(now, created_at),
        }
    )


async def upsert(
    store: RecordStore,
    working_set: WorkingSet,
    owner: str,
    key: bytes,
    record: Union[VaultRecord, Mapping[str, Any]],
    *,
    backend: str = "aesgcm",
    timeout: Optional[float] = None,
    alive: Optional[Callable[[], bool]] = None,
) -> VaultRecord:
    """Encrypt and persist a record, then reflect it in the working set.

    Args:
        store: Remote record store.
        working_set: The session's decrypted records.
        owner: Principal owning the record.
        key: Session key.
        record: Record (or field mapping) to create or update.
        backend: AEAD backend name.
        timeout: Timeout for the store call, in seconds.
        alive: Session liveness check, evaluated after the store call.

    Returns:
        The stamped record as stored.

    Raises:
        StoreUnavailable: If the store call fails or times out.
        ConflictError: If the stored version moved since it was loaded.
        HydrationAborted: If the session was locked while the put was in
            flight. The envelope is stored; the working set stays empty.
    """
    record = coerce_record(record)
    existing = working_set.get(record.identifier) if record.identifier else None
    record = stamp_record(record, existing)
    expected = working_set.version_of(record.identifier)
    envelope = await asyncio.to_thread(
        seal_envelope, record, key, owner,
        version=expected + 1, backend=backend,
    )
    await call_store(store.put(envelope, expected_version=expected), timeout, "put")
    if alive is not None and not alive():
        raise HydrationAborted(
            f"Session locked after storing record {record.identifier}"
        )
    working_set.put(record, envelope.version)
    logger.debug(
        "Vault upsert: owner=%s id=%s v%d",
        owner, record.identifier, envelope.version,
    )
    return record


async def remove(
    store: RecordStore,
    working_set: WorkingSet,
    owner: str,
    identifier: str,
    *,
    timeout: Optional[float] = None,
    alive: Optional[Callable[[], bool]] = None,
) -> Optional[VaultRecord]:
    """Delete a record from the store, then from the working set.

    Returns:
        The record removed from the working set, or None if it was not
        loaded (the remote delete still happens).
    """
    if not identifier:
        raise ValueError("Record identifier cannot be empty")
    await call_store(store.delete(identifier, owner), timeout, "delete")
    if alive is not None and not alive():
        raise HydrationAborted(f"Session locked after deleting record {identifier}")
    removed = working_set.discard(identifier)
    logger.debug("Vault delete: owner=%s id=%s", owner, identifier)
    return removed

"""
Vault Reconciliation — Turn the owner's remote envelopes into a working set.

One bulk fetch, then every envelope is validated and decrypted on its own.
An envelope that is malformed or fails to decrypt (corrupt, tampered, or
sealed under another key) is counted and skipped; it never aborts the
batch. When the store returns the same identifier more than once, the copy
with the newest ``updated_at`` (then highest version) wins. The result is
ordered by ``updated_at`` descending, ties broken by identifier, so
identical input always yields identical output.

Security Note:
    Never log plaintext or ciphertext values. Only log identifiers,
    owners and counts.
"""
import asyncio
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Optional

from pydantic import ValidationError

from .crypto import open_envelope
from .exceptions import DecryptionFailed, HydrationAborted
from .models import EncryptedEnvelope, VaultRecord
from .store import EnvelopeDocument, RecordStore, call_store

logger = logging.getLogger("sentinel.vault")


@dataclass
class HydrateResult:
    """Ordered decrypted records plus the number of envelopes that failed."""

    records: list[VaultRecord] = field(default_factory=list)
    failures: int = 0
    versions: dict[str, int] = field(default_factory=dict)

    def __repr__(self) -> str:
        return (
            f"HydrateResult(records={len(self.records)}, "
            f"failures={self.failures})"
        )


def order_records(records: list[VaultRecord]) -> list[VaultRecord]:
    """Most recently updated first; identifier breaks ties."""
    return sorted(records, key=lambda r: (-r.updated_at, r.identifier))


def coerce_envelope(document: EnvelopeDocument) -> EncryptedEnvelope:
    """Validate a stored document; a malformed one counts as undecryptable."""
    if isinstance(document, EncryptedEnvelope):
        return document
    try:
        return EncryptedEnvelope.model_validate(document)
    except ValidationError as err:
        identifier = None
        if isinstance(document, Mapping):
            identifier = document.get("identifier")
        raise DecryptionFailed(
            f"Malformed envelope: {err.error_count()} invalid field(s)",
            identifier=identifier,
        ) from err


async def hydrate(
    store: RecordStore,
    owner: str,
    key: bytes,
    *,
    backend: str = "aesgcm",
    timeout: Optional[float] = None,
    alive: Optional[Callable[[], bool]] = None,
) -> HydrateResult:
    """Fetch and decrypt every envelope owned by owner.

    Args:
        store: Remote record store.
        owner: Principal whose envelopes are loaded.
        key: Session key.
        backend: AEAD backend name.
        timeout: Timeout for the bulk fetch, in seconds.
        alive: Checked after every suspension point; when it returns False
            the partial result is dropped and ``HydrationAborted`` raised.

    Returns:
        HydrateResult with the ordered records and the failure count.

    Raises:
        StoreUnavailable: If the bulk fetch fails or times out.
        HydrationAborted: If ``alive`` reported the session gone mid-run.
    """
    documents = await call_store(store.get_all(owner), timeout, "get_all")
    # identifier -> (record, envelope version)
    decrypted: dict[str, tuple[VaultRecord, int]] = {}
    failures = 0

    def _abort_if_locked() -> None:
        if alive is not None and not alive():
            decrypted.clear()
            raise HydrationAborted("Session locked while hydrating")

    _abort_if_locked()
    for document in documents:
        try:
            envelope = coerce_envelope(document)
        except DecryptionFailed as err:
            failures += 1
            logger.warning(
                "Skipping malformed envelope id=%s for owner=%s: %s",
                err.identifier, owner, err,
            )
            continue
        if envelope.owner != owner:
            logger.warning(
                "Skipping envelope id=%s: owned by %s, not %s",
                envelope.identifier, envelope.owner, owner,
            )
            continue
        try:
            record = await asyncio.to_thread(open_envelope, envelope, key, backend)
        except DecryptionFailed as err:
            failures += 1
            logger.warning(
                "Failed to decrypt vault record id=%s for owner=%s: %s",
                envelope.identifier, owner, err,
            )
        else:
            seen = decrypted.get(record.identifier)
            if seen is None or (
                (record.updated_at, envelope.version)
                > (seen[0].updated_at, seen[1])
            ):
                decrypted[record.identifier] = (record, envelope.version)
            else:
                logger.debug(
                    "Dropping stale duplicate of id=%s for owner=%s",
                    record.identifier, owner,
                )
        _abort_if_locked()

    result = HydrateResult(
        order_records([record for record, _ in decrypted.values()]),
        failures,
        {identifier: version for identifier, (_, version) in decrypted.items()},
    )
    logger.info(
        "Vault hydrated for owner=%s: %d record(s), %d failure(s)",
        owner, len(result.records), result.failures,
    )
    return result

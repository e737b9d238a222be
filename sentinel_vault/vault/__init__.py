"""Vault engine — Client-side encryption and synchronization of vault records.

Security Note (Threat Model):
    The remote record store only ever sees ciphertext, nonces, owner ids
    and timestamps. Decrypted records and the session key exist in
    process memory while a session is unlocked; a memory dump of the
    process during that window exposes them. This is an accepted
    limitation.
"""

from .config import VaultConfig
from .crypto import (
    decrypt_record,
    derive_key,
    encrypt_record,
    generate_password,
    generate_salt,
)
from .exceptions import (
    ConflictError,
    DecryptionFailed,
    DerivationInputInvalid,
    HydrationAborted,
    PreconditionViolation,
    StoreUnavailable,
    VaultError,
)
from .http_store import HTTPStore
from .models import EncryptedEnvelope, OwnerProfile, Principal, RecordKind, VaultRecord
from .reconcile import HydrateResult
from .session import LockState, VaultSession
from .store import MemoryStore, PostgresStore, ProfileStore, RecordStore

__all__ = [
    "VaultConfig",
    "decrypt_record",
    "derive_key",
    "encrypt_record",
    "generate_password",
    "generate_salt",
    "ConflictError",
    "DecryptionFailed",
    "DerivationInputInvalid",
    "HydrationAborted",
    "PreconditionViolation",
    "StoreUnavailable",
    "VaultError",
    "HTTPStore",
    "EncryptedEnvelope",
    "OwnerProfile",
    "Principal",
    "RecordKind",
    "VaultRecord",
    "HydrateResult",
    "LockState",
    "VaultSession",
    "MemoryStore",
    "PostgresStore",
    "ProfileStore",
    "RecordStore",
]

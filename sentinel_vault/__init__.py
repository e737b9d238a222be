"""Sentinel Vault.

Client-held secrets vault: records are encrypted before they leave the
process and synchronized, already encrypted, with a remote record store.
"""
from .vault import (
    LockState,
    VaultConfig,
    VaultRecord,
    VaultSession,
)
from .data import WorkingSet
from .version import __version__

__all__ = [
    "LockState",
    "VaultConfig",
    "VaultRecord",
    "VaultSession",
    "WorkingSet",
    "__version__",
]

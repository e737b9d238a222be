"""
VaultSession — Lifecycle of one principal's vault in this process.

States::

    LOGGED_OUT --authenticate()--> LOCKED --unlock()--> UNLOCKED
         ^                           ^                     |
         |                           +------lock()---------+
         +-----------------------logout()------------------+

Public API:
- ``authenticate(principal)`` — bind the principal supplied by the identity provider
- ``unlock(password)`` — derive the session key and hydrate the working set
- ``hydrate()`` — reload the working set from the record store
- ``upsert(record)`` / ``remove(identifier)`` — mutate records (UNLOCKED only)
- ``lock()`` / ``logout()`` — drop the key and every decrypted record

Security Note:
    The session key lives only on this object and only while UNLOCKED.
    ``lock()`` and ``logout()`` are synchronous and unconditional: they
    never await, never log the key, and bump a generation counter so any
    hydrate or write still in flight discards its results.
"""
import asyncio
import base64
import logging
from collections.abc import Mapping
from enum import Enum
from typing import Any, Optional, Union

from ..data import WorkingSet
from . import crud, reconcile
from .config import VaultConfig
from .crypto import derive_key, derive_legacy_salt, generate_salt
from .exceptions import (
    DerivationInputInvalid,
    HydrationAborted,
    PreconditionViolation,
    StoreUnavailable,
)
from .models import OwnerProfile, Principal, VaultRecord
from .reconcile import HydrateResult
from .store import ProfileStore, RecordStore, call_store

logger = logging.getLogger("sentinel.vault")


class LockState(str, Enum):
    """Session lifecycle; LOCKED means authenticated but holding no key."""

    LOGGED_OUT = "logged_out"
    LOCKED = "locked"
    UNLOCKED = "unlocked"


class VaultSession:
    """Client-side vault session for a single principal.

    Args:
        store: Remote record store holding the encrypted envelopes.
        profiles: Store for owner profiles (salts). Defaults to ``store``
            when it also implements ``ProfileStore``.
        config: Engine settings; ``VaultConfig()`` defaults if omitted.
    """

    def __init__(
        self,
        store: RecordStore,
        profiles: Optional[ProfileStore] = None,
        config: Optional[VaultConfig] = None,
    ):
        if profiles is None and isinstance(store, ProfileStore):
            profiles = store
        self._store = store
        self._profiles = profiles
        self._config = config or VaultConfig()
        self._state = LockState.LOGGED_OUT
        self._principal: Optional[Principal] = None
        self._key: Optional[bytes] = None
        self._working = WorkingSet()
        self._failures = 0
        self._generation = 0
        self._mutex = asyncio.Lock()

    def __repr__(self) -> str:
        owner = self._principal.identifier if self._principal else None
        return f"<VaultSession [state:{self._state.value}, owner:{owner}]>"

    def __reduce__(self):
        raise TypeError("VaultSession holds key material and cannot be serialized")

    # ------------------------------------------------------------------
    # Read surface
    # ------------------------------------------------------------------

    @property
    def state(self) -> LockState:
        return self._state

    @property
    def principal(self) -> Optional[Principal]:
        return self._principal

    @property
    def owner(self) -> Optional[str]:
        return self._principal.identifier if self._principal else None

    @property
    def is_unlocked(self) -> bool:
        return self._state is LockState.UNLOCKED

    @property
    def session_key(self) -> Optional[bytes]:
        """The derived key, or None unless the vault is unlocked."""
        return self._key if self.is_unlocked else None

    @property
    def working_set(self) -> WorkingSet:
        return self._working

    @property
    def records(self) -> list[VaultRecord]:
        return self._working.records()

    @property
    def failures(self) -> int:
        """Envelopes that failed to decrypt on the last hydrate."""
        return self._failures

    @property
    def config(self) -> VaultConfig:
        return self._config

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def authenticate(
        self,
        principal: Union[Principal, str],
        display_name: Optional[str] = None,
    ) -> None:
        """Bind the authenticated principal: LOGGED_OUT -> LOCKED.

        Credentials are verified by the identity provider beforehand; the
        session only records who the owner is.
        """
        if self._state is not LockState.LOGGED_OUT:
            raise PreconditionViolation(
                f"Cannot authenticate from state {self._state.value}"
            )
        if isinstance(principal, str):
            principal = Principal(identifier=principal, display_name=display_name)
        self._principal = principal
        self._state = LockState.LOCKED
        logger.info("Vault session authenticated: owner=%s", principal.identifier)

    async def unlock(self, password: str) -> HydrateResult:
        """Derive the session key and hydrate: LOCKED -> UNLOCKED.

        Success only means the key was derived. A wrong password shows up
        as every existing record failing to decrypt (``failures``), which
        is indistinguishable from an empty vault plus a failure count.

        Raises:
            PreconditionViolation: If the session is not LOCKED.
            DerivationInputInvalid: If the password is empty.
            HydrationAborted: If the session was locked or logged out while
                the key was being derived or the vault hydrated.
            StoreUnavailable: If the salt or envelopes could not be fetched.
                When the envelope fetch fails the session stays UNLOCKED
                with an empty working set; ``hydrate()`` may be retried.
        """
        if self._state is not LockState.LOCKED:
            raise PreconditionViolation(
                f"Cannot unlock from state {self._state.value}"
            )
        if not password:
            raise DerivationInputInvalid("Master password cannot be empty")
        generation = self._generation
        principal = self._principal
        owner = principal.identifier
        salt = await self._resolve_salt(principal)
        if generation != self._generation:
            raise HydrationAborted("Session locked while unlocking")
        key = await asyncio.to_thread(
            derive_key, password, salt, self._config.kdf_iterations,
        )
        if generation != self._generation:
            raise HydrationAborted("Session locked while deriving the key")
        self._key = key
        self._state = LockState.UNLOCKED
        logger.info("Vault unlocked: owner=%s", owner)
        return await self.hydrate()

    async def hydrate(self) -> HydrateResult:
        """Replace the working set with freshly decrypted remote records.

        Raises:
            PreconditionViolation: If the session is not UNLOCKED.
            StoreUnavailable: If the bulk fetch fails; local state is kept.
            HydrationAborted: If the session was locked mid-flight.
        """
        self._require_unlocked("hydrate")
        async with self._mutex:
            self._require_unlocked("hydrate")
            generation = self._generation
            result = await reconcile.hydrate(
                self._store,
                self.owner,
                self._key,
                backend=self._config.cipher_backend,
                timeout=self._config.store_timeout,
                alive=lambda: generation == self._generation,
            )
            self._working.replace(result.records, result.versions)
            self._failures = result.failures
            return result

    def lock(self) -> None:
        """Drop the key and every decrypted record: -> LOCKED."""
        self._discard()
        if self._state is not LockState.LOGGED_OUT:
            self._state = LockState.LOCKED
            logger.info("Vault locked: owner=%s", self.owner)

    def logout(self) -> None:
        """Drop the key, the records and the principal: -> LOGGED_OUT."""
        self._discard()
        owner = self.owner
        self._principal = None
        self._state = LockState.LOGGED_OUT
        if owner is not None:
            logger.info("Vault session ended: owner=%s", owner)

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    async def upsert(
        self,
        record: Union[VaultRecord, Mapping[str, Any]],
    ) -> VaultRecord:
        """Create or update a record (UNLOCKED only). See ``crud.upsert``."""
        self._require_unlocked("upsert")
        async with self._mutex:
            self._require_unlocked("upsert")
            generation = self._generation
            return await crud.upsert(
                self._store,
                self._working,
                self.owner,
                self._key,
                record,
                backend=self._config.cipher_backend,
                timeout=self._config.store_timeout,
                alive=lambda: generation == self._generation,
            )

    async def remove(self, identifier: str) -> Optional[VaultRecord]:
        """Delete a record (UNLOCKED only). See ``crud.remove``."""
        self._require_unlocked("remove")
        async with self._mutex:
            self._require_unlocked("remove")
            generation = self._generation
            return await crud.remove(
                self._store,
                self._working,
                self.owner,
                identifier,
                timeout=self._config.store_timeout,
                alive=lambda: generation == self._generation,
            )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_unlocked(self, operation: str) -> None:
        if self._state is not LockState.UNLOCKED or self._key is None:
            raise PreconditionViolation(
                f"Cannot {operation} while vault is {self._state.value}"
            )

    def _discard(self) -> None:
        self._generation += 1
        self._key = None
        self._working.invalidate()
        self._failures = 0

    async def _resolve_salt(self, principal: Principal) -> bytes:
        """Fetch the owner's salt, creating the profile on first unlock."""
        owner = principal.identifier
        if self._config.legacy_salt:
            return derive_legacy_salt(owner)
        if self._profiles is None:
            raise StoreUnavailable("No profile store configured for salts")
        timeout = self._config.store_timeout
        profile = await call_store(
            self._profiles.get_profile(owner), timeout, "get_profile",
        )
        if profile is None:
            profile = OwnerProfile(
                owner=owner,
                salt=generate_salt(self._config.salt_size),
                display_name=principal.display_name,
            )
            await call_store(
                self._profiles.put_profile(profile), timeout, "put_profile",
            )
            logger.info("Created vault profile for owner=%s", owner)
        return base64.b64decode(profile.salt)

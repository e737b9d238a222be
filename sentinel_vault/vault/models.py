"""
Vault Models — Plaintext records, encrypted envelopes and owner metadata.

Field aliases match the documents written by the browser client, so
records encrypted there decrypt here and vice versa.

Security Note:
    ``VaultRecord`` holds cleartext and must only live in a session's
    working set while it is unlocked. Owner identity is never part of it;
    it travels out-of-band on the envelope.
"""
import time
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


def now_ms() -> int:
    """Current wall-clock time in milliseconds."""
    return time.time_ns() // 1_000_000


class RecordKind(str, Enum):
    """Kinds of secrets a vault can hold."""

    LOGIN = "LOGIN"
    SECURE_NOTE = "NOTE"
    CARD = "CARD"
    KEY_MATERIAL = "KEY"


class VaultRecord(BaseModel):
    """A decrypted vault item."""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
    )

    identifier: Optional[str] = Field(default=None, alias="id")
    kind: RecordKind = Field(default=RecordKind.LOGIN, alias="type")
    title: str = "Untitled"
    username: Optional[str] = None
    secret: Optional[str] = Field(default=None, alias="password", repr=False)
    url: Optional[str] = None
    notes: Optional[str] = Field(default=None, repr=False)
    folder: Optional[str] = None
    favorite: bool = False
    created_at: int = Field(default=0, alias="createdAt", ge=0)
    updated_at: int = Field(default=0, alias="updatedAt", ge=0)

    @model_validator(mode="after")
    def validate_timestamps(self) -> "VaultRecord":
        """Ensure updated_at is never earlier than created_at."""
        if self.updated_at < self.created_at:
            raise ValueError(
                f"updatedAt ({self.updated_at}) precedes "
                f"createdAt ({self.created_at})"
            )
        return self

    def to_document(self) -> dict[str, Any]:
        """Plain dict keyed by wire aliases, ready for serialization."""
        return self.model_dump(by_alias=True, mode="json")


class EncryptedEnvelope(BaseModel):
    """Ciphertext wrapper for a single record, as persisted remotely."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    identifier: str = Field(min_length=1)
    ciphertext: str = Field(repr=False)
    nonce: str
    owner: str = Field(min_length=1)
    updated_at: int = Field(alias="updatedAt", ge=0)
    version: int = Field(default=1, ge=1)

    def to_document(self) -> dict[str, Any]:
        """Persisted field set for this envelope."""
        return self.model_dump(by_alias=True)


class Principal(BaseModel):
    """Authenticated identity as supplied by the identity provider."""

    model_config = ConfigDict(frozen=True)

    identifier: str = Field(min_length=1)
    display_name: Optional[str] = None


class OwnerProfile(BaseModel):
    """Per-owner metadata persisted once at account creation."""

    model_config = ConfigDict(frozen=True)

    owner: str = Field(min_length=1)
    salt: str = Field(repr=False)
    display_name: Optional[str] = None

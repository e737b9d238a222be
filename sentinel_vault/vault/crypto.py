"""
Vault Crypto Core — Key derivation, record encryption/decryption, and serialization.

- Master key: PBKDF2-HMAC-SHA256(password, per-owner salt) → 32-byte key
- Records: canonical JSON → AEAD (AES-256-GCM or ChaCha20-Poly1305)
  → base64 ciphertext + base64 nonce

Security Note:
    Never log passwords, keys, plaintext or ciphertext values.
    Nonces are random 96-bit and drawn internally on every encryption;
    callers cannot supply one.
"""
import os
import base64
import secrets
import logging
import string

import orjson
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305

from .config import MIN_KDF_ITERATIONS, MIN_SALT_SIZE
from .exceptions import DecryptionFailed, DerivationInputInvalid
from .models import EncryptedEnvelope, VaultRecord

logger = logging.getLogger("sentinel.vault")

NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16  # GCM / Poly1305 tag
KEY_LENGTH = 32  # 256-bit

_LEGACY_SALT_SUFFIX = "_salt_fixed_123"

PASSWORD_ALPHABET = string.ascii_letters + string.digits + "!@#$%^&*()_+"


def get_cipher_cls(backend: str = "aesgcm") -> type:
    """Return the AEAD cipher class for a configured backend name."""
    backend = backend.lower()
    if backend == "chacha20":
        return ChaCha20Poly1305
    if backend == "aesgcm":
        return AESGCM
    raise ValueError(f"Unsupported cipher backend: {backend}")


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def derive_key(
    password: str,
    salt: bytes,
    iterations: int = MIN_KDF_ITERATIONS,
) -> bytes:
    """Derive a 32-byte encryption key from the master password.

    The same (password, salt, iterations) always yields the same key;
    there is no separate password check. A wrong password only shows up
    as records that fail to decrypt.

    Args:
        password: Master password, must not be empty.
        salt: Per-owner salt bytes.
        iterations: PBKDF2 iteration count.

    Returns:
        32-byte derived key.

    Raises:
        DerivationInputInvalid: On empty password, short salt or too few
            iterations. Raised before any key stretching happens.
    """
    if not password:
        raise DerivationInputInvalid("Master password cannot be empty")
    if len(salt) < MIN_SALT_SIZE:
        raise DerivationInputInvalid(
            f"Salt must be at least {MIN_SALT_SIZE} bytes, got {len(salt)}"
        )
    if iterations < MIN_KDF_ITERATIONS:
        raise DerivationInputInvalid(
            f"KDF iterations must be at least {MIN_KDF_ITERATIONS}"
        )
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(password.encode("utf-8"))


def generate_salt(size: int = MIN_SALT_SIZE) -> str:
    """Generate a random per-owner salt and return it as base64 string.

    Used once at account creation; the result is persisted on the
    owner profile and fetched before every derivation.
    """
    if size < MIN_SALT_SIZE:
        raise ValueError(f"Salt size must be at least {MIN_SALT_SIZE} bytes")
    return base64.b64encode(secrets.token_bytes(size)).decode("ascii")


def derive_legacy_salt(owner_id: str) -> bytes:
    """Rebuild the deterministic salt older clients derived from the owner id.

    Anyone who knows the owner id knows this salt, so it only exists to
    open vaults created before per-owner random salts.
    """
    encoded = base64.b64encode(
        (owner_id + _LEGACY_SALT_SUFFIX).encode("utf-8")
    ).decode("ascii")
    return base64.b64decode(encoded[:24])


# ---------------------------------------------------------------------------
# Record serialization
# ---------------------------------------------------------------------------

def serialize_record(record: VaultRecord) -> bytes:
    """Serialize a record to canonical UTF-8 JSON (sorted keys, wire aliases)."""
    return orjson.dumps(record.to_document(), option=orjson.OPT_SORT_KEYS)


def deserialize_record(data: bytes) -> VaultRecord:
    """Parse bytes produced by serialize_record back into a record.

    Raises:
        ValueError: If data is not a JSON object or fails validation.
    """
    parsed = orjson.loads(data)
    if not isinstance(parsed, dict):
        raise ValueError("Record payload is not a JSON object")
    return VaultRecord.model_validate(parsed)


# ---------------------------------------------------------------------------
# Record encryption
# ---------------------------------------------------------------------------

def encrypt_record(
    record: VaultRecord,
    key: bytes,
    backend: str = "aesgcm",
) -> tuple[str, str]:
    """Encrypt a record under the session key.

    Args:
        record: Record to encrypt.
        key: 32-byte session key.
        backend: AEAD backend name.

    Returns:
        Tuple of (ciphertext_base64, nonce_base64). The ciphertext
        includes the authentication tag.
    """
    cipher = get_cipher_cls(backend)(key)
    nonce = os.urandom(NONCE_SIZE)
    ct = cipher.encrypt(nonce, serialize_record(record), None)
    return (
        base64.b64encode(ct).decode("ascii"),
        base64.b64encode(nonce).decode("ascii"),
    )


def decrypt_record(
    ciphertext: str,
    nonce: str,
    key: bytes,
    backend: str = "aesgcm",
) -> VaultRecord:
    """Authenticate, decrypt and parse a record.

    Either the whole record comes back or nothing does.

    Raises:
        DecryptionFailed: On malformed encoding, tampering, truncation,
            wrong key, or a plaintext that is not a valid record.
    """
    try:
        raw_nonce = base64.b64decode(nonce, validate=True)
        ct = base64.b64decode(ciphertext, validate=True)
    except ValueError as err:
        raise DecryptionFailed("Envelope fields are not valid base64") from err
    if len(raw_nonce) != NONCE_SIZE:
        raise DecryptionFailed(
            f"Nonce must be {NONCE_SIZE} bytes, got {len(raw_nonce)}"
        )
    if len(ct) < TAG_SIZE:
        raise DecryptionFailed(
            f"Ciphertext too short: {len(ct)} bytes (minimum {TAG_SIZE})"
        )
    try:
        cipher = get_cipher_cls(backend)(key)
        plaintext = cipher.decrypt(raw_nonce, ct, None)
    except InvalidTag as err:
        raise DecryptionFailed(
            "Authentication failed - wrong key or tampered data"
        ) from err
    except ValueError as err:
        raise DecryptionFailed(f"Decryption failed: {err}") from err
    try:
        return deserialize_record(plaintext)
    except ValueError as err:
        raise DecryptionFailed("Decrypted payload is not a valid record") from err


def seal_envelope(
    record: VaultRecord,
    key: bytes,
    owner: str,
    *,
    version: int = 1,
    backend: str = "aesgcm",
) -> EncryptedEnvelope:
    """Encrypt a record and wrap it with the metadata the store needs."""
    if not record.identifier:
        raise ValueError("Record must have an identifier before sealing")
    ciphertext, nonce = encrypt_record(record, key, backend)
    return EncryptedEnvelope(
        identifier=record.identifier,
        ciphertext=ciphertext,
        nonce=nonce,
        owner=owner,
        updated_at=record.updated_at,
        version=version,
    )


def open_envelope(
    envelope: EncryptedEnvelope,
    key: bytes,
    backend: str = "aesgcm",
) -> VaultRecord:
    """Decrypt an envelope; the envelope identifier wins over the payload's."""
    try:
        record = decrypt_record(envelope.ciphertext, envelope.nonce, key, backend)
    except DecryptionFailed as err:
        err.identifier = envelope.identifier
        raise
    if record.identifier != envelope.identifier:
        record = record.model_copy(update={"identifier": envelope.identifier})
    return record


# ---------------------------------------------------------------------------
# Password generation
# ---------------------------------------------------------------------------

def generate_password(length: int = 16, alphabet: str = PASSWORD_ALPHABET) -> str:
    """Generate a random password from alphabet using a CSPRNG."""
    if length < 1:
        raise ValueError("Password length must be positive")
    if not alphabet:
        raise ValueError("Alphabet cannot be empty")
    return "".join(secrets.choice(alphabet) for _ in range(length))

"""
Vault Configuration — Validated engine settings.

Reads settings from environment variables:
    VAULT_KDF_ITERATIONS = <int, >= 100000>
    VAULT_SALT_SIZE = <int, bytes, >= 16>
    VAULT_CIPHER_BACKEND = aesgcm | chacha20
    VAULT_STORE_TIMEOUT = <float, seconds>
    VAULT_LEGACY_SALT = 0 | 1

Security Note:
    Never log passwords, salts or derived keys. Only log owners and counts.
"""
import os
import logging

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger("sentinel.vault")

MIN_KDF_ITERATIONS = 100_000
MIN_SALT_SIZE = 16

_TRUE_VALUES = ("1", "true", "yes", "on")


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    kdf_iterations: int = Field(default=MIN_KDF_ITERATIONS, ge=MIN_KDF_ITERATIONS)
    salt_size: int = Field(default=MIN_SALT_SIZE, ge=MIN_SALT_SIZE, le=64)
    cipher_backend: str = Field(default="aesgcm")
    store_timeout: float = Field(default=30.0, gt=0)
    legacy_salt: bool = False

    @field_validator("cipher_backend")
    @classmethod
    def validate_cipher(cls, v: str) -> str:
        """Validate cipher backend is supported."""
        v = v.lower()
        if v not in ("aesgcm", "chacha20"):
            raise ValueError(f"Unsupported cipher backend: {v}")
        return v

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Unset variables fall back to the field defaults.

        Returns:
            Populated VaultConfig instance.
        """
        env = os.environ
        values: dict = {}
        if "VAULT_KDF_ITERATIONS" in env:
            values["kdf_iterations"] = int(env["VAULT_KDF_ITERATIONS"])
        if "VAULT_SALT_SIZE" in env:
            values["salt_size"] = int(env["VAULT_SALT_SIZE"])
        if "VAULT_CIPHER_BACKEND" in env:
            values["cipher_backend"] = env["VAULT_CIPHER_BACKEND"]
        if "VAULT_STORE_TIMEOUT" in env:
            values["store_timeout"] = float(env["VAULT_STORE_TIMEOUT"])
        if "VAULT_LEGACY_SALT" in env:
            values["legacy_salt"] = (
                env["VAULT_LEGACY_SALT"].strip().lower() in _TRUE_VALUES
            )
        config = cls(**values)
        if config.legacy_salt:
            logger.warning(
                "Legacy deterministic salts enabled; new owners should use "
                "a random per-owner salt"
            )
        logger.debug(
            "Vault config loaded: backend=%s iterations=%d",
            config.cipher_backend, config.kdf_iterations,
        )
        return config

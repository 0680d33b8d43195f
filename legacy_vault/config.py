"""
Legacy Vault Configuration — derivation seed loading and validated settings.

Reads settings from environment variables:
    LEGACY_DERIVATION_SEED = <base64-encoded 32-byte seed>
    LEGACY_WRAP_CIPHER = aesgcm | chacha20
    LEGACY_INACTIVITY_THRESHOLD = <seconds>
    LEGACY_MAX_SECRETS_PER_USER = <integer>
    LEGACY_EVALUATION_INTERVAL = <seconds>

Security Note:
    Never log seed material. Only log cipher names and numeric settings.
"""
import os
import base64
import secrets
import logging

from pydantic import BaseModel, Field, field_validator

from .utils import NANOS_PER_SECOND

logger = logging.getLogger("legacy.config")

SEED_LENGTH = 32
DEFAULT_INACTIVITY_THRESHOLD = 180 * 86_400  # seconds
DEFAULT_MAX_SECRETS_PER_USER = 1000
DEFAULT_EVALUATION_INTERVAL = 3600


def load_derivation_seed() -> bytes:
    """Load the derivation master seed from LEGACY_DERIVATION_SEED.

    Returns:
        Raw 32-byte seed.

    Raises:
        RuntimeError: If the variable is not set.
        ValueError: If the value does not decode to exactly 32 bytes.
    """
    raw = os.environ.get("LEGACY_DERIVATION_SEED")
    if raw is None:
        raise RuntimeError(
            "No derivation seed found in environment. "
            "Set LEGACY_DERIVATION_SEED=<base64-encoded-32-byte-seed>"
        )
    seed = base64.b64decode(raw)
    if len(seed) != SEED_LENGTH:
        raise ValueError(
            f"LEGACY_DERIVATION_SEED must decode to exactly {SEED_LENGTH} "
            f"bytes, got {len(seed)}"
        )
    return seed


def generate_derivation_seed() -> str:
    """Generate a random 32-byte derivation seed and return it as base64.

    This is a utility for operators provisioning a new deployment.
    """
    return base64.b64encode(secrets.token_bytes(SEED_LENGTH)).decode("ascii")


class LegacyConfig(BaseModel):
    """Validated vault configuration."""

    derivation_seed: bytes
    wrap_cipher: str = Field(default="aesgcm")
    inactivity_threshold: int = Field(default=DEFAULT_INACTIVITY_THRESHOLD, ge=60)
    max_secrets_per_user: int = Field(default=DEFAULT_MAX_SECRETS_PER_USER, ge=1, le=100_000)
    evaluation_interval: int = Field(default=DEFAULT_EVALUATION_INTERVAL, ge=1)

    @field_validator("derivation_seed")
    @classmethod
    def validate_seed(cls, v: bytes) -> bytes:
        if len(v) != SEED_LENGTH:
            raise ValueError(
                f"derivation_seed must be {SEED_LENGTH} bytes, got {len(v)}"
            )
        return v

    @field_validator("wrap_cipher")
    @classmethod
    def validate_cipher(cls, v: str) -> str:
        """Validate the key-wrap cipher is supported."""
        v = v.lower()
        if v not in ("aesgcm", "chacha20"):
            raise ValueError(f"Unsupported wrap cipher: {v}")
        return v

    @property
    def inactivity_threshold_ns(self) -> int:
        return self.inactivity_threshold * NANOS_PER_SECOND

    @classmethod
    def from_env(cls) -> "LegacyConfig":
        """Create LegacyConfig by loading values from environment."""
        values = {
            "derivation_seed": load_derivation_seed(),
            "wrap_cipher": os.environ.get("LEGACY_WRAP_CIPHER", "aesgcm"),
        }
        for name, env in (
            ("inactivity_threshold", "LEGACY_INACTIVITY_THRESHOLD"),
            ("max_secrets_per_user", "LEGACY_MAX_SECRETS_PER_USER"),
            ("evaluation_interval", "LEGACY_EVALUATION_INTERVAL"),
        ):
            raw = os.environ.get(env)
            if raw is not None:
                values[name] = int(raw)
        config = cls(**values)
        logger.debug(
            "Loaded config: cipher=%s threshold=%ds max_secrets=%d",
            config.wrap_cipher,
            config.inactivity_threshold,
            config.max_secrets_per_user,
        )
        return config

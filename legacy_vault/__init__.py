"""Legacy Vault.

Encrypted secret vault whose owners can leave testaments: when an owner
stays inactive past a threshold, the testament is released and its
beneficiaries can recover the keys of the secrets it holds.
"""
from .version import __version__
from .config import LegacyConfig
from .service import LegacyVaultService, Operation, build_service

__all__ = [
    "__version__",
    "LegacyConfig",
    "LegacyVaultService",
    "Operation",
    "build_service",
]

"""Vault — per-user secret stores and the key wrapping around them.

Security Note (Threat Model):
    Secret content is encrypted by the client and never decrypted here.
    While a secret is being added to a testament, its symmetric key is
    briefly held in process memory between the owner-path unwrap and
    the testament-path wrap. A memory dump at that moment could expose
    it. This is an accepted limitation.
"""

from .store import SecretStore, StoreView
from .registry import VaultRegistry
from .keywrap import (
    KeyWrapCoordinator,
    OwnerTarget,
    TestamentTarget,
    WrapTarget,
)
from .crypto import AeadKeyWrap, LocalKeyDerivation

__all__ = [
    "SecretStore",
    "StoreView",
    "VaultRegistry",
    "KeyWrapCoordinator",
    "OwnerTarget",
    "TestamentTarget",
    "WrapTarget",
    "AeadKeyWrap",
    "LocalKeyDerivation",
]

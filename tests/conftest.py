"""Shared fixtures for the legacy vault tests."""
import asyncio
import os

import pytest

from legacy_vault import models
from legacy_vault.config import LegacyConfig
from legacy_vault.service import build_service
from legacy_vault.testament import engine as engine_mod
from legacy_vault.testament.monitor import InactivityMonitor
from legacy_vault.utils import ManualClock, days
from legacy_vault.vault.crypto import AeadKeyWrap, LocalKeyDerivation
from legacy_vault.vault.keywrap import KeyWrapCoordinator
from legacy_vault.vault.registry import VaultRegistry

START = days(20_000)
THRESHOLD = days(30)


@pytest.fixture
def clock():
    """A manual clock starting well after the epoch."""
    return ManualClock(start=START)


@pytest.fixture
def seed():
    return os.urandom(32)


@pytest.fixture
def derivation(seed):
    return LocalKeyDerivation(seed)


@pytest.fixture
def coordinator(derivation):
    return KeyWrapCoordinator(derivation, AeadKeyWrap("aesgcm"))


@pytest.fixture
def registry(clock):
    """A registry capping each user at ten secrets."""
    return VaultRegistry(clock=clock, max_secrets_per_user=10)


@pytest.fixture
def engine(registry, coordinator, derivation, clock):
    """An engine wired as the authorizer of the derivation service."""
    eng = engine_mod.TestamentEngine(
        registry, coordinator, clock=clock, default_threshold=THRESHOLD,
    )
    derivation.set_authorizer(eng.authorize_derivation)
    return eng


@pytest.fixture
def monitor(engine, registry, clock):
    return InactivityMonitor(engine, registry, clock=clock)


@pytest.fixture
def config(seed):
    return LegacyConfig(
        derivation_seed=seed,
        inactivity_threshold=THRESHOLD // 1_000_000_000,
    )


@pytest.fixture
def service(config, clock):
    """A fully wired service on the manual clock."""
    return build_service(config=config, clock=clock)


def _secret(secret_id: str = "s1", name: str = "bank") -> models.Secret:
    return models.Secret(
        id=secret_id,
        category=models.SecretCategory.PASSWORD,
        name=name,
        encrypted_username=b"\x01user",
        encrypted_password=b"\x02pass",
        url="https://bank.example",
    )


def _material(tag: bytes = b"k") -> models.SecretDecryptionMaterial:
    """Opaque material for tests that never unwrap."""
    return models.SecretDecryptionMaterial(
        encrypted_decryption_key=tag * 48,
        iv=b"\x00" * 12,
        username_decryption_nonce=b"\x01" * 12,
        password_decryption_nonce=b"\x02" * 12,
    )


@pytest.fixture
def wrapped_material(coordinator):
    """Factory: wrap a fresh random key on an owner's path.

    Returns ``(plaintext_key, material)``.
    """
    async def factory(owner: str):
        key = os.urandom(32)
        nonces = _material()
        material = await coordinator.wrap_for_owner(key, owner, nonces_from=nonces)
        return key, material
    return factory


@pytest.fixture
def make_secret():
    return _secret


@pytest.fixture
def make_material():
    return _material


@pytest.fixture
def threshold():
    return THRESHOLD


class GatedDerivation:
    """Derivation service that suspends until ``gate`` is opened."""

    def __init__(self, inner):
        self._inner = inner
        self.entered = asyncio.Event()
        self.gate = asyncio.Event()

    async def derive(self, path, caller):
        self.entered.set()
        await self.gate.wait()
        return await self._inner.derive(path, caller)


@pytest.fixture
def gated(derivation):
    """Derivation that holds every call until the test opens the gate."""
    return GatedDerivation(derivation)


@pytest.fixture
def gated_engine(registry, gated, derivation, clock):
    """Engine whose key-box adds block on ``gated.gate``."""
    eng = engine_mod.TestamentEngine(
        registry, KeyWrapCoordinator(gated, AeadKeyWrap("aesgcm")),
        clock=clock, default_threshold=THRESHOLD,
    )
    derivation.set_authorizer(eng.authorize_derivation)
    return eng

"""
VaultRegistry — maps each identity to exactly one SecretStore.

The registry is an explicitly owned object handed to request handlers;
there is no module-level instance.
"""
import logging
from collections.abc import Iterator
from typing import Optional

from ..exceptions import UserAlreadyExists, VaultNotFound
from ..models import Identity
from ..utils import Clock, SystemClock
from .store import SecretStore, StoreView

logger = logging.getLogger("legacy.vault")


class VaultRegistry:
    """All user stores of one vault deployment."""

    def __init__(
        self,
        clock: Optional[Clock] = None,
        max_secrets_per_user: Optional[int] = None,
    ):
        self._clock = clock or SystemClock()
        self._max_secrets = max_secrets_per_user
        self._user_safes: dict[Identity, SecretStore] = {}

    def __len__(self) -> int:
        return len(self._user_safes)

    def __contains__(self, identity: object) -> bool:
        return identity in self._user_safes

    def identities(self) -> Iterator[Identity]:
        yield from sorted(self._user_safes)

    def _open(self, identity: Identity) -> SecretStore:
        store = SecretStore(identity, clock=self._clock, max_secrets=self._max_secrets)
        self._user_safes[identity] = store
        logger.info("Vault opened for user=%s", identity)
        return store

    def get_or_create_store(self, identity: Identity) -> SecretStore:
        """Return the identity's store, opening an empty one on first use."""
        store = self._user_safes.get(identity)
        if store is None:
            store = self._open(identity)
        return store

    def get_store(self, identity: Identity) -> SecretStore:
        """Return the identity's store for writes.

        Raises:
            VaultNotFound: If the identity has no store.
        """
        try:
            return self._user_safes[identity]
        except KeyError:
            raise VaultNotFound(identity) from None

    def get_store_readonly(self, identity: Identity) -> Optional[StoreView]:
        """Return a read-only view, or ``None`` if never provisioned."""
        store = self._user_safes.get(identity)
        if store is None:
            return None
        return StoreView(store)

    def create_store(self, identity: Identity) -> StoreView:
        """Explicitly provision a store.

        Raises:
            UserAlreadyExists: If the identity already has a store.
        """
        if identity in self._user_safes:
            raise UserAlreadyExists(identity)
        return StoreView(self._open(identity))

    def delete_store(self, identity: Identity) -> None:
        """Remove an identity's store and everything in it.

        Raises:
            VaultNotFound: If the identity has no store.
        """
        if identity not in self._user_safes:
            raise VaultNotFound(identity)
        del self._user_safes[identity]
        logger.info("Vault deleted for user=%s", identity)

    def export_state(self) -> list[dict]:
        return [self._user_safes[i].export_state() for i in sorted(self._user_safes)]

    def restore_state(self, states: list[dict]) -> None:
        """Replace all stores with previously exported ones."""
        restored = {}
        for state in states:
            store = SecretStore.from_state(
                state, clock=self._clock, max_secrets=self._max_secrets,
            )
            restored[store.owner] = store
        self._user_safes = restored
        logger.info("Registry restored: %d vault(s)", len(restored))

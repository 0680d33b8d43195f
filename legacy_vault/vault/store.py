"""
SecretStore — one user's secrets and the key box that unlocks them.

Provides the per-user API of the vault:
- ``add_secret(secret, material)`` — insert a secret and its wrapped key
- ``update_secret(secret)`` — replace metadata/ciphertext, key untouched
- ``update_decryption_material(id, material)`` — explicit re-key
- ``remove_secret(id)`` — drop a secret and its key together
- ``get_secret(id)`` / ``edit_secret(id)`` / ``list()`` — read access

Every secret id in ``secrets`` has exactly one entry in ``key_box`` and
vice versa. All checks run before the first write, so a failed call
leaves the store untouched.

Security Note:
    Never log ciphertext or key material. Only log owners, secret ids
    and operations.
"""
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Optional

from ..exceptions import (
    KeyBoxInconsistency,
    SecretAlreadyExists,
    SecretLimitExceeded,
    SecretNotFound,
)
from ..models import (
    Identity,
    Secret,
    SecretDecryptionMaterial,
    SecretID,
    SecretListEntry,
)
from ..utils import Clock, SystemClock

logger = logging.getLogger("legacy.vault")


class SecretStore:
    """Encrypted secrets of a single owner."""

    def __init__(
        self,
        owner: Identity,
        clock: Optional[Clock] = None,
        max_secrets: Optional[int] = None,
    ):
        self._owner = owner
        self._clock = clock or SystemClock()
        self._max_secrets = max_secrets
        now = self._clock.now()
        self._date_created = now
        self._date_modified = now
        self._secrets: dict[SecretID, Secret] = {}
        self._key_box: dict[SecretID, SecretDecryptionMaterial] = {}

    def __repr__(self) -> str:
        return f"<SecretStore owner={self._owner!r} secrets={len(self._secrets)}>"

    def __len__(self) -> int:
        return len(self._secrets)

    def __contains__(self, secret_id: object) -> bool:
        return secret_id in self._secrets

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def owner(self) -> Identity:
        return self._owner

    @property
    def date_created(self) -> int:
        return self._date_created

    @property
    def date_modified(self) -> int:
        return self._date_modified

    def _touch(self) -> int:
        now = max(self._clock.now(), self._date_modified)
        self._date_modified = now
        return now

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_secret(
        self, secret: Secret, decryption_material: SecretDecryptionMaterial
    ) -> Secret:
        """Insert a new secret together with its wrapped key.

        The stored copy is stamped with this store's owner and the
        current time as both creation and modification date.

        Raises:
            SecretAlreadyExists: If ``secret.id`` is already present.
            SecretLimitExceeded: If the store is full.
        """
        if secret.id in self._secrets:
            raise SecretAlreadyExists(secret.id)
        if self._max_secrets is not None and len(self._secrets) >= self._max_secrets:
            raise SecretLimitExceeded(
                f"Max secrets per user ({self._max_secrets}) exceeded"
            )
        now = self._touch()
        stored = secret.model_copy(
            update={"owner": self._owner, "date_created": now, "date_modified": now},
            deep=True,
        )
        self._secrets[stored.id] = stored
        self._key_box[stored.id] = decryption_material.model_copy(deep=True)
        logger.debug("Secret added: owner=%s secret=%s", self._owner, stored.id)
        return stored.model_copy(deep=True)

    def update_secret(self, secret: Secret) -> Secret:
        """Replace a secret's metadata and ciphertext.

        The key-box entry is left alone; re-keying goes through
        :meth:`update_decryption_material`.

        Raises:
            SecretNotFound: If ``secret.id`` is absent.
        """
        current = self._secrets.get(secret.id)
        if current is None:
            raise SecretNotFound(secret.id)
        now = self._touch()
        stored = secret.model_copy(
            update={
                "owner": self._owner,
                "date_created": current.date_created,
                "date_modified": max(now, current.date_modified),
            },
            deep=True,
        )
        self._secrets[stored.id] = stored
        logger.debug("Secret updated: owner=%s secret=%s", self._owner, stored.id)
        return stored.model_copy(deep=True)

    def update_decryption_material(
        self, secret_id: SecretID, decryption_material: SecretDecryptionMaterial
    ) -> None:
        """Replace the wrapped key of an existing secret.

        Raises:
            SecretNotFound: If ``secret_id`` is absent.
        """
        current = self._secrets.get(secret_id)
        if current is None:
            raise SecretNotFound(secret_id)
        now = self._touch()
        self._key_box[secret_id] = decryption_material.model_copy(deep=True)
        current.date_modified = max(now, current.date_modified)
        logger.debug("Secret re-keyed: owner=%s secret=%s", self._owner, secret_id)

    def remove_secret(self, secret_id: SecretID) -> None:
        """Remove a secret and its key-box entry.

        Raises:
            SecretNotFound: If ``secret_id`` is absent.
        """
        if secret_id not in self._secrets:
            raise SecretNotFound(secret_id)
        self._touch()
        del self._secrets[secret_id]
        self._key_box.pop(secret_id, None)
        logger.debug("Secret removed: owner=%s secret=%s", self._owner, secret_id)

    @contextmanager
    def edit_secret(self, secret_id: SecretID) -> Iterator[Secret]:
        """Yield an editable copy of a secret and save it on exit.

        Nothing is written if the ``with`` block raises.

        Raises:
            SecretNotFound: If ``secret_id`` is absent.
        """
        draft = self.get_secret(secret_id)
        yield draft
        if draft.id != secret_id:
            raise ValueError("Secret id is immutable")
        self.update_secret(draft)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_secret(self, secret_id: SecretID) -> Secret:
        """Return a detached copy of a secret.

        Raises:
            SecretNotFound: If ``secret_id`` is absent.
        """
        try:
            return self._secrets[secret_id].model_copy(deep=True)
        except KeyError:
            raise SecretNotFound(secret_id) from None

    def get_decryption_material(self, secret_id: SecretID) -> SecretDecryptionMaterial:
        """Return the owner-wrapped key of a secret.

        Raises:
            SecretNotFound: If ``secret_id`` is absent.
            KeyBoxInconsistency: If the secret exists without a key.
        """
        if secret_id not in self._secrets:
            raise SecretNotFound(secret_id)
        material = self._key_box.get(secret_id)
        if material is None:
            raise KeyBoxInconsistency(
                f"secret {secret_id!r} of {self._owner!r} has no key-box entry"
            )
        return material.model_copy(deep=True)

    def secret_ids(self) -> list[SecretID]:
        return sorted(self._secrets)

    def list(self) -> Iterator[SecretListEntry]:
        """Yield non-sensitive entries for all secrets, ordered by id."""
        for secret_id in sorted(self._secrets):
            yield SecretListEntry.from_secret(self._secrets[secret_id])

    def check_invariants(self) -> None:
        """Verify that secrets and key box cover the same ids.

        Raises:
            KeyBoxInconsistency: If the two maps disagree.
        """
        secret_ids = set(self._secrets)
        key_ids = set(self._key_box)
        if secret_ids != key_ids:
            raise KeyBoxInconsistency(
                f"store of {self._owner!r}: secrets without key "
                f"{sorted(secret_ids - key_ids)}, keys without secret "
                f"{sorted(key_ids - secret_ids)}"
            )

    # ------------------------------------------------------------------
    # Snapshot support
    # ------------------------------------------------------------------

    def export_state(self) -> dict:
        return {
            "owner": self._owner,
            "date_created": self._date_created,
            "date_modified": self._date_modified,
            "secrets": [s.model_dump() for s in self._secrets.values()],
            "key_box": {k: m.model_dump() for k, m in self._key_box.items()},
        }

    @classmethod
    def from_state(
        cls,
        state: dict,
        clock: Optional[Clock] = None,
        max_secrets: Optional[int] = None,
    ) -> "SecretStore":
        store = cls(state["owner"], clock=clock, max_secrets=max_secrets)
        store._date_created = state["date_created"]
        store._date_modified = state["date_modified"]
        for raw in state["secrets"]:
            secret = Secret.model_validate(raw)
            store._secrets[secret.id] = secret
        for secret_id, raw in state["key_box"].items():
            store._key_box[secret_id] = SecretDecryptionMaterial.model_validate(raw)
        store.check_invariants()
        return store


class StoreView:
    """Read-only access to a :class:`SecretStore`."""

    def __init__(self, store: SecretStore):
        self._store = store

    def __repr__(self) -> str:
        return f"<StoreView owner={self._store.owner!r} secrets={len(self._store)}>"

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, secret_id: object) -> bool:
        return secret_id in self._store

    @property
    def owner(self) -> Identity:
        return self._store.owner

    @property
    def date_created(self) -> int:
        return self._store.date_created

    @property
    def date_modified(self) -> int:
        return self._store.date_modified

    def get_secret(self, secret_id: SecretID) -> Secret:
        return self._store.get_secret(secret_id)

    def get_decryption_material(self, secret_id: SecretID) -> SecretDecryptionMaterial:
        return self._store.get_decryption_material(secret_id)

    def secret_ids(self) -> list[SecretID]:
        return self._store.secret_ids()

    def list(self) -> Iterator[SecretListEntry]:
        return self._store.list()


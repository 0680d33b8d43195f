"""
TestamentEngine — testaments, their key boxes and their state machine.

A testament is created ``Active`` by its owner, edited only by the owner
while ``Active`` and moved to ``Released`` exactly once, by the
inactivity monitor. Nothing ever moves it back.

Adding a secret to a testament re-wraps that secret's key from the
owner's derivation path to the testament's own path; once released,
beneficiaries obtain the testament-path key and never touch the owner's.

Security Note:
    Never log wrapped keys. Log testament ids, owners, beneficiaries
    counts and state transitions.
"""
import asyncio
import logging
from collections.abc import Iterator
from typing import Optional

from ..exceptions import (
    NotABeneficiary,
    NotOwner,
    NotReleased,
    SecretNotFound,
    TestamentNotActive,
    TestamentNotFound,
)
from ..models import (
    Identity,
    ReleaseCondition,
    ReleaseEvent,
    SecretID,
    Testament,
    TestamentID,
    TestamentListEntry,
    TestamentResponse,
    TestamentState,
    UpdateTestamentArgs,
)
from ..utils import Clock, SystemClock, days, new_id
from ..vault.keywrap import (
    KeyWrapCoordinator,
    OwnerTarget,
    TestamentTarget,
    parse_path,
)
from ..vault.registry import VaultRegistry

logger = logging.getLogger("legacy.testament")

DEFAULT_THRESHOLD = days(180)


class TestamentEngine:
    """Owns every testament of a deployment."""

    def __init__(
        self,
        registry: VaultRegistry,
        coordinator: KeyWrapCoordinator,
        clock: Optional[Clock] = None,
        default_threshold: int = DEFAULT_THRESHOLD,
    ):
        if default_threshold <= 0:
            raise ValueError("default_threshold must be positive")
        self._registry = registry
        self._coordinator = coordinator
        self._clock = clock or SystemClock()
        self._default_threshold = default_threshold
        self._testaments: dict[TestamentID, Testament] = {}
        self._by_owner: dict[Identity, set[TestamentID]] = {}
        self._locks: dict[TestamentID, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._testaments)

    def __contains__(self, testament_id: object) -> bool:
        return testament_id in self._testaments

    @property
    def clock(self) -> Clock:
        return self._clock

    # ------------------------------------------------------------------
    # Lookup helpers
    # ------------------------------------------------------------------

    def _get(self, testament_id: TestamentID) -> Testament:
        try:
            return self._testaments[testament_id]
        except KeyError:
            raise TestamentNotFound(testament_id) from None

    def _get_owned(self, testament_id: TestamentID, owner: Identity) -> Testament:
        testament = self._get(testament_id)
        if testament.owner != owner:
            raise NotOwner(testament_id, owner)
        return testament

    def _get_writable(self, testament_id: TestamentID, owner: Identity) -> Testament:
        testament = self._get_owned(testament_id, owner)
        if not testament.is_active:
            raise TestamentNotActive(testament_id)
        return testament

    def _get_released_for(self, testament_id: TestamentID, caller: Identity) -> Testament:
        testament = self._get(testament_id)
        if caller not in testament.beneficiaries:
            raise NotABeneficiary(testament_id, caller)
        if testament.is_active:
            raise NotReleased(testament_id)
        return testament

    def _lock(self, testament_id: TestamentID) -> asyncio.Lock:
        return self._locks.setdefault(testament_id, asyncio.Lock())

    def _touch(self, testament: Testament) -> int:
        now = max(self._clock.now(), testament.date_modified)
        testament.date_modified = now
        return now

    def _index(self, testament: Testament) -> None:
        self._testaments[testament.id] = testament
        self._by_owner.setdefault(testament.owner, set()).add(testament.id)

    # ------------------------------------------------------------------
    # Owner operations
    # ------------------------------------------------------------------

    def create(
        self,
        owner: Identity,
        name: Optional[str] = None,
        threshold_duration: Optional[int] = None,
    ) -> Testament:
        """Create an empty, active testament for ``owner``."""
        now = self._clock.now()
        testament = Testament(
            id=new_id(),
            owner=owner,
            date_created=now,
            date_modified=now,
            name=name,
            condition=ReleaseCondition(
                threshold_duration=(
                    threshold_duration if threshold_duration is not None
                    else self._default_threshold
                ),
                last_owner_activity=now,
            ),
        )
        self._index(testament)
        logger.info("Testament created: id=%s owner=%s", testament.id, owner)
        return testament.model_copy(deep=True)

    async def add_secret_to_keybox(
        self, testament_id: TestamentID, owner: Identity, secret_id: SecretID
    ) -> None:
        """Give a testament its own wrapped copy of a secret's key.

        Raises:
            TestamentNotFound: Unknown testament.
            NotOwner: ``owner`` does not own the testament.
            TestamentNotActive: The testament was released.
            SecretNotFound: The secret is not in the owner's vault.
            DerivationDenied, DerivationUnavailable: Derivation failed.
        """
        self._get_writable(testament_id, owner)
        async with self._lock(testament_id):
            self._get_writable(testament_id, owner)
            store = self._registry.get_store_readonly(owner)
            if store is None or secret_id not in store:
                raise SecretNotFound(secret_id)
            material = store.get_decryption_material(secret_id)
            wrapped = await self._coordinator.rewrap_for_testament(
                material, owner, testament_id,
            )
            # the testament may have been released or deleted while we awaited
            testament = self._get_writable(testament_id, owner)
            testament.key_box[secret_id] = wrapped
            self._touch(testament)
        logger.debug(
            "Secret added to testament: id=%s secret=%s", testament_id, secret_id,
        )

    async def remove_secret_from_keybox(
        self, testament_id: TestamentID, owner: Identity, secret_id: SecretID
    ) -> None:
        """Drop a secret from a testament's key box.

        Waits for any key-box add already in flight on the testament.

        Raises:
            SecretNotFound: The secret is not in the testament's key box.
        """
        self._get_writable(testament_id, owner)
        async with self._lock(testament_id):
            testament = self._get_writable(testament_id, owner)
            if secret_id not in testament.key_box:
                raise SecretNotFound(secret_id)
            del testament.key_box[secret_id]
            self._touch(testament)
        logger.debug(
            "Secret removed from testament: id=%s secret=%s", testament_id, secret_id,
        )

    async def update(self, args: UpdateTestamentArgs, owner: Identity) -> Testament:
        """Apply owner edits to an active testament.

        Raises:
            TestamentNotFound, NotOwner, TestamentNotActive
        """
        self._get_writable(args.id, owner)
        async with self._lock(args.id):
            testament = self._get_writable(args.id, owner)
            if args.name is not None:
                testament.name = args.name
            if args.beneficiaries is not None:
                testament.beneficiaries = set(args.beneficiaries)
            if args.threshold_duration is not None:
                testament.condition.threshold_duration = args.threshold_duration
            self._touch(testament)
        logger.debug(
            "Testament updated: id=%s beneficiaries=%d",
            testament.id, len(testament.beneficiaries),
        )
        return testament.model_copy(deep=True)

    async def delete(self, testament_id: TestamentID, owner: Identity) -> None:
        """Delete an active testament.

        Raises:
            TestamentNotFound, NotOwner, TestamentNotActive
        """
        self._get_writable(testament_id, owner)
        async with self._lock(testament_id):
            testament = self._get_writable(testament_id, owner)
            del self._testaments[testament_id]
            self._by_owner[owner].discard(testament_id)
        # queued callers hold their own reference and re-check on entry
        self._locks.pop(testament_id, None)
        logger.info("Testament deleted: id=%s owner=%s", testament.id, owner)

    async def delete_active_for_owner(self, owner: Identity) -> int:
        """Delete all of the owner's active testaments.

        Released testaments stay, beneficiaries keep their access.
        """
        active = [
            testament_id
            for testament_id in self._by_owner.get(owner, ())
            if self._testaments[testament_id].is_active
        ]
        deleted = 0
        for testament_id in active:
            try:
                await self.delete(testament_id, owner)
            except (TestamentNotFound, TestamentNotActive):
                # released or deleted while an earlier delete awaited
                continue
            deleted += 1
        return deleted

    def get_for_owner(self, testament_id: TestamentID, owner: Identity) -> Testament:
        return self._get_owned(testament_id, owner).model_copy(deep=True)

    def list_for_owner(self, owner: Identity) -> Iterator[TestamentListEntry]:
        for testament_id in sorted(self._by_owner.get(owner, ())):
            yield TestamentListEntry.from_testament(self._testaments[testament_id])

    def record_owner_activity(self, owner: Identity) -> None:
        """Refresh the inactivity clock of the owner's active testaments."""
        now = self._clock.now()
        for testament_id in self._by_owner.get(owner, ()):
            testament = self._testaments[testament_id]
            if testament.is_active:
                condition = testament.condition
                condition.last_owner_activity = max(now, condition.last_owner_activity)

    # ------------------------------------------------------------------
    # Beneficiary operations
    # ------------------------------------------------------------------

    def list_for_beneficiary(self, caller: Identity) -> Iterator[TestamentListEntry]:
        for testament_id in sorted(self._testaments):
            testament = self._testaments[testament_id]
            if caller in testament.beneficiaries:
                yield TestamentListEntry.from_testament(testament)

    def get_for_beneficiary(
        self, testament_id: TestamentID, caller: Identity
    ) -> TestamentResponse:
        """Return the released key box, plus the ciphertext it unlocks.

        Raises:
            TestamentNotFound: Unknown testament.
            NotABeneficiary: ``caller`` is not a beneficiary.
            NotReleased: The testament is still active.
        """
        testament = self._get_released_for(testament_id, caller)
        secrets = {}
        store = self._registry.get_store_readonly(testament.owner)
        if store is not None:
            for secret_id in testament.key_box:
                if secret_id in store:
                    secrets[secret_id] = store.get_secret(secret_id)
        return TestamentResponse(
            id=testament.id,
            owner=testament.owner,
            name=testament.name,
            date_created=testament.date_created,
            date_modified=testament.date_modified,
            date_released=testament.date_released,
            key_box={k: m.model_copy(deep=True) for k, m in testament.key_box.items()},
            secrets=secrets,
        )

    async def derive_testament_key(
        self, testament_id: TestamentID, caller: Identity
    ) -> bytes:
        """Obtain the testament-path wrapping key for a beneficiary."""
        self._get_released_for(testament_id, caller)
        return await self._coordinator.derive_key(
            TestamentTarget(testament_id=testament_id), caller,
        )

    # ------------------------------------------------------------------
    # Derivation policy
    # ------------------------------------------------------------------

    def authorize_derivation(self, caller: Identity, path: bytes) -> bool:
        """Decide whether ``caller`` may obtain the key for ``path``.

        Owner paths belong to their identity alone. A testament path is
        open to its owner, and to its beneficiaries once released.
        """
        try:
            target = parse_path(path)
        except ValueError:
            return False
        if isinstance(target, OwnerTarget):
            return target.identity == caller
        testament = self._testaments.get(target.testament_id)
        if testament is None:
            return False
        if caller == testament.owner:
            return True
        return not testament.is_active and caller in testament.beneficiaries

    # ------------------------------------------------------------------
    # Monitor support
    # ------------------------------------------------------------------

    def active_conditions(self) -> list[tuple[TestamentID, Identity, ReleaseCondition]]:
        return [
            (t.id, t.owner, t.condition.model_copy())
            for t in self._testaments.values()
            if t.is_active
        ]

    def is_busy(self, testament_id: TestamentID) -> bool:
        """True while an owner write on the testament holds or awaits its lock."""
        lock = self._locks.get(testament_id)
        return lock is not None and lock.locked()

    def release(self, testament_id: TestamentID) -> Optional[ReleaseEvent]:
        """Move a testament to ``Released``.

        Only the inactivity monitor calls this. Releasing an already
        released testament is a no-op and returns ``None``.

        The monitor skips testaments that are :meth:`is_busy`, so a
        release never cuts into an owner write that arrived first.
        """
        testament = self._get(testament_id)
        if not testament.is_active:
            return None
        now = self._touch(testament)
        testament.state = TestamentState.RELEASED
        testament.date_released = now
        logger.info(
            "Testament released: id=%s owner=%s beneficiaries=%d",
            testament.id, testament.owner, len(testament.beneficiaries),
        )
        return ReleaseEvent(
            testament_id=testament.id,
            owner=testament.owner,
            beneficiaries=set(testament.beneficiaries),
            date_released=now,
        )

    # ------------------------------------------------------------------
    # Snapshot support
    # ------------------------------------------------------------------

    def export_state(self) -> list[dict]:
        return [self._testaments[i].model_dump() for i in sorted(self._testaments)]

    def restore_state(self, states: list[dict]) -> None:
        """Replace all testaments with previously exported ones."""
        restored = [Testament.model_validate(raw) for raw in states]
        self._testaments = {}
        self._by_owner = {}
        self._locks = {}
        for testament in restored:
            self._index(testament)
        logger.info("Testaments restored: %d", len(self._testaments))

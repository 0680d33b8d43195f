"""
LegacyVaultService — the request surface of the vault.

One method per operation, each taking the authenticated caller identity
first. The transport layer that decodes requests and authenticates
callers lives outside this package; it can either call the methods
directly or route through :meth:`LegacyVaultService.dispatch` with a
member of the closed :class:`Operation` enumeration.

Every successful request counts as activity of the caller and pushes
back the release of the caller's own active testaments.
"""
import functools
import inspect
import logging
from enum import Enum
from typing import Any, Optional

from .config import LegacyConfig
from .exceptions import VaultNotFound
from .models import (
    AddSecretArgs,
    Identity,
    Secret,
    SecretDecryptionMaterial,
    SecretID,
    SecretListEntry,
    Testament,
    TestamentID,
    TestamentListEntry,
    TestamentResponse,
    UpdateTestamentArgs,
    VaultInfo,
)
from .snapshot import dump_state, load_state
from .testament.engine import TestamentEngine
from .testament.monitor import EvaluationReport, InactivityMonitor
from .utils import Clock, SystemClock
from .vault.crypto import AeadKeyWrap, LocalKeyDerivation
from .vault.keywrap import (
    KeyDerivationService,
    KeyWrapCipher,
    KeyWrapCoordinator,
    OwnerTarget,
)
from .vault.registry import VaultRegistry
from .vault.store import StoreView

logger = logging.getLogger("legacy.service")


class Operation(str, Enum):
    WHO_AM_I = "who_am_i"
    WHAT_TIME_IS_IT = "what_time_is_it"
    CREATE_USER = "create_user"
    DELETE_USER = "delete_user"
    GET_USER = "get_user"
    ADD_SECRET = "add_secret"
    GET_SECRET = "get_secret"
    UPDATE_SECRET = "update_secret"
    REMOVE_SECRET = "remove_secret"
    LIST_SECRETS = "list_secrets"
    GET_SECRET_DECRYPTION_MATERIAL = "get_secret_decryption_material"
    UPDATE_SECRET_DECRYPTION_MATERIAL = "update_secret_decryption_material"
    CREATE_TESTAMENT = "create_testament"
    UPDATE_TESTAMENT = "update_testament"
    DELETE_TESTAMENT = "delete_testament"
    GET_TESTAMENT = "get_testament"
    LIST_TESTAMENTS = "list_testaments"
    ADD_SECRET_TO_TESTAMENT = "add_secret_to_testament"
    REMOVE_SECRET_FROM_TESTAMENT = "remove_secret_from_testament"
    LIST_TESTAMENTS_AS_BENEFICIARY = "list_testaments_as_beneficiary"
    GET_TESTAMENT_AS_BENEFICIARY = "get_testament_as_beneficiary"
    DERIVE_VAULT_KEY = "derive_vault_key"
    DERIVE_TESTAMENT_KEY = "derive_testament_key"


def _caller_request(func):
    """Record caller activity after a successful request."""
    if inspect.iscoroutinefunction(func):
        @functools.wraps(func)
        async def async_wrapper(self, caller, *args, **kwargs):
            result = await func(self, caller, *args, **kwargs)
            self._engine.record_owner_activity(caller)
            return result
        return async_wrapper

    @functools.wraps(func)
    def wrapper(self, caller, *args, **kwargs):
        result = func(self, caller, *args, **kwargs)
        self._engine.record_owner_activity(caller)
        return result
    return wrapper


class LegacyVaultService:
    """Vault operations keyed by the authenticated caller."""

    def __init__(
        self,
        registry: VaultRegistry,
        engine: TestamentEngine,
        coordinator: KeyWrapCoordinator,
        monitor: InactivityMonitor,
        clock: Optional[Clock] = None,
    ):
        self._registry = registry
        self._engine = engine
        self._coordinator = coordinator
        self._monitor = monitor
        self._clock = clock or engine.clock
        self._handlers = {
            Operation.WHO_AM_I: self.who_am_i,
            Operation.WHAT_TIME_IS_IT: self.what_time_is_it,
            Operation.CREATE_USER: self.create_user,
            Operation.DELETE_USER: self.delete_user,
            Operation.GET_USER: self.get_user,
            Operation.ADD_SECRET: self.add_secret,
            Operation.GET_SECRET: self.get_secret,
            Operation.UPDATE_SECRET: self.update_secret,
            Operation.REMOVE_SECRET: self.remove_secret,
            Operation.LIST_SECRETS: self.list_secrets,
            Operation.GET_SECRET_DECRYPTION_MATERIAL: self.get_secret_decryption_material,
            Operation.UPDATE_SECRET_DECRYPTION_MATERIAL: self.update_secret_decryption_material,
            Operation.CREATE_TESTAMENT: self.create_testament,
            Operation.UPDATE_TESTAMENT: self.update_testament,
            Operation.DELETE_TESTAMENT: self.delete_testament,
            Operation.GET_TESTAMENT: self.get_testament,
            Operation.LIST_TESTAMENTS: self.list_testaments,
            Operation.ADD_SECRET_TO_TESTAMENT: self.add_secret_to_testament,
            Operation.REMOVE_SECRET_FROM_TESTAMENT: self.remove_secret_from_testament,
            Operation.LIST_TESTAMENTS_AS_BENEFICIARY: self.list_testaments_as_beneficiary,
            Operation.GET_TESTAMENT_AS_BENEFICIARY: self.get_testament_as_beneficiary,
            Operation.DERIVE_VAULT_KEY: self.derive_vault_key,
            Operation.DERIVE_TESTAMENT_KEY: self.derive_testament_key,
        }

    @property
    def registry(self) -> VaultRegistry:
        return self._registry

    @property
    def engine(self) -> TestamentEngine:
        return self._engine

    @property
    def monitor(self) -> InactivityMonitor:
        return self._monitor

    async def dispatch(self, operation: Operation, caller: Identity, **kwargs) -> Any:
        """Run ``operation`` for ``caller``.

        Raises:
            ValueError: If ``operation`` is not a member of :class:`Operation`.
        """
        handler = self._handlers[Operation(operation)]
        result = handler(caller, **kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result

    def _view(self, caller: Identity) -> StoreView:
        view = self._registry.get_store_readonly(caller)
        if view is None:
            raise VaultNotFound(caller)
        return view

    @staticmethod
    def _info(view: StoreView) -> VaultInfo:
        return VaultInfo(
            id=view.owner,
            date_created=view.date_created,
            date_modified=view.date_modified,
            secret_count=len(view),
        )

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    @_caller_request
    def who_am_i(self, caller: Identity) -> str:
        return caller

    @_caller_request
    def what_time_is_it(self, caller: Identity) -> int:
        return self._clock.now()

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    @_caller_request
    def create_user(self, caller: Identity) -> VaultInfo:
        return self._info(self._registry.create_store(caller))

    @_caller_request
    async def delete_user(self, caller: Identity) -> None:
        """Delete the caller's vault and their active testaments."""
        self._registry.delete_store(caller)
        dropped = await self._engine.delete_active_for_owner(caller)
        logger.info("User deleted: user=%s active_testaments=%d", caller, dropped)

    @_caller_request
    def get_user(self, caller: Identity) -> VaultInfo:
        return self._info(self._view(caller))

    # ------------------------------------------------------------------
    # Secrets
    # ------------------------------------------------------------------

    @_caller_request
    def add_secret(self, caller: Identity, args: AddSecretArgs) -> Secret:
        store = self._registry.get_or_create_store(caller)
        return store.add_secret(args.secret, args.decryption_material)

    @_caller_request
    def get_secret(self, caller: Identity, secret_id: SecretID) -> Secret:
        return self._view(caller).get_secret(secret_id)

    @_caller_request
    def update_secret(self, caller: Identity, secret: Secret) -> Secret:
        return self._registry.get_store(caller).update_secret(secret)

    @_caller_request
    def remove_secret(self, caller: Identity, secret_id: SecretID) -> None:
        self._registry.get_store(caller).remove_secret(secret_id)

    @_caller_request
    def list_secrets(self, caller: Identity) -> list[SecretListEntry]:
        view = self._registry.get_store_readonly(caller)
        if view is None:
            return []
        return list(view.list())

    @_caller_request
    def get_secret_decryption_material(
        self, caller: Identity, secret_id: SecretID
    ) -> SecretDecryptionMaterial:
        return self._view(caller).get_decryption_material(secret_id)

    @_caller_request
    def update_secret_decryption_material(
        self,
        caller: Identity,
        secret_id: SecretID,
        decryption_material: SecretDecryptionMaterial,
    ) -> None:
        store = self._registry.get_store(caller)
        store.update_decryption_material(secret_id, decryption_material)

    # ------------------------------------------------------------------
    # Testaments (owner side)
    # ------------------------------------------------------------------

    @_caller_request
    def create_testament(self, caller: Identity, name: Optional[str] = None) -> Testament:
        self._registry.get_or_create_store(caller)
        return self._engine.create(caller, name=name)

    @_caller_request
    async def update_testament(
        self, caller: Identity, args: UpdateTestamentArgs
    ) -> Testament:
        return await self._engine.update(args, caller)

    @_caller_request
    async def delete_testament(self, caller: Identity, testament_id: TestamentID) -> None:
        await self._engine.delete(testament_id, caller)

    @_caller_request
    def get_testament(self, caller: Identity, testament_id: TestamentID) -> Testament:
        return self._engine.get_for_owner(testament_id, caller)

    @_caller_request
    def list_testaments(self, caller: Identity) -> list[TestamentListEntry]:
        return list(self._engine.list_for_owner(caller))

    @_caller_request
    async def add_secret_to_testament(
        self, caller: Identity, testament_id: TestamentID, secret_id: SecretID
    ) -> None:
        await self._engine.add_secret_to_keybox(testament_id, caller, secret_id)

    @_caller_request
    async def remove_secret_from_testament(
        self, caller: Identity, testament_id: TestamentID, secret_id: SecretID
    ) -> None:
        await self._engine.remove_secret_from_keybox(testament_id, caller, secret_id)

    # ------------------------------------------------------------------
    # Testaments (beneficiary side)
    # ------------------------------------------------------------------

    @_caller_request
    def list_testaments_as_beneficiary(self, caller: Identity) -> list[TestamentListEntry]:
        return list(self._engine.list_for_beneficiary(caller))

    @_caller_request
    def get_testament_as_beneficiary(
        self, caller: Identity, testament_id: TestamentID
    ) -> TestamentResponse:
        return self._engine.get_for_beneficiary(testament_id, caller)

    # ------------------------------------------------------------------
    # Key derivation
    # ------------------------------------------------------------------

    @_caller_request
    async def derive_vault_key(self, caller: Identity) -> bytes:
        """Wrapping key of the caller's personal path, for client-side wraps."""
        return await self._coordinator.derive_key(OwnerTarget(identity=caller), caller)

    @_caller_request
    async def derive_testament_key(
        self, caller: Identity, testament_id: TestamentID
    ) -> bytes:
        """Testament-path wrapping key for a beneficiary of a released testament."""
        return await self._engine.derive_testament_key(testament_id, caller)

    # ------------------------------------------------------------------
    # Scheduler and lifecycle
    # ------------------------------------------------------------------

    def evaluate_all(self) -> EvaluationReport:
        """Entry point for the external scheduler."""
        return self._monitor.evaluate_all()

    def snapshot(self) -> bytes:
        return dump_state(self._registry, self._engine)

    def restore(self, data: bytes) -> None:
        load_state(data, self._registry, self._engine)


def build_service(
    config: Optional[LegacyConfig] = None,
    clock: Optional[Clock] = None,
    derivation: Optional[KeyDerivationService] = None,
    cipher: Optional[KeyWrapCipher] = None,
) -> LegacyVaultService:
    """Wire a service for process start.

    Without an explicit ``derivation`` service, an in-process HKDF
    derivation keyed by ``config.derivation_seed`` is used, with the
    testament engine deciding who may derive which path.
    """
    if config is None:
        config = LegacyConfig.from_env()
    clock = clock or SystemClock()
    local_derivation = None
    if derivation is None:
        local_derivation = LocalKeyDerivation(config.derivation_seed)
        derivation = local_derivation
    coordinator = KeyWrapCoordinator(derivation, cipher or AeadKeyWrap(config.wrap_cipher))
    registry = VaultRegistry(clock=clock, max_secrets_per_user=config.max_secrets_per_user)
    engine = TestamentEngine(
        registry, coordinator, clock=clock,
        default_threshold=config.inactivity_threshold_ns,
    )
    if local_derivation is not None:
        local_derivation.set_authorizer(engine.authorize_derivation)
    monitor = InactivityMonitor(engine, registry, clock=clock)
    logger.info(
        "Legacy vault service ready: cipher=%s evaluation_interval=%ds",
        config.wrap_cipher, config.evaluation_interval,
    )
    return LegacyVaultService(registry, engine, coordinator, monitor, clock=clock)

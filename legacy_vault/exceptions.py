"""Legacy Vault exceptions.

Every recoverable failure raised by the vault derives from
:class:`LegacyVaultError`. :class:`KeyBoxInconsistency` is deliberately
outside that hierarchy: it signals a broken internal invariant and
should never be handled as a normal request error.
"""


class LegacyVaultError(Exception):
    """Base class for vault errors returned to callers."""


class NotFound(LegacyVaultError, KeyError):
    """A secret, testament or user store does not exist."""

    kind = "item"

    def __init__(self, ident: str):
        self.ident = ident
        super().__init__(ident)

    def __str__(self) -> str:
        return f"{self.kind} {self.ident!r} does not exist"


class SecretNotFound(NotFound):
    kind = "secret"


class TestamentNotFound(NotFound):
    kind = "testament"


class VaultNotFound(NotFound):
    kind = "vault of user"


class AlreadyExists(LegacyVaultError):
    """An item with the same identifier is already present."""

    kind = "item"

    def __init__(self, ident: str):
        self.ident = ident
        super().__init__(f"{self.kind} {ident!r} already exists")


class SecretAlreadyExists(AlreadyExists):
    kind = "secret"


class UserAlreadyExists(AlreadyExists):
    kind = "vault of user"


class NotOwner(LegacyVaultError, PermissionError):
    """Caller is not the owner of the testament."""

    def __init__(self, testament_id: str, caller: str):
        self.testament_id = testament_id
        self.caller = caller
        super().__init__(
            f"{caller!r} is not the owner of testament {testament_id!r}"
        )


class NotABeneficiary(LegacyVaultError, PermissionError):
    """Caller is not listed as beneficiary of the testament."""

    def __init__(self, testament_id: str, caller: str):
        self.testament_id = testament_id
        self.caller = caller
        super().__init__(
            f"{caller!r} is not a beneficiary of testament {testament_id!r}"
        )


class TestamentNotActive(LegacyVaultError):
    """Write attempted on a testament that has been released."""

    def __init__(self, testament_id: str):
        self.testament_id = testament_id
        super().__init__(f"testament {testament_id!r} is no longer active")


class NotReleased(LegacyVaultError):
    """Beneficiary read attempted before the testament was released."""

    def __init__(self, testament_id: str):
        self.testament_id = testament_id
        super().__init__(f"testament {testament_id!r} has not been released")


class SecretLimitExceeded(LegacyVaultError, ValueError):
    """The owner already holds the maximum number of secrets."""


class DerivationError(LegacyVaultError):
    """The key-derivation service failed to produce a key."""


class DerivationDenied(DerivationError):
    """The caller is not authorized for the requested derivation path."""


class DerivationUnavailable(DerivationError):
    """The key-derivation service could not be reached."""


class UnwrapFailed(LegacyVaultError):
    """A wrapped key could not be opened with the derived wrapping key."""


class KeyBoxInconsistency(RuntimeError):
    """A secret and its key-box entry went out of step."""

"""
Key-Wrap Coordinator — wraps per-secret keys for owners and testaments.

Every secret is encrypted client-side with its own symmetric key. That key
is stored wrapped under a *wrapping key* obtained from the key-derivation
service, and the derivation path decides who can ever obtain it:

- ``owner:<identity>``      — the owner's personal path (vault key box)
- ``testament:<id>``        — one path per testament (testament key box)

The two families are disjoint, so rotating or leaking one path never
exposes keys wrapped under the other. The coordinator holds no key state;
it only sequences derive → wrap / derive → unwrap.
"""
import asyncio
import logging
from typing import Literal, Optional, Protocol, Union

from pydantic import BaseModel

from ..exceptions import DerivationError, DerivationUnavailable
from ..models import Identity, SecretDecryptionMaterial, TestamentID

logger = logging.getLogger("legacy.vault")

OWNER_FAMILY = b"owner"
TESTAMENT_FAMILY = b"testament"


class OwnerTarget(BaseModel):
    model_config = {"frozen": True}

    kind: Literal["owner"] = "owner"
    identity: Identity

    @property
    def path(self) -> bytes:
        return OWNER_FAMILY + b":" + self.identity.encode("utf-8")


class TestamentTarget(BaseModel):
    model_config = {"frozen": True}

    kind: Literal["testament"] = "testament"
    testament_id: TestamentID

    @property
    def path(self) -> bytes:
        return TESTAMENT_FAMILY + b":" + self.testament_id.encode("utf-8")


WrapTarget = Union[OwnerTarget, TestamentTarget]


def parse_path(path: bytes) -> WrapTarget:
    """Turn a derivation path back into its target.

    Raises:
        ValueError: If the path does not belong to a known family.
    """
    family, sep, scope = path.partition(b":")
    if not sep or not scope:
        raise ValueError(f"Malformed derivation path: {path!r}")
    if family == OWNER_FAMILY:
        return OwnerTarget(identity=scope.decode("utf-8"))
    if family == TESTAMENT_FAMILY:
        return TestamentTarget(testament_id=scope.decode("utf-8"))
    raise ValueError(f"Unknown derivation path family: {family!r}")


class KeyDerivationService(Protocol):
    async def derive(self, path: bytes, caller: Identity) -> bytes:
        ...


class KeyWrapCipher(Protocol):
    def wrap(self, key: bytes, wrapping_key: bytes, context: bytes) -> tuple[bytes, bytes]:
        ...

    def unwrap(
        self, ciphertext: bytes, iv: bytes, wrapping_key: bytes, context: bytes
    ) -> bytes:
        ...


class KeyWrapCoordinator:
    """Sequence derivation and wrapping for owner and testament targets."""

    def __init__(self, derivation: KeyDerivationService, cipher: KeyWrapCipher) -> None:
        self._derivation = derivation
        self._cipher = cipher

    async def derive_key(self, target: WrapTarget, caller: Identity) -> bytes:
        """Obtain the wrapping key for ``target`` on behalf of ``caller``.

        Raises:
            DerivationDenied: The service refused the caller for this path.
            DerivationUnavailable: The service could not be reached.
        """
        try:
            return await self._derivation.derive(target.path, caller)
        except DerivationError:
            raise
        except (OSError, asyncio.TimeoutError) as err:
            logger.error(
                "Derivation service unavailable for %s: %s", target.kind, err
            )
            raise DerivationUnavailable(str(err)) from err

    async def wrap(
        self,
        plaintext_key: bytes,
        target: WrapTarget,
        *,
        caller: Identity,
        nonces_from: Optional[SecretDecryptionMaterial] = None,
    ) -> SecretDecryptionMaterial:
        wrapping_key = await self.derive_key(target, caller)
        encrypted, iv = self._cipher.wrap(plaintext_key, wrapping_key, target.path)
        material = SecretDecryptionMaterial(encrypted_decryption_key=encrypted, iv=iv)
        if nonces_from is not None:
            material.username_decryption_nonce = nonces_from.username_decryption_nonce
            material.password_decryption_nonce = nonces_from.password_decryption_nonce
            material.notes_decryption_nonce = nonces_from.notes_decryption_nonce
        return material

    async def unwrap(
        self,
        material: SecretDecryptionMaterial,
        target: WrapTarget,
        *,
        caller: Identity,
    ) -> bytes:
        wrapping_key = await self.derive_key(target, caller)
        return self._cipher.unwrap(
            material.encrypted_decryption_key, material.iv, wrapping_key, target.path,
        )

    async def wrap_for_owner(
        self,
        plaintext_key: bytes,
        owner: Identity,
        nonces_from: Optional[SecretDecryptionMaterial] = None,
    ) -> SecretDecryptionMaterial:
        return await self.wrap(
            plaintext_key, OwnerTarget(identity=owner),
            caller=owner, nonces_from=nonces_from,
        )

    async def wrap_for_testament(
        self,
        plaintext_key: bytes,
        testament_id: TestamentID,
        *,
        caller: Identity,
        nonces_from: Optional[SecretDecryptionMaterial] = None,
    ) -> SecretDecryptionMaterial:
        return await self.wrap(
            plaintext_key, TestamentTarget(testament_id=testament_id),
            caller=caller, nonces_from=nonces_from,
        )

    async def unwrap_for_owner(
        self, material: SecretDecryptionMaterial, owner: Identity
    ) -> bytes:
        return await self.unwrap(material, OwnerTarget(identity=owner), caller=owner)

    async def unwrap_for_testament(
        self,
        material: SecretDecryptionMaterial,
        testament_id: TestamentID,
        *,
        caller: Identity,
    ) -> bytes:
        return await self.unwrap(
            material, TestamentTarget(testament_id=testament_id), caller=caller,
        )

    async def rewrap_for_testament(
        self,
        material: SecretDecryptionMaterial,
        owner: Identity,
        testament_id: TestamentID,
    ) -> SecretDecryptionMaterial:
        """Move a key from the owner's path to a testament's path.

        The field nonces are carried over unchanged since the secret's
        ciphertext is not touched.
        """
        plaintext_key = await self.unwrap_for_owner(material, owner)
        return await self.wrap_for_testament(
            plaintext_key, testament_id, caller=owner, nonces_from=material,
        )

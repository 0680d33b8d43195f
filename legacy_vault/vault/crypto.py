"""
Vault Crypto — reference key-derivation service and key-wrap cipher.

These are the default collaborators plugged into the key-wrap
coordinator:

- Key derivation: HKDF(master_seed, info=derivation_path) → 32-byte wrapping key
- Key wrap: AEAD(wrapping_key) over the secret key, derivation path as AD,
  output split as (ciphertext + tag, nonce)

A deployment backed by a threshold derivation service replaces
:class:`LocalKeyDerivation`; the coordinator only depends on the
``derive(path, caller)`` coroutine.

Security Note:
    Never log key material, wrapped keys or nonces. Derivation paths and
    caller identities are safe to log.
"""
import os
import logging
from typing import Callable

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305

from ..exceptions import DerivationDenied, UnwrapFailed
from ..models import Identity

logger = logging.getLogger("legacy.vault")

NONCE_SIZE = 12  # 96-bit nonce
KEY_LENGTH = 32  # AES-256
TAG_SIZE = 16

_CIPHERS = {
    "aesgcm": AESGCM,
    "chacha20": ChaCha20Poly1305,
}


def derive_key(seed: bytes, context: bytes) -> bytes:
    """Derive a 32-byte wrapping key using HKDF-SHA256.

    Args:
        seed: Input key material (the derivation master seed).
        context: Derivation path, used as HKDF info for domain separation.

    Returns:
        32-byte derived key.
    """
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=None,  # deterministic: the same path must always yield the same key
        info=context,
    )
    return hkdf.derive(seed)


class AeadKeyWrap:
    """Wrap symmetric keys with an AEAD cipher.

    The derivation path is bound as associated data, so a key wrapped
    for one path cannot be opened under another even if the wrapping
    keys were ever equal.
    """

    def __init__(self, backend: str = "aesgcm") -> None:
        try:
            self._cipher_cls = _CIPHERS[backend.lower()]
        except KeyError:
            raise ValueError(f"Unsupported wrap cipher: {backend}") from None
        self.backend = backend.lower()

    def wrap(self, key: bytes, wrapping_key: bytes, context: bytes) -> tuple[bytes, bytes]:
        """Encrypt ``key`` under ``wrapping_key``.

        Returns:
            Tuple of (ciphertext with tag, nonce).
        """
        cipher = self._cipher_cls(wrapping_key)
        nonce = os.urandom(NONCE_SIZE)
        return cipher.encrypt(nonce, key, context), nonce

    def unwrap(
        self, ciphertext: bytes, iv: bytes, wrapping_key: bytes, context: bytes
    ) -> bytes:
        """Decrypt a key produced by :meth:`wrap`.

        Raises:
            UnwrapFailed: If the nonce is malformed or authentication fails.
        """
        if len(iv) != NONCE_SIZE:
            raise UnwrapFailed(
                f"iv must be {NONCE_SIZE} bytes, got {len(iv)}"
            )
        if len(ciphertext) < TAG_SIZE:
            raise UnwrapFailed(
                f"wrapped key too short: {len(ciphertext)} bytes "
                f"(minimum {TAG_SIZE})"
            )
        cipher = self._cipher_cls(wrapping_key)
        try:
            return cipher.decrypt(iv, ciphertext, context)
        except InvalidTag as exc:
            raise UnwrapFailed("wrapped key failed authentication") from exc


Authorizer = Callable[[Identity, bytes], bool]


def allow_all(caller: Identity, path: bytes) -> bool:
    return True


class LocalKeyDerivation:
    """In-process derivation service keyed by a single master seed.

    Args:
        master_seed: 32-byte seed; every derived key depends on it.
        authorize: Callback deciding whether ``caller`` may obtain the key
            for ``path``. Refusal raises :class:`DerivationDenied`.
    """

    def __init__(self, master_seed: bytes, authorize: Authorizer = allow_all) -> None:
        if len(master_seed) != KEY_LENGTH:
            raise ValueError(
                f"master_seed must be {KEY_LENGTH} bytes, got {len(master_seed)}"
            )
        self._seed = master_seed
        self._authorize = authorize

    def set_authorizer(self, authorize: Authorizer) -> None:
        self._authorize = authorize

    async def derive(self, path: bytes, caller: Identity) -> bytes:
        if not self._authorize(caller, path):
            logger.warning(
                "Derivation denied: caller=%s path=%s",
                caller, path.decode("utf-8", "replace"),
            )
            raise DerivationDenied(
                f"{caller!r} may not derive {path.decode('utf-8', 'replace')!r}"
            )
        return derive_key(self._seed, path)

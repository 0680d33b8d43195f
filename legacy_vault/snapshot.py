"""
State snapshot — persist the registry and testaments across restarts.

Format: orjson document ``{"version", "vaults", "testaments"}``.
bytes values are wrapped as ``{"__legacy_bytes_b64__": "<base64>"}`` for
a safe JSON round-trip and sets are written as sorted lists.

Security Note:
    The snapshot holds ciphertext and wrapped keys only; it never
    contains a plaintext secret key. Still, treat it as sensitive.
"""
import base64
import logging
from typing import Any

import orjson

from .testament.engine import TestamentEngine
from .vault.registry import VaultRegistry

logger = logging.getLogger("legacy.vault")

SNAPSHOT_VERSION = 1

_BYTES_WRAPPER_KEY = "__legacy_bytes_b64__"


def _default(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return {_BYTES_WRAPPER_KEY: base64.b64encode(bytes(value)).decode("ascii")}
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"Type is not snapshot serializable: {type(value).__name__}")


def _unwrap(value: Any) -> Any:
    if isinstance(value, dict):
        if len(value) == 1 and _BYTES_WRAPPER_KEY in value:
            return base64.b64decode(value[_BYTES_WRAPPER_KEY])
        return {k: _unwrap(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_unwrap(v) for v in value]
    return value


def dump_state(registry: VaultRegistry, engine: TestamentEngine) -> bytes:
    """Serialize every vault and testament.

    Returns:
        orjson-encoded snapshot bytes.
    """
    document = {
        "version": SNAPSHOT_VERSION,
        "vaults": registry.export_state(),
        "testaments": engine.export_state(),
    }
    data = orjson.dumps(document, default=_default, option=orjson.OPT_SORT_KEYS)
    logger.info(
        "Snapshot written: %d vault(s), %d testament(s)",
        len(document["vaults"]), len(document["testaments"]),
    )
    return data


def load_state(data: bytes, registry: VaultRegistry, engine: TestamentEngine) -> None:
    """Replace registry and engine contents with a snapshot.

    Raises:
        ValueError: If the snapshot is malformed or of an unknown version.
    """
    try:
        document = orjson.loads(data)
    except orjson.JSONDecodeError as err:
        raise ValueError(f"Malformed snapshot: {err}") from err
    if not isinstance(document, dict):
        raise ValueError("Malformed snapshot: expected an object")
    version = document.get("version")
    if version != SNAPSHOT_VERSION:
        raise ValueError(f"Unsupported snapshot version: {version!r}")
    document = _unwrap(document)
    previous = registry.export_state()
    registry.restore_state(document.get("vaults", []))
    try:
        engine.restore_state(document.get("testaments", []))
    except Exception:
        registry.restore_state(previous)
        raise

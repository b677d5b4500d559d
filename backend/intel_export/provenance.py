from __future__ import annotations

from datetime import date, datetime
import hashlib
import json
import logging
from typing import Any, Mapping

from pydantic import BaseModel

logger = logging.getLogger("intel_export.provenance")

HASH_ALGORITHM = "sha256"
VOLATILE_ROOT_FIELDS = frozenset({"anchorStatus"})
VOLATILE_CHAIN_FIELDS = frozenset({"status", "anchoredAt"})


class ProvenanceCanonicalizationError(TypeError):
    """Raised when a provenance bundle is not an object or holds non-JSON values."""


def _canonical_json(value: object) -> str:
    try:
        return json.dumps(
            value,
            ensure_ascii=False,
            sort_keys=True,
            separators=(",", ":"),
            allow_nan=False,
        )
    except (TypeError, ValueError) as exc:
        raise ProvenanceCanonicalizationError(f"Provenance bundle is not JSON-representable: {exc}") from exc


def _normalize(value: Any) -> Any:
    """Recursively normalize a value so equivalent bundles compare equal.

    Mapping keys become strings. List elements are sorted by their own
    canonical JSON text, so the order an element was inserted in never
    reaches the digest.
    """
    if isinstance(value, BaseModel):
        value = value.model_dump(exclude_unset=True)
    if isinstance(value, Mapping):
        return {str(key): _normalize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        items = [_normalize(item) for item in value]
        return sorted(items, key=_canonical_json)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def _strip_volatile(bundle: Mapping[str, Any]) -> dict[str, Any]:
    stable: dict[str, Any] = {}
    for key, value in bundle.items():
        if key in VOLATILE_ROOT_FIELDS:
            continue
        if key == "chainRef" and isinstance(value, Mapping):
            stable[key] = {
                chain_key: chain_value
                for chain_key, chain_value in value.items()
                if chain_key not in VOLATILE_CHAIN_FIELDS
            }
            continue
        stable[key] = value
    return stable


def canonicalize_provenance_bundle(bundle: object) -> str:
    if isinstance(bundle, BaseModel):
        bundle = bundle.model_dump(exclude_unset=True)
    if not isinstance(bundle, Mapping):
        raise ProvenanceCanonicalizationError(
            f"Provenance bundle must be an object, got {type(bundle).__name__}."
        )
    return _canonical_json(_normalize(_strip_volatile(bundle)))


def hash_provenance_bundle(bundle: object) -> str:
    canonical = canonicalize_provenance_bundle(bundle)
    digest = hashlib.new(HASH_ALGORITHM, canonical.encode("utf-8")).hexdigest()
    logger.debug(
        "provenance_hashed",
        extra={"event": "provenance_hashed", "algorithm": HASH_ALGORITHM, "digest": digest},
    )
    return digest

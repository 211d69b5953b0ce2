"""
Integrity Ledger - Canonical Serialization and Record Hashing

Each stored record carries the SHA-256 of its canonical JSON form, so rows
edited outside the ledger API are detectable. The ledger state hash folds
all record hashes in insertion order for external anchoring.

SPDX-License-Identifier: AGPL-3.0-or-later
"""

import hashlib
import json
from enum import Enum
from typing import Any, Iterable

from .fingerprint import Fingerprint


# State hash of an empty ledger
EMPTY_STATE_HASH = "0" * 64


def _serialize_value(value: Any) -> Any:
    """Convert a value to its JSON-serializable canonical form."""
    if isinstance(value, Fingerprint):
        return value.hex()

    if isinstance(value, bytes):
        return value.hex()

    if isinstance(value, Enum):
        return value.value

    if isinstance(value, (list, tuple)):
        return [_serialize_value(item) for item in value]

    if isinstance(value, dict):
        return {k: _serialize_value(v) for k, v in value.items()}

    return value


def canonical_serialize(record: Any) -> bytes:
    """
    Serialize a record to canonical JSON bytes.

    UTF-8, keys sorted recursively, no whitespace, no trailing newline.
    Accepts a dict or any object with a to_dict() method.
    """
    if isinstance(record, dict):
        obj = dict(record)
    elif hasattr(record, "to_dict"):
        obj = record.to_dict()
    else:
        raise TypeError(f"Cannot serialize {type(record)}")

    obj.pop("record_hash", None)

    json_str = json.dumps(
        _serialize_value(obj),
        separators=(",", ":"),
        ensure_ascii=False,
        sort_keys=True,
    )
    return json_str.encode("utf-8")


def compute_hash(record: Any) -> str:
    """SHA-256 of a record's canonical serialization, as lowercase hex."""
    return hashlib.sha256(canonical_serialize(record)).hexdigest()


def compute_state_hash(record_hashes: Iterable[str]) -> str:
    """
    Fold record hashes (in insertion order) into one digest.

    Any removed, reordered or altered record changes the result.
    """
    hasher = hashlib.sha256()
    seen = False
    for record_hash in record_hashes:
        hasher.update(record_hash.encode("utf-8"))
        seen = True

    if not seen:
        return EMPTY_STATE_HASH
    return hasher.hexdigest()

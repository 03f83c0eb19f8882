"""
Canonical serialization for event payloads.

Upstream documents arrive with arbitrary key order; hashing their canonical
form lets re-imports be checked against what was stored the first time.
"""

import hashlib
import json
from typing import Any, Dict


def canonical_json(data: Dict[str, Any]) -> str:
    """
    Convert a dictionary to a canonical JSON string.

    Keys are sorted recursively, whitespace is minimal and values JSON
    cannot represent (Decimal, datetime) are rendered with ``str``.

    Example:
        >>> canonical_json({"b": 2, "a": 1})
        '{"a":1,"b":2}'
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(',', ':'),
        ensure_ascii=False,
        default=str,
    )


def compute_payload_hash(data: Dict[str, Any]) -> str:
    """SHA-256 hex digest of ``canonical_json(data)``."""
    canonical = canonical_json(data)
    return hashlib.sha256(canonical.encode('utf-8')).hexdigest()

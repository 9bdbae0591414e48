"""
iotledger digests.

All identifiers exchanged across the ledger boundary are SHA-256 digests
rendered as 64 lowercase hexadecimal characters (32 bytes, no prefix).

    device_id_hash  = SHA-256(UTF-8(identifier))
    data_hash       = SHA-256(CJE(payload))
    analytics_hash  = SHA-256(CJE({"analytics_type": t, "data_hash": h}))
    entry_hash      = SHA-256(UTF-8(prev_entry_hash or "") || UTF-8(payload_hash))
"""

import hashlib
import hmac
from typing import Any, Optional, Union

from .canonicalization import canonicalize

DIGEST_HEX_LENGTH = 64


def sha256_hex(data: Union[bytes, str]) -> str:
    """Compute SHA-256 hash and return as lowercase hex string."""
    if isinstance(data, str):
        data = data.encode('utf-8')
    return hashlib.sha256(data).hexdigest()


def device_id_hash(identifier: str) -> str:
    """
    Compute the registry key for a device identifier.

    The identifier is hashed as-is: no trimming, case folding or Unicode
    normalization is applied, so "Sensor-01" and "sensor-01" are
    different devices.
    """
    return sha256_hex(identifier.encode('utf-8'))


def data_hash(payload: Any) -> str:
    """Digest of a submitted payload over its canonical JSON encoding."""
    return sha256_hex(canonicalize(payload))


def analytics_hash(analytics_type: int, source_data_hash: str) -> str:
    """Digest binding an analytics tier to the data it was derived from."""
    return sha256_hex(canonicalize({
        "analytics_type": int(analytics_type),
        "data_hash": source_data_hash,
    }))


def event_payload_hash(body: dict) -> str:
    return sha256_hex(canonicalize(body))


def chain_entry_hash(prev_entry_hash: Optional[str], payload_hash: str) -> str:
    """Link an event log entry to its predecessor."""
    data = (prev_entry_hash or "").encode('utf-8') + payload_hash.encode('utf-8')
    return sha256_hex(data)


def verify_hash(declared_hash: str, data: Union[bytes, str]) -> bool:
    """Recompute a digest from source data and compare in constant time."""
    computed = sha256_hex(data)
    return hmac.compare_digest(computed, declared_hash.lower())

"""
Security module for iotledger.

Input validation for addresses, digests, identifiers and submitted payloads.
Every validator raises ``InvalidPayload`` and never touches ledger state.
"""

import re
from typing import Any, Dict, List, Optional

from .canonicalization import canonicalize
from .errors import InvalidPayload
from .hashing import DIGEST_HEX_LENGTH


# ============================================================
# Input Validation
# ============================================================

HEX_PATTERN = re.compile(r'^[a-fA-F0-9]+$')
ADDRESS_PATTERN = re.compile(r'^0x[a-fA-F0-9]{40}$')

ZERO_ADDRESS = "0x" + "0" * 40

MAX_IDENTIFIER_LENGTH = 256
MAX_METADATA_FIELD_LENGTH = 1024
MAX_DID_DOCUMENT_LENGTH = 16384


def validate_hex(value: str, field_name: str, expected_length: Optional[int] = None) -> str:
    """
    Validate that a string is valid hexadecimal.

    Returns:
        The validated (lowercased) hex string

    Raises:
        InvalidPayload: If validation fails
    """
    if not isinstance(value, str):
        raise InvalidPayload(field_name, "must be a string")

    value = value.lower().strip()

    if not value:
        raise InvalidPayload(field_name, "cannot be empty")

    if not HEX_PATTERN.match(value):
        raise InvalidPayload(field_name, "must be valid hexadecimal")

    if expected_length and len(value) != expected_length:
        raise InvalidPayload(field_name, f"must be {expected_length} characters")

    return value


def validate_digest(value: str, field_name: str = "id_hash") -> str:
    """Validate a 32-byte digest (64 hex characters)."""
    return validate_hex(value, field_name, expected_length=DIGEST_HEX_LENGTH)


def validate_address(value: str, field_name: str = "address") -> str:
    """
    Validate and normalize an account address.

    Addresses compare case-insensitively, so the lowercase form is returned.
    """
    if not isinstance(value, str):
        raise InvalidPayload(field_name, "must be a string")
    value = value.strip()
    if not ADDRESS_PATTERN.match(value):
        raise InvalidPayload(field_name, "must be 0x followed by 40 hex characters")
    return value.lower()


def validate_identifier(value: str) -> str:
    """
    Validate a device's external identifier.

    The identifier is hashed byte-for-byte, so it is returned unmodified.
    """
    if not isinstance(value, str):
        raise InvalidPayload("identifier", "must be a string")
    if not value:
        raise InvalidPayload("identifier", "cannot be empty")
    if len(value) > MAX_IDENTIFIER_LENGTH:
        raise InvalidPayload("identifier", f"must not exceed {MAX_IDENTIFIER_LENGTH} characters")
    return value


def validate_non_negative_int(value: Any, field_name: str, max_value: Optional[int] = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidPayload(field_name, "must be an integer")
    if value < 0:
        raise InvalidPayload(field_name, "must not be negative")
    if max_value is not None and value > max_value:
        raise InvalidPayload(field_name, f"must not exceed {max_value}")
    return value


def validate_string_length(
    value: str,
    field_name: str,
    min_length: int = 0,
    max_length: int = MAX_METADATA_FIELD_LENGTH
) -> str:
    """
    Validate string length.

    Raises:
        InvalidPayload: If validation fails
    """
    if not isinstance(value, str):
        raise InvalidPayload(field_name, "must be a string")

    if len(value) < min_length:
        raise InvalidPayload(field_name, f"must be at least {min_length} characters")

    if len(value) > max_length:
        raise InvalidPayload(field_name, f"must not exceed {max_length} characters")

    return value


def decode_hex_bytes(value: Any, field_name: str) -> bytes:
    """Accept raw bytes or a hex string (optionally ``0x``-prefixed) and return the bytes."""
    if isinstance(value, bytes):
        return value
    if not isinstance(value, str):
        raise InvalidPayload(field_name, "must be hex or bytes")
    hex_value = value[2:] if value.startswith("0x") else value
    if not hex_value:
        return b""
    if len(hex_value) % 2:
        raise InvalidPayload(field_name, "must have an even number of hex characters")
    return bytes.fromhex(validate_hex(hex_value, field_name))


def validate_payload(payload: Any, max_bytes: int) -> bytes:
    """
    Validate a submitted payload and return its canonical bytes.

    A payload is a non-empty JSON object whose canonical encoding fits in
    ``max_bytes``.
    """
    if not isinstance(payload, dict):
        raise InvalidPayload("payload", "must be an object")
    if not payload:
        raise InvalidPayload("payload", "cannot be empty")
    try:
        encoded = canonicalize(payload)
    except ValueError as e:
        raise InvalidPayload("payload", str(e))
    if len(encoded) > max_bytes:
        raise InvalidPayload("payload", f"must not exceed {max_bytes} bytes")
    return encoded


# ============================================================
# Audit Logging Helpers
# ============================================================

def sanitize_for_logging(data: Dict[str, Any], sensitive_fields: List[str] = None) -> Dict[str, Any]:
    """
    Mask sensitive fields before a structure reaches the log.
    """
    if sensitive_fields is None:
        sensitive_fields = ["public_key", "did_document", "secret", "password", "token"]

    result = {}
    for key, value in data.items():
        if key in sensitive_fields:
            if isinstance(value, str) and len(value) > 8:
                result[key] = value[:4] + "..." + value[-4:]
            else:
                result[key] = "[REDACTED]"
        elif isinstance(value, dict):
            result[key] = sanitize_for_logging(value, sensitive_fields)
        else:
            result[key] = value

    return result

"""
Configuration module for iotledger.

Centralizes all configuration with environment variable support and
validation. Values are read once at import time.
"""

import os
from pathlib import Path
from typing import Dict, List, Optional

from .errors import InvalidPayload
from .security import validate_address

# ============================================================
# Environment Configuration
# ============================================================

ENV = os.getenv("IOTLEDGER_ENV", "dev")  # dev|stage|prod

# Storage
DB_PATH = os.getenv("IOTLEDGER_DB_PATH", "data/iotledger.db")

# Bootstrap authority (only used the first time a store is created)
OWNER_ADDRESS = os.getenv("IOTLEDGER_OWNER", "")
SUBMITTER_ADDRESS = os.getenv("IOTLEDGER_SUBMITTER", "")
REGISTRY_FEE = int(os.getenv("IOTLEDGER_REGISTRY_FEE", "0"))

# Submission limits
MAX_PAYLOAD_BYTES = int(os.getenv("IOTLEDGER_MAX_PAYLOAD_BYTES", "65536"))

# Logging
LOG_LEVEL = os.getenv("IOTLEDGER_LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("IOTLEDGER_LOG_JSON", "true").lower() in ("1", "true", "yes")
LOG_FILE = os.getenv("IOTLEDGER_LOG_FILE") or None

# Value returned by the liveness probe
PING_VALUE = 1


# ============================================================
# Validation
# ============================================================

def _check_address(name: str, value: str, required: bool) -> Optional[str]:
    if not value:
        return f"{name} is not set" if required else None
    try:
        validate_address(value, name)
    except InvalidPayload as e:
        return str(e)
    return None


def validate_config() -> Dict[str, List[str]]:
    """
    Validate bootstrap configuration.

    Returns a dict with an ``errors`` list; an empty list means the
    configuration can bootstrap a fresh store.
    """
    errors = []
    for problem in (
        _check_address("IOTLEDGER_OWNER", OWNER_ADDRESS, required=True),
        _check_address("IOTLEDGER_SUBMITTER", SUBMITTER_ADDRESS, required=False),
    ):
        if problem:
            errors.append(problem)

    if REGISTRY_FEE < 0:
        errors.append("IOTLEDGER_REGISTRY_FEE must not be negative")
    if MAX_PAYLOAD_BYTES <= 0:
        errors.append("IOTLEDGER_MAX_PAYLOAD_BYTES must be positive")

    db_parent = Path(DB_PATH).parent
    if DB_PATH != ":memory:" and db_parent.exists() and not os.access(db_parent, os.W_OK):
        errors.append(f"database directory {db_parent} is not writable")

    return {"errors": errors}


# ============================================================
# Feature Flags
# ============================================================

def is_production() -> bool:
    """Check if running in production mode."""
    return ENV == "prod"


def is_debug() -> bool:
    """Check if debug mode is enabled."""
    return os.getenv("IOTLEDGER_DEBUG", "").lower() in ("1", "true", "yes")

"""
iotledger: a permissioned ledger for IoT device data.

Version: 1.0.0

The ledger onboards physical devices under hash-derived identities and
admits externally computed results from exactly one authorized submitter.
Every admitted result becomes an ingestion record plus a derived analytics
record, written as a single atomic unit together with its events.

Usage:
    from iotledger import LedgerService, DeviceMetadata, device_id_hash

    service = LedgerService.open(":memory:", owner=OWNER, submitter=ROLLUP)

    id_hash = service.registry.register(
        OPERATOR, "sensor-01", DeviceMetadata(device_type="thermometer"), payment=0
    )
    result = service.ledger.submit(ROLLUP, id_hash, {"temp": 23.4})

    assert service.ledger.record_count() == 1
    assert replay(service.events.entries()) == service.snapshot()
"""

__version__ = "1.0.0"

# Canonicalization and hashing
from .canonicalization import canonicalize, canonicalize_str
from .hashing import (
    sha256_hex,
    device_id_hash,
    data_hash,
    analytics_hash,
    chain_entry_hash,
    verify_hash,
)

# Errors
from .errors import (
    LedgerError,
    Unauthorized,
    AlreadyRegistered,
    DeviceNotRegistered,
    InsufficientFee,
    InvalidPayload,
    RegistryPaused,
    RecordNotFound,
)

# Data model
from .models import (
    AnalyticsType,
    EncryptionLevel,
    SettlementPriority,
    DeviceMetadata,
    DeviceIdentity,
    ProcessingRequirements,
    IngestionRecord,
    AnalyticsRecord,
    AnalyticsConfig,
    ProofRecord,
    SubmissionResult,
    LedgerState,
)

# Components
from .store import LedgerStore
from .events import EventLog, EventType, LedgerEvent, verify_chain, replay
from .authority import AuthorityGate
from .registry import IdentityRegistry
from .analytics import classify_payload
from .ledger import IngestionLedger
from .service import LedgerService


__all__ = [
    "__version__",

    "canonicalize",
    "canonicalize_str",

    "sha256_hex",
    "device_id_hash",
    "data_hash",
    "analytics_hash",
    "chain_entry_hash",
    "verify_hash",

    "LedgerError",
    "Unauthorized",
    "AlreadyRegistered",
    "DeviceNotRegistered",
    "InsufficientFee",
    "InvalidPayload",
    "RegistryPaused",
    "RecordNotFound",

    "AnalyticsType",
    "EncryptionLevel",
    "SettlementPriority",
    "DeviceMetadata",
    "DeviceIdentity",
    "ProcessingRequirements",
    "IngestionRecord",
    "AnalyticsRecord",
    "AnalyticsConfig",
    "ProofRecord",
    "SubmissionResult",
    "LedgerState",

    "LedgerStore",
    "EventLog",
    "EventType",
    "LedgerEvent",
    "verify_chain",
    "replay",
    "AuthorityGate",
    "IdentityRegistry",
    "classify_payload",
    "IngestionLedger",
    "LedgerService",
]

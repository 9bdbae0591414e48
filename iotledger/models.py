"""
Ledger data model.

All records are frozen: once created they are never updated or deleted.
"""

from dataclasses import dataclass, field, asdict
from enum import IntEnum
from typing import Any, Dict, List, Optional

from .errors import InvalidPayload
from .security import (
    MAX_DID_DOCUMENT_LENGTH,
    decode_hex_bytes,
    validate_non_negative_int,
    validate_string_length,
)


class AnalyticsType(IntEnum):
    """Analytics tiers, ordered by cost."""
    BASIC = 0
    ADVANCED = 1
    ML = 2


class EncryptionLevel(IntEnum):
    STANDARD = 0
    DUAL = 1
    QUANTUM = 2


class SettlementPriority(IntEnum):
    LOW = 0
    NORMAL = 1
    HIGH = 2
    CRITICAL = 3


VERIFIED_COMPUTE_DEVICE_TYPES = frozenset({"air_quality_sensor", "traffic_monitor"})


@dataclass(frozen=True)
class DeviceMetadata:
    """
    Descriptive fields supplied at registration.

    ``public_key`` holds raw key bytes; over JSON it travels as hex.
    """
    did_document: str = ""
    public_key: bytes = b""
    device_type: str = ""
    manufacturer: str = ""
    model: str = ""
    firmware_version: str = ""
    deployment_zone: str = ""
    expected_data_rate: int = 0

    def validate(self) -> "DeviceMetadata":
        validate_string_length(self.did_document, "metadata.did_document", max_length=MAX_DID_DOCUMENT_LENGTH)
        if not isinstance(self.public_key, bytes):
            raise InvalidPayload("metadata.public_key", "must be bytes")
        for name in ("device_type", "manufacturer", "model", "firmware_version", "deployment_zone"):
            validate_string_length(getattr(self, name), f"metadata.{name}")
        validate_non_negative_int(self.expected_data_rate, "metadata.expected_data_rate")
        return self

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeviceMetadata":
        return cls(
            did_document=data.get("did_document", ""),
            public_key=decode_hex_bytes(data.get("public_key", ""), "metadata.public_key"),
            device_type=data.get("device_type", ""),
            manufacturer=data.get("manufacturer", ""),
            model=data.get("model", ""),
            firmware_version=data.get("firmware_version", ""),
            deployment_zone=data.get("deployment_zone", ""),
            expected_data_rate=data.get("expected_data_rate", 0),
        )


@dataclass(frozen=True)
class ProcessingRequirements:
    requires_verified_compute: bool = False
    encryption_level: EncryptionLevel = EncryptionLevel.STANDARD
    analytics_tier: AnalyticsType = AnalyticsType.BASIC
    settlement_priority: SettlementPriority = SettlementPriority.NORMAL

    @classmethod
    def default_for(cls, device_type: str) -> "ProcessingRequirements":
        return cls(requires_verified_compute=device_type in VERIFIED_COMPUTE_DEVICE_TYPES)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "requires_verified_compute": self.requires_verified_compute,
            "encryption_level": int(self.encryption_level),
            "analytics_tier": int(self.analytics_tier),
            "settlement_priority": int(self.settlement_priority),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProcessingRequirements":
        return cls(
            requires_verified_compute=bool(data["requires_verified_compute"]),
            encryption_level=EncryptionLevel(data["encryption_level"]),
            analytics_tier=AnalyticsType(data["analytics_tier"]),
            settlement_priority=SettlementPriority(data["settlement_priority"]),
        )


@dataclass(frozen=True)
class DeviceIdentity:
    id_hash: str
    identifier: str
    owner: str
    did_document: str
    public_key: bytes
    device_type: str
    manufacturer: str
    model: str
    firmware_version: str
    deployment_zone: str
    expected_data_rate: int
    registered_at: int

    @classmethod
    def create(cls, id_hash: str, identifier: str, owner: str,
               metadata: DeviceMetadata, registered_at: int) -> "DeviceIdentity":
        return cls(
            id_hash=id_hash,
            identifier=identifier,
            owner=owner,
            did_document=metadata.did_document,
            public_key=metadata.public_key,
            device_type=metadata.device_type,
            manufacturer=metadata.manufacturer,
            model=metadata.model,
            firmware_version=metadata.firmware_version,
            deployment_zone=metadata.deployment_zone,
            expected_data_rate=metadata.expected_data_rate,
            registered_at=registered_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["public_key"] = self.public_key.hex()
        return d


@dataclass(frozen=True)
class IngestionRecord:
    record_id: int
    device_id_hash: str
    data_hash: str
    submitted_at: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AnalyticsRecord:
    record_id: int
    analytics_hash: str
    source_data_hash: str
    analytics_type: AnalyticsType
    computed_at: int
    proof_required: bool = False

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["analytics_type"] = int(self.analytics_type)
        return d


@dataclass(frozen=True)
class ProofRecord:
    """
    A proof attestation filed against one analytics record.

    The submitter vouches for ``is_valid``; the ledger keeps digests of the
    proof and its public inputs, not the bytes.
    """
    proof_id: int
    record_id: int
    analytics_hash: str
    proof_hash: str
    public_inputs_hash: str
    is_valid: bool
    stored_at: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AnalyticsConfig:
    analytics_type: AnalyticsType
    enabled: bool
    processing_fee: int
    requires_proof: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "analytics_type": int(self.analytics_type),
            "enabled": self.enabled,
            "processing_fee": self.processing_fee,
            "requires_proof": self.requires_proof,
        }


DEFAULT_ANALYTICS_CONFIGS = (
    AnalyticsConfig(AnalyticsType.BASIC, enabled=True, processing_fee=0, requires_proof=False),
    AnalyticsConfig(AnalyticsType.ADVANCED, enabled=True, processing_fee=10 ** 15, requires_proof=True),
    AnalyticsConfig(AnalyticsType.ML, enabled=True, processing_fee=10 ** 16, requires_proof=True),
)


@dataclass(frozen=True)
class SubmissionResult:
    """What an accepted submission produced."""
    record: IngestionRecord
    analytics: AnalyticsRecord

    @property
    def record_id(self) -> int:
        return self.record.record_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record.record_id,
            "data_hash": self.record.data_hash,
            "analytics_hash": self.analytics.analytics_hash,
            "analytics_type": int(self.analytics.analytics_type),
        }


@dataclass
class LedgerState:
    """
    Complete ledger state as a plain value.

    Produced both from the live store and by folding the event log, so the
    two can be compared for equality.
    """
    owner: Optional[str] = None
    authorized_submitter: Optional[str] = None
    registry_fee: int = 0
    paused: bool = False
    devices: Dict[str, DeviceIdentity] = field(default_factory=dict)
    requirements: Dict[str, ProcessingRequirements] = field(default_factory=dict)
    owner_devices: Dict[str, List[str]] = field(default_factory=dict)
    records: List[IngestionRecord] = field(default_factory=list)
    analytics: List[AnalyticsRecord] = field(default_factory=list)
    analytics_configs: Dict[int, AnalyticsConfig] = field(default_factory=dict)
    proofs: List[ProofRecord] = field(default_factory=list)
    total_devices: int = 0
    total_records: int = 0
    total_analytics: int = 0
    total_proofs: int = 0

"""
IngestionLedger: admission of verified results from the authorized submitter.

``submit`` is one unit of work. Inside a single store transaction it

1. checks the caller against the authority row (``Unauthorized``),
2. checks the referenced device is registered (``DeviceNotRegistered``),
3. appends the ingestion record, bumps ``total_records``, emits ``DataStored``,
4. derives the analytics record, bumps ``total_analytics``, emits
   ``AnalyticsComputed``.

Any failure rolls the whole transaction back: no record, no counter
increment and no event survives a rejected submission.

``store_proof`` files the submitter's proof attestation against an
analytics record the same way, emitting ``ProofStored``.
"""

import json
import logging
import sqlite3
from typing import Any, Dict, List

from .analytics import AnalyticsConfigRegistry, classify_payload, resolve_tier
from .authority import AuthorityGate
from .config import MAX_PAYLOAD_BYTES, PING_VALUE
from .errors import DeviceNotRegistered, InvalidPayload, LedgerError, RecordNotFound
from .events import EventLog, EventType
from .hashing import analytics_hash, sha256_hex
from .logging_config import audit_log
from .models import (
    AnalyticsConfig,
    AnalyticsRecord,
    AnalyticsType,
    IngestionRecord,
    ProofRecord,
    SubmissionResult,
)
from .registry import IdentityRegistry
from .security import decode_hex_bytes, validate_digest, validate_non_negative_int, validate_payload
from .store import LedgerStore
from .util import Clock, now_epoch

logger = logging.getLogger(__name__)


def _record_from_row(row: sqlite3.Row) -> IngestionRecord:
    return IngestionRecord(
        record_id=row["record_id"],
        device_id_hash=row["device_id_hash"],
        data_hash=row["data_hash"],
        submitted_at=row["submitted_at"],
    )


def _analytics_from_row(row: sqlite3.Row) -> AnalyticsRecord:
    return AnalyticsRecord(
        record_id=row["record_id"],
        analytics_hash=row["analytics_hash"],
        source_data_hash=row["source_data_hash"],
        analytics_type=AnalyticsType(row["analytics_type"]),
        computed_at=row["computed_at"],
        proof_required=bool(row["proof_required"]),
    )


def _proof_from_row(row: sqlite3.Row) -> ProofRecord:
    return ProofRecord(
        proof_id=row["proof_id"],
        record_id=row["record_id"],
        analytics_hash=row["analytics_hash"],
        proof_hash=row["proof_hash"],
        public_inputs_hash=row["public_inputs_hash"],
        is_valid=bool(row["is_valid"]),
        stored_at=row["stored_at"],
    )


class IngestionLedger:

    def __init__(self, store: LedgerStore, authority: AuthorityGate, registry: IdentityRegistry,
                 events: EventLog, clock: Clock = now_epoch, max_payload_bytes: int = MAX_PAYLOAD_BYTES):
        self.store = store
        self.authority = authority
        self.registry = registry
        self.events = events
        self.clock = clock
        self.max_payload_bytes = max_payload_bytes
        self.configs = AnalyticsConfigRegistry(store, events)

    # ============================================================
    # Submission
    # ============================================================

    def submit(self, caller: str, device_id_hash: str, payload: Dict[str, Any]) -> SubmissionResult:
        """
        Admit one verified result for a registered device.

        Returns the created records; ``result.record_id`` is the new
        record id. Raises ``Unauthorized``, ``DeviceNotRegistered`` or
        ``InvalidPayload`` with no state change.
        """
        try:
            with self.store.transaction() as conn:
                self.authority.require_submitter(conn, caller)
                device_id_hash = validate_digest(device_id_hash, "device_id_hash")
                if not self.registry.is_registered(device_id_hash, conn):
                    raise DeviceNotRegistered(
                        f"device {device_id_hash} is not registered", id_hash=device_id_hash
                    )
                encoded = validate_payload(payload, self.max_payload_bytes)
                record = self._append(conn, device_id_hash, sha256_hex(encoded))
                # classify what was hashed, not the caller's Python objects
                analytics = self._derive(conn, record, json.loads(encoded))
        except LedgerError as e:
            audit_log.submission_rejected(device_id_hash, caller, e.code)
            raise

        audit_log.submission_accepted(
            record.record_id, record.device_id_hash, record.data_hash, int(analytics.analytics_type)
        )
        return SubmissionResult(record=record, analytics=analytics)

    def _append(self, conn: sqlite3.Connection, device_id_hash: str, digest: str) -> IngestionRecord:
        record_id = self.store.increment_counter(conn, "total_records")
        record = IngestionRecord(
            record_id=record_id,
            device_id_hash=device_id_hash,
            data_hash=digest,
            submitted_at=self.clock(),
        )
        conn.execute(
            "INSERT INTO ingestion_records(record_id, device_id_hash, data_hash, submitted_at) VALUES(?,?,?,?)",
            (record.record_id, record.device_id_hash, record.data_hash, record.submitted_at)
        )
        self.events.emit(conn, EventType.DATA_STORED, {
            "data_hash": record.data_hash,
            "device_id_hash": record.device_id_hash,
            "timestamp": record.submitted_at,
            "record_id": record.record_id,
        })
        return record

    def _derive(self, conn: sqlite3.Connection, record: IngestionRecord,
                payload: Dict[str, Any]) -> AnalyticsRecord:
        floor = self.registry.requirements(record.device_id_hash, conn).analytics_tier
        configs = self.configs.load(conn)
        tier = resolve_tier(classify_payload(payload), floor, configs)
        analytics = AnalyticsRecord(
            record_id=record.record_id,
            analytics_hash=analytics_hash(tier, record.data_hash),
            source_data_hash=record.data_hash,
            analytics_type=tier,
            computed_at=self.clock(),
            proof_required=configs[int(tier)].requires_proof,
        )
        conn.execute(
            "INSERT INTO analytics_records(record_id, analytics_hash, source_data_hash, analytics_type, "
            "computed_at, proof_required) VALUES(?,?,?,?,?,?)",
            (analytics.record_id, analytics.analytics_hash, analytics.source_data_hash,
             int(analytics.analytics_type), analytics.computed_at, int(analytics.proof_required))
        )
        self.store.increment_counter(conn, "total_analytics")
        self.events.emit(conn, EventType.ANALYTICS_COMPUTED, {
            "analytics_hash": analytics.analytics_hash,
            "data_hash": analytics.source_data_hash,
            "analytics_type": int(analytics.analytics_type),
            "record_id": analytics.record_id,
            "computed_at": analytics.computed_at,
            "proof_required": analytics.proof_required,
        })
        return analytics

    # ============================================================
    # Proof attestations
    # ============================================================

    def store_proof(self, caller: str, record_id: int, proof: Any, public_inputs: Any = b"",
                    is_valid: bool = True) -> ProofRecord:
        """
        File a proof attestation against an analytics record.

        Authorized submitter only. ``proof`` and ``public_inputs`` are raw
        bytes or hex; only their digests are kept. ``is_valid`` is the
        submitter's verdict and is recorded as given.

        Raises ``Unauthorized``, ``RecordNotFound`` or ``InvalidPayload``
        with no state change.
        """
        with self.store.transaction() as conn:
            self.authority.require_submitter(conn, caller)
            record_id = validate_non_negative_int(record_id, "record_id")
            row = conn.execute(
                "SELECT analytics_hash FROM analytics_records WHERE record_id=?", (record_id,)
            ).fetchone()
            if row is None:
                raise RecordNotFound(f"analytics for record {record_id} not found", record_id=record_id)
            proof_bytes = decode_hex_bytes(proof, "proof")
            if not proof_bytes:
                raise InvalidPayload("proof", "cannot be empty")
            inputs_bytes = decode_hex_bytes(public_inputs, "public_inputs")
            if not isinstance(is_valid, bool):
                raise InvalidPayload("is_valid", "must be a boolean")

            attestation = ProofRecord(
                proof_id=self.store.increment_counter(conn, "total_proofs"),
                record_id=record_id,
                analytics_hash=row["analytics_hash"],
                proof_hash=sha256_hex(proof_bytes),
                public_inputs_hash=sha256_hex(inputs_bytes),
                is_valid=is_valid,
                stored_at=self.clock(),
            )
            conn.execute(
                "INSERT INTO proofs(proof_id, record_id, analytics_hash, proof_hash, public_inputs_hash, "
                "is_valid, stored_at) VALUES(?,?,?,?,?,?,?)",
                (attestation.proof_id, attestation.record_id, attestation.analytics_hash, attestation.proof_hash,
                 attestation.public_inputs_hash, int(attestation.is_valid), attestation.stored_at)
            )
            self.events.emit(conn, EventType.PROOF_STORED, {
                "proof_id": attestation.proof_id,
                "record_id": attestation.record_id,
                "analytics_hash": attestation.analytics_hash,
                "proof_hash": attestation.proof_hash,
                "public_inputs_hash": attestation.public_inputs_hash,
                "is_valid": attestation.is_valid,
                "timestamp": attestation.stored_at,
            })
        audit_log.proof_stored(attestation.proof_id, record_id, attestation.proof_hash, is_valid)
        return attestation

    def proofs_for_record(self, record_id: int) -> List[ProofRecord]:
        """Attestations filed against one analytics record, oldest first."""
        record_id = validate_non_negative_int(record_id, "record_id")
        with self.store.read() as conn:
            rows = conn.execute(
                "SELECT * FROM proofs WHERE record_id=? ORDER BY proof_id ASC", (record_id,)
            ).fetchall()
        return [_proof_from_row(row) for row in rows]

    def all_proofs(self) -> List[ProofRecord]:
        with self.store.read() as conn:
            rows = conn.execute("SELECT * FROM proofs ORDER BY proof_id ASC").fetchall()
        return [_proof_from_row(row) for row in rows]

    # ============================================================
    # Probes and counters
    # ============================================================

    def ping(self) -> int:
        """Liveness probe. Touches no state."""
        return PING_VALUE

    def total_records(self) -> int:
        return self.store.counters()["total_records"]

    def total_analytics(self) -> int:
        return self.store.counters()["total_analytics"]

    def total_proofs(self) -> int:
        return self.store.counters()["total_proofs"]

    record_count = total_records
    analytics_count = total_analytics

    # ============================================================
    # Queries
    # ============================================================

    def get_record(self, record_id: int) -> IngestionRecord:
        record_id = validate_non_negative_int(record_id, "record_id")
        with self.store.read() as conn:
            row = conn.execute("SELECT * FROM ingestion_records WHERE record_id=?", (record_id,)).fetchone()
        if row is None:
            raise RecordNotFound(f"record {record_id} not found", record_id=record_id)
        return _record_from_row(row)

    def get_analytics(self, record_id: int) -> AnalyticsRecord:
        record_id = validate_non_negative_int(record_id, "record_id")
        with self.store.read() as conn:
            row = conn.execute("SELECT * FROM analytics_records WHERE record_id=?", (record_id,)).fetchone()
        if row is None:
            raise RecordNotFound(f"analytics for record {record_id} not found", record_id=record_id)
        return _analytics_from_row(row)

    def records_for_device(self, device_id_hash: str) -> List[str]:
        """Data hashes submitted for a device, oldest first."""
        device_id_hash = validate_digest(device_id_hash, "device_id_hash")
        with self.store.read() as conn:
            rows = conn.execute(
                "SELECT data_hash FROM ingestion_records WHERE device_id_hash=? ORDER BY record_id ASC",
                (device_id_hash,)
            ).fetchall()
        return [row["data_hash"] for row in rows]

    def all_records(self) -> List[IngestionRecord]:
        with self.store.read() as conn:
            rows = conn.execute("SELECT * FROM ingestion_records ORDER BY record_id ASC").fetchall()
        return [_record_from_row(row) for row in rows]

    def all_analytics(self) -> List[AnalyticsRecord]:
        with self.store.read() as conn:
            rows = conn.execute("SELECT * FROM analytics_records ORDER BY record_id ASC").fetchall()
        return [_analytics_from_row(row) for row in rows]

    # ============================================================
    # Analytics configuration
    # ============================================================

    def analytics_configs(self) -> Dict[int, AnalyticsConfig]:
        return self.configs.load()

    def update_analytics_config(self, caller: str, analytics_type: int, enabled: bool,
                                processing_fee: int, requires_proof: bool) -> AnalyticsConfig:
        """Owner only. BASIC analytics cannot be disabled."""
        with self.store.transaction() as conn:
            self.authority.require_owner(conn, caller, "update_analytics_config")
            previous, config = self.configs.update(conn, analytics_type, enabled, processing_fee, requires_proof)
        audit_log.authority_changed(
            f"analytics_config[{int(config.analytics_type)}]",
            previous.to_dict() if previous else None,
            config.to_dict(),
            caller,
        )
        return config

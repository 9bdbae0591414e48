"""
iotledger Event Log

The append-only, externally observable sequence of domain events. Events
are written inside the same transaction as the state change they describe,
so a rejected operation leaves no trace here. Each entry is hash-chained
to its predecessor.

The event log is sufficient to rebuild the ledger: ``replay()`` folds the
sequence, in emission order, into a ``LedgerState`` equal to the live one.
"""

import json
import logging
import sqlite3
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from .hashing import chain_entry_hash, event_payload_hash
from .models import (
    AnalyticsConfig,
    AnalyticsRecord,
    AnalyticsType,
    DeviceIdentity,
    IngestionRecord,
    LedgerState,
    ProcessingRequirements,
    ProofRecord,
)
from .store import LedgerStore
from .util import Clock, now_epoch

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    LEDGER_INITIALIZED = "LedgerInitialized"
    DEVICE_REGISTERED = "DeviceRegistered"
    PROCESSING_REQUIREMENTS_UPDATED = "ProcessingRequirementsUpdated"
    FEE_UPDATED = "FeeUpdated"
    REGISTRY_PAUSE_CHANGED = "RegistryPauseChanged"
    SUBMITTER_UPDATED = "SubmitterUpdated"
    DATA_STORED = "DataStored"
    ANALYTICS_COMPUTED = "AnalyticsComputed"
    ANALYTICS_CONFIG_UPDATED = "AnalyticsConfigUpdated"
    PROOF_STORED = "ProofStored"


@dataclass(frozen=True)
class LedgerEvent:
    """One committed entry of the event log."""
    seq: int
    event_type: EventType
    body: Dict[str, Any]
    emitted_at: int
    payload_hash: str
    prev_entry_hash: Optional[str]
    entry_hash: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seq": self.seq,
            "event_type": self.event_type.value,
            "body": self.body,
            "emitted_at": self.emitted_at,
            "payload_hash": self.payload_hash,
            "prev_entry_hash": self.prev_entry_hash,
            "entry_hash": self.entry_hash,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LedgerEvent":
        return cls(
            seq=int(data["seq"]),
            event_type=EventType(data["event_type"]),
            body=data["body"],
            emitted_at=int(data["emitted_at"]),
            payload_hash=data["payload_hash"],
            prev_entry_hash=data.get("prev_entry_hash"),
            entry_hash=data["entry_hash"],
        )

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "LedgerEvent":
        return cls(
            seq=row["seq"],
            event_type=EventType(row["event_type"]),
            body=json.loads(row["body_json"]),
            emitted_at=row["emitted_at"],
            payload_hash=row["payload_hash"],
            prev_entry_hash=row["prev_entry_hash"],
            entry_hash=row["entry_hash"],
        )


def _hashed_content(event_type: str, body: Dict[str, Any], emitted_at: int) -> Dict[str, Any]:
    return {"event_type": event_type, "body": body, "emitted_at": emitted_at}


Subscriber = Callable[[LedgerEvent], None]


class EventLog:
    """
    Writer and reader for the ``events`` table.

    Subscribers are called after the emitting transaction commits, in
    emission order. Events from a rolled-back transaction are never
    delivered.
    """

    def __init__(self, store: LedgerStore, clock: Clock = now_epoch):
        self.store = store
        self.clock = clock
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()

    def emit(self, conn: sqlite3.Connection, event_type: EventType, body: Dict[str, Any]) -> LedgerEvent:
        """Append an event inside the caller's open transaction."""
        emitted_at = self.clock()
        payload_hash = event_payload_hash(_hashed_content(event_type.value, body, emitted_at))
        row = conn.execute("SELECT entry_hash FROM events ORDER BY seq DESC LIMIT 1").fetchone()
        prev = row["entry_hash"] if row else None
        entry_hash = chain_entry_hash(prev, payload_hash)
        cur = conn.execute(
            "INSERT INTO events(event_type, body_json, emitted_at, payload_hash, prev_entry_hash, entry_hash) "
            "VALUES(?,?,?,?,?,?)",
            (event_type.value, json.dumps(body, sort_keys=True), emitted_at, payload_hash, prev, entry_hash)
        )
        event = LedgerEvent(
            seq=cur.lastrowid,
            event_type=event_type,
            body=body,
            emitted_at=emitted_at,
            payload_hash=payload_hash,
            prev_entry_hash=prev,
            entry_hash=entry_hash,
        )
        self.store.call_after_commit(lambda: self._publish(event))
        return event

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a subscriber; returns a function that removes it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)
        return unsubscribe

    def _publish(self, event: LedgerEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            callback(event)

    def entries(self, since_seq: int = 0, event_type: Optional[EventType] = None) -> List[LedgerEvent]:
        """Committed events with ``seq`` greater than ``since_seq``, oldest first."""
        query = "SELECT * FROM events WHERE seq > ?"
        params: Tuple[Any, ...] = (since_seq,)
        if event_type is not None:
            query += " AND event_type = ?"
            params += (event_type.value,)
        query += " ORDER BY seq ASC"
        with self.store.read() as conn:
            rows = conn.execute(query, params).fetchall()
        return [LedgerEvent.from_row(row) for row in rows]

    def export(self) -> List[Dict[str, Any]]:
        """Export the complete event log."""
        return [event.to_dict() for event in self.entries()]

    def proof(self) -> Dict[str, Any]:
        with self.store.read() as conn:
            count = conn.execute("SELECT COUNT(*) AS cnt FROM events").fetchone()["cnt"]
            row = conn.execute("SELECT entry_hash FROM events ORDER BY seq DESC LIMIT 1").fetchone()
        return {"entries": count, "head_entry_hash": row["entry_hash"] if row else None}


EventLike = Union[LedgerEvent, Dict[str, Any]]


def _as_event(entry: EventLike) -> LedgerEvent:
    return entry if isinstance(entry, LedgerEvent) else LedgerEvent.from_dict(entry)


def verify_chain(entries: Iterable[EventLike]) -> Tuple[bool, Optional[int]]:
    """
    Verify the hash chain of an exported event log.

    Returns ``(True, None)`` when every entry is intact, otherwise
    ``(False, seq)`` for the first entry whose content, payload hash or
    link does not match.
    """
    prev = None
    for entry in entries:
        event = _as_event(entry)
        expected_payload = event_payload_hash(
            _hashed_content(event.event_type.value, event.body, event.emitted_at)
        )
        if event.payload_hash != expected_payload:
            return False, event.seq
        if event.prev_entry_hash != prev:
            return False, event.seq
        if event.entry_hash != chain_entry_hash(prev, event.payload_hash):
            return False, event.seq
        prev = event.entry_hash
    return True, None


# ============================================================
# Replay
# ============================================================

def _apply_initialized(state: LedgerState, body: Dict[str, Any]) -> None:
    state.owner = body["owner"]
    state.authorized_submitter = body["authorized_submitter"]
    state.registry_fee = body["registry_fee"]
    for cfg in body["analytics_configs"]:
        _apply_config(state, cfg)


def _apply_device_registered(state: LedgerState, body: Dict[str, Any]) -> None:
    device = DeviceIdentity(
        id_hash=body["id_hash"],
        identifier=body["identifier"],
        owner=body["owner"],
        did_document=body["did_document"],
        public_key=bytes.fromhex(body["public_key"]),
        device_type=body["device_type"],
        manufacturer=body["manufacturer"],
        model=body["model"],
        firmware_version=body["firmware_version"],
        deployment_zone=body["deployment_zone"],
        expected_data_rate=body["expected_data_rate"],
        registered_at=body["timestamp"],
    )
    state.devices[device.id_hash] = device
    state.requirements[device.id_hash] = ProcessingRequirements.from_dict(body["requirements"])
    state.owner_devices.setdefault(device.owner, []).append(device.id_hash)
    state.total_devices += 1


def _apply_requirements(state: LedgerState, body: Dict[str, Any]) -> None:
    state.requirements[body["id_hash"]] = ProcessingRequirements.from_dict(body)


def _apply_fee(state: LedgerState, body: Dict[str, Any]) -> None:
    state.registry_fee = body["new_fee"]


def _apply_pause(state: LedgerState, body: Dict[str, Any]) -> None:
    state.paused = bool(body["paused"])


def _apply_submitter(state: LedgerState, body: Dict[str, Any]) -> None:
    state.authorized_submitter = body["new"]


def _apply_data_stored(state: LedgerState, body: Dict[str, Any]) -> None:
    state.records.append(IngestionRecord(
        record_id=body["record_id"],
        device_id_hash=body["device_id_hash"],
        data_hash=body["data_hash"],
        submitted_at=body["timestamp"],
    ))
    state.total_records += 1


def _apply_analytics(state: LedgerState, body: Dict[str, Any]) -> None:
    state.analytics.append(AnalyticsRecord(
        record_id=body["record_id"],
        analytics_hash=body["analytics_hash"],
        source_data_hash=body["data_hash"],
        analytics_type=AnalyticsType(body["analytics_type"]),
        computed_at=body["computed_at"],
        proof_required=bool(body["proof_required"]),
    ))
    state.total_analytics += 1


def _apply_config(state: LedgerState, body: Dict[str, Any]) -> None:
    cfg = AnalyticsConfig(
        analytics_type=AnalyticsType(body["analytics_type"]),
        enabled=bool(body["enabled"]),
        processing_fee=body["processing_fee"],
        requires_proof=bool(body["requires_proof"]),
    )
    state.analytics_configs[int(cfg.analytics_type)] = cfg


def _apply_proof(state: LedgerState, body: Dict[str, Any]) -> None:
    state.proofs.append(ProofRecord(
        proof_id=body["proof_id"],
        record_id=body["record_id"],
        analytics_hash=body["analytics_hash"],
        proof_hash=body["proof_hash"],
        public_inputs_hash=body["public_inputs_hash"],
        is_valid=bool(body["is_valid"]),
        stored_at=body["timestamp"],
    ))
    state.total_proofs += 1


_REDUCERS: Dict[EventType, Callable[[LedgerState, Dict[str, Any]], None]] = {
    EventType.LEDGER_INITIALIZED: _apply_initialized,
    EventType.DEVICE_REGISTERED: _apply_device_registered,
    EventType.PROCESSING_REQUIREMENTS_UPDATED: _apply_requirements,
    EventType.FEE_UPDATED: _apply_fee,
    EventType.REGISTRY_PAUSE_CHANGED: _apply_pause,
    EventType.SUBMITTER_UPDATED: _apply_submitter,
    EventType.DATA_STORED: _apply_data_stored,
    EventType.ANALYTICS_COMPUTED: _apply_analytics,
    EventType.ANALYTICS_CONFIG_UPDATED: _apply_config,
    EventType.PROOF_STORED: _apply_proof,
}


def replay(entries: Iterable[EventLike]) -> LedgerState:
    """Fold an ordered event sequence into the ledger state it describes."""
    state = LedgerState()
    for entry in entries:
        event = _as_event(entry)
        _REDUCERS[event.event_type](state, event.body)
    return state

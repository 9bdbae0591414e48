"""
IdentityRegistry: onboarding and lookup of physical devices.

A device is keyed by ``device_id_hash(identifier)``. Entries are created
only by a successful ``register`` and are never updated or deleted; the
only per-device value the owner may later adjust is its processing
requirements, which live in their own table.
"""

import logging
import sqlite3
from typing import Any, Dict, List, Optional

from .authority import AuthorityGate
from .errors import (
    AlreadyRegistered,
    DeviceNotRegistered,
    InsufficientFee,
    InvalidPayload,
    LedgerError,
    RegistryPaused,
)
from .events import EventLog, EventType
from .hashing import device_id_hash
from .logging_config import audit_log
from .models import (
    AnalyticsType,
    DeviceIdentity,
    DeviceMetadata,
    EncryptionLevel,
    ProcessingRequirements,
    SettlementPriority,
)
from .security import validate_address, validate_digest, validate_identifier, validate_non_negative_int
from .store import LedgerStore
from .util import Clock, now_epoch

logger = logging.getLogger(__name__)

DEVICE_COLUMNS = (
    "id_hash, identifier, owner, did_document, public_key, device_type, manufacturer, "
    "model, firmware_version, deployment_zone, expected_data_rate, registered_at"
)


def _device_from_row(row: sqlite3.Row) -> DeviceIdentity:
    return DeviceIdentity(
        id_hash=row["id_hash"],
        identifier=row["identifier"],
        owner=row["owner"],
        did_document=row["did_document"],
        public_key=bytes(row["public_key"]),
        device_type=row["device_type"],
        manufacturer=row["manufacturer"],
        model=row["model"],
        firmware_version=row["firmware_version"],
        deployment_zone=row["deployment_zone"],
        expected_data_rate=row["expected_data_rate"],
        registered_at=row["registered_at"],
    )


def _requirements_from_row(row: sqlite3.Row) -> ProcessingRequirements:
    return ProcessingRequirements(
        requires_verified_compute=bool(row["requires_verified_compute"]),
        encryption_level=EncryptionLevel(row["encryption_level"]),
        analytics_tier=AnalyticsType(row["analytics_tier"]),
        settlement_priority=SettlementPriority(row["settlement_priority"]),
    )


class IdentityRegistry:

    def __init__(self, store: LedgerStore, authority: AuthorityGate, events: EventLog,
                 clock: Clock = now_epoch):
        self.store = store
        self.authority = authority
        self.events = events
        self.clock = clock

    # ============================================================
    # Registration
    # ============================================================

    def register(self, caller: str, identifier: str, metadata: DeviceMetadata, payment: int) -> str:
        """
        Register a device and return its ``id_hash``.

        The caller becomes the device owner. Fails with ``AlreadyRegistered``
        for a known identifier, ``InsufficientFee`` when ``payment`` is below
        the current fee and ``RegistryPaused`` while registration is halted.
        Nothing is written unless every check passes.
        """
        id_hash = None
        try:
            owner = validate_address(caller, "caller")
            identifier = validate_identifier(identifier)
            metadata = metadata.validate()
            payment = validate_non_negative_int(payment, "payment")
            id_hash = device_id_hash(identifier)

            with self.store.transaction() as conn:
                state = self._state(conn)
                if state["paused"]:
                    raise RegistryPaused("registry is paused")
                if self._exists(conn, id_hash):
                    raise AlreadyRegistered(f"device {id_hash} already registered", id_hash=id_hash)
                if payment < state["registry_fee"]:
                    raise InsufficientFee(
                        "insufficient registration fee",
                        required=state["registry_fee"],
                        paid=payment,
                    )

                device = DeviceIdentity.create(id_hash, identifier, owner, metadata, self.clock())
                requirements = ProcessingRequirements.default_for(device.device_type)
                self._insert(conn, device, requirements)
                self.store.increment_counter(conn, "total_devices")
                self.events.emit(conn, EventType.DEVICE_REGISTERED, {
                    "id_hash": device.id_hash,
                    "owner": device.owner,
                    "device_type": device.device_type,
                    "deployment_zone": device.deployment_zone,
                    "timestamp": device.registered_at,
                    "identifier": device.identifier,
                    "did_document": device.did_document,
                    "public_key": device.public_key.hex(),
                    "manufacturer": device.manufacturer,
                    "model": device.model,
                    "firmware_version": device.firmware_version,
                    "expected_data_rate": device.expected_data_rate,
                    "requirements": requirements.to_dict(),
                })
        except LedgerError as e:
            audit_log.registration_rejected(id_hash, caller, e.code)
            raise

        audit_log.device_registered(id_hash, owner, device.to_dict())
        return id_hash

    def _insert(self, conn: sqlite3.Connection, device: DeviceIdentity,
                requirements: ProcessingRequirements) -> None:
        conn.execute(
            f"INSERT INTO devices({DEVICE_COLUMNS}) VALUES(?,?,?,?,?,?,?,?,?,?,?,?)",
            (device.id_hash, device.identifier, device.owner, device.did_document,
             device.public_key, device.device_type, device.manufacturer, device.model,
             device.firmware_version, device.deployment_zone, device.expected_data_rate,
             device.registered_at)
        )
        conn.execute(
            "INSERT INTO processing_requirements(id_hash, requires_verified_compute, encryption_level, "
            "analytics_tier, settlement_priority) VALUES(?,?,?,?,?)",
            (device.id_hash, int(requirements.requires_verified_compute), int(requirements.encryption_level),
             int(requirements.analytics_tier), int(requirements.settlement_priority))
        )

    # ============================================================
    # Queries
    # ============================================================

    def _exists(self, conn: sqlite3.Connection, id_hash: str) -> bool:
        return conn.execute("SELECT 1 FROM devices WHERE id_hash=?", (id_hash,)).fetchone() is not None

    def is_registered(self, id_hash: str, conn: Optional[sqlite3.Connection] = None) -> bool:
        """Pure read. Only a malformed digest raises."""
        id_hash = validate_digest(id_hash, "id_hash")
        if conn is not None:
            return self._exists(conn, id_hash)
        with self.store.read() as c:
            return self._exists(c, id_hash)

    def get_device(self, id_hash: str) -> DeviceIdentity:
        id_hash = validate_digest(id_hash, "id_hash")
        with self.store.read() as conn:
            row = conn.execute(f"SELECT {DEVICE_COLUMNS} FROM devices WHERE id_hash=?", (id_hash,)).fetchone()
        if row is None:
            raise DeviceNotRegistered(f"device {id_hash} is not registered", id_hash=id_hash)
        return _device_from_row(row)

    def devices_of(self, owner: str) -> List[str]:
        """Device hashes registered by ``owner``, in registration order."""
        owner = validate_address(owner, "owner")
        with self.store.read() as conn:
            rows = conn.execute("SELECT id_hash FROM devices WHERE owner=? ORDER BY seq ASC", (owner,)).fetchall()
        return [row["id_hash"] for row in rows]

    def all_devices(self) -> List[DeviceIdentity]:
        with self.store.read() as conn:
            rows = conn.execute(f"SELECT {DEVICE_COLUMNS} FROM devices ORDER BY seq ASC").fetchall()
        return [_device_from_row(row) for row in rows]

    def requirements(self, id_hash: str, conn: Optional[sqlite3.Connection] = None) -> ProcessingRequirements:
        id_hash = validate_digest(id_hash, "id_hash")
        query = "SELECT * FROM processing_requirements WHERE id_hash=?"
        if conn is not None:
            row = conn.execute(query, (id_hash,)).fetchone()
        else:
            with self.store.read() as c:
                row = c.execute(query, (id_hash,)).fetchone()
        if row is None:
            raise DeviceNotRegistered(f"device {id_hash} is not registered", id_hash=id_hash)
        return _requirements_from_row(row)

    def all_requirements(self) -> Dict[str, ProcessingRequirements]:
        with self.store.read() as conn:
            rows = conn.execute("SELECT * FROM processing_requirements").fetchall()
        return {row["id_hash"]: _requirements_from_row(row) for row in rows}

    def _state(self, conn: sqlite3.Connection) -> sqlite3.Row:
        return conn.execute("SELECT registry_fee, paused FROM registry_state WHERE id=1").fetchone()

    def fee(self) -> int:
        with self.store.read() as conn:
            return self._state(conn)["registry_fee"]

    def is_paused(self) -> bool:
        with self.store.read() as conn:
            return bool(self._state(conn)["paused"])

    def owner(self) -> str:
        return self.authority.owner()

    def device_count(self) -> int:
        return self.store.counters()["total_devices"]

    # ============================================================
    # Administration (owner only)
    # ============================================================

    def initialize(self, conn: sqlite3.Connection, registry_fee: int) -> None:
        registry_fee = validate_non_negative_int(registry_fee, "registry_fee")
        conn.execute("INSERT INTO registry_state(id, registry_fee, paused) VALUES(1, ?, 0)", (registry_fee,))

    def set_fee(self, caller: str, new_fee: int) -> None:
        with self.store.transaction() as conn:
            self.authority.require_owner(conn, caller, "set_fee")
            new_fee = validate_non_negative_int(new_fee, "new_fee")
            previous = self._state(conn)["registry_fee"]
            conn.execute("UPDATE registry_state SET registry_fee=? WHERE id=1", (new_fee,))
            self.events.emit(conn, EventType.FEE_UPDATED, {"previous_fee": previous, "new_fee": new_fee})
        audit_log.authority_changed("registry_fee", previous, new_fee, caller)

    def pause(self, caller: str) -> None:
        self._set_paused(caller, True)

    def unpause(self, caller: str) -> None:
        self._set_paused(caller, False)

    def _set_paused(self, caller: str, paused: bool) -> None:
        with self.store.transaction() as conn:
            self.authority.require_owner(conn, caller, "pause" if paused else "unpause")
            if bool(self._state(conn)["paused"]) == paused:
                return
            conn.execute("UPDATE registry_state SET paused=? WHERE id=1", (int(paused),))
            self.events.emit(conn, EventType.REGISTRY_PAUSE_CHANGED, {"paused": paused})
        audit_log.authority_changed("paused", not paused, paused, caller)

    def set_processing_requirements(self, caller: str, id_hash: str, **changes: Any) -> ProcessingRequirements:
        """
        Adjust a device's processing requirements (owner only).

        Accepts any of ``requires_verified_compute``, ``encryption_level``,
        ``analytics_tier`` and ``settlement_priority``; unspecified fields
        keep their current value.
        """
        with self.store.transaction() as conn:
            self.authority.require_owner(conn, caller, "set_processing_requirements")
            id_hash = validate_digest(id_hash, "id_hash")
            current = self.requirements(id_hash, conn)
            merged = current.to_dict()
            for key, value in changes.items():
                if key not in merged:
                    raise InvalidPayload(key, "unknown processing requirement")
                if value is not None:
                    merged[key] = value
            try:
                updated = ProcessingRequirements.from_dict(merged)
            except ValueError as e:
                raise InvalidPayload("requirements", str(e))
            conn.execute(
                "UPDATE processing_requirements SET requires_verified_compute=?, encryption_level=?, "
                "analytics_tier=?, settlement_priority=? WHERE id_hash=?",
                (int(updated.requires_verified_compute), int(updated.encryption_level),
                 int(updated.analytics_tier), int(updated.settlement_priority), id_hash)
            )
            self.events.emit(conn, EventType.PROCESSING_REQUIREMENTS_UPDATED, {
                "id_hash": id_hash,
                **updated.to_dict(),
                "timestamp": self.clock(),
            })
        return updated

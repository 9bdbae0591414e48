"""
LedgerService: one ledger, fully wired.

Owns the store and the four cooperating components, bootstraps a fresh
database with its genesis event, and produces the ``LedgerState``
snapshot that replaying the event log must reproduce.
"""

import logging
from typing import Any, Dict, Optional

from . import config
from .authority import AuthorityGate
from .events import EventLog, EventType
from .ledger import IngestionLedger
from .models import LedgerState
from .registry import IdentityRegistry
from .store import LedgerStore
from .util import Clock, now_epoch

logger = logging.getLogger(__name__)


class LedgerService:

    def __init__(self, store: LedgerStore, clock: Clock = now_epoch,
                 max_payload_bytes: int = config.MAX_PAYLOAD_BYTES):
        self.store = store
        self.clock = clock
        self.events = EventLog(store, clock)
        self.authority = AuthorityGate(store, self.events)
        self.registry = IdentityRegistry(store, self.authority, self.events, clock)
        self.ledger = IngestionLedger(
            store, self.authority, self.registry, self.events, clock, max_payload_bytes
        )

    @classmethod
    def open(cls, path: str = ":memory:", owner: Optional[str] = None, submitter: Optional[str] = None,
             registry_fee: int = 0, clock: Clock = now_epoch,
             max_payload_bytes: int = config.MAX_PAYLOAD_BYTES) -> "LedgerService":
        """
        Open (and if needed bootstrap) the ledger stored at ``path``.

        ``owner``, ``submitter`` and ``registry_fee`` only apply to a fresh
        store. An existing store keeps the authority it was created with.
        """
        service = cls(LedgerStore(path), clock, max_payload_bytes)
        if service.store.is_bootstrapped():
            logger.info("opened existing ledger at %s", path)
        else:
            try:
                if not owner:
                    raise ValueError("owner address is required to bootstrap a new ledger")
                service.bootstrap(owner, submitter, registry_fee)
            except Exception:
                service.store.close()
                raise
        return service

    @classmethod
    def from_config(cls) -> "LedgerService":
        return cls.open(
            config.DB_PATH,
            owner=config.OWNER_ADDRESS,
            submitter=config.SUBMITTER_ADDRESS or None,
            registry_fee=config.REGISTRY_FEE,
            max_payload_bytes=config.MAX_PAYLOAD_BYTES,
        )

    def bootstrap(self, owner: str, submitter: Optional[str], registry_fee: int) -> None:
        """Write authority, registry state and tier configs, then the genesis event."""
        with self.store.transaction() as conn:
            authority = self.authority.initialize(conn, owner, submitter)
            self.registry.initialize(conn, registry_fee)
            configs = self.ledger.configs.initialize(conn)
            self.events.emit(conn, EventType.LEDGER_INITIALIZED, {
                "owner": authority["owner"],
                "authorized_submitter": authority["authorized_submitter"],
                "registry_fee": registry_fee,
                "analytics_configs": configs,
            })
        logger.info("bootstrapped ledger owned by %s", authority["owner"])

    # ============================================================
    # Introspection
    # ============================================================

    def snapshot(self) -> LedgerState:
        """Current committed state as a plain value."""
        # the nested reads re-enter the store lock, so no commit lands in between
        with self.store.read():
            state = LedgerState(
                owner=self.authority.owner(),
                authorized_submitter=self.authority.authorized_submitter(),
                registry_fee=self.registry.fee(),
                paused=self.registry.is_paused(),
                records=self.ledger.all_records(),
                analytics=self.ledger.all_analytics(),
                analytics_configs=self.ledger.analytics_configs(),
                proofs=self.ledger.all_proofs(),
            )
            for device in self.registry.all_devices():
                state.devices[device.id_hash] = device
                state.owner_devices.setdefault(device.owner, []).append(device.id_hash)
            state.requirements = self.registry.all_requirements()
            counters = self.store.counters()
        state.total_devices = counters["total_devices"]
        state.total_records = counters["total_records"]
        state.total_analytics = counters["total_analytics"]
        state.total_proofs = counters["total_proofs"]
        return state

    def stats(self) -> Dict[str, Any]:
        counters = self.store.counters()
        return {
            "device_count": counters["total_devices"],
            "record_count": counters["total_records"],
            "analytics_count": counters["total_analytics"],
            "proof_count": counters["total_proofs"],
        }

    def close(self) -> None:
        self.store.close()

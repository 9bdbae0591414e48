"""
Analytics derivation.

Each accepted submission yields exactly one analytics record whose tier is
a pure function of the payload shape, the device's requirements floor and
the tier configuration in force at that moment.
"""

import sqlite3
from numbers import Number
from typing import Any, Dict, List, Optional, Tuple

from .errors import InvalidPayload
from .events import EventLog, EventType
from .models import DEFAULT_ANALYTICS_CONFIGS, AnalyticsConfig, AnalyticsType
from .security import validate_non_negative_int
from .store import LedgerStore

# A numeric series at least this long is treated as ML input
ML_SERIES_MIN = 16
# This many numeric readings (or any nested object) makes a payload ADVANCED
ADVANCED_READINGS_MIN = 4


def _is_number(value: Any) -> bool:
    return isinstance(value, Number) and not isinstance(value, bool)


def _count_readings(payload: Dict[str, Any]) -> int:
    return sum(1 for value in payload.values() if _is_number(value))


def classify_payload(payload: Dict[str, Any]) -> AnalyticsType:
    """
    Deterministically classify a payload into an analytics tier.

    - ML: any array value holding at least ``ML_SERIES_MIN`` numbers
    - ADVANCED: any nested object, or at least ``ADVANCED_READINGS_MIN``
      top-level numeric readings
    - BASIC: everything else
    """
    tier = AnalyticsType.BASIC
    for value in payload.values():
        if isinstance(value, (list, tuple)):
            if sum(1 for item in value if _is_number(item)) >= ML_SERIES_MIN:
                return AnalyticsType.ML
        elif isinstance(value, dict):
            tier = AnalyticsType.ADVANCED
    if _count_readings(payload) >= ADVANCED_READINGS_MIN:
        tier = AnalyticsType.ADVANCED
    return tier


def resolve_tier(classified: AnalyticsType, floor: AnalyticsType,
                 configs: Dict[int, AnalyticsConfig]) -> AnalyticsType:
    """Apply the device floor, then fall back to BASIC if the tier is disabled."""
    tier = AnalyticsType(max(int(classified), int(floor)))
    config = configs.get(int(tier))
    if config is None or not config.enabled:
        return AnalyticsType.BASIC
    return tier


def _config_from_row(row: sqlite3.Row) -> AnalyticsConfig:
    return AnalyticsConfig(
        analytics_type=AnalyticsType(row["analytics_type"]),
        enabled=bool(row["enabled"]),
        processing_fee=row["processing_fee"],
        requires_proof=bool(row["requires_proof"]),
    )


class AnalyticsConfigRegistry:
    """Per-tier analytics configuration, owned by the ingestion ledger."""

    def __init__(self, store: LedgerStore, events: EventLog):
        self.store = store
        self.events = events

    def initialize(self, conn: sqlite3.Connection) -> List[Dict[str, Any]]:
        for config in DEFAULT_ANALYTICS_CONFIGS:
            self._write(conn, config)
        return [config.to_dict() for config in DEFAULT_ANALYTICS_CONFIGS]

    def _write(self, conn: sqlite3.Connection, config: AnalyticsConfig) -> None:
        conn.execute(
            "INSERT OR REPLACE INTO analytics_configs(analytics_type, enabled, processing_fee, requires_proof) "
            "VALUES(?,?,?,?)",
            (int(config.analytics_type), int(config.enabled), config.processing_fee, int(config.requires_proof))
        )

    def load(self, conn: Optional[sqlite3.Connection] = None) -> Dict[int, AnalyticsConfig]:
        query = "SELECT * FROM analytics_configs ORDER BY analytics_type"
        if conn is not None:
            rows = conn.execute(query).fetchall()
        else:
            with self.store.read() as c:
                rows = c.execute(query).fetchall()
        return {row["analytics_type"]: _config_from_row(row) for row in rows}

    def update(self, conn: sqlite3.Connection, analytics_type: int, enabled: bool, processing_fee: int,
               requires_proof: bool) -> Tuple[Optional[AnalyticsConfig], AnalyticsConfig]:
        """
        Write a tier config inside the caller's transaction.

        Authorization is the caller's job. Returns ``(previous, new)``.
        """
        analytics_type = _parse_type(analytics_type)
        processing_fee = validate_non_negative_int(processing_fee, "processing_fee")
        if analytics_type == AnalyticsType.BASIC and not enabled:
            raise InvalidPayload("enabled", "BASIC analytics cannot be disabled")
        config = AnalyticsConfig(analytics_type, bool(enabled), processing_fee, bool(requires_proof))
        previous = self.load(conn).get(int(analytics_type))
        self._write(conn, config)
        self.events.emit(conn, EventType.ANALYTICS_CONFIG_UPDATED, config.to_dict())
        return previous, config


def _parse_type(analytics_type: Any) -> AnalyticsType:
    try:
        return AnalyticsType(int(analytics_type))
    except (TypeError, ValueError):
        raise InvalidPayload("analytics_type", "must be 0 (basic), 1 (advanced) or 2 (ML)")

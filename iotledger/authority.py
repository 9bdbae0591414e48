"""
AuthorityGate: the two trust facts of the ledger.

- ``owner``: the administrative account, fixed at bootstrap.
- ``authorized_submitter``: the single account whose submissions are
  admitted as verified results.

Every gated operation in the package authorizes through ``require_owner``
or ``require_submitter``; there is no other place an address comparison
grants privilege. Both read the authority row through the caller's open
connection, so the check and the write it guards see the same value.
"""

import logging
import sqlite3
from typing import Dict, Optional

from .errors import InvalidPayload, Unauthorized
from .events import EventLog, EventType
from .logging_config import audit_log
from .security import ZERO_ADDRESS, validate_address
from .store import LedgerStore
from .util import constant_time_compare

logger = logging.getLogger(__name__)


class AuthorityGate:

    def __init__(self, store: LedgerStore, events: EventLog):
        self.store = store
        self.events = events

    # ============================================================
    # Bootstrap
    # ============================================================

    def initialize(self, conn: sqlite3.Connection, owner: str, submitter: Optional[str]) -> Dict[str, Optional[str]]:
        owner = validate_address(owner, "owner")
        if owner == ZERO_ADDRESS:
            raise InvalidPayload("owner", "cannot be the zero address")
        submitter = validate_address(submitter, "authorized_submitter") if submitter else None
        conn.execute(
            "INSERT INTO authority(id, owner, authorized_submitter) VALUES(1, ?, ?)",
            (owner, submitter)
        )
        return {"owner": owner, "authorized_submitter": submitter}

    # ============================================================
    # Reads
    # ============================================================

    def _row(self, conn: sqlite3.Connection) -> sqlite3.Row:
        row = conn.execute("SELECT owner, authorized_submitter FROM authority WHERE id=1").fetchone()
        if row is None:
            raise RuntimeError("ledger store has not been bootstrapped")
        return row

    def owner(self) -> str:
        with self.store.read() as conn:
            return self._row(conn)["owner"]

    def authorized_submitter(self) -> Optional[str]:
        with self.store.read() as conn:
            return self._row(conn)["authorized_submitter"]

    def is_owner(self, caller: str, conn: Optional[sqlite3.Connection] = None) -> bool:
        return self._matches(caller, "owner", conn)

    def is_authorized(self, caller: str, conn: Optional[sqlite3.Connection] = None) -> bool:
        """Pure read: is ``caller`` the current authorized submitter?"""
        return self._matches(caller, "authorized_submitter", conn)

    def _matches(self, caller: str, column: str, conn: Optional[sqlite3.Connection]) -> bool:
        try:
            caller = validate_address(caller, "caller")
        except InvalidPayload:
            return False
        if caller == ZERO_ADDRESS:
            return False
        if conn is None:
            with self.store.read() as c:
                expected = self._row(c)[column]
        else:
            expected = self._row(conn)[column]
        return expected is not None and constant_time_compare(caller, expected)

    # ============================================================
    # Enforcement
    # ============================================================

    def require_owner(self, conn: sqlite3.Connection, caller: str, action: str) -> str:
        """Raise ``Unauthorized`` unless ``caller`` is the owner."""
        if not self.is_owner(caller, conn):
            audit_log.security_event("owner_check_failed", severity="high", caller=caller, action=action)
            raise Unauthorized(f"{action} requires the owner", caller=caller)
        return caller.lower()

    def require_submitter(self, conn: sqlite3.Connection, caller: str) -> str:
        """Raise ``Unauthorized`` unless ``caller`` is the authorized submitter."""
        if not self.is_authorized(caller, conn):
            audit_log.security_event("submitter_check_failed", severity="high", caller=caller)
            raise Unauthorized("caller is not the authorized submitter", caller=caller)
        return caller.lower()

    # ============================================================
    # Administration
    # ============================================================

    def set_authorized_submitter(self, caller: str, new_submitter: str) -> None:
        """
        Replace the authorized submitter (owner only).

        Takes effect for submissions that begin after this commits; a
        submission already holding the store lock finishes against the
        previous value.
        """
        with self.store.transaction() as conn:
            self.require_owner(conn, caller, "set_authorized_submitter")
            new_submitter = validate_address(new_submitter, "authorized_submitter")
            previous = self._row(conn)["authorized_submitter"]
            conn.execute("UPDATE authority SET authorized_submitter=? WHERE id=1", (new_submitter,))
            self.events.emit(conn, EventType.SUBMITTER_UPDATED, {"previous": previous, "new": new_submitter})
        audit_log.authority_changed("authorized_submitter", previous, new_submitter, caller)
        logger.info("authorized submitter changed to %s", new_submitter)

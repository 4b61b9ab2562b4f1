import os
import sqlite3
import time
from pathlib import Path
from typing import Dict, List, Optional

from reelchain.core.models import CreditReservation, ReservationState
from reelchain.utils.logging_setup import setup_logger

logger = setup_logger(__name__)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS meta (
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS reservations (
  reservation_id TEXT PRIMARY KEY,
  amount INTEGER NOT NULL,
  state TEXT NOT NULL,               -- reserved/committed/released
  created_at REAL NOT NULL,
  updated_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_reservations_state ON reservations(state);
"""


class LedgerStore:
    """SQLite persistence for the credit ledger."""

    def __init__(self, conn: sqlite3.Connection, db_path: str):
        self.conn = conn
        self.db_path = db_path
        self.conn.row_factory = sqlite3.Row
        self.conn.executescript(SCHEMA_SQL)

    @classmethod
    def open(cls, db_path: Optional[os.PathLike] = None) -> "LedgerStore":
        path = str(db_path) if db_path else ":memory:"
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(path, isolation_level=None, check_same_thread=False)
        if path != ":memory:":
            conn.execute("PRAGMA journal_mode=WAL;")
        return cls(conn, db_path=path)

    def close(self) -> None:
        try:
            self.conn.close()
        except sqlite3.Error:
            pass

    def _now(self) -> float:
        return time.time()

    def get_granted(self) -> Optional[int]:
        row = self.conn.execute("SELECT value FROM meta WHERE key='granted'").fetchone()
        return int(row["value"]) if row else None

    def set_granted(self, granted: int) -> None:
        self.conn.execute(
            "INSERT INTO meta(key, value) VALUES ('granted', ?) "
            "ON CONFLICT(key) DO UPDATE SET value=excluded.value",
            (str(int(granted)),),
        )

    def save_reservation(self, reservation: CreditReservation) -> None:
        ts = self._now()
        self.conn.execute(
            """
            INSERT INTO reservations(reservation_id, amount, state, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(reservation_id) DO UPDATE SET state=excluded.state, updated_at=excluded.updated_at
            """,
            (reservation.id, reservation.amount, reservation.state.value, reservation.created_at or ts, ts),
        )

    def load_reservations(self) -> List[CreditReservation]:
        rows = self.conn.execute(
            "SELECT reservation_id, amount, state, created_at FROM reservations ORDER BY created_at"
        ).fetchall()
        return [
            CreditReservation(
                id=r["reservation_id"],
                amount=int(r["amount"]),
                state=ReservationState(r["state"]),
                created_at=float(r["created_at"]),
            )
            for r in rows
        ]

    def release_stale(self) -> int:
        """Release reservations left open by a process that died mid-batch."""
        cur = self.conn.execute(
            "UPDATE reservations SET state=?, updated_at=? WHERE state=?",
            (ReservationState.RELEASED.value, self._now(), ReservationState.RESERVED.value),
        )
        if cur.rowcount:
            logger.warning(f"Released {cur.rowcount} stale reservations on ledger open")
        return cur.rowcount

    def totals(self) -> Dict[str, int]:
        rows = self.conn.execute(
            "SELECT state, COALESCE(SUM(amount), 0) AS total FROM reservations GROUP BY state"
        ).fetchall()
        totals = {s.value: 0 for s in ReservationState}
        for r in rows:
            totals[r["state"]] = int(r["total"])
        return totals

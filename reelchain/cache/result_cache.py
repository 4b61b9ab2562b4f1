import hashlib
import os
import sqlite3
import threading
import time
from pathlib import Path
from typing import Callable, Dict, Optional

from reelchain.core.errors import CacheCorruptionError
from reelchain.utils.logging_setup import setup_logger

logger = setup_logger(__name__)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS results (
  fingerprint TEXT PRIMARY KEY,
  asset_ref TEXT NOT NULL,
  checksum TEXT NOT NULL,
  created_at REAL NOT NULL
);
"""


def _checksum(fingerprint: str, asset_ref: str) -> str:
    return hashlib.sha256(f"{fingerprint}|{asset_ref}".encode("utf-8")).hexdigest()


class ResultCache:
    """
    Content-addressed, write-once map from request fingerprint to asset ref.

    Any row that cannot be trusted is evicted and reported as a miss; corruption
    is logged, never raised to callers.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        db_path: str = ":memory:",
        asset_exists: Optional[Callable[[str], bool]] = None,
    ):
        self.conn = conn
        self.db_path = db_path
        self.asset_exists = asset_exists
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self.conn.row_factory = sqlite3.Row
        self.conn.executescript(SCHEMA_SQL)

    @classmethod
    def open(
        cls,
        db_path: Optional[os.PathLike] = None,
        asset_exists: Optional[Callable[[str], bool]] = None,
    ) -> "ResultCache":
        path = str(db_path) if db_path else ":memory:"
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(path, isolation_level=None, check_same_thread=False)
        if path != ":memory:":
            conn.execute("PRAGMA journal_mode=WAL;")
        return cls(conn, db_path=path, asset_exists=asset_exists)

    def close(self) -> None:
        try:
            self.conn.close()
        except sqlite3.Error:
            pass

    def get(self, fingerprint: str) -> Optional[str]:
        try:
            asset_ref = self._lookup(fingerprint)
        except CacheCorruptionError as e:
            logger.warning(f"Result cache entry unusable, evicting and treating as miss: {e}")
            self._evict(fingerprint)
            asset_ref = None
        with self._lock:
            if asset_ref is None:
                self._misses += 1
            else:
                self._hits += 1
        return asset_ref

    def _lookup(self, fingerprint: str) -> Optional[str]:
        try:
            with self._lock:
                row = self.conn.execute(
                    "SELECT asset_ref, checksum FROM results WHERE fingerprint=?", (fingerprint,)
                ).fetchone()
        except sqlite3.DatabaseError as e:
            raise CacheCorruptionError(f"database error for {fingerprint[:12]}: {e}") from e
        if row is None:
            return None
        asset_ref, checksum = row["asset_ref"], row["checksum"]
        if not isinstance(asset_ref, str) or not asset_ref:
            raise CacheCorruptionError(f"undecodable asset ref for {fingerprint[:12]}")
        if checksum != _checksum(fingerprint, asset_ref):
            raise CacheCorruptionError(f"checksum mismatch for {fingerprint[:12]}")
        if self.asset_exists is not None and not self.asset_exists(asset_ref):
            raise CacheCorruptionError(f"asset {asset_ref} for {fingerprint[:12]} is missing")
        return asset_ref

    def _evict(self, fingerprint: str) -> None:
        # a bad row would otherwise block the next put for this fingerprint
        try:
            self.purge(fingerprint)
        except sqlite3.DatabaseError as e:
            logger.warning(f"Could not evict cache entry {fingerprint[:12]}: {e}")

    def put(self, fingerprint: str, asset_ref: str) -> bool:
        """Store the mapping; the first write for a fingerprint wins. Returns True if inserted."""
        if not fingerprint or not asset_ref:
            raise ValueError("fingerprint and asset_ref must be non-empty")
        try:
            with self._lock:
                cur = self.conn.execute(
                    "INSERT OR IGNORE INTO results(fingerprint, asset_ref, checksum, created_at) VALUES (?, ?, ?, ?)",
                    (fingerprint, asset_ref, _checksum(fingerprint, asset_ref), time.time()),
                )
        except sqlite3.DatabaseError as e:
            logger.warning(f"Result cache write failed for {fingerprint[:12]}: {e}")
            return False
        return cur.rowcount > 0

    def purge(self, fingerprint: str) -> bool:
        with self._lock:
            cur = self.conn.execute("DELETE FROM results WHERE fingerprint=?", (fingerprint,))
        return cur.rowcount > 0

    def stats(self) -> Dict[str, int]:
        with self._lock:
            row = self.conn.execute("SELECT COUNT(*) AS n FROM results").fetchone()
            return {"entries": int(row["n"]), "hits": self._hits, "misses": self._misses}

"""
SQLite-backed persistent cache of last-known-good documents.

Each token maps to one row holding {"t": <unix-ms>, "d": <document>} under the
key "<prefix>:<token>". An in-memory mirror serves repeated reads; the store
is only consulted on a mirror miss.
"""
import sqlite3
import json
import logging
from pathlib import Path
from typing import Dict, Optional, Any, List, Union

from .core import CacheEntry
from ..errors import StorageError

logger = logging.getLogger("tokensync.store")

MEMORY_DB = ":memory:"

SCHEMA = """
CREATE TABLE IF NOT EXISTS entries (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


class PersistentCache:
    """
    Read-through / write-through cache over a SQLite key-value table.

    The store is best-effort: if it cannot be opened, read, or written the
    cache keeps working from its in-memory mirror for the rest of the session.
    """

    def __init__(self, db_path: Union[Path, str, None] = None, prefix: str = "msrv"):
        """
        Initialize the cache.

        Args:
            db_path: SQLite file path, or ":memory:" for a throwaway store
            prefix: Namespace prepended to every persisted key
        """
        self.db_path = db_path if db_path is not None else MEMORY_DB
        self.prefix = prefix
        self._mirror: Dict[str, CacheEntry] = {}
        self._conn: Optional[sqlite3.Connection] = None
        self._stats = {
            "mirror_hits": 0,
            "store_hits": 0,
            "misses": 0,
            "writes": 0,
            "storage_failures": 0,
        }
        self._open()

    def _open(self) -> None:
        """Open the database and ensure the schema exists."""
        try:
            if str(self.db_path) != MEMORY_DB:
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.db_path))
            conn.executescript(SCHEMA)
            conn.commit()
            self._conn = conn
        except (sqlite3.Error, OSError) as e:
            self._record_failure(StorageError(f"cannot open {self.db_path}: {e}"))
            self._conn = None

    def _key(self, token: str) -> str:
        return f"{self.prefix}:{token}"

    def _record_failure(self, error: StorageError) -> None:
        self._stats["storage_failures"] += 1
        logger.warning(f"Persistent store unavailable, using memory only: {error}")

    @property
    def is_persistent(self) -> bool:
        """True while a backing database is open."""
        return self._conn is not None

    def read(self, token: str) -> Optional[CacheEntry]:
        """
        Get the cached entry for a token.

        Unreadable or missing rows are reported as absent, never raised.
        """
        entry = self._mirror.get(token)
        if entry is not None:
            self._stats["mirror_hits"] += 1
            return entry

        if self._conn is None:
            self._stats["misses"] += 1
            return None

        try:
            row = self._conn.execute(
                "SELECT value FROM entries WHERE key = ?", (self._key(token),)
            ).fetchone()
        except sqlite3.Error as e:
            logger.debug(f"Store read failed for {token}: {e}")
            self._stats["misses"] += 1
            return None

        if row is None:
            self._stats["misses"] += 1
            return None

        try:
            entry = CacheEntry.from_record(json.loads(row[0]))
        except (ValueError, OverflowError) as e:
            # json.JSONDecodeError is a ValueError
            logger.debug(f"Discarding unreadable entry for {token}: {e}")
            self._stats["misses"] += 1
            return None

        self._mirror[token] = entry
        self._stats["store_hits"] += 1
        return entry

    def write(self, token: str, entry: CacheEntry) -> None:
        """
        Store an entry in the mirror and best-effort persist it.

        An entry older than the current one is ignored so fetched_at never
        moves backwards for a token.
        """
        current = self.read(token)
        if current is not None and entry.fetched_at < current.fetched_at:
            logger.debug(
                f"Ignoring out-of-order write for {token} "
                f"({entry.fetched_at} < {current.fetched_at})"
            )
            return

        self._mirror[token] = entry
        self._stats["writes"] += 1

        if self._conn is None:
            return

        try:
            value = json.dumps(entry.to_record(), ensure_ascii=False)
            self._conn.execute(
                "INSERT OR REPLACE INTO entries (key, value) VALUES (?, ?)",
                (self._key(token), value),
            )
            self._conn.commit()
        except (sqlite3.Error, TypeError, ValueError) as e:
            self._record_failure(StorageError(f"cannot persist {token}: {e}"))

    def keys(self) -> List[str]:
        """Tokens currently held in the mirror."""
        return list(self._mirror.keys())

    def close(self) -> None:
        """Close the backing database; the mirror stays readable."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        return {
            "entries": len(self._mirror),
            "persistent": self.is_persistent,
            **self._stats,
        }

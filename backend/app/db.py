import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence

from backend.app.config import settings
from backend.app.errors import QueryError, SnapshotWriteError, StoreInitError, StoreNotInitializedError
from backend.app.schema import SCHEMA_SQL

logger = logging.getLogger(__name__)

SNAPSHOT_KEY = "popcorn_track_db"


class LocalStorage:
    """Directory-backed key/value storage, one file per key."""

    def __init__(self, root: Optional[str] = None):
        self.root = root or settings.storage_dir

    def _path(self, key: str) -> str:
        if not key or "/" in key or key.startswith("."):
            raise ValueError(f"invalid storage key: {key!r}")
        return os.path.join(self.root, key)

    def get_item(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        if not os.path.exists(path):
            return None
        with open(path, "rb") as f:
            return f.read()

    def set_item(self, key: str, value: bytes) -> None:
        path = self._path(key)
        os.makedirs(self.root, exist_ok=True)
        tmp_path = path + ".tmp"
        try:
            with open(tmp_path, "wb") as f:
                f.write(value)
            # readers never see a half-written value
            os.replace(tmp_path, path)
        except OSError:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def remove_item(self, key: str) -> None:
        path = self._path(key)
        if os.path.exists(path):
            os.remove(path)


def connect() -> sqlite3.Connection:
    # handlers run in a threadpool, access is serialized by Store's lock
    conn = sqlite3.connect(":memory:", check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def init_db(conn: sqlite3.Connection) -> None:
    conn.executescript(SCHEMA_SQL)
    conn.commit()


class Store:
    """
    In-memory SQLite database mirrored to a snapshot in LocalStorage.

    The snapshot is read once by init() and rewritten in full after every
    successful write. Reads never touch it.
    """

    def __init__(self, local_storage: LocalStorage, snapshot_key: str = SNAPSHOT_KEY):
        self.local_storage = local_storage
        self.snapshot_key = snapshot_key
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._tx_depth = 0

    @property
    def is_initialized(self) -> bool:
        return self._conn is not None

    def init(self) -> None:
        with self._lock:
            if self._conn is not None:
                return

            conn = connect()
            try:
                snapshot = self.local_storage.get_item(self.snapshot_key)
                if snapshot:
                    conn.deserialize(snapshot)
                    # deserialize resets connection-level pragmas
                    conn.execute("PRAGMA foreign_keys = ON;")
                    logger.info("Loaded snapshot %r (%d bytes)", self.snapshot_key, len(snapshot))
                else:
                    logger.info("No snapshot under %r, starting with an empty store", self.snapshot_key)
                init_db(conn)
            except (sqlite3.Error, OSError) as e:
                conn.close()
                logger.error("Failed to initialize store: %s", e)
                raise StoreInitError(f"could not initialize store: {e}") from e

            self._conn = conn

    def close(self) -> None:
        with self._lock:
            if self._conn is None:
                return
            self._conn.close()
            self._conn = None
            self._tx_depth = 0

    def _require(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreNotInitializedError("store is not initialized, call init() first")
        return self._conn

    def save(self) -> None:
        with self._lock:
            conn = self._require()
            data = conn.serialize()
            try:
                self.local_storage.set_item(self.snapshot_key, data)
            except OSError as e:
                logger.error("Could not write snapshot %r: %s", self.snapshot_key, e)
                raise SnapshotWriteError(f"could not write snapshot {self.snapshot_key!r}: {e}") from e
            logger.debug("Wrote snapshot %r (%d bytes)", self.snapshot_key, len(data))

    def query(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        with self._lock:
            conn = self._require()
            try:
                rows = conn.execute(sql, tuple(params)).fetchall()
            except sqlite3.Error as e:
                logger.error("Query failed: %s", e)
                raise QueryError(str(e)) from e
            return [dict(r) for r in rows]

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        with self._lock:
            conn = self._require()
            try:
                cur = conn.execute(sql, tuple(params))
            except sqlite3.Error as e:
                logger.error("Statement failed: %s", e)
                if self._tx_depth == 0:
                    conn.rollback()
                raise QueryError(str(e)) from e

            if self._tx_depth == 0:
                conn.commit()
                self.save()
            return cur.rowcount

    @contextmanager
    def transaction(self) -> Iterator["Store"]:
        """Group writes: one commit and one snapshot on success, rollback on error."""
        with self._lock:
            conn = self._require()
            self._tx_depth += 1
            try:
                yield self
            except BaseException:
                self._tx_depth -= 1
                if self._tx_depth == 0:
                    conn.rollback()
                raise
            self._tx_depth -= 1
            if self._tx_depth == 0:
                conn.commit()
                self.save()

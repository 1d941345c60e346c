"""
Key-Value Storage Backends for the GTSS Record Store (Imperative Shell)

The record store persists each collection as one JSON document under a
fixed namespace key (``gtss_agency``, ``gtss_signals``, ``gtss_phases``,
``gtss_detectors``).  A backend only has to read a key and write a group
of keys as one unit; every referential rule lives in ``store.py``.

Backends:
    - :class:`MemoryBackend`   – process-lifetime dict (server variant).
    - :class:`JsonFileBackend` – one ``<key>.json`` file per namespace in a
      directory (local-storage variant).
    - :class:`SqliteBackend`   – ``kv`` table in a SQLite database, one
      transaction per write group.

Package Location: src/gtss/data/backends.py
"""

import logging
import os
import sqlite3
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

log = logging.getLogger(__name__)


class KeyValueBackend:
    """Interface shared by all storage backends.

    ``write_many`` receives ``{key: json_text}``; a value of ``None``
    removes the key.  Implementations must apply the whole mapping or
    none of it.
    """

    def read(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def write_many(self, items: Mapping[str, Optional[str]]) -> None:
        raise NotImplementedError

    def close(self) -> None:
        """Release any held resources.  Safe to call more than once."""

    def __enter__(self) -> "KeyValueBackend":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class MemoryBackend(KeyValueBackend):
    """Keeps namespace documents in a dict for the life of the process."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    def read(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def write_many(self, items: Mapping[str, Optional[str]]) -> None:
        staged = dict(self._data)
        for key, value in items.items():
            if value is None:
                staged.pop(key, None)
            else:
                staged[key] = value
        self._data = staged


class JsonFileBackend(KeyValueBackend):
    """Stores each namespace as ``<directory>/<key>.json``.

    Writes go to temporary files in the same directory first; only when
    every temporary file has been written are they renamed into place, so
    a failure while writing leaves the previous documents untouched.

    Args:
        directory: Folder holding the namespace files (created on demand).
    """

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def read(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def write_many(self, items: Mapping[str, Optional[str]]) -> None:
        staged: List[Tuple[str, Path]] = []
        try:
            for key, value in items.items():
                if value is None:
                    continue
                fd, tmp_name = tempfile.mkstemp(
                    prefix=f".{key}.", suffix=".tmp", dir=self.directory
                )
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(value)
                staged.append((tmp_name, self._path(key)))
        except Exception:
            for tmp_name, _ in staged:
                Path(tmp_name).unlink(missing_ok=True)
            raise

        for tmp_name, target in staged:
            os.replace(tmp_name, target)
        for key, value in items.items():
            if value is None:
                self._path(key).unlink(missing_ok=True)


class SqliteBackend(KeyValueBackend):
    """Stores namespace documents in a SQLite ``kv`` table.

    The connection is opened on construction (or on ``__enter__`` after a
    ``close``) and kept for the lifetime of the store.  ``write_many`` runs
    inside one transaction, so a cascade delete either lands completely or
    not at all.

    Args:
        db_path: Path to the SQLite database file (created if missing).
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.conn: Optional[sqlite3.Connection] = None
        self.open()

    def __enter__(self) -> "SqliteBackend":
        if self.conn is None:
            self.open()
        return self

    # ------------------------------------------------------------------
    # Connection & schema
    # ------------------------------------------------------------------

    def open(self) -> None:
        """Connect and make sure the schema exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        # The store's lock serializes access, so the connection may be
        # shared across threads.
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.init_db()

    def init_db(self) -> None:
        """Initialise the ``kv`` table.

        Enables WAL mode so a reader (e.g. a second CLI invocation running
        an export) is not blocked by a writer.
        """
        if not self.conn:
            raise RuntimeError("No connection. Call open() or use 'with SqliteBackend(...)'.")

        cur = self.conn.cursor()
        cur.execute("PRAGMA journal_mode=WAL")
        cur.execute("""
            CREATE TABLE IF NOT EXISTS kv (
                key        TEXT PRIMARY KEY,
                value      TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self.conn.commit()
        log.debug("SQLite store initialised", extra={"db_path": str(self.db_path)})

    def close(self) -> None:
        if self.conn:
            self.conn.close()
            self.conn = None

    # ------------------------------------------------------------------
    # Key-value access
    # ------------------------------------------------------------------

    def read(self, key: str) -> Optional[str]:
        if not self.conn:
            raise RuntimeError("No active connection.")
        cur = self.conn.cursor()
        cur.execute("SELECT value FROM kv WHERE key = ?", (key,))
        row = cur.fetchone()
        return row[0] if row else None

    def write_many(self, items: Mapping[str, Optional[str]]) -> None:
        if not self.conn:
            raise RuntimeError("No active connection.")
        now = datetime.now().isoformat()
        upserts = [(k, v, now) for k, v in items.items() if v is not None]
        deletes = [(k,) for k, v in items.items() if v is None]
        # ``with conn`` commits on success and rolls back on any exception.
        with self.conn:
            cur = self.conn.cursor()
            if upserts:
                cur.executemany(
                    "INSERT OR REPLACE INTO kv (key, value, updated_at) VALUES (?, ?, ?)",
                    upserts,
                )
            if deletes:
                cur.executemany("DELETE FROM kv WHERE key = ?", deletes)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

BACKEND_NAMES = ("memory", "json", "sqlite")


def create_backend(name: str, location: Optional[Path] = None) -> KeyValueBackend:
    """Build a backend by name.

    Args:
        name:     ``'memory'``, ``'json'`` or ``'sqlite'``.
        location: Directory for ``json``; database file for ``sqlite``.

    Returns:
        Backend instance.

    Raises:
        ValueError: For an unknown name or a missing ``location``.
    """
    if name == "memory":
        return MemoryBackend()
    if name not in BACKEND_NAMES:
        raise ValueError(f"Unknown backend '{name}' (expected one of {', '.join(BACKEND_NAMES)})")
    if location is None:
        raise ValueError(f"Backend '{name}' needs a storage location")
    if name == "json":
        return JsonFileBackend(location)
    return SqliteBackend(location)

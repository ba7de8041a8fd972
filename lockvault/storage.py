"""
LockVault - Storage Adapters

A store maps vault name -> serialized EncryptedVault (JSON text). Stores
never see plaintext or keys; everything they hold is already encrypted.

Adapters:
- MemoryStore:        dict in memory (tests, throwaway sessions)
- JsonDirectoryStore: one vault_<name>.json per vault + vault_names.json index
- SqliteStore:        one row per vault in a single SQLite file

Every adapter reports I/O problems as StorageUnavailable.
"""

import json
import logging
import os
import sqlite3
import tempfile
import threading
import time
from abc import ABC, abstractmethod
from typing import Dict, List, Optional
from urllib.parse import quote

from .errors import StorageUnavailable, ValidationError
from .models import EncryptedVault

logger = logging.getLogger(__name__)


class VaultStore(ABC):
    """Persistence port used by the service layer."""

    @abstractmethod
    def get_names(self) -> List[str]:
        """Names of all stored vaults, in creation order."""

    @abstractmethod
    def get(self, name: str) -> Optional[EncryptedVault]:
        """The stored envelope, or None if there is no such vault."""

    @abstractmethod
    def put(self, vault: EncryptedVault) -> None:
        """Insert or replace the envelope stored under vault.name."""

    @abstractmethod
    def delete(self, name: str) -> bool:
        """Remove a vault. Returns False if it did not exist."""

    def exists(self, name: str) -> bool:
        return name in self.get_names()


# =============================================================================
# In-memory
# =============================================================================

class MemoryStore(VaultStore):
    """Holds serialized envelopes so callers never share mutable objects."""

    def __init__(self):
        self._records: Dict[str, str] = {}

    def get_names(self) -> List[str]:
        return list(self._records)

    def get(self, name: str) -> Optional[EncryptedVault]:
        text = self._records.get(name)
        return EncryptedVault.from_json(text) if text is not None else None

    def put(self, vault: EncryptedVault) -> None:
        self._records[vault.name] = vault.to_json()

    def delete(self, name: str) -> bool:
        return self._records.pop(name, None) is not None


# =============================================================================
# JSON directory
# =============================================================================

INDEX_FILE = "vault_names.json"


class JsonDirectoryStore(VaultStore):
    """
    One JSON file per vault in a directory.

    Layout:
        <root>/vault_names.json     -> ["personal", "work", ...]
        <root>/vault_<name>.json    -> envelope (name percent-encoded)

    Files are written to a temp file first and moved into place, so a
    crash mid-write never leaves a half-written envelope behind. The index
    is read-modified-written under one lock shared by all vault names.
    """

    def __init__(self, root: str):
        self.root = root
        self._index_lock = threading.Lock()
        try:
            os.makedirs(root, exist_ok=True)
        except OSError as e:
            raise StorageUnavailable(f"Cannot create vault directory {root}") from e

    def _path(self, name: str) -> str:
        return os.path.join(self.root, f"vault_{quote(name, safe='')}.json")

    def _read(self, path: str) -> Optional[str]:
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageUnavailable(f"Cannot read {path}") from e

    def _write(self, path: str, text: str) -> None:
        tmp = None
        try:
            fd, tmp = tempfile.mkstemp(dir=self.root, suffix=".tmp")
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)
        except OSError as e:
            if tmp is not None and os.path.exists(tmp):
                os.remove(tmp)
            raise StorageUnavailable(f"Cannot write {path}") from e

    def get_names(self) -> List[str]:
        text = self._read(os.path.join(self.root, INDEX_FILE))
        if text is None:
            return []
        try:
            names = json.loads(text)
        except ValueError as e:
            raise StorageUnavailable("Vault index is corrupt") from e
        return [n for n in names if isinstance(n, str)]

    def _save_names(self, names: List[str]) -> None:
        self._write(os.path.join(self.root, INDEX_FILE), json.dumps(names))

    def get(self, name: str) -> Optional[EncryptedVault]:
        text = self._read(self._path(name))
        return EncryptedVault.from_json(text) if text is not None else None

    def put(self, vault: EncryptedVault) -> None:
        logger.debug("Writing vault %s to %s", vault.name, self.root)
        self._write(self._path(vault.name), vault.to_json())
        with self._index_lock:
            names = self.get_names()
            if vault.name not in names:
                names.append(vault.name)
                self._save_names(names)

    def delete(self, name: str) -> bool:
        path = self._path(name)
        try:
            os.remove(path)
            removed = True
        except FileNotFoundError:
            removed = False
        except OSError as e:
            raise StorageUnavailable(f"Cannot delete {path}") from e
        with self._index_lock:
            names = self.get_names()
            if name in names:
                names.remove(name)
                self._save_names(names)
                removed = True
        return removed


# =============================================================================
# SQLite
# =============================================================================

SCHEMA = """
-- One row per vault; data is the serialized envelope (already encrypted)
CREATE TABLE IF NOT EXISTS vaults (
    name TEXT PRIMARY KEY,
    data TEXT NOT NULL,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL
);
"""

# SQLite PRAGMAs for crash safety
PRAGMAS = """
PRAGMA journal_mode=WAL;
PRAGMA synchronous=FULL;
PRAGMA secure_delete=ON;
"""


class SqliteStore(VaultStore):
    """
    All vaults in one SQLite file.

    A connection is opened per operation so the store can be used from the
    worker threads the service runs blocking calls on.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        parent = os.path.dirname(os.path.abspath(db_path))
        try:
            os.makedirs(parent, exist_ok=True)
        except OSError as e:
            raise StorageUnavailable(f"Cannot create directory {parent}") from e
        with self._connect() as conn:
            conn.executescript(SCHEMA)

    def _connect(self) -> "_Connection":
        return _Connection(self.db_path)

    def get_names(self) -> List[str]:
        with self._connect() as conn:
            rows = conn.execute("SELECT name FROM vaults ORDER BY created_at, rowid").fetchall()
        return [row['name'] for row in rows]

    def get(self, name: str) -> Optional[EncryptedVault]:
        with self._connect() as conn:
            row = conn.execute("SELECT data FROM vaults WHERE name = ?", (name,)).fetchone()
        return EncryptedVault.from_json(row['data']) if row else None

    def put(self, vault: EncryptedVault) -> None:
        now = int(time.time())
        logger.debug("Writing vault %s to %s", vault.name, self.db_path)
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO vaults (name, data, created_at, updated_at)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT(name) DO UPDATE SET data = excluded.data,
                                                   updated_at = excluded.updated_at""",
                (vault.name, vault.to_json(), now, now)
            )
            conn.commit()

    def delete(self, name: str) -> bool:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM vaults WHERE name = ?", (name,))
            conn.commit()
            return cur.rowcount > 0


class _Connection:
    """Context manager: open with PRAGMAs, translate sqlite3 errors, close."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.conn: Optional[sqlite3.Connection] = None

    def __enter__(self) -> sqlite3.Connection:
        try:
            self.conn = sqlite3.connect(self.db_path)
            self.conn.row_factory = sqlite3.Row
            self.conn.executescript(PRAGMAS)
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Cannot open {self.db_path}") from e
        return self.conn

    def __exit__(self, exc_type, exc, tb) -> None:
        self.conn.close()
        self.conn = None
        if exc_type is not None and issubclass(exc_type, sqlite3.Error):
            raise StorageUnavailable(f"Database error in {self.db_path}") from exc


# =============================================================================
# Factory
# =============================================================================

BACKENDS = ("sqlite", "json", "memory")


def open_store(backend: str, location: Optional[str] = None) -> VaultStore:
    """
    Build a store from a backend name.

    Args:
        backend: "sqlite", "json" or "memory"
        location: Database file (sqlite) or directory (json); ignored for memory
    """
    backend = (backend or "").lower()
    if backend == "memory":
        return MemoryStore()
    if backend not in BACKENDS:
        raise ValidationError(f"Unknown storage backend: {backend!r}")
    if not location:
        raise ValidationError(f"A location is required for the {backend} backend")

    location = os.path.expanduser(location)
    logger.debug("Opening %s store at %s", backend, location)
    if backend == "sqlite":
        return SqliteStore(location)
    return JsonDirectoryStore(location)

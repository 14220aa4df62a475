"""Versioned local storage of wizard progress."""

import logging
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Generator

from itr_wizard.config import get_config
from itr_wizard.errors import PersistenceError, SchemaMismatchError
from itr_wizard.models.income import IncomeComposition
from itr_wizard.models.taxpayer import TaxpayerProfile
from itr_wizard.models.wizard import SNAPSHOT_SCHEMA_VERSION, PersistedSnapshot, WizardStep

logger = logging.getLogger(__name__)

KEY_SCHEMA_VERSION = "schema_version"
KEY_PERSONAL_INFO = "personal_info"
KEY_INCOME_COMPOSITION = "income_composition"
KEY_CURRENT_STEP = "current_step"
KEY_LAST_SAVED = "last_saved"

SNAPSHOT_KEYS = (
    KEY_SCHEMA_VERSION,
    KEY_PERSONAL_INFO,
    KEY_INCOME_COMPOSITION,
    KEY_CURRENT_STEP,
    KEY_LAST_SAVED,
)


class SnapshotStore(ABC):
    """
    Save, restore and clear one snapshot of wizard progress.

    Every key is prefixed with the store's namespace. A schema version
    marker is written alongside the data and checked before anything else
    is trusted; saved data from another version is discarded, never
    partially applied. Subclasses only provide raw key/value access.
    """

    def __init__(self, namespace: str = "itr_wizard"):
        self.namespace = namespace

    def _key(self, name: str) -> str:
        return f"{self.namespace}.{name}"

    def _all_keys(self) -> list[str]:
        return [self._key(name) for name in SNAPSHOT_KEYS]

    @abstractmethod
    def _read(self, keys: list[str]) -> dict[str, str]:
        """Return the stored values for whichever of the keys exist."""

    @abstractmethod
    def _write_many(self, items: dict[str, str]) -> None:
        """Write all items in one operation."""

    @abstractmethod
    def _delete_many(self, keys: list[str]) -> None:
        """Remove the keys if present."""

    def save(self, snapshot: PersistedSnapshot) -> None:
        """Write the snapshot, replacing any earlier one."""
        self._write_many({
            self._key(KEY_SCHEMA_VERSION): str(SNAPSHOT_SCHEMA_VERSION),
            self._key(KEY_PERSONAL_INFO): snapshot.profile.model_dump_json(),
            self._key(KEY_INCOME_COMPOSITION): snapshot.composition.model_dump_json(),
            self._key(KEY_CURRENT_STEP): str(int(snapshot.current_step)),
            self._key(KEY_LAST_SAVED): snapshot.saved_at.isoformat(),
        })
        logger.debug(f"Saved wizard progress at step {snapshot.current_step.name}")

    def load(self) -> PersistedSnapshot | None:
        """Return the saved snapshot, or None if there is none or it is stale."""
        stored = self._read(self._all_keys())
        if not stored:
            return None
        try:
            return self._decode(stored)
        except SchemaMismatchError as e:
            logger.info(f"Discarding saved progress: {e}")
            self._delete_many(self._all_keys())
            return None

    def _decode(self, stored: dict[str, str]) -> PersistedSnapshot:
        version = stored.get(self._key(KEY_SCHEMA_VERSION))
        if version != str(SNAPSHOT_SCHEMA_VERSION):
            raise SchemaMismatchError(version, SNAPSHOT_SCHEMA_VERSION)
        try:
            return PersistedSnapshot(
                profile=TaxpayerProfile.model_validate_json(
                    stored[self._key(KEY_PERSONAL_INFO)]
                ),
                composition=IncomeComposition.model_validate_json(
                    stored[self._key(KEY_INCOME_COMPOSITION)]
                ),
                current_step=WizardStep(int(stored[self._key(KEY_CURRENT_STEP)])),
                saved_at=datetime.fromisoformat(stored[self._key(KEY_LAST_SAVED)]),
            )
        except (KeyError, ValueError) as e:
            # pydantic's ValidationError is a ValueError
            raise SchemaMismatchError(version, SNAPSHOT_SCHEMA_VERSION, detail=str(e)) from e

    def clear(self) -> None:
        """Remove the saved snapshot entirely."""
        self._delete_many(self._all_keys())
        logger.debug("Cleared saved wizard progress")

    def has_saved_data(self) -> bool:
        """Whether a snapshot exists, checked without decoding it."""
        return bool(self._read([self._key(KEY_SCHEMA_VERSION)]))

    def last_saved(self) -> datetime | None:
        """Timestamp of the last save, if any."""
        key = self._key(KEY_LAST_SAVED)
        value = self._read([key]).get(key)
        if not value:
            return None
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None


class SqliteSnapshotStore(SnapshotStore):
    """Snapshot store backed by a key/value table in a local SQLite file."""

    def __init__(self, db_path: Path | None = None, namespace: str | None = None):
        """
        Initialize the store.

        Args:
            db_path: Path to the database file. Defaults to config path.
            namespace: Key prefix. Defaults to the configured namespace.
        """
        config = get_config()
        super().__init__(namespace or config.storage_namespace)
        self.db_path = Path(db_path) if db_path else config.db_path
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Context manager for database connections."""
        try:
            conn = self._get_connection()
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open {self.db_path}: {e}") from e
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(f"Storage error: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"Cannot create {self.db_path.parent}: {e}") from e

        with self._connection() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS kv_store (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
            """)

    def _read(self, keys: list[str]) -> dict[str, str]:
        placeholders = ",".join("?" * len(keys))
        with self._connection() as conn:
            rows = conn.execute(
                f"SELECT key, value FROM kv_store WHERE key IN ({placeholders})",
                keys,
            ).fetchall()
        return {row["key"]: row["value"] for row in rows}

    def _write_many(self, items: dict[str, str]) -> None:
        now = datetime.now().isoformat()
        with self._connection() as conn:
            conn.executemany(
                "INSERT OR REPLACE INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)",
                [(key, value, now) for key, value in items.items()],
            )

    def _delete_many(self, keys: list[str]) -> None:
        placeholders = ",".join("?" * len(keys))
        with self._connection() as conn:
            conn.execute(f"DELETE FROM kv_store WHERE key IN ({placeholders})", keys)


class InMemorySnapshotStore(SnapshotStore):
    """Dict-backed store for tests and throwaway sessions."""

    def __init__(self, namespace: str = "itr_wizard"):
        super().__init__(namespace)
        self.data: dict[str, str] = {}
        self.fail_writes = False

    def _read(self, keys: list[str]) -> dict[str, str]:
        return {key: self.data[key] for key in keys if key in self.data}

    def _write_many(self, items: dict[str, str]) -> None:
        if self.fail_writes:
            raise PersistenceError("Storage unavailable")
        self.data.update(items)

    def _delete_many(self, keys: list[str]) -> None:
        for key in keys:
            self.data.pop(key, None)


# Global store instance
_store: SnapshotStore | None = None


def get_snapshot_store() -> SnapshotStore:
    """Get the global snapshot store instance."""
    global _store
    if _store is None:
        _store = SqliteSnapshotStore()
    return _store

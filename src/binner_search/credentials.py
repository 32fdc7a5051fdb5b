"""Credential stores keyed by (user_id, provider_id).

Every store must make ``put`` atomic with respect to concurrent ``get`` calls
for the same key: a reader sees either the old credential or the new one.
"""

import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from pathlib import Path

from .models import Credential

logger = logging.getLogger(__name__)

__all__ = [
    "CredentialStore",
    "MemoryCredentialStore",
    "SqliteCredentialStore",
    "create_store",
]


class CredentialStore(ABC):
    @abstractmethod
    def get(self, user_id: str, provider_id: str) -> Credential | None:
        ...

    @abstractmethod
    def put(self, user_id: str, provider_id: str, credential: Credential) -> None:
        ...

    @abstractmethod
    def delete(self, user_id: str, provider_id: str) -> None:
        ...

    @abstractmethod
    def list_for_user(self, user_id: str) -> list[Credential]:
        ...

    def close(self) -> None:
        pass

    @staticmethod
    def _check_key(user_id: str, provider_id: str, credential: Credential) -> None:
        if (credential.user_id, credential.provider_id) != (user_id, provider_id):
            raise ValueError(
                f"Credential for ({credential.user_id}, {credential.provider_id}) "
                f"stored under ({user_id}, {provider_id})"
            )


class MemoryCredentialStore(CredentialStore):
    """In-process store. Credentials are frozen, so put is a reference swap."""

    def __init__(self):
        self._lock = threading.Lock()
        self._data: dict[tuple[str, str], Credential] = {}

    def get(self, user_id: str, provider_id: str) -> Credential | None:
        with self._lock:
            return self._data.get((user_id, provider_id))

    def put(self, user_id: str, provider_id: str, credential: Credential) -> None:
        self._check_key(user_id, provider_id, credential)
        with self._lock:
            self._data[(user_id, provider_id)] = credential

    def delete(self, user_id: str, provider_id: str) -> None:
        with self._lock:
            self._data.pop((user_id, provider_id), None)

    def list_for_user(self, user_id: str) -> list[Credential]:
        with self._lock:
            return sorted(
                (c for (uid, _), c in self._data.items() if uid == user_id),
                key=lambda c: c.provider_id,
            )


_SCHEMA = """
CREATE TABLE IF NOT EXISTS credentials (
    user_id TEXT NOT NULL,
    provider_id TEXT NOT NULL,
    access_token TEXT NOT NULL,
    refresh_token TEXT NOT NULL,
    expires_at REAL NOT NULL,
    scope TEXT NOT NULL DEFAULT '',
    PRIMARY KEY (user_id, provider_id)
)
"""

_UPSERT = """
INSERT INTO credentials (user_id, provider_id, access_token, refresh_token, expires_at, scope)
VALUES (?, ?, ?, ?, ?, ?)
ON CONFLICT (user_id, provider_id) DO UPDATE SET
    access_token = excluded.access_token,
    refresh_token = excluded.refresh_token,
    expires_at = excluded.expires_at,
    scope = excluded.scope
"""


class SqliteCredentialStore(CredentialStore):
    """SQLite-backed store so connected providers survive restarts.

    Thread safety: WAL mode + check_same_thread=False. Each write is a single
    upsert statement, so readers never see half a credential. The _conn_lock
    protects lazy connection setup and serializes statements on the shared
    connection.
    """

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None
        self._conn_lock = threading.Lock()

    def _connect(self) -> sqlite3.Connection:
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.db_path, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(_SCHEMA)
            conn.commit()
            self._conn = conn
            logger.info(f"Credential store opened at {self.db_path}")
        return self._conn

    @staticmethod
    def _row_to_credential(row: sqlite3.Row) -> Credential:
        return Credential(
            user_id=row["user_id"],
            provider_id=row["provider_id"],
            access_token=row["access_token"],
            refresh_token=row["refresh_token"],
            expires_at=row["expires_at"],
            scope=row["scope"],
        )

    def get(self, user_id: str, provider_id: str) -> Credential | None:
        with self._conn_lock:
            row = self._connect().execute(
                "SELECT * FROM credentials WHERE user_id = ? AND provider_id = ?",
                (user_id, provider_id),
            ).fetchone()
        return self._row_to_credential(row) if row else None

    def put(self, user_id: str, provider_id: str, credential: Credential) -> None:
        self._check_key(user_id, provider_id, credential)
        with self._conn_lock:
            conn = self._connect()
            with conn:
                conn.execute(_UPSERT, (
                    user_id,
                    provider_id,
                    credential.access_token,
                    credential.refresh_token,
                    credential.expires_at,
                    credential.scope,
                ))

    def delete(self, user_id: str, provider_id: str) -> None:
        with self._conn_lock:
            conn = self._connect()
            with conn:
                conn.execute(
                    "DELETE FROM credentials WHERE user_id = ? AND provider_id = ?",
                    (user_id, provider_id),
                )

    def list_for_user(self, user_id: str) -> list[Credential]:
        with self._conn_lock:
            rows = self._connect().execute(
                "SELECT * FROM credentials WHERE user_id = ? ORDER BY provider_id",
                (user_id,),
            ).fetchall()
        return [self._row_to_credential(r) for r in rows]

    def close(self) -> None:
        with self._conn_lock:
            if self._conn:
                self._conn.close()
                self._conn = None


def create_store(path: str | Path | None) -> CredentialStore:
    """SQLite store at ``path``, or an in-memory store when no path is set."""
    if not path or str(path) == ":memory:":
        return MemoryCredentialStore()
    return SqliteCredentialStore(path)

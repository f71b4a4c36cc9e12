"""
SQLite implementation of the cloud storage repository using aiosqlite.

This module provides a small connection pool and the persistence of
connections and synced file records. OAuth tokens are encrypted at rest.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiosqlite

from ..models import (
    CloudStorageConnection,
    CloudSyncedFile,
    ConnectionSyncStatus,
    FileSyncStatus,
    utcnow,
)
from .base import CloudStorageRepository
from .crypto import TokenCipher

SCHEMA = """
CREATE TABLE IF NOT EXISTS cloud_storage_connections (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    organization_id INTEGER,
    provider TEXT NOT NULL,
    root_folder_id TEXT,
    root_folder_name TEXT,
    access_token TEXT,
    refresh_token TEXT,
    token_expires_at TEXT,
    sync_status TEXT NOT NULL DEFAULT 'idle',
    last_sync_at TEXT,
    sync_error TEXT,
    sync_enabled INTEGER NOT NULL DEFAULT 1,
    account_email TEXT,
    account_name TEXT,
    connected_by TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (organization_id, provider)
);

CREATE TABLE IF NOT EXISTS cloud_synced_files (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    connection_id INTEGER NOT NULL
        REFERENCES cloud_storage_connections(id) ON DELETE CASCADE,
    project_id INTEGER,
    cloud_file_id TEXT NOT NULL,
    cloud_file_path TEXT,
    name TEXT NOT NULL,
    mime_type TEXT,
    size INTEGER NOT NULL DEFAULT 0,
    cloud_modified_at TEXT,
    sync_status TEXT NOT NULL DEFAULT 'pending',
    last_synced_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (connection_id, cloud_file_id)
);

CREATE INDEX IF NOT EXISTS idx_cloud_synced_files_project
    ON cloud_synced_files (project_id);
"""

# Columns update_synced_file() may touch
SYNCED_FILE_COLUMNS = {
    "project_id",
    "cloud_file_path",
    "name",
    "mime_type",
    "size",
    "cloud_modified_at",
    "sync_status",
    "last_synced_at",
}


def _to_db(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SQLiteConnection:
    """SQLite database connection with connection pooling."""

    def __init__(self, db_path: str, pool_size: int = 5):
        self.db_path = db_path
        self.pool_size = pool_size
        self._connections: List[aiosqlite.Connection] = []
        self._available: Optional[asyncio.Queue] = None
        self._lock = asyncio.Lock()
        self._initialized = False

    async def connect(self) -> None:
        """Establish database connection pool."""
        async with self._lock:
            if self._initialized:
                return

            # Ensure database directory exists
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

            self._available = asyncio.Queue(maxsize=self.pool_size)
            for _ in range(self.pool_size):
                conn = await aiosqlite.connect(self.db_path)
                conn.row_factory = aiosqlite.Row
                # Enable WAL mode for better concurrency
                await conn.execute("PRAGMA journal_mode=WAL")
                # Enable foreign keys
                await conn.execute("PRAGMA foreign_keys=ON")
                self._connections.append(conn)
                await self._available.put(conn)

            self._initialized = True

    async def disconnect(self) -> None:
        """Close all database connections."""
        async with self._lock:
            if not self._initialized:
                return

            for conn in self._connections:
                await conn.close()

            self._connections.clear()
            self._available = None
            self._initialized = False

    @asynccontextmanager
    async def _get_connection(self):
        """Get a connection from the pool."""
        if not self._initialized:
            await self.connect()

        conn = await self._available.get()
        try:
            yield conn
        finally:
            await self._available.put(conn)

    async def execute(self, query: str, params: Optional[tuple] = None) -> aiosqlite.Cursor:
        """Execute a database query."""
        async with self._get_connection() as conn:
            try:
                cursor = await conn.execute(query, params or ())
                await conn.commit()
            except BaseException:
                # Never hand a connection with an open transaction back to the pool
                await conn.rollback()
                raise
            return cursor

    async def execute_script(self, script: str) -> None:
        async with self._get_connection() as conn:
            try:
                await conn.executescript(script)
                await conn.commit()
            except BaseException:
                await conn.rollback()
                raise

    async def fetch_one(self, query: str, params: Optional[tuple] = None) -> Optional[Dict[str, Any]]:
        """Fetch a single row from the database."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(query, params or ())
            row = await cursor.fetchone()
            if row:
                return dict(row)
            return None

    async def fetch_all(self, query: str, params: Optional[tuple] = None) -> List[Dict[str, Any]]:
        """Fetch all rows from the database."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(query, params or ())
            rows = await cursor.fetchall()
            return [dict(row) for row in rows]


class SQLiteCloudStorageRepository(CloudStorageRepository):
    """SQLite implementation of the cloud storage repository."""

    def __init__(self, connection: SQLiteConnection, cipher: Optional[TokenCipher] = None):
        self.connection = connection
        self.cipher = cipher or TokenCipher()

    async def initialize(self) -> None:
        """Create tables if they do not exist."""
        await self.connection.execute_script(SCHEMA)

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    async def create_connection(self, connection: CloudStorageConnection) -> CloudStorageConnection:
        """Persist a new connection."""
        query = """
        INSERT INTO cloud_storage_connections (
            organization_id, provider, root_folder_id, root_folder_name,
            access_token, refresh_token, token_expires_at,
            sync_status, last_sync_at, sync_error, sync_enabled,
            account_email, account_name, connected_by, created_at, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        params = (
            connection.organization_id,
            connection.provider,
            connection.root_folder_id,
            connection.root_folder_name,
            self.cipher.encrypt(connection.access_token),
            self.cipher.encrypt(connection.refresh_token),
            _to_db(connection.token_expires_at),
            connection.sync_status.value,
            _to_db(connection.last_sync_at),
            connection.sync_error,
            int(connection.sync_enabled),
            connection.account_email,
            connection.account_name,
            connection.connected_by,
            _to_db(connection.created_at),
            _to_db(connection.updated_at),
        )

        cursor = await self.connection.execute(query, params)
        connection.id = cursor.lastrowid
        return connection

    async def get_connection(self, connection_id: int) -> Optional[CloudStorageConnection]:
        query = "SELECT * FROM cloud_storage_connections WHERE id = ?"
        row = await self.connection.fetch_one(query, (connection_id,))
        return self._row_to_connection(row) if row else None

    async def find_connection(self, organization_id: int, provider: str) -> Optional[CloudStorageConnection]:
        query = "SELECT * FROM cloud_storage_connections WHERE organization_id = ? AND provider = ?"
        row = await self.connection.fetch_one(query, (organization_id, provider))
        return self._row_to_connection(row) if row else None

    async def update_connection(self, connection: CloudStorageConnection) -> None:
        query = """
        UPDATE cloud_storage_connections SET
            root_folder_id = ?, root_folder_name = ?,
            access_token = ?, refresh_token = ?, token_expires_at = ?,
            sync_enabled = ?, account_email = ?, account_name = ?,
            connected_by = ?, updated_at = ?
        WHERE id = ?
        """
        connection.updated_at = utcnow()
        params = (
            connection.root_folder_id,
            connection.root_folder_name,
            self.cipher.encrypt(connection.access_token),
            self.cipher.encrypt(connection.refresh_token),
            _to_db(connection.token_expires_at),
            int(connection.sync_enabled),
            connection.account_email,
            connection.account_name,
            connection.connected_by,
            _to_db(connection.updated_at),
            connection.id,
        )
        await self.connection.execute(query, params)

    async def list_connections(self, organization_id: Optional[int] = None) -> List[CloudStorageConnection]:
        if organization_id is None:
            rows = await self.connection.fetch_all(
                "SELECT * FROM cloud_storage_connections ORDER BY id"
            )
        else:
            rows = await self.connection.fetch_all(
                "SELECT * FROM cloud_storage_connections WHERE organization_id = ? ORDER BY id",
                (organization_id,),
            )
        return [self._row_to_connection(row) for row in rows]

    async def delete_connection(self, connection_id: int) -> bool:
        cursor = await self.connection.execute(
            "DELETE FROM cloud_storage_connections WHERE id = ?", (connection_id,)
        )
        return cursor.rowcount > 0

    async def update_connection_tokens(
        self,
        connection_id: int,
        access_token: str,
        token_expires_at: Optional[datetime],
        refresh_token: Optional[str] = None,
    ) -> None:
        if refresh_token:
            query = """
            UPDATE cloud_storage_connections
            SET access_token = ?, token_expires_at = ?, refresh_token = ?, updated_at = ?
            WHERE id = ?
            """
            params = (
                self.cipher.encrypt(access_token),
                _to_db(token_expires_at),
                self.cipher.encrypt(refresh_token),
                _to_db(utcnow()),
                connection_id,
            )
        else:
            query = """
            UPDATE cloud_storage_connections
            SET access_token = ?, token_expires_at = ?, updated_at = ?
            WHERE id = ?
            """
            params = (
                self.cipher.encrypt(access_token),
                _to_db(token_expires_at),
                _to_db(utcnow()),
                connection_id,
            )

        await self.connection.execute(query, params)

    async def update_connection_sync_status(
        self,
        connection_id: int,
        sync_status: ConnectionSyncStatus,
        last_sync_at: Optional[datetime] = None,
        sync_error: Optional[str] = None,
    ) -> None:
        assignments = ["sync_status = ?", "sync_error = ?", "updated_at = ?"]
        params: List[Any] = [sync_status.value, sync_error, _to_db(utcnow())]

        if last_sync_at is not None:
            assignments.append("last_sync_at = ?")
            params.append(_to_db(last_sync_at))

        params.append(connection_id)
        query = f"UPDATE cloud_storage_connections SET {', '.join(assignments)} WHERE id = ?"
        await self.connection.execute(query, tuple(params))

    async def try_begin_sync(self, connection_id: int) -> bool:
        query = """
        UPDATE cloud_storage_connections
        SET sync_status = ?, updated_at = ?
        WHERE id = ? AND sync_status != ?
        """
        cursor = await self.connection.execute(
            query,
            (
                ConnectionSyncStatus.SYNCING.value,
                _to_db(utcnow()),
                connection_id,
                ConnectionSyncStatus.SYNCING.value,
            ),
        )
        return cursor.rowcount == 1

    async def reset_sync_status(self, connection_id: int) -> bool:
        query = """
        UPDATE cloud_storage_connections
        SET sync_status = ?, updated_at = ?
        WHERE id = ? AND sync_status = ?
        """
        cursor = await self.connection.execute(
            query,
            (
                ConnectionSyncStatus.IDLE.value,
                _to_db(utcnow()),
                connection_id,
                ConnectionSyncStatus.SYNCING.value,
            ),
        )
        return cursor.rowcount == 1

    # ------------------------------------------------------------------
    # Synced files
    # ------------------------------------------------------------------

    async def get_synced_file_by_cloud_id(self, connection_id: int, cloud_file_id: str) -> Optional[CloudSyncedFile]:
        query = "SELECT * FROM cloud_synced_files WHERE connection_id = ? AND cloud_file_id = ?"
        row = await self.connection.fetch_one(query, (connection_id, cloud_file_id))
        return self._row_to_synced_file(row) if row else None

    async def create_synced_file(self, record: CloudSyncedFile) -> CloudSyncedFile:
        query = """
        INSERT INTO cloud_synced_files (
            connection_id, project_id, cloud_file_id, cloud_file_path, name,
            mime_type, size, cloud_modified_at, sync_status, last_synced_at,
            created_at, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        params = (
            record.connection_id,
            record.project_id,
            record.cloud_file_id,
            record.cloud_file_path,
            record.name,
            record.mime_type,
            record.size,
            _to_db(record.cloud_modified_at),
            record.sync_status.value,
            _to_db(record.last_synced_at),
            _to_db(record.created_at),
            _to_db(record.updated_at),
        )

        cursor = await self.connection.execute(query, params)
        record.id = cursor.lastrowid
        return record

    async def update_synced_file(self, file_id: int, **fields: Any) -> None:
        unknown = set(fields) - SYNCED_FILE_COLUMNS
        if unknown:
            raise ValueError(f"Unknown synced file fields: {', '.join(sorted(unknown))}")
        if not fields:
            return

        fields["updated_at"] = utcnow()
        assignments = ", ".join(f"{column} = ?" for column in fields)
        params = tuple(_to_db(value) for value in fields.values()) + (file_id,)
        await self.connection.execute(
            f"UPDATE cloud_synced_files SET {assignments} WHERE id = ?", params
        )

    async def list_synced_files(self, connection_id: int, project_id: Optional[int] = None) -> List[CloudSyncedFile]:
        if project_id is None:
            rows = await self.connection.fetch_all(
                "SELECT * FROM cloud_synced_files WHERE connection_id = ? ORDER BY id",
                (connection_id,),
            )
        else:
            rows = await self.connection.fetch_all(
                "SELECT * FROM cloud_synced_files WHERE connection_id = ? AND project_id = ? ORDER BY id",
                (connection_id, project_id),
            )
        return [self._row_to_synced_file(row) for row in rows]

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    def _row_to_connection(self, row: Dict[str, Any]) -> CloudStorageConnection:
        """Convert database row to CloudStorageConnection."""
        return CloudStorageConnection(
            id=row["id"],
            organization_id=row["organization_id"],
            provider=row["provider"],
            root_folder_id=row["root_folder_id"],
            root_folder_name=row["root_folder_name"],
            access_token=self.cipher.decrypt(row["access_token"]),
            refresh_token=self.cipher.decrypt(row["refresh_token"]),
            token_expires_at=_parse_dt(row["token_expires_at"]),
            sync_status=ConnectionSyncStatus(row["sync_status"]),
            last_sync_at=_parse_dt(row["last_sync_at"]),
            sync_error=row["sync_error"],
            sync_enabled=bool(row["sync_enabled"]),
            account_email=row["account_email"],
            account_name=row["account_name"],
            connected_by=row["connected_by"],
            created_at=_parse_dt(row["created_at"]),
            updated_at=_parse_dt(row["updated_at"]),
        )

    def _row_to_synced_file(self, row: Dict[str, Any]) -> CloudSyncedFile:
        """Convert database row to CloudSyncedFile."""
        return CloudSyncedFile(
            id=row["id"],
            connection_id=row["connection_id"],
            project_id=row["project_id"],
            cloud_file_id=row["cloud_file_id"],
            cloud_file_path=row["cloud_file_path"],
            name=row["name"],
            mime_type=row["mime_type"],
            size=row["size"],
            cloud_modified_at=_parse_dt(row["cloud_modified_at"]),
            sync_status=FileSyncStatus(row["sync_status"]),
            last_synced_at=_parse_dt(row["last_synced_at"]),
            created_at=_parse_dt(row["created_at"]),
            updated_at=_parse_dt(row["updated_at"]),
        )

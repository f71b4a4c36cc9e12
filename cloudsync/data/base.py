"""
Abstract repository interface for cloud storage persistence.

The sync subsystem only talks to storage through this interface;
concrete implementations inherit from it.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, List, Optional

from ..models import CloudStorageConnection, CloudSyncedFile, ConnectionSyncStatus


class CloudStorageRepository(ABC):
    """Abstract repository for connections and synced file records."""

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    @abstractmethod
    async def create_connection(self, connection: CloudStorageConnection) -> CloudStorageConnection:
        """
        Persist a new connection.

        Args:
            connection: Connection to save (``id`` is assigned)

        Returns:
            The saved connection
        """
        pass

    @abstractmethod
    async def get_connection(self, connection_id: int) -> Optional[CloudStorageConnection]:
        """Retrieve a connection by ID, or None."""
        pass

    @abstractmethod
    async def find_connection(self, organization_id: int, provider: str) -> Optional[CloudStorageConnection]:
        """Retrieve an organization's connection to a provider, or None."""
        pass

    @abstractmethod
    async def update_connection(self, connection: CloudStorageConnection) -> None:
        """Overwrite an existing connection's credential and account fields."""
        pass

    @abstractmethod
    async def list_connections(self, organization_id: Optional[int] = None) -> List[CloudStorageConnection]:
        """List connections, optionally for one organization."""
        pass

    @abstractmethod
    async def delete_connection(self, connection_id: int) -> bool:
        """
        Delete a connection and its synced file records.

        Returns:
            True if a connection was deleted
        """
        pass

    @abstractmethod
    async def update_connection_tokens(
        self,
        connection_id: int,
        access_token: str,
        token_expires_at: Optional[datetime],
        refresh_token: Optional[str] = None,
    ) -> None:
        """
        Store refreshed credentials.

        Args:
            connection_id: Connection to update
            access_token: New access token
            token_expires_at: New expiry
            refresh_token: Rotated refresh token; the stored one is kept if None
        """
        pass

    @abstractmethod
    async def update_connection_sync_status(
        self,
        connection_id: int,
        sync_status: ConnectionSyncStatus,
        last_sync_at: Optional[datetime] = None,
        sync_error: Optional[str] = None,
    ) -> None:
        """
        Record sync state. ``sync_error`` is always written, so None clears it;
        ``last_sync_at`` is only written when given.
        """
        pass

    @abstractmethod
    async def try_begin_sync(self, connection_id: int) -> bool:
        """
        Atomically move a connection to ``syncing``.

        Returns:
            False if the connection is already syncing (or does not exist)
        """
        pass

    @abstractmethod
    async def reset_sync_status(self, connection_id: int) -> bool:
        """Operator recovery: force a connection stuck in ``syncing`` back to ``idle``."""
        pass

    # ------------------------------------------------------------------
    # Synced files
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_synced_file_by_cloud_id(self, connection_id: int, cloud_file_id: str) -> Optional[CloudSyncedFile]:
        """Look up the record for one remote file, or None."""
        pass

    @abstractmethod
    async def create_synced_file(self, record: CloudSyncedFile) -> CloudSyncedFile:
        """Persist a new synced file record (``id`` is assigned)."""
        pass

    @abstractmethod
    async def update_synced_file(self, file_id: int, **fields: Any) -> None:
        """
        Update selected fields of a synced file record.

        Args:
            file_id: Record ID
            **fields: Column values (name, mime_type, size, cloud_modified_at,
                sync_status, cloud_file_path, last_synced_at)
        """
        pass

    @abstractmethod
    async def list_synced_files(self, connection_id: int, project_id: Optional[int] = None) -> List[CloudSyncedFile]:
        """List synced file records for a connection."""
        pass

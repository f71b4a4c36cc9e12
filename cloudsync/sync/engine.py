"""
Incremental metadata sync between a cloud folder and local tracking records.

One pass lists the connection's folder once (no recursion), creates a
``pending`` record for every new file, marks changed files ``pending``
again and leaves unchanged files alone. Content download happens
elsewhere.
"""

import asyncio
import logging
import weakref
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from ..data.base import CloudStorageRepository
from ..exceptions import ConnectionNotFoundError, SyncDisabledError, SyncInProgressError
from ..models import (
    CloudFile,
    CloudStorageConnection,
    CloudSyncedFile,
    ConnectionSyncStatus,
    FileSyncStatus,
    utcnow,
)
from ..providers.base import EPOCH, ensure_aware
from ..providers.factory import ProviderClientFactory

logger = logging.getLogger(__name__)


@dataclass
class SyncStats:
    """Outcome counters of one sync pass. Folders are never counted."""
    added: int = 0
    updated: int = 0
    errors: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "added": self.added,
            "updated": self.updated,
            "errors": self.errors,
        }


class SyncEngine:
    """
    Runs sync passes for cloud storage connections.

    At most one pass runs per connection: an in-process lock guards this
    engine and ``try_begin_sync`` guards the stored status against other
    processes sharing the database.
    """

    def __init__(
        self,
        storage: CloudStorageRepository,
        factory: ProviderClientFactory,
        max_concurrency: int = 1,
    ):
        """
        Initialize sync engine.

        Args:
            storage: Storage collaborator
            factory: Provider client factory
            max_concurrency: Files processed concurrently within one pass
        """
        self.storage = storage
        self.factory = factory
        self.max_concurrency = max(1, max_concurrency)
        # Entries vanish once no pass holds the lock
        self._locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, connection_id: int) -> asyncio.Lock:
        lock = self._locks.get(connection_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[connection_id] = lock
        return lock

    async def sync_connection_by_id(self, connection_id: int, project_id: Optional[int]) -> SyncStats:
        """Load a connection from storage and sync it."""
        connection = await self.storage.get_connection(connection_id)
        if connection is None:
            raise ConnectionNotFoundError(connection_id)
        return await self.sync_connection(connection, project_id)

    async def sync_connection(
        self,
        connection: CloudStorageConnection,
        project_id: Optional[int],
    ) -> SyncStats:
        """
        Run one sync pass.

        Args:
            connection: Connection to sync
            project_id: Project the new records are attached to

        Returns:
            Counters for the pass

        Raises:
            SyncDisabledError: Sync is switched off for this connection
            SyncInProgressError: Another pass holds this connection
            CloudSyncException: Client construction or folder listing failed;
                the connection is left in ``error`` status
        """
        if not connection.sync_enabled:
            raise SyncDisabledError(connection.id)

        lock = self._lock_for(connection.id)
        if lock.locked():
            raise SyncInProgressError(connection.id)

        async with lock:
            if not await self.storage.try_begin_sync(connection.id):
                raise SyncInProgressError(connection.id)
            connection.sync_status = ConnectionSyncStatus.SYNCING

            logger.info(f"Starting sync for {connection.provider} connection {connection.id}")
            try:
                stats = await self._run_pass(connection, project_id)
            except BaseException as e:
                logger.error(f"Sync failed for connection {connection.id}: {e!r}")
                await self._release(connection, ConnectionSyncStatus.ERROR, sync_error=str(e) or type(e).__name__)
                raise

            await self._release(connection, ConnectionSyncStatus.IDLE, last_sync_at=utcnow())

        logger.info(
            f"Sync complete for connection {connection.id}: "
            f"{stats.added} added, {stats.updated} updated, {stats.errors} errors"
        )
        return stats

    async def _run_pass(self, connection: CloudStorageConnection, project_id: Optional[int]) -> SyncStats:
        client = self.factory.get_client(connection)
        files = await client.list_files()

        stats = SyncStats()
        semaphore = asyncio.Semaphore(self.max_concurrency)
        await asyncio.gather(*(
            self._sync_file(connection, project_id, file, stats, semaphore)
            for file in files
            if not file.is_folder
        ))
        return stats

    async def _release(
        self,
        connection: CloudStorageConnection,
        status: ConnectionSyncStatus,
        last_sync_at: Optional[datetime] = None,
        sync_error: Optional[str] = None,
    ) -> None:
        """
        Record the end of a pass.

        If the status write fails, the connection is moved to ``error`` with
        a second write and the original failure is re-raised, so it is never
        left in ``syncing``.
        """
        try:
            await self._finish(connection, status, last_sync_at=last_sync_at, sync_error=sync_error)
        except Exception as e:
            logger.error(f"Failed to record {status.value} status for connection {connection.id}: {e}")
            await self._finish(
                connection,
                ConnectionSyncStatus.ERROR,
                sync_error=sync_error or f"Failed to record sync status: {e}",
            )
            raise

    async def _sync_file(
        self,
        connection: CloudStorageConnection,
        project_id: Optional[int],
        file: CloudFile,
        stats: SyncStats,
        semaphore: asyncio.Semaphore,
    ) -> None:
        async with semaphore:
            try:
                existing = await self.storage.get_synced_file_by_cloud_id(connection.id, file.id)

                if existing is None:
                    await self.storage.create_synced_file(CloudSyncedFile(
                        connection_id=connection.id,
                        project_id=project_id,
                        cloud_file_id=file.id,
                        cloud_file_path=file.path,
                        name=file.name,
                        mime_type=file.mime_type,
                        size=file.size,
                        cloud_modified_at=file.modified_at,
                        sync_status=FileSyncStatus.PENDING,
                    ))
                    stats.added += 1
                    return

                stored_modified = ensure_aware(existing.cloud_modified_at or EPOCH)
                if ensure_aware(file.modified_at) > stored_modified:
                    await self.storage.update_synced_file(
                        existing.id,
                        name=file.name,
                        mime_type=file.mime_type,
                        size=file.size,
                        cloud_modified_at=file.modified_at,
                        sync_status=FileSyncStatus.PENDING,
                    )
                    stats.updated += 1

            except Exception as e:
                logger.error(f"Error syncing file {file.name}: {e}")
                stats.errors += 1

    async def _finish(
        self,
        connection: CloudStorageConnection,
        status: ConnectionSyncStatus,
        last_sync_at: Optional[datetime] = None,
        sync_error: Optional[str] = None,
    ) -> None:
        await self.storage.update_connection_sync_status(
            connection.id,
            status,
            last_sync_at=last_sync_at,
            sync_error=sync_error,
        )
        connection.sync_status = status
        connection.sync_error = sync_error
        if last_sync_at is not None:
            connection.last_sync_at = last_sync_at

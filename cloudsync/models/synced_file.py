"""
Local mirror records of remote cloud files.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from .connection import utcnow


class FileSyncStatus(Enum):
    """Content state of a synced file record."""
    PENDING = "pending"  # content (re-)download due
    SYNCED = "synced"
    ERROR = "error"


@dataclass
class CloudSyncedFile:
    """One remote file already observed by a sync pass.

    At most one record exists per (connection_id, cloud_file_id).
    """
    connection_id: int
    cloud_file_id: str
    name: str
    id: Optional[int] = None
    project_id: Optional[int] = None
    cloud_file_path: Optional[str] = None
    mime_type: Optional[str] = None
    size: int = 0
    cloud_modified_at: Optional[datetime] = None
    sync_status: FileSyncStatus = FileSyncStatus.PENDING
    last_synced_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "connection_id": self.connection_id,
            "project_id": self.project_id,
            "cloud_file_id": self.cloud_file_id,
            "cloud_file_path": self.cloud_file_path,
            "name": self.name,
            "mime_type": self.mime_type,
            "size": self.size,
            "cloud_modified_at": self.cloud_modified_at.isoformat() if self.cloud_modified_at else None,
            "sync_status": self.sync_status.value,
            "last_synced_at": self.last_synced_at.isoformat() if self.last_synced_at else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

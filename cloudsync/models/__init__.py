"""
Data models for the cloud storage sync subsystem.
"""

from .cloud_file import CloudFile, TokenGrant, UserInfo
from .connection import CloudStorageConnection, ConnectionSyncStatus, utcnow
from .synced_file import CloudSyncedFile, FileSyncStatus

__all__ = [
    "CloudFile",
    "TokenGrant",
    "UserInfo",
    "CloudStorageConnection",
    "ConnectionSyncStatus",
    "CloudSyncedFile",
    "FileSyncStatus",
    "utcnow",
]

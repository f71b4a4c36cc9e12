"""
Data access layer for cloud storage sync.

Public Interface:
    - CloudStorageRepository: the storage collaborator interface
    - SQLiteCloudStorageRepository: aiosqlite-backed implementation
    - TokenCipher: encryption of tokens at rest

Example Usage:
    ```python
    from cloudsync.data import SQLiteConnection, SQLiteCloudStorageRepository

    db = SQLiteConnection("data/cloudsync.db")
    repository = SQLiteCloudStorageRepository(db)
    await repository.initialize()
    ```
"""

from .base import CloudStorageRepository
from .crypto import TokenCipher
from .sqlite import SQLiteCloudStorageRepository, SQLiteConnection

__all__ = [
    "CloudStorageRepository",
    "TokenCipher",
    "SQLiteConnection",
    "SQLiteCloudStorageRepository",
]

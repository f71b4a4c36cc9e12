"""
Shared fixtures for cloud storage sync tests.
"""

import pytest
import pytest_asyncio
from tenacity import wait_none

from cloudsync.data import SQLiteCloudStorageRepository, SQLiteConnection, TokenCipher
from cloudsync.providers import http

CREDENTIALS = {
    "GOOGLE_CLIENT_ID": "google-client",
    "GOOGLE_CLIENT_SECRET": "google-secret",
    "ONEDRIVE_CLIENT_ID": "onedrive-client",
    "ONEDRIVE_CLIENT_SECRET": "onedrive-secret",
    "DROPBOX_CLIENT_ID": "dropbox-client",
    "DROPBOX_CLIENT_SECRET": "dropbox-secret",
}


@pytest.fixture(autouse=True)
def no_retry_wait(monkeypatch):
    """Retry immediately instead of backing off."""
    monkeypatch.setattr(http, "RETRY_WAIT", wait_none())


@pytest.fixture
def credentials():
    return dict(CREDENTIALS)


@pytest_asyncio.fixture
async def repository(tmp_path):
    db = SQLiteConnection(str(tmp_path / "cloudsync.db"), pool_size=2)
    repo = SQLiteCloudStorageRepository(db, TokenCipher("test-encryption-key"))
    await repo.initialize()
    yield repo
    await db.disconnect()

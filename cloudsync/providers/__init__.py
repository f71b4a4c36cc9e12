"""
Cloud storage provider clients.

Usage:
    from cloudsync.providers import ProviderClientFactory, build_default_registry

    registry = build_default_registry()
    factory = ProviderClientFactory(registry, storage)
    client = factory.get_client(connection)
    files = await client.list_files()
"""

from .base import CloudStorageProvider, TokenRefreshCoordinator, token_needs_refresh
from .dropbox import DropboxProvider
from .factory import ProviderClientFactory
from .google_drive import GoogleDriveProvider
from .http import create_http_client
from .oauth import OAuthFlow, OAuthState, OAuthStateStore
from .onedrive import OneDriveProvider
from .registry import CloudProviderConfig, ProviderRegistry, build_default_registry

__all__ = [
    "CloudStorageProvider",
    "TokenRefreshCoordinator",
    "token_needs_refresh",
    "GoogleDriveProvider",
    "OneDriveProvider",
    "DropboxProvider",
    "ProviderClientFactory",
    "create_http_client",
    "OAuthFlow",
    "OAuthState",
    "OAuthStateStore",
    "CloudProviderConfig",
    "ProviderRegistry",
    "build_default_registry",
]

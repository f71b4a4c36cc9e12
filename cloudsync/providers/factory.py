"""
Provider client factory.
"""

import logging
from typing import Dict, Mapping, Optional, Type

import httpx

from ..config import CloudSyncSettings
from ..data.base import CloudStorageRepository
from ..exceptions import UnknownProviderError
from ..models import CloudStorageConnection
from .base import CloudStorageProvider, TokenRefreshCoordinator
from .dropbox import DropboxProvider
from .google_drive import GoogleDriveProvider
from .onedrive import OneDriveProvider
from .registry import ProviderRegistry

logger = logging.getLogger(__name__)

DEFAULT_CLIENT_CLASSES: Dict[str, Type[CloudStorageProvider]] = {
    "google_drive": GoogleDriveProvider,
    "onedrive": OneDriveProvider,
    "dropbox": DropboxProvider,
}


class ProviderClientFactory:
    """
    Builds the provider client for a connection.

    All clients made by one factory share an HTTP client and a refresh
    coordinator, so token refresh for a connection is serialized across
    every client built for it.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        storage: CloudStorageRepository,
        http_client: Optional[httpx.AsyncClient] = None,
        settings: Optional[CloudSyncSettings] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self.registry = registry
        self.storage = storage
        self.settings = settings or CloudSyncSettings()
        self._http_client = http_client
        self._environ = environ
        self.refresh_coordinator = TokenRefreshCoordinator()
        self._classes: Dict[str, Type[CloudStorageProvider]] = dict(DEFAULT_CLIENT_CLASSES)

    def register(self, name: str, client_class: Type[CloudStorageProvider]) -> None:
        """Register a client class for a provider identifier."""
        self._classes[name] = client_class

    def get_client(self, connection: CloudStorageConnection) -> CloudStorageProvider:
        """
        Construct the client for a connection's provider.

        Raises:
            UnknownProviderError: Provider is not in the registry or has no client class
        """
        config = self.registry.get(connection.provider)
        client_class = self._classes.get(config.name)
        if client_class is None:
            raise UnknownProviderError(config.name)

        return client_class(
            connection,
            config,
            self.storage,
            http_client=self._http_client,
            refresh_coordinator=self.refresh_coordinator,
            environ=self._environ,
            timeout=self.settings.http_timeout_seconds,
            max_attempts=self.settings.http_max_attempts,
        )

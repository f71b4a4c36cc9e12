"""
Static table of supported cloud storage providers.

The registry is built once at process start and handed to whatever needs
it (OAuth flow, client factory). It cannot be mutated after construction.
"""

import os
from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, Iterator, List, Mapping, Optional, Tuple

from ..exceptions import UnknownProviderError


@dataclass(frozen=True)
class CloudProviderConfig:
    """OAuth endpoints and credential lookup keys for one provider."""
    name: str
    display_name: str
    icon: str
    auth_url: str
    token_url: str
    scopes: Tuple[str, ...]
    client_id_env: str
    client_secret_env: str


GOOGLE_DRIVE = CloudProviderConfig(
    name="google_drive",
    display_name="Google Drive",
    icon="google-drive",
    auth_url="https://accounts.google.com/o/oauth2/v2/auth",
    token_url="https://oauth2.googleapis.com/token",
    scopes=(
        "https://www.googleapis.com/auth/drive.readonly",
        "https://www.googleapis.com/auth/userinfo.email",
        "https://www.googleapis.com/auth/userinfo.profile",
    ),
    client_id_env="GOOGLE_CLIENT_ID",
    client_secret_env="GOOGLE_CLIENT_SECRET",
)

ONEDRIVE = CloudProviderConfig(
    name="onedrive",
    display_name="OneDrive",
    icon="microsoft-onedrive",
    auth_url="https://login.microsoftonline.com/common/oauth2/v2.0/authorize",
    token_url="https://login.microsoftonline.com/common/oauth2/v2.0/token",
    scopes=("Files.Read.All", "User.Read", "offline_access"),
    client_id_env="ONEDRIVE_CLIENT_ID",
    client_secret_env="ONEDRIVE_CLIENT_SECRET",
)

DROPBOX = CloudProviderConfig(
    name="dropbox",
    display_name="Dropbox",
    icon="dropbox",
    auth_url="https://www.dropbox.com/oauth2/authorize",
    token_url="https://api.dropbox.com/oauth2/token",
    scopes=(),  # Dropbox scopes are set on the app console
    client_id_env="DROPBOX_CLIENT_ID",
    client_secret_env="DROPBOX_CLIENT_SECRET",
)

DEFAULT_PROVIDERS = (GOOGLE_DRIVE, ONEDRIVE, DROPBOX)


class ProviderRegistry:
    """Read-only lookup of provider configs by identifier."""

    def __init__(self, configs: Iterable[CloudProviderConfig]):
        table = {}
        for config in configs:
            if config.name in table:
                raise ValueError(f"Duplicate provider in registry: {config.name}")
            table[config.name] = config
        self._configs: Mapping[str, CloudProviderConfig] = MappingProxyType(table)

    def get(self, name: str) -> CloudProviderConfig:
        """Return the config for ``name`` or raise UnknownProviderError."""
        config = self._configs.get(name)
        if config is None:
            raise UnknownProviderError(name)
        return config

    def names(self) -> List[str]:
        return list(self._configs)

    def is_configured(self, name: str, environ: Optional[Mapping[str, str]] = None) -> bool:
        """Whether both OAuth client credentials are present in the environment."""
        config = self.get(name)
        env = os.environ if environ is None else environ
        return bool(env.get(config.client_id_env)) and bool(env.get(config.client_secret_env))

    def __contains__(self, name: object) -> bool:
        return name in self._configs

    def __iter__(self) -> Iterator[CloudProviderConfig]:
        return iter(self._configs.values())

    def __len__(self) -> int:
        return len(self._configs)


def build_default_registry() -> ProviderRegistry:
    """Registry of the built-in providers."""
    return ProviderRegistry(DEFAULT_PROVIDERS)

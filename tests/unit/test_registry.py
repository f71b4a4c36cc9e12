"""
Tests for the provider registry.
"""

import pytest

from cloudsync.exceptions import UnknownProviderError
from cloudsync.providers.registry import (
    DROPBOX,
    GOOGLE_DRIVE,
    ProviderRegistry,
    build_default_registry,
)


class TestProviderRegistry:
    """Tests for ProviderRegistry."""

    def test_default_providers(self):
        registry = build_default_registry()
        assert registry.names() == ["google_drive", "onedrive", "dropbox"]
        assert len(registry) == 3
        assert "onedrive" in registry

    def test_get_returns_config(self):
        registry = build_default_registry()
        config = registry.get("google_drive")
        assert config.display_name == "Google Drive"
        assert config.token_url == "https://oauth2.googleapis.com/token"
        assert config.client_id_env == "GOOGLE_CLIENT_ID"

    def test_unknown_provider(self):
        registry = build_default_registry()
        with pytest.raises(UnknownProviderError) as exc_info:
            registry.get("box")
        assert exc_info.value.provider == "box"
        assert exc_info.value.error_code == "UNKNOWN_PROVIDER"
        assert exc_info.value.to_dict()["context"]["provider"] == "box"

    def test_duplicate_provider_rejected(self):
        with pytest.raises(ValueError):
            ProviderRegistry([GOOGLE_DRIVE, GOOGLE_DRIVE])

    def test_is_configured(self, credentials):
        registry = build_default_registry()
        assert registry.is_configured("dropbox", credentials)

        del credentials["DROPBOX_CLIENT_SECRET"]
        assert not registry.is_configured("dropbox", credentials)
        assert not registry.is_configured("google_drive", {})

    def test_dropbox_has_no_scopes(self):
        assert DROPBOX.scopes == ()

    def test_registry_is_read_only(self):
        registry = ProviderRegistry([GOOGLE_DRIVE])
        with pytest.raises(TypeError):
            registry._configs["dropbox"] = DROPBOX

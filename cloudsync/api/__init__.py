"""
HTTP API for cloud storage connections.
"""

from fastapi import HTTPException

# Service references (set by main.create_app)
_settings = None
_registry = None
_storage = None
_oauth_flow = None
_state_store = None
_client_factory = None
_sync_engine = None


def set_services(
    settings=None,
    registry=None,
    storage=None,
    oauth_flow=None,
    state_store=None,
    client_factory=None,
    sync_engine=None,
):
    """Set service references for route handlers."""
    global _settings, _registry, _storage, _oauth_flow, _state_store, _client_factory, _sync_engine
    _settings = settings
    _registry = registry
    _storage = storage
    _oauth_flow = oauth_flow
    _state_store = state_store
    _client_factory = client_factory
    _sync_engine = sync_engine


def _require(service, name: str):
    if service is None:
        raise HTTPException(503, f"{name} not available")
    return service


def get_settings():
    """Get runtime settings."""
    return _require(_settings, "Settings")


def get_registry():
    """Get provider registry."""
    return _require(_registry, "Provider registry")


def get_storage():
    """Get cloud storage repository."""
    return _require(_storage, "Storage")


def get_oauth_flow():
    """Get OAuth flow helper."""
    return _require(_oauth_flow, "OAuth flow")


def get_state_store():
    """Get OAuth state store."""
    return _require(_state_store, "OAuth state store")


def get_client_factory():
    """Get provider client factory."""
    return _require(_client_factory, "Client factory")


def get_sync_engine():
    """Get sync engine."""
    return _require(_sync_engine, "Sync engine")


# Import router
from .routes import router as cloud_storage_router

__all__ = [
    "cloud_storage_router",
    "set_services",
    "get_settings",
    "get_registry",
    "get_storage",
    "get_oauth_flow",
    "get_state_store",
    "get_client_factory",
    "get_sync_engine",
]

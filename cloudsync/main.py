"""
Application entry point for the cloud storage sync service.

Wires the provider registry, OAuth flow, storage, client factory and sync
engine into a FastAPI application.
"""

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Mapping, Optional

from fastapi import FastAPI

from . import api
from .config import CloudSyncSettings, ConfigValidator, EnvironmentLoader, LogLevel
from .data import SQLiteCloudStorageRepository, SQLiteConnection, TokenCipher
from .exceptions import ConfigurationError
from .providers import (
    OAuthFlow,
    OAuthStateStore,
    ProviderClientFactory,
    build_default_registry,
    create_http_client,
)
from .sync import SyncEngine

logger = logging.getLogger(__name__)


def setup_logging(level: LogLevel = LogLevel.INFO, log_file: Optional[str] = "data/cloudsync.log") -> None:
    """Configure root logging to stdout and, when writable, a log file."""
    log_handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        try:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            log_handlers.append(logging.FileHandler(str(log_path)))
        except (OSError, PermissionError):
            # File logging not available, use stdout only
            pass

    logging.basicConfig(
        level=getattr(logging, level.value),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=log_handlers
    )


def create_app(
    settings: Optional[CloudSyncSettings] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        settings: Runtime settings (loaded from the environment if omitted)
        environ: Environment mapping for provider client credentials

    Returns:
        Configured application. The database is opened on startup and
        closed, together with the shared HTTP client, on shutdown.
    """
    settings = settings or EnvironmentLoader.load_settings()

    errors = ConfigValidator.validate_settings(settings)
    if errors:
        for error in errors:
            logger.error(f"Configuration error: {error}")
        raise ConfigurationError(f"Invalid configuration: {'; '.join(errors)}")

    registry = build_default_registry()
    http_client = create_http_client(settings.http_timeout_seconds)

    db = SQLiteConnection(settings.database_path, pool_size=settings.db_pool_size)
    storage = SQLiteCloudStorageRepository(db, TokenCipher(settings.token_encryption_key))

    oauth_flow = OAuthFlow(
        registry,
        environ=environ,
        http_client=http_client,
        timeout=settings.http_timeout_seconds,
    )
    factory = ProviderClientFactory(
        registry,
        storage,
        http_client=http_client,
        settings=settings,
        environ=environ,
    )
    engine = SyncEngine(storage, factory, max_concurrency=settings.sync_max_concurrency)

    api.set_services(
        settings=settings,
        registry=registry,
        storage=storage,
        oauth_flow=oauth_flow,
        state_store=OAuthStateStore(settings.oauth_state_ttl_seconds),
        client_factory=factory,
        sync_engine=engine,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        await db.connect()
        await storage.initialize()
        logger.info(f"Cloud storage sync service started (database: {settings.database_path})")

        yield

        # Shutdown
        await http_client.aclose()
        await db.disconnect()
        logger.info("Cloud storage sync service shut down")

    app = FastAPI(
        title="Cloud Storage Sync API",
        description="Connect cloud storage accounts and mirror file metadata",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.include_router(api.cloud_storage_router, prefix="/api/v1")

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    return app

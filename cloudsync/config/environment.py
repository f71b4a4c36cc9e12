"""
Environment variable handling for cloud storage sync configuration.
"""

import os
from dotenv import load_dotenv

from .settings import CloudSyncSettings, LogLevel


class EnvironmentLoader:
    """Loads configuration from environment variables."""

    @staticmethod
    def load_settings(use_dotenv: bool = True) -> CloudSyncSettings:
        """Load settings from environment variables (and .env when present)."""
        if use_dotenv:
            load_dotenv()

        log_level_str = os.getenv('LOG_LEVEL', 'INFO').upper()
        log_level = LogLevel.INFO
        try:
            log_level = LogLevel(log_level_str)
        except ValueError:
            pass  # Use default

        return CloudSyncSettings(
            database_path=os.getenv('CLOUDSYNC_DB_PATH', 'data/cloudsync.db'),
            db_pool_size=int(os.getenv('CLOUDSYNC_DB_POOL_SIZE', '5')),
            token_encryption_key=os.getenv('CLOUDSYNC_TOKEN_ENCRYPTION_KEY') or None,
            oauth_redirect_base=os.getenv('CLOUDSYNC_OAUTH_REDIRECT_BASE', 'http://localhost:5000'),
            oauth_state_ttl_seconds=int(os.getenv('CLOUDSYNC_OAUTH_STATE_TTL', '600')),
            http_timeout_seconds=float(os.getenv('CLOUDSYNC_HTTP_TIMEOUT', '30')),
            http_max_attempts=int(os.getenv('CLOUDSYNC_HTTP_RETRIES', '3')),
            sync_max_concurrency=int(os.getenv('CLOUDSYNC_SYNC_CONCURRENCY', '1')),
            host=os.getenv('CLOUDSYNC_HOST', '0.0.0.0'),
            port=int(os.getenv('CLOUDSYNC_PORT', '5000')),
            log_level=log_level,
        )

"""
Settings dataclasses for the cloud storage sync service.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class LogLevel(Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


@dataclass
class CloudSyncSettings:
    """Runtime configuration, loaded once at process start."""
    database_path: str = "data/cloudsync.db"
    db_pool_size: int = 5
    token_encryption_key: Optional[str] = None

    # OAuth
    oauth_redirect_base: str = "http://localhost:5000"
    oauth_state_ttl_seconds: int = 600

    # Outbound HTTP
    http_timeout_seconds: float = 30.0
    http_max_attempts: int = 3

    # Sync engine
    sync_max_concurrency: int = 1

    # Server
    host: str = "0.0.0.0"
    port: int = 5000
    log_level: LogLevel = LogLevel.INFO

    def redirect_uri_for(self, provider: str) -> str:
        """Callback URL registered with the provider."""
        base = self.oauth_redirect_base.rstrip("/")
        return f"{base}/api/v1/cloud-storage/callback/{provider}"

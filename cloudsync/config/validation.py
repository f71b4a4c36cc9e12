"""
Configuration validation for cloud storage sync.
"""

from typing import List
from urllib.parse import urlparse

from .settings import CloudSyncSettings


class ConfigValidator:
    """Validates configuration settings."""

    @staticmethod
    def validate_settings(settings: CloudSyncSettings) -> List[str]:
        """Validate the whole configuration. Returns a list of error messages."""
        errors = []
        errors.extend(ConfigValidator._validate_numeric_ranges(settings))
        errors.extend(ConfigValidator._validate_redirect_base(settings.oauth_redirect_base))
        return errors

    @staticmethod
    def _validate_numeric_ranges(settings: CloudSyncSettings) -> List[str]:
        errors = []

        if settings.db_pool_size < 1:
            errors.append("db_pool_size must be at least 1")

        if settings.http_timeout_seconds <= 0:
            errors.append("http_timeout_seconds must be positive")

        if not 1 <= settings.http_max_attempts <= 10:
            errors.append("http_max_attempts must be between 1 and 10")

        if settings.sync_max_concurrency < 1:
            errors.append("sync_max_concurrency must be at least 1")

        if settings.oauth_state_ttl_seconds < 60:
            errors.append("oauth_state_ttl_seconds must be at least 60")

        if not 1 <= settings.port <= 65535:
            errors.append("port must be between 1 and 65535")

        return errors

    @staticmethod
    def _validate_redirect_base(value: str) -> List[str]:
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            return [f"oauth_redirect_base is not an absolute http(s) URL: {value!r}"]
        return []

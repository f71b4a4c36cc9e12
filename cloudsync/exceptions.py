"""
Exception hierarchy for the cloud storage sync subsystem.

Every error carries a machine-readable ``error_code``, an optional
``context`` dictionary for diagnostics and a ``user_message`` that is safe
to surface to end users.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional


def create_error_context(**kwargs: Any) -> Dict[str, Any]:
    """Build a diagnostics context dictionary, dropping empty values."""
    context = {key: value for key, value in kwargs.items() if value is not None}
    context["timestamp"] = datetime.now(timezone.utc).isoformat()
    return context


class CloudSyncException(Exception):
    """Base exception for all cloud storage sync errors."""

    def __init__(
        self,
        message: str,
        error_code: str = "CLOUD_SYNC_ERROR",
        context: Optional[Dict[str, Any]] = None,
        user_message: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context or {}
        self.user_message = user_message or message
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_code": self.error_code,
            "message": self.user_message,
            "context": self.context,
        }


# Configuration

class ConfigurationError(CloudSyncException):
    """Required configuration is missing or invalid."""

    def __init__(self, message: str, error_code: str = "CONFIGURATION_ERROR", **kwargs):
        super().__init__(message, error_code=error_code, **kwargs)


class CredentialsNotConfiguredError(ConfigurationError):
    """OAuth client credentials for a provider are not in the environment."""

    def __init__(self, provider: str, env_var: str, display_name: Optional[str] = None):
        label = display_name or provider
        super().__init__(
            f"{label} OAuth credentials not configured: {env_var} is not set",
            error_code="CREDENTIALS_NOT_CONFIGURED",
            context=create_error_context(provider=provider, env_var=env_var),
            user_message=f"{label} is not available. Ask an administrator to configure it.",
        )
        self.provider = provider
        self.env_var = env_var


class UnknownProviderError(CloudSyncException):
    """A provider identifier is not present in the registry."""

    def __init__(self, provider: str):
        super().__init__(
            f"Unknown cloud storage provider: {provider}",
            error_code="UNKNOWN_PROVIDER",
            context=create_error_context(provider=provider),
        )
        self.provider = provider


# Provider HTTP failures

class ProviderHTTPError(CloudSyncException):
    """Non-2xx response from a provider endpoint."""

    def __init__(
        self,
        message: str,
        status_code: int,
        body: str = "",
        error_code: str = "PROVIDER_HTTP_ERROR",
        provider: Optional[str] = None,
    ):
        super().__init__(
            message,
            error_code=error_code,
            context=create_error_context(provider=provider, status_code=status_code),
        )
        self.status_code = status_code
        self.body = body
        self.provider = provider


class TokenExchangeError(ProviderHTTPError):
    """Token endpoint rejected a grant or answered without a usable token."""

    def __init__(self, status_code: int, body: str = "", provider: Optional[str] = None):
        super().__init__(
            f"Token exchange error: {status_code} - {body}",
            status_code=status_code,
            body=body,
            error_code="TOKEN_EXCHANGE_FAILED",
            provider=provider,
        )


class ProviderApiError(ProviderHTTPError):
    """Provider file/user API returned an error status."""

    def __init__(self, status_code: int, body: str = "", provider: Optional[str] = None):
        label = provider or "Provider"
        super().__init__(
            f"{label} API error: {status_code}",
            status_code=status_code,
            body=body,
            error_code="PROVIDER_API_ERROR",
            provider=provider,
        )


# Credential material

class CredentialError(CloudSyncException):
    """Connection lacks credential material; the user has to re-authorize."""


class NoAccessTokenError(CredentialError):

    def __init__(self, connection_id: Optional[int] = None):
        super().__init__(
            "No access token available",
            error_code="NO_ACCESS_TOKEN",
            context=create_error_context(connection_id=connection_id),
            user_message="This connection is not authorized. Please reconnect.",
        )


class NoRefreshTokenError(CredentialError):

    def __init__(self, connection_id: Optional[int] = None):
        super().__init__(
            "No refresh token available",
            error_code="NO_REFRESH_TOKEN",
            context=create_error_context(connection_id=connection_id),
            user_message="Access to this connection has expired. Please reconnect.",
        )


# Sync / storage

class SyncInProgressError(CloudSyncException):
    """Another sync pass already holds the connection."""

    def __init__(self, connection_id: int):
        super().__init__(
            f"Sync already in progress for connection {connection_id}",
            error_code="SYNC_IN_PROGRESS",
            context=create_error_context(connection_id=connection_id),
        )
        self.connection_id = connection_id


class SyncDisabledError(CloudSyncException):
    """Sync is switched off for the connection."""

    def __init__(self, connection_id: int):
        super().__init__(
            f"Sync is disabled for connection {connection_id}",
            error_code="SYNC_DISABLED",
            context=create_error_context(connection_id=connection_id),
        )
        self.connection_id = connection_id


class ConnectionNotFoundError(CloudSyncException):

    def __init__(self, connection_id: int):
        super().__init__(
            f"Cloud storage connection not found: {connection_id}",
            error_code="CONNECTION_NOT_FOUND",
            context=create_error_context(connection_id=connection_id),
        )
        self.connection_id = connection_id


class InvalidOAuthStateError(CloudSyncException):
    """OAuth callback state token is unknown, reused or expired."""

    def __init__(self):
        super().__init__(
            "Invalid or expired state token",
            error_code="INVALID_OAUTH_STATE",
            user_message="Session expired. Please try again.",
        )

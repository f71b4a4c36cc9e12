"""
Base cloud storage provider interface.

Every vendor client normalizes listing, download, metadata, identity and
token refresh into one shape. Token validity is checked before every API
call; callers never reason about expiry themselves.
"""

import asyncio
import logging
import os
import re
import weakref
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

import httpx

from ..data.base import CloudStorageRepository
from ..exceptions import NoAccessTokenError, NoRefreshTokenError, ProviderApiError, TokenExchangeError
from ..models import CloudFile, CloudStorageConnection, TokenGrant, UserInfo, utcnow
from .http import DEFAULT_MAX_ATTEMPTS, DEFAULT_TIMEOUT_SECONDS, client_session, request_with_retry
from .oauth import grant_from_response
from .registry import CloudProviderConfig

logger = logging.getLogger(__name__)

TOKEN_EXPIRY_BUFFER = timedelta(minutes=5)
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_FRACTION_RE = re.compile(r"\.(\d{6})\d+")


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def token_needs_refresh(
    expires_at: Optional[datetime],
    now: Optional[datetime] = None,
    buffer: timedelta = TOKEN_EXPIRY_BUFFER,
) -> bool:
    """True when a token with this expiry must be refreshed before use.

    A token without a recorded expiry is used as-is.
    """
    if expires_at is None:
        return False
    now = now or utcnow()
    return ensure_aware(expires_at) - ensure_aware(now) < buffer


def parse_timestamp(value: Optional[str], default: Optional[datetime] = None) -> datetime:
    """Parse a provider ISO-8601 timestamp ("Z" suffix, up to 7 fraction digits).

    Missing or unparseable values yield ``default`` (the epoch if not given).
    """
    fallback = default if default is not None else EPOCH
    if not value:
        return fallback
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    text = _FRACTION_RE.sub(r".\1", text)
    try:
        return ensure_aware(datetime.fromisoformat(text))
    except ValueError:
        logger.warning(f"Unparseable timestamp from provider: {value!r}")
        return fallback


def normalize_items(
    items: Iterable[Dict[str, Any]],
    convert: Callable[[Dict[str, Any]], CloudFile],
    provider: str,
) -> List[CloudFile]:
    """Convert raw listing entries. Entries without an id or name, or with
    unusable fields, are logged and skipped."""
    files = []
    for item in items:
        try:
            if not item.get("id") or not item.get("name"):
                raise ValueError("missing id or name")
            files.append(convert(item))
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed {provider} entry: {e}")
    return files


class TokenRefreshCoordinator:
    """
    Serializes token refresh per connection.

    Refreshing twice can invalidate the first new token with some
    providers, so concurrent callers for one connection wait on a shared
    lock. A caller that waited reloads the connection from storage and
    reuses the grant the lock holder persisted.
    """

    def __init__(self):
        # Entries vanish once no caller holds or waits on the lock
        self._locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = weakref.WeakValueDictionary()

    def lock_for(self, key: int) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)


class CloudStorageProvider(ABC):
    """Abstract base class for cloud storage provider clients."""

    # Human-readable label used in error messages
    label: str = "Cloud storage"

    def __init__(
        self,
        connection: CloudStorageConnection,
        config: CloudProviderConfig,
        storage: CloudStorageRepository,
        http_client: Optional[httpx.AsyncClient] = None,
        refresh_coordinator: Optional[TokenRefreshCoordinator] = None,
        environ: Optional[Mapping[str, str]] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ):
        """
        Initialize provider client.

        Args:
            connection: Connection record this client acts for
            config: Provider config from the registry
            storage: Storage collaborator used to persist refreshed tokens
            http_client: Shared HTTP client (a short-lived one per call if omitted)
            refresh_coordinator: Per-connection refresh serialization
            environ: Environment mapping for client credentials
            timeout: Request timeout in seconds
            max_attempts: Attempts per API call on transport failures
        """
        self.connection = connection
        self.config = config
        self.storage = storage
        self._http_client = http_client
        self._refresh = refresh_coordinator or TokenRefreshCoordinator()
        self._environ = environ
        self._timeout = timeout
        self._max_attempts = max_attempts

    @property
    def environ(self) -> Mapping[str, str]:
        return os.environ if self._environ is None else self._environ

    # ------------------------------------------------------------------
    # Provider contract
    # ------------------------------------------------------------------

    @abstractmethod
    async def list_files(self, folder_id: Optional[str] = None) -> List[CloudFile]:
        """
        List immediate children of a folder.

        Args:
            folder_id: Folder to list; defaults to the connection's root
                folder, then the provider's top-level root

        Returns:
            Normalized files and folders (empty list when none)
        """

    @abstractmethod
    async def download_file(self, file_id: str) -> bytes:
        """Fetch a file's content."""

    @abstractmethod
    async def get_file_metadata(self, file_id: str) -> CloudFile:
        """Fetch one file's normalized metadata."""

    @abstractmethod
    async def get_user_info(self) -> UserInfo:
        """Fetch the account identity (email, display name)."""

    @abstractmethod
    async def refresh_access_token(self) -> TokenGrant:
        """
        Exchange the stored refresh token for a new access token.

        Raises:
            NoRefreshTokenError: Connection has no refresh token
        """

    # ------------------------------------------------------------------
    # Token handling
    # ------------------------------------------------------------------

    async def ensure_valid_token(self) -> str:
        """Return an access token that is valid for at least the expiry buffer."""
        connection = self.connection
        if not connection.access_token:
            raise NoAccessTokenError(connection.id)

        if not token_needs_refresh(connection.token_expires_at):
            return connection.access_token

        key = connection.id if connection.id is not None else id(connection)
        async with self._refresh.lock_for(key):
            # Another caller may have refreshed while we waited
            if connection.id is not None:
                stored = await self.storage.get_connection(connection.id)
                if stored is not None and stored.access_token and not token_needs_refresh(stored.token_expires_at):
                    self._apply_grant(TokenGrant(
                        access_token=stored.access_token,
                        refresh_token=stored.refresh_token,
                        expires_at=stored.token_expires_at,
                    ))
                    return stored.access_token
            elif not token_needs_refresh(connection.token_expires_at):
                return connection.access_token

            logger.info(f"Refreshing access token for {self.config.name} connection {connection.id}")
            grant = await self.refresh_access_token()

            await self.storage.update_connection_tokens(
                connection.id,
                access_token=grant.access_token,
                token_expires_at=grant.expires_at,
                refresh_token=grant.refresh_token,
            )
            self._apply_grant(grant)
            return grant.access_token

    def _apply_grant(self, grant: TokenGrant) -> None:
        self.connection.access_token = grant.access_token
        self.connection.token_expires_at = grant.expires_at
        if grant.refresh_token:
            self.connection.refresh_token = grant.refresh_token

    def _require_refresh_token(self) -> str:
        if not self.connection.refresh_token:
            raise NoRefreshTokenError(self.connection.id)
        return self.connection.refresh_token

    async def _post_token_refresh(
        self,
        data: Dict[str, str],
        auth: Optional[httpx.Auth] = None,
    ) -> TokenGrant:
        """POST a refresh grant to the provider's token endpoint."""
        async with client_session(self._http_client, self._timeout) as client:
            response = await client.post(self.config.token_url, data=data, auth=auth)

        if not response.is_success:
            logger.error(
                f"Token refresh failed for {self.config.name} connection "
                f"{self.connection.id}: HTTP {response.status_code}"
            )
            raise TokenExchangeError(response.status_code, response.text, provider=self.config.name)

        return grant_from_response(response, self.config.name)

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Authorized API call. Raises ProviderApiError on non-2xx."""
        access_token = await self.ensure_valid_token()
        headers = dict(kwargs.pop("headers", None) or {})
        headers["Authorization"] = f"Bearer {access_token}"

        async with client_session(self._http_client, self._timeout) as client:
            response = await request_with_retry(
                client,
                method,
                url,
                max_attempts=self._max_attempts,
                headers=headers,
                **kwargs,
            )

        if not response.is_success:
            logger.warning(f"{self.label} API error {response.status_code} for {method} {url}")
            raise ProviderApiError(response.status_code, response.text, provider=self.label)

        return response

    async def _get_json(self, url: str, **kwargs: Any) -> Dict[str, Any]:
        response = await self._request("GET", url, **kwargs)
        return response.json()

    async def _post_json(self, url: str, payload: Optional[Dict[str, Any]] = None, **kwargs: Any) -> Dict[str, Any]:
        response = await self._request("POST", url, json=payload, **kwargs)
        return response.json()

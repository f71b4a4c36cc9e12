"""
OAuth 2.0 authorization-code flow for cloud storage providers.

Builds authorization URLs, exchanges authorization codes for tokens and
keeps short-lived anti-CSRF state tokens for the redirect round trip.
"""

import logging
import os
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import urlencode

import httpx

from ..exceptions import CredentialsNotConfiguredError, TokenExchangeError
from ..models import TokenGrant, utcnow
from .http import DEFAULT_TIMEOUT_SECONDS, client_session
from .registry import CloudProviderConfig, ProviderRegistry

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN = 3600
DEFAULT_STATE_TTL_SECONDS = 600


def get_client_id(
    config: CloudProviderConfig,
    environ: Optional[Mapping[str, str]] = None,
) -> str:
    """Read the OAuth client id for a provider, failing fast when unset."""
    env = os.environ if environ is None else environ
    client_id = env.get(config.client_id_env)
    if not client_id:
        raise CredentialsNotConfiguredError(config.name, config.client_id_env, config.display_name)
    return client_id


def get_client_credentials(
    config: CloudProviderConfig,
    environ: Optional[Mapping[str, str]] = None,
) -> Tuple[str, str]:
    """Read the OAuth client id and secret for a provider."""
    env = os.environ if environ is None else environ
    client_id = get_client_id(config, env)
    client_secret = env.get(config.client_secret_env)
    if not client_secret:
        raise CredentialsNotConfiguredError(config.name, config.client_secret_env, config.display_name)
    return client_id, client_secret


def parse_token_response(
    data: Dict[str, Any],
    now: Optional[datetime] = None,
) -> TokenGrant:
    """Turn a token endpoint JSON body into a TokenGrant."""
    now = now or utcnow()
    expires_in = data.get("expires_in") or DEFAULT_EXPIRES_IN
    return TokenGrant(
        access_token=data["access_token"],
        refresh_token=data.get("refresh_token"),
        expires_at=now + timedelta(seconds=int(expires_in)),
    )


def grant_from_response(response: httpx.Response, provider: Optional[str] = None) -> TokenGrant:
    """
    Read a TokenGrant from a 2xx token endpoint response.

    Raises:
        TokenExchangeError: Body is not JSON or carries no access token
    """
    try:
        data = response.json()
        if not data.get("access_token"):
            raise ValueError("no access_token in token response")
        return parse_token_response(data)
    except (AttributeError, TypeError, ValueError) as e:
        logger.error(f"Malformed token response from {provider}: {e}")
        raise TokenExchangeError(response.status_code, response.text, provider=provider)


@dataclass
class OAuthState:
    """Pending authorization round trip, bound to a single use."""
    state_token: str
    provider: str
    organization_id: int
    redirect_uri: str
    user_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    def is_expired(self, ttl_seconds: int, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        return now > self.created_at + timedelta(seconds=ttl_seconds)


class OAuthStateStore:
    """
    In-memory store of pending OAuth state tokens.

    State tokens are single-use and expire after ``ttl_seconds``.
    """

    def __init__(self, ttl_seconds: int = DEFAULT_STATE_TTL_SECONDS):
        self.ttl_seconds = ttl_seconds
        self._pending: Dict[str, OAuthState] = {}

    def issue(
        self,
        provider: str,
        organization_id: int,
        redirect_uri: str,
        user_id: Optional[str] = None,
    ) -> OAuthState:
        """Create and remember a fresh state token."""
        self._cleanup_expired()

        state = OAuthState(
            state_token=secrets.token_urlsafe(32),
            provider=provider,
            organization_id=organization_id,
            redirect_uri=redirect_uri,
            user_id=user_id,
        )
        self._pending[state.state_token] = state
        return state

    def consume(self, state_token: str) -> Optional[OAuthState]:
        """Validate and remove a state token. Returns None if unknown or expired."""
        state = self._pending.pop(state_token, None)
        if state is None:
            return None

        if state.is_expired(self.ttl_seconds):
            logger.info(f"Rejected expired OAuth state for {state.provider}")
            return None

        return state

    def __len__(self) -> int:
        return len(self._pending)

    def _cleanup_expired(self) -> None:
        expired = [
            token for token, state in self._pending.items()
            if state.is_expired(self.ttl_seconds)
        ]
        for token in expired:
            del self._pending[token]


class OAuthFlow:
    """
    Authorization URL construction and code-for-token exchange.

    Client credentials are read from the environment on every call so a
    configuration change takes effect without a restart.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        environ: Optional[Mapping[str, str]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        """
        Initialize OAuth flow.

        Args:
            registry: Provider registry
            environ: Environment mapping (defaults to os.environ)
            http_client: Shared HTTP client; a short-lived one is used if omitted
            timeout: Request timeout in seconds
        """
        self.registry = registry
        self._environ = environ
        self._http_client = http_client
        self._timeout = timeout

    @property
    def environ(self) -> Mapping[str, str]:
        return os.environ if self._environ is None else self._environ

    def build_authorization_url(self, provider: str, state: str, redirect_uri: str) -> str:
        """
        Build the provider's consent-screen URL.

        ``access_type=offline`` and ``prompt=consent`` are sent to every
        provider even though only Google reads them; the others ignore
        unknown parameters.

        Args:
            provider: Provider identifier
            state: Anti-CSRF state token generated by the caller
            redirect_uri: Redirect URI registered with the provider

        Returns:
            Authorization URL
        """
        config = self.registry.get(provider)
        client_id = get_client_id(config, self.environ)

        params = {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "state": state,
            "access_type": "offline",
            "prompt": "consent",
        }
        if config.scopes:
            params["scope"] = " ".join(config.scopes)

        return f"{config.auth_url}?{urlencode(params)}"

    async def exchange_code_for_tokens(self, provider: str, code: str, redirect_uri: str) -> TokenGrant:
        """
        Exchange an authorization code for a token pair.

        Not retried: this is a one-shot interactive step and the code is
        single-use.

        Args:
            provider: Provider identifier
            code: Authorization code from the redirect
            redirect_uri: Must match the URI used to build the authorization URL

        Returns:
            Token grant

        Raises:
            CredentialsNotConfiguredError: Client id or secret missing
            TokenExchangeError: Token endpoint returned a non-2xx status
                or a body without an access token
        """
        config = self.registry.get(provider)
        client_id, client_secret = get_client_credentials(config, self.environ)

        async with client_session(self._http_client, self._timeout) as client:
            response = await client.post(
                config.token_url,
                data={
                    "client_id": client_id,
                    "client_secret": client_secret,
                    "code": code,
                    "redirect_uri": redirect_uri,
                    "grant_type": "authorization_code",
                },
            )

        if not response.is_success:
            logger.error(f"Token exchange failed for {provider}: HTTP {response.status_code}")
            raise TokenExchangeError(response.status_code, response.text, provider=provider)

        grant = grant_from_response(response, provider)
        logger.info(
            f"Exchanged authorization code for {provider} "
            f"(refresh token: {'yes' if grant.refresh_token else 'no'})"
        )
        return grant

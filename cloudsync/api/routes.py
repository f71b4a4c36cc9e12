"""
Cloud storage API routes.

Connect flow: the client asks for an authorization URL, the user consents
at the provider, and the provider redirects back to the callback route,
which stores the connection.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx
from fastapi import APIRouter, HTTPException, Query

from ..exceptions import (
    CloudSyncException,
    ConfigurationError,
    ConnectionNotFoundError,
    CredentialError,
    InvalidOAuthStateError,
    ProviderHTTPError,
    SyncDisabledError,
    SyncInProgressError,
    UnknownProviderError,
)
from ..models import CloudStorageConnection, UserInfo
from . import (
    get_client_factory,
    get_oauth_flow,
    get_registry,
    get_settings,
    get_state_store,
    get_storage,
    get_sync_engine,
)
from .models import (
    AuthUrlRequest,
    AuthUrlResponse,
    ConnectionUpdateRequest,
    FileListResponse,
    ProviderResponse,
    SyncRequest,
    SyncResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Cloud Storage"])


def to_http_exception(error: CloudSyncException) -> HTTPException:
    """Map a domain error to an HTTP error response."""
    if isinstance(error, (UnknownProviderError, ConnectionNotFoundError)):
        return HTTPException(404, error.message)
    if isinstance(error, (SyncInProgressError, SyncDisabledError)):
        return HTTPException(409, error.message)
    if isinstance(error, (ConfigurationError, InvalidOAuthStateError, CredentialError)):
        return HTTPException(400, error.user_message)
    if isinstance(error, ProviderHTTPError):
        return HTTPException(502, error.message)
    return HTTPException(500, error.message)


async def _get_org_connection(org_id: int, connection_id: int) -> CloudStorageConnection:
    connection = await get_storage().get_connection(connection_id)
    if connection is None or connection.organization_id != org_id:
        raise HTTPException(404, "Connection not found")
    return connection


# Providers

@router.get("/cloud-storage/providers", response_model=List[ProviderResponse])
async def list_providers():
    """List supported providers and whether their credentials are configured."""
    registry = get_registry()
    environ = get_oauth_flow().environ
    return [
        ProviderResponse(
            id=config.name,
            name=config.display_name,
            icon=config.icon,
            configured=registry.is_configured(config.name, environ),
        )
        for config in registry
    ]


# OAuth

@router.post("/organizations/{org_id}/cloud-storage/auth-url", response_model=AuthUrlResponse)
async def create_auth_url(org_id: int, request: AuthUrlRequest):
    """
    Start the OAuth flow for an organization.

    Args:
        org_id: Organization to connect
        request: Provider and initiating user

    Returns:
        Authorization URL and the state token bound to it
    """
    try:
        get_registry().get(request.provider)
    except UnknownProviderError as e:
        raise to_http_exception(e)

    state_store = get_state_store()
    redirect_uri = get_settings().redirect_uri_for(request.provider)
    state = state_store.issue(request.provider, org_id, redirect_uri, user_id=request.user_id)

    try:
        auth_url = get_oauth_flow().build_authorization_url(request.provider, state.state_token, redirect_uri)
    except CloudSyncException as e:
        state_store.consume(state.state_token)
        raise to_http_exception(e)

    return AuthUrlResponse(auth_url=auth_url, state=state.state_token)


@router.get("/cloud-storage/callback/{provider}")
async def oauth_callback(
    provider: str,
    code: str,
    state: str,
):
    """
    Handle the provider redirect.

    Args:
        provider: Provider identifier
        code: Authorization code
        state: State token issued with the authorization URL

    Returns:
        Success response with the stored connection
    """
    oauth_state = get_state_store().consume(state)
    if oauth_state is None or oauth_state.provider != provider:
        raise to_http_exception(InvalidOAuthStateError())

    try:
        grant = await get_oauth_flow().exchange_code_for_tokens(provider, code, oauth_state.redirect_uri)
    except CloudSyncException as e:
        logger.error(f"OAuth callback failed for {provider}: {e}")
        raise to_http_exception(e)
    except httpx.HTTPError as e:
        logger.error(f"OAuth callback failed for {provider}: {e!r}")
        raise HTTPException(502, f"Provider unreachable: {e}")

    storage = get_storage()
    connection = await storage.find_connection(oauth_state.organization_id, provider)
    is_new = connection is None
    if is_new:
        connection = CloudStorageConnection(
            provider=provider,
            organization_id=oauth_state.organization_id,
        )

    connection.access_token = grant.access_token
    connection.token_expires_at = grant.expires_at
    if grant.refresh_token:
        connection.refresh_token = grant.refresh_token
    connection.connected_by = oauth_state.user_id

    user_info = await _fetch_user_info(connection)
    if user_info is not None:
        connection.account_email = user_info.email
        connection.account_name = user_info.name

    if is_new:
        connection = await storage.create_connection(connection)
    else:
        await storage.update_connection(connection)

    logger.info(f"Connected {provider} for organization {oauth_state.organization_id}")
    return {
        "success": True,
        "connection": connection.to_dict(),
    }


async def _fetch_user_info(connection: CloudStorageConnection) -> Optional[UserInfo]:
    """Account identity for labelling; the connection is stored without it on failure."""
    try:
        client = get_client_factory().get_client(connection)
        return await client.get_user_info()
    except (CloudSyncException, httpx.HTTPError) as e:
        logger.warning(f"Could not fetch {connection.provider} account info: {e}")
        return None


# Connections

@router.get("/organizations/{org_id}/cloud-storage")
async def list_connections(org_id: int) -> List[Dict[str, Any]]:
    """List an organization's connections (credentials omitted)."""
    connections = await get_storage().list_connections(org_id)
    return [connection.to_dict() for connection in connections]


@router.delete("/organizations/{org_id}/cloud-storage/{connection_id}")
async def delete_connection(org_id: int, connection_id: int):
    """Disconnect and drop the connection's synced file records."""
    await _get_org_connection(org_id, connection_id)
    await get_storage().delete_connection(connection_id)
    logger.info(f"Deleted cloud storage connection {connection_id}")
    return {"success": True}


@router.patch("/organizations/{org_id}/cloud-storage/{connection_id}")
async def update_connection(org_id: int, connection_id: int, request: ConnectionUpdateRequest):
    """Change the synced folder or switch sync on and off."""
    connection = await _get_org_connection(org_id, connection_id)
    if request.sync_enabled is not None:
        connection.sync_enabled = request.sync_enabled
    if request.root_folder_id is not None:
        connection.root_folder_id = request.root_folder_id
        connection.root_folder_name = request.root_folder_name
    await get_storage().update_connection(connection)
    logger.info(f"Updated cloud storage connection {connection_id}")
    return {"success": True, "connection": connection.to_dict()}


@router.post("/organizations/{org_id}/cloud-storage/{connection_id}/sync", response_model=SyncResponse)
async def sync_connection(org_id: int, connection_id: int, request: SyncRequest):
    """Run a sync pass now."""
    connection = await _get_org_connection(org_id, connection_id)
    try:
        stats = await get_sync_engine().sync_connection(connection, request.project_id)
    except CloudSyncException as e:
        raise to_http_exception(e)
    except httpx.HTTPError as e:
        raise HTTPException(502, f"Provider unreachable: {e}")
    return SyncResponse(**stats.to_dict())


@router.get("/organizations/{org_id}/cloud-storage/{connection_id}/files", response_model=FileListResponse)
async def list_remote_files(
    org_id: int,
    connection_id: int,
    folder_id: Optional[str] = Query(None, description="Folder to list (defaults to the root folder)"),
):
    """Live listing of a remote folder."""
    connection = await _get_org_connection(org_id, connection_id)
    try:
        client = get_client_factory().get_client(connection)
        files = await client.list_files(folder_id)
    except CloudSyncException as e:
        raise to_http_exception(e)
    except httpx.HTTPError as e:
        raise HTTPException(502, f"Provider unreachable: {e}")
    return {"files": [file.to_dict() for file in files]}


@router.get("/organizations/{org_id}/cloud-storage/{connection_id}/synced-files")
async def list_synced_files(
    org_id: int,
    connection_id: int,
    project_id: Optional[int] = Query(None),
) -> List[Dict[str, Any]]:
    """Local tracking records for a connection."""
    await _get_org_connection(org_id, connection_id)
    records = await get_storage().list_synced_files(connection_id, project_id)
    return [record.to_dict() for record in records]

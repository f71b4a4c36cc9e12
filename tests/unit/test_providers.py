"""
Tests for the provider clients and token refresh.
"""

import asyncio
import base64
import json
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs

import httpx
import pytest
import respx

from cloudsync.config import CloudSyncSettings
from cloudsync.exceptions import (
    NoAccessTokenError,
    NoRefreshTokenError,
    ProviderApiError,
    TokenExchangeError,
    UnknownProviderError,
)
from cloudsync.models import CloudStorageConnection, UserInfo, utcnow
from cloudsync.providers import (
    DropboxProvider,
    GoogleDriveProvider,
    OneDriveProvider,
    ProviderClientFactory,
    build_default_registry,
    token_needs_refresh,
)
from cloudsync.providers.base import EPOCH, parse_timestamp
from cloudsync.providers.registry import DROPBOX, GOOGLE_DRIVE, ONEDRIVE

DRIVE_FILES_URL = "https://www.googleapis.com/drive/v3/files"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GRAPH_URL = "https://graph.microsoft.com/v1.0"
DROPBOX_API_URL = "https://api.dropboxapi.com/2"


async def _connection(repository, provider, expires_in=timedelta(hours=1), refresh_token="refresh-1", **kwargs):
    return await repository.create_connection(CloudStorageConnection(
        provider=provider,
        organization_id=1,
        access_token="access-1",
        refresh_token=refresh_token,
        token_expires_at=utcnow() + expires_in,
        **kwargs,
    ))


class TestTokenExpiry:
    """Tests for the refresh decision and timestamp parsing."""

    def test_refresh_inside_buffer(self):
        now = utcnow()
        assert token_needs_refresh(now + timedelta(minutes=4, seconds=59), now)

    def test_no_refresh_outside_buffer(self):
        now = utcnow()
        assert not token_needs_refresh(now + timedelta(minutes=5, seconds=1), now)

    def test_expired_token(self):
        now = utcnow()
        assert token_needs_refresh(now - timedelta(hours=1), now)

    def test_missing_expiry_is_used_as_is(self):
        assert not token_needs_refresh(None)

    def test_naive_expiry_treated_as_utc(self):
        now = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        assert token_needs_refresh(datetime(2024, 1, 1, 12, 3), now)

    def test_parse_timestamp(self):
        assert parse_timestamp("2024-03-01T10:00:00Z") == datetime(2024, 3, 1, 10, tzinfo=timezone.utc)
        # Graph returns seven fraction digits
        parsed = parse_timestamp("2024-03-01T10:00:00.1234567Z")
        assert parsed.microsecond == 123456
        assert parse_timestamp(None) == EPOCH

    def test_unparseable_timestamp_falls_back(self):
        assert parse_timestamp("not-a-date") == EPOCH
        fallback = datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert parse_timestamp("31/02/2024", default=fallback) == fallback


class TestTokenRefresh:
    """Tests for ensure_valid_token through the provider clients."""

    @pytest.mark.asyncio
    async def test_valid_token_not_refreshed(self, repository, credentials):
        connection = await _connection(repository, "google_drive")
        client = GoogleDriveProvider(connection, GOOGLE_DRIVE, repository, environ=credentials)

        with respx.mock:
            assert await client.ensure_valid_token() == "access-1"

    @pytest.mark.asyncio
    async def test_expired_token_refreshed_before_listing(self, repository, credentials):
        connection = await _connection(repository, "google_drive", expires_in=timedelta(minutes=-1))
        old_expiry = connection.token_expires_at
        client = GoogleDriveProvider(connection, GOOGLE_DRIVE, repository, environ=credentials)

        with respx.mock:
            token_route = respx.post(GOOGLE_TOKEN_URL).mock(
                return_value=httpx.Response(200, json={"access_token": "access-2", "expires_in": 3600})
            )
            files_route = respx.get(DRIVE_FILES_URL).mock(
                return_value=httpx.Response(200, json={"files": []})
            )
            files = await client.list_files()

        assert files == []
        assert token_route.call_count == 1
        body = parse_qs(token_route.calls.last.request.content.decode())
        assert body["grant_type"] == ["refresh_token"]
        assert body["refresh_token"] == ["refresh-1"]
        assert body["client_id"] == ["google-client"]
        assert files_route.calls.last.request.headers["Authorization"] == "Bearer access-2"

        stored = await repository.get_connection(connection.id)
        assert stored.access_token == "access-2"
        assert stored.refresh_token == "refresh-1"
        assert stored.token_expires_at > old_expiry + timedelta(minutes=50)

    @pytest.mark.asyncio
    async def test_rotated_refresh_token_stored(self, repository, credentials):
        connection = await _connection(repository, "onedrive", expires_in=timedelta(minutes=2))
        client = OneDriveProvider(connection, ONEDRIVE, repository, environ=credentials)

        with respx.mock:
            respx.post(ONEDRIVE.token_url).mock(return_value=httpx.Response(200, json={
                "access_token": "access-2",
                "refresh_token": "refresh-2",
                "expires_in": 3600,
            }))
            assert await client.ensure_valid_token() == "access-2"

        stored = await repository.get_connection(connection.id)
        assert stored.refresh_token == "refresh-2"
        assert connection.refresh_token == "refresh-2"

    @pytest.mark.asyncio
    async def test_missing_refresh_token(self, repository, credentials):
        connection = await _connection(
            repository, "google_drive", expires_in=timedelta(minutes=-1), refresh_token=None
        )
        client = GoogleDriveProvider(connection, GOOGLE_DRIVE, repository, environ=credentials)

        with respx.mock(assert_all_called=False) as mock:
            token_route = mock.post(GOOGLE_TOKEN_URL)
            files_route = mock.get(DRIVE_FILES_URL)
            with pytest.raises(NoRefreshTokenError):
                await client.list_files()

        assert not token_route.called
        assert not files_route.called

    @pytest.mark.asyncio
    async def test_missing_access_token(self, repository, credentials):
        connection = CloudStorageConnection(provider="dropbox", id=99)
        client = DropboxProvider(connection, DROPBOX, repository, environ=credentials)

        with pytest.raises(NoAccessTokenError):
            await client.ensure_valid_token()

    @pytest.mark.asyncio
    async def test_refresh_rejected(self, repository, credentials):
        connection = await _connection(repository, "google_drive", expires_in=timedelta(minutes=-1))
        client = GoogleDriveProvider(connection, GOOGLE_DRIVE, repository, environ=credentials)

        with respx.mock:
            respx.post(GOOGLE_TOKEN_URL).mock(return_value=httpx.Response(400, text="invalid_grant"))
            with pytest.raises(TokenExchangeError):
                await client.ensure_valid_token()

        stored = await repository.get_connection(connection.id)
        assert stored.access_token == "access-1"

    @pytest.mark.asyncio
    async def test_refresh_without_access_token(self, repository, credentials):
        connection = await _connection(repository, "onedrive", expires_in=timedelta(minutes=-1))
        client = OneDriveProvider(connection, ONEDRIVE, repository, environ=credentials)

        with respx.mock:
            respx.post(ONEDRIVE.token_url).mock(
                return_value=httpx.Response(200, json={"token_type": "Bearer", "expires_in": 3600})
            )
            with pytest.raises(TokenExchangeError) as exc_info:
                await client.ensure_valid_token()

        assert exc_info.value.status_code == 200
        stored = await repository.get_connection(connection.id)
        assert stored.access_token == "access-1"

    @pytest.mark.asyncio
    async def test_dropbox_refresh_uses_basic_auth(self, repository, credentials):
        connection = await _connection(repository, "dropbox", expires_in=timedelta(minutes=-1))
        client = DropboxProvider(connection, DROPBOX, repository, environ=credentials)

        with respx.mock:
            route = respx.post("https://api.dropbox.com/oauth2/token").mock(
                return_value=httpx.Response(200, json={"access_token": "access-2", "expires_in": 14400})
            )
            await client.ensure_valid_token()

        request = route.calls.last.request
        expected = base64.b64encode(b"dropbox-client:dropbox-secret").decode()
        assert request.headers["Authorization"] == f"Basic {expected}"
        body = parse_qs(request.content.decode())
        assert body == {"grant_type": ["refresh_token"], "refresh_token": ["refresh-1"]}

    @pytest.mark.asyncio
    async def test_concurrent_refresh_happens_once(self, repository, credentials):
        connection = await _connection(repository, "google_drive", expires_in=timedelta(minutes=-1))
        factory = ProviderClientFactory(build_default_registry(), repository, environ=credentials)

        first = factory.get_client(await repository.get_connection(connection.id))
        second = factory.get_client(await repository.get_connection(connection.id))

        with respx.mock:
            token_route = respx.post(GOOGLE_TOKEN_URL).mock(
                return_value=httpx.Response(200, json={"access_token": "access-2", "expires_in": 3600})
            )
            tokens = await asyncio.gather(first.ensure_valid_token(), second.ensure_valid_token())

        assert tokens == ["access-2", "access-2"]
        assert token_route.call_count == 1
        assert len(factory.refresh_coordinator) == 0

    @pytest.mark.asyncio
    async def test_waiting_client_reuses_stored_token(self, repository, credentials):
        connection = await _connection(repository, "google_drive", expires_in=timedelta(minutes=-1))
        factory = ProviderClientFactory(build_default_registry(), repository, environ=credentials)
        stale = factory.get_client(await repository.get_connection(connection.id))

        with respx.mock:
            token_route = respx.post(GOOGLE_TOKEN_URL).mock(
                return_value=httpx.Response(200, json={"access_token": "access-2", "expires_in": 3600})
            )
            fresh = factory.get_client(await repository.get_connection(connection.id))
            assert await fresh.ensure_valid_token() == "access-2"
            assert await stale.ensure_valid_token() == "access-2"

        assert token_route.call_count == 1
        assert stale.connection.access_token == "access-2"


class TestGoogleDriveProvider:
    """Tests for GoogleDriveProvider."""

    @pytest.mark.asyncio
    async def test_list_files_paginates(self, repository, credentials):
        connection = await _connection(repository, "google_drive", root_folder_id="folder-9")
        client = GoogleDriveProvider(connection, GOOGLE_DRIVE, repository, environ=credentials)

        with respx.mock:
            route = respx.get(DRIVE_FILES_URL).mock(side_effect=[
                httpx.Response(200, json={
                    "files": [{
                        "id": "f1",
                        "name": "report.pdf",
                        "mimeType": "application/pdf",
                        "size": "2048",
                        "modifiedTime": "2024-03-01T10:00:00.000Z",
                        "webContentLink": "https://drive.google.com/uc?id=f1",
                    }],
                    "nextPageToken": "page-2",
                }),
                httpx.Response(200, json={
                    "files": [{
                        "id": "d1",
                        "name": "Archive",
                        "mimeType": "application/vnd.google-apps.folder",
                        "modifiedTime": "2024-03-02T10:00:00.000Z",
                    }],
                }),
            ])
            files = await client.list_files()

        assert [f.id for f in files] == ["f1", "d1"]
        report, folder = files
        assert report.size == 2048
        assert report.path == "report.pdf"
        assert not report.is_folder
        assert report.download_url == "https://drive.google.com/uc?id=f1"
        assert report.modified_at == datetime(2024, 3, 1, 10, tzinfo=timezone.utc)
        assert folder.is_folder
        assert folder.size == 0

        first_params = route.calls[0].request.url.params
        assert first_params["q"] == "'folder-9' in parents and trashed = false"
        assert first_params["pageSize"] == "100"
        assert route.calls[1].request.url.params["pageToken"] == "page-2"

    @pytest.mark.asyncio
    async def test_list_defaults_to_root(self, repository, credentials):
        connection = await _connection(repository, "google_drive")
        client = GoogleDriveProvider(connection, GOOGLE_DRIVE, repository, environ=credentials)

        with respx.mock:
            route = respx.get(DRIVE_FILES_URL).mock(return_value=httpx.Response(200, json={}))
            assert await client.list_files() == []

        assert route.calls.last.request.url.params["q"] == "'root' in parents and trashed = false"

    @pytest.mark.asyncio
    async def test_malformed_entries_skipped(self, repository, credentials):
        connection = await _connection(repository, "google_drive")
        client = GoogleDriveProvider(connection, GOOGLE_DRIVE, repository, environ=credentials)

        with respx.mock:
            respx.get(DRIVE_FILES_URL).mock(return_value=httpx.Response(200, json={"files": [
                {"id": "f1", "name": "a.txt", "modifiedTime": "2024-03-01T10:00:00Z"},
                {"id": "f2", "name": "b.txt", "modifiedTime": "not-a-date"},
                {"name": "orphan.txt", "modifiedTime": "2024-03-01T10:00:00Z"},
                {"id": "f4", "name": "c.txt", "size": "lots"},
                {"id": "f5", "name": "d.txt", "modifiedTime": "2024-03-02T10:00:00Z"},
            ]}))
            files = await client.list_files()

        assert [f.id for f in files] == ["f1", "f2", "f5"]
        assert files[1].modified_at == EPOCH

    @pytest.mark.asyncio
    async def test_download_and_user_info(self, repository, credentials):
        connection = await _connection(repository, "google_drive")
        client = GoogleDriveProvider(connection, GOOGLE_DRIVE, repository, environ=credentials)

        with respx.mock:
            respx.get(f"{DRIVE_FILES_URL}/f1", params={"alt": "media"}).mock(
                return_value=httpx.Response(200, content=b"%PDF")
            )
            respx.get("https://www.googleapis.com/oauth2/v2/userinfo").mock(
                return_value=httpx.Response(200, json={"email": "a@example.com", "name": "Ada"})
            )
            assert await client.download_file("f1") == b"%PDF"
            info = await client.get_user_info()

        assert info.email == "a@example.com"
        assert info.name == "Ada"

    @pytest.mark.asyncio
    async def test_api_error(self, repository, credentials):
        connection = await _connection(repository, "google_drive")
        client = GoogleDriveProvider(connection, GOOGLE_DRIVE, repository, environ=credentials)

        with respx.mock:
            respx.get(f"{DRIVE_FILES_URL}/missing").mock(return_value=httpx.Response(404, text="not found"))
            with pytest.raises(ProviderApiError) as exc_info:
                await client.get_file_metadata("missing")

        assert exc_info.value.status_code == 404
        assert str(exc_info.value) == "Google Drive API error: 404"

    @pytest.mark.asyncio
    async def test_transport_errors_retried(self, repository, credentials):
        connection = await _connection(repository, "google_drive")
        client = GoogleDriveProvider(connection, GOOGLE_DRIVE, repository, environ=credentials)

        attempts = []

        def flaky(request):
            attempts.append(request)
            if len(attempts) == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"files": []})

        with respx.mock:
            respx.get(DRIVE_FILES_URL).mock(side_effect=flaky)
            assert await client.list_files() == []

        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_error_status_not_retried(self, repository, credentials):
        connection = await _connection(repository, "google_drive")
        client = GoogleDriveProvider(connection, GOOGLE_DRIVE, repository, environ=credentials)

        with respx.mock:
            route = respx.get(DRIVE_FILES_URL).mock(return_value=httpx.Response(503))
            with pytest.raises(ProviderApiError):
                await client.list_files()

        assert route.call_count == 1

    @pytest.mark.asyncio
    async def test_transport_errors_exhaust_attempts(self, repository, credentials):
        connection = await _connection(repository, "google_drive")
        client = GoogleDriveProvider(connection, GOOGLE_DRIVE, repository, environ=credentials)

        attempts = []

        def timeout(request):
            attempts.append(request)
            raise httpx.ConnectTimeout("timed out", request=request)

        with respx.mock:
            respx.get(DRIVE_FILES_URL).mock(side_effect=timeout)
            with pytest.raises(httpx.ConnectTimeout):
                await client.list_files()

        assert len(attempts) == 3


class TestOneDriveProvider:
    """Tests for OneDriveProvider."""

    @pytest.mark.asyncio
    async def test_list_root_follows_next_link(self, repository, credentials):
        connection = await _connection(repository, "onedrive")
        client = OneDriveProvider(connection, ONEDRIVE, repository, environ=credentials)
        next_link = f"{GRAPH_URL}/me/drive/root/children?$skiptoken=abc"

        with respx.mock:
            respx.get(f"{GRAPH_URL}/me/drive/root/children", params={"$skiptoken": "abc"}).mock(
                return_value=httpx.Response(200, json={"value": [{
                    "id": "d1",
                    "name": "Photos",
                    "folder": {"childCount": 3},
                    "lastModifiedDateTime": "2024-03-01T10:00:00Z",
                }]})
            )
            respx.get(f"{GRAPH_URL}/me/drive/root/children").mock(
                return_value=httpx.Response(200, json={
                    "value": [{
                        "id": "f1",
                        "name": "notes.txt",
                        "size": 12,
                        "file": {"mimeType": "text/plain"},
                        "lastModifiedDateTime": "2024-03-01T10:00:00.1234567Z",
                        "@microsoft.graph.downloadUrl": "https://download.example/f1",
                    }],
                    "@odata.nextLink": next_link,
                })
            )
            files = await client.list_files()

        assert [f.id for f in files] == ["f1", "d1"]
        notes, photos = files
        assert notes.mime_type == "text/plain"
        assert notes.download_url == "https://download.example/f1"
        assert not notes.is_folder
        assert photos.is_folder
        assert photos.mime_type == "application/octet-stream"

    @pytest.mark.asyncio
    async def test_list_folder_by_id(self, repository, credentials):
        connection = await _connection(repository, "onedrive")
        client = OneDriveProvider(connection, ONEDRIVE, repository, environ=credentials)

        with respx.mock:
            route = respx.get(f"{GRAPH_URL}/me/drive/items/ABC!12/children").mock(
                return_value=httpx.Response(200, json={"value": []})
            )
            assert await client.list_files("ABC!12") == []

        assert route.called

    @pytest.mark.asyncio
    async def test_user_info_prefers_principal_name(self, repository, credentials):
        connection = await _connection(repository, "onedrive")
        client = OneDriveProvider(connection, ONEDRIVE, repository, environ=credentials)

        with respx.mock:
            respx.get(f"{GRAPH_URL}/me").mock(return_value=httpx.Response(200, json={
                "userPrincipalName": "ada@contoso.com",
                "mail": "ada.lovelace@contoso.com",
                "displayName": "Ada Lovelace",
            }))
            info = await client.get_user_info()

        assert info.email == "ada@contoso.com"
        assert info.name == "Ada Lovelace"

    @pytest.mark.asyncio
    async def test_download_follows_redirect(self, repository, credentials):
        connection = await _connection(repository, "onedrive")
        client = OneDriveProvider(connection, ONEDRIVE, repository, environ=credentials)

        with respx.mock:
            respx.get(f"{GRAPH_URL}/me/drive/items/f1/content").mock(
                return_value=httpx.Response(302, headers={"Location": "https://download.example/f1"})
            )
            respx.get("https://download.example/f1").mock(return_value=httpx.Response(200, content=b"hello"))
            assert await client.download_file("f1") == b"hello"


class TestDropboxProvider:
    """Tests for DropboxProvider."""

    @pytest.mark.asyncio
    async def test_list_root_and_continue(self, repository, credentials):
        connection = await _connection(repository, "dropbox", root_folder_id="root")
        client = DropboxProvider(connection, DROPBOX, repository, environ=credentials)

        with respx.mock:
            list_route = respx.post(f"{DROPBOX_API_URL}/files/list_folder").mock(
                return_value=httpx.Response(200, json={
                    "entries": [{
                        ".tag": "file",
                        "id": "id:f1",
                        "name": "budget.csv",
                        "path_display": "/budget.csv",
                        "size": 512,
                        "client_modified": "2024-03-01T10:00:00Z",
                        "server_modified": "2024-03-02T10:00:00Z",
                    }],
                    "has_more": True,
                    "cursor": "cursor-1",
                })
            )
            continue_route = respx.post(f"{DROPBOX_API_URL}/files/list_folder/continue").mock(
                return_value=httpx.Response(200, json={
                    "entries": [{
                        ".tag": "folder",
                        "id": "id:d1",
                        "name": "Taxes",
                        "path_display": "/Taxes",
                    }],
                    "has_more": False,
                    "cursor": "cursor-2",
                })
            )
            files = await client.list_files()

        assert json.loads(list_route.calls.last.request.content)["path"] == ""
        assert json.loads(continue_route.calls.last.request.content) == {"cursor": "cursor-1"}

        budget, taxes = files
        assert budget.path == "/budget.csv"
        assert budget.mime_type == "text/csv"
        assert budget.modified_at == datetime(2024, 3, 1, 10, tzinfo=timezone.utc)
        assert taxes.is_folder

    @pytest.mark.asyncio
    async def test_entry_without_id_skipped(self, repository, credentials):
        connection = await _connection(repository, "dropbox")
        client = DropboxProvider(connection, DROPBOX, repository, environ=credentials)

        with respx.mock:
            respx.post(f"{DROPBOX_API_URL}/files/list_folder").mock(
                return_value=httpx.Response(200, json={
                    "entries": [
                        {".tag": "deleted", "name": "gone.txt", "path_display": "/gone.txt"},
                        {".tag": "file", "id": "id:f1", "name": "kept.txt", "size": 3},
                    ],
                    "has_more": False,
                })
            )
            files = await client.list_files()

        assert [f.name for f in files] == ["kept.txt"]
        assert files[0].mime_type == "text/plain"
        assert taxes.size == 0

    @pytest.mark.asyncio
    async def test_missing_client_modified_falls_back(self, repository, credentials):
        connection = await _connection(repository, "dropbox")
        client = DropboxProvider(connection, DROPBOX, repository, environ=credentials)

        with respx.mock:
            respx.post(f"{DROPBOX_API_URL}/files/get_metadata").mock(
                return_value=httpx.Response(200, json={
                    ".tag": "file",
                    "id": "id:f1",
                    "name": "a.bin",
                    "server_modified": "2024-03-02T10:00:00Z",
                })
            )
            file = await client.get_file_metadata("id:f1")

        assert file.modified_at == datetime(2024, 3, 2, 10, tzinfo=timezone.utc)
        assert file.mime_type == "application/octet-stream"

    @pytest.mark.asyncio
    async def test_download_sends_api_arg(self, repository, credentials):
        connection = await _connection(repository, "dropbox")
        client = DropboxProvider(connection, DROPBOX, repository, environ=credentials)

        with respx.mock:
            route = respx.post("https://content.dropboxapi.com/2/files/download").mock(
                return_value=httpx.Response(200, content=b"data")
            )
            assert await client.download_file("id:f1") == b"data"

        assert json.loads(route.calls.last.request.headers["Dropbox-API-Arg"]) == {"path": "id:f1"}

    @pytest.mark.asyncio
    async def test_user_info(self, repository, credentials):
        connection = await _connection(repository, "dropbox")
        client = DropboxProvider(connection, DROPBOX, repository, environ=credentials)

        with respx.mock:
            respx.post(f"{DROPBOX_API_URL}/users/get_current_account").mock(
                return_value=httpx.Response(200, json={
                    "email": "ada@example.com",
                    "name": {"display_name": "Ada"},
                })
            )
            info = await client.get_user_info()

        assert info == UserInfo(email="ada@example.com", name="Ada")


class TestProviderClientFactory:
    """Tests for ProviderClientFactory."""

    def test_dispatch_by_provider(self, credentials):
        factory = ProviderClientFactory(build_default_registry(), storage=None, environ=credentials)

        assert isinstance(factory.get_client(CloudStorageConnection(provider="google_drive")), GoogleDriveProvider)
        assert isinstance(factory.get_client(CloudStorageConnection(provider="onedrive")), OneDriveProvider)
        assert isinstance(factory.get_client(CloudStorageConnection(provider="dropbox")), DropboxProvider)

    def test_unknown_provider(self):
        factory = ProviderClientFactory(build_default_registry(), storage=None)
        with pytest.raises(UnknownProviderError):
            factory.get_client(CloudStorageConnection(provider="box"))

    def test_settings_passed_to_client(self):
        settings = CloudSyncSettings(http_timeout_seconds=5, http_max_attempts=1)
        factory = ProviderClientFactory(build_default_registry(), storage=None, settings=settings)

        client = factory.get_client(CloudStorageConnection(provider="dropbox"))
        assert client._timeout == 5
        assert client._max_attempts == 1

"""
Dropbox provider client (Dropbox API v2).
"""

import json
import logging
import mimetypes
from typing import Any, Dict, List, Optional

import httpx

from ..models import CloudFile, TokenGrant, UserInfo, utcnow
from .base import CloudStorageProvider, normalize_items, parse_timestamp
from .oauth import get_client_credentials

logger = logging.getLogger(__name__)

API_URL = "https://api.dropboxapi.com/2"
CONTENT_URL = "https://content.dropboxapi.com/2"
FOLDER_MIME_TYPE = "application/vnd.dropbox.folder"
DEFAULT_MIME_TYPE = "application/octet-stream"


class DropboxProvider(CloudStorageProvider):
    """
    Dropbox client.

    Listing is addressed by path (root is the empty string), while every
    entry still carries a stable ``id``. Token refresh authenticates the
    app with HTTP Basic instead of body parameters.
    """

    label = "Dropbox"

    async def list_files(self, folder_id: Optional[str] = None) -> List[CloudFile]:
        path = folder_id or self.connection.root_folder_id or ""
        if path == "root":
            path = ""

        data = await self._post_json(f"{API_URL}/files/list_folder", {
            "path": path,
            "recursive": False,
            "include_media_info": False,
        })
        files = normalize_items(data.get("entries") or [], self._to_cloud_file, self.label)

        while data.get("has_more"):
            data = await self._post_json(
                f"{API_URL}/files/list_folder/continue",
                {"cursor": data["cursor"]},
            )
            files.extend(normalize_items(data.get("entries") or [], self._to_cloud_file, self.label))

        logger.debug(f"Listed {len(files)} items in Dropbox folder {path or '/'}")
        return files

    async def download_file(self, file_id: str) -> bytes:
        response = await self._request(
            "POST",
            f"{CONTENT_URL}/files/download",
            headers={"Dropbox-API-Arg": json.dumps({"path": file_id})},
        )
        return response.content

    async def get_file_metadata(self, file_id: str) -> CloudFile:
        data = await self._post_json(f"{API_URL}/files/get_metadata", {"path": file_id})
        return self._to_cloud_file(data)

    async def get_user_info(self) -> UserInfo:
        data = await self._post_json(f"{API_URL}/users/get_current_account")
        name = (data.get("name") or {}).get("display_name")
        return UserInfo(email=data.get("email"), name=name or data.get("email"))

    async def refresh_access_token(self) -> TokenGrant:
        refresh_token = self._require_refresh_token()
        client_id, client_secret = get_client_credentials(self.config, self.environ)

        return await self._post_token_refresh(
            {
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
            auth=httpx.BasicAuth(client_id, client_secret),
        )

    @staticmethod
    def _to_cloud_file(entry: Dict[str, Any]) -> CloudFile:
        is_folder = entry.get(".tag") == "folder"
        if is_folder:
            mime_type = FOLDER_MIME_TYPE
        else:
            mime_type = mimetypes.guess_type(entry["name"])[0] or DEFAULT_MIME_TYPE

        modified = entry.get("client_modified") or entry.get("server_modified")
        return CloudFile(
            id=entry["id"],
            name=entry["name"],
            mime_type=mime_type,
            size=int(entry.get("size") or 0),
            path=entry.get("path_display") or entry["name"],
            modified_at=parse_timestamp(modified) if modified else utcnow(),
            is_folder=is_folder,
        )

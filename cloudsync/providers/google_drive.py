"""
Google Drive provider client (Drive REST API v3).
"""

import logging
from typing import Any, Dict, List, Optional

from ..models import CloudFile, TokenGrant, UserInfo
from .base import CloudStorageProvider, normalize_items, parse_timestamp
from .oauth import get_client_credentials

logger = logging.getLogger(__name__)

DRIVE_API_URL = "https://www.googleapis.com/drive/v3"
USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
FILE_FIELDS = "id,name,mimeType,size,modifiedTime,webContentLink"
PAGE_SIZE = 100


class GoogleDriveProvider(CloudStorageProvider):
    """
    Google Drive client.

    Folder membership is a query filter on ``parents``; folders are
    recognized by their vendor MIME type.
    """

    label = "Google Drive"

    async def list_files(self, folder_id: Optional[str] = None) -> List[CloudFile]:
        target = folder_id or self.connection.root_folder_id or "root"
        target = target.replace("'", "\\'")

        params = {
            "q": f"'{target}' in parents and trashed = false",
            "fields": f"nextPageToken,files({FILE_FIELDS})",
            "pageSize": PAGE_SIZE,
        }

        files: List[CloudFile] = []
        while True:
            data = await self._get_json(f"{DRIVE_API_URL}/files", params=params)
            files.extend(normalize_items(data.get("files") or [], self._to_cloud_file, self.label))

            page_token = data.get("nextPageToken")
            if not page_token:
                break
            params = {**params, "pageToken": page_token}

        logger.debug(f"Listed {len(files)} items in Google Drive folder {target}")
        return files

    async def download_file(self, file_id: str) -> bytes:
        response = await self._request(
            "GET",
            f"{DRIVE_API_URL}/files/{file_id}",
            params={"alt": "media"},
        )
        return response.content

    async def get_file_metadata(self, file_id: str) -> CloudFile:
        data = await self._get_json(
            f"{DRIVE_API_URL}/files/{file_id}",
            params={"fields": FILE_FIELDS},
        )
        return self._to_cloud_file(data)

    async def get_user_info(self) -> UserInfo:
        data = await self._get_json(USERINFO_URL)
        return UserInfo(email=data.get("email"), name=data.get("name"))

    async def refresh_access_token(self) -> TokenGrant:
        refresh_token = self._require_refresh_token()
        client_id, client_secret = get_client_credentials(self.config, self.environ)

        return await self._post_token_refresh({
            "client_id": client_id,
            "client_secret": client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        })

    @staticmethod
    def _to_cloud_file(item: Dict[str, Any]) -> CloudFile:
        mime_type = item.get("mimeType", "application/octet-stream")
        return CloudFile(
            id=item["id"],
            name=item["name"],
            mime_type=mime_type,
            size=int(item.get("size") or 0),
            path=item["name"],
            modified_at=parse_timestamp(item.get("modifiedTime")),
            is_folder=mime_type == FOLDER_MIME_TYPE,
            download_url=item.get("webContentLink"),
        )

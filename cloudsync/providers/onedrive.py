"""
Microsoft OneDrive provider client (Microsoft Graph v1.0).
"""

import logging
from typing import Any, Dict, List, Optional

from ..models import CloudFile, TokenGrant, UserInfo
from .base import CloudStorageProvider, normalize_items, parse_timestamp
from .oauth import get_client_credentials

logger = logging.getLogger(__name__)

GRAPH_API_URL = "https://graph.microsoft.com/v1.0"
DEFAULT_MIME_TYPE = "application/octet-stream"


class OneDriveProvider(CloudStorageProvider):
    """
    OneDrive client.

    ``root`` is a literal path segment; folders carry a ``folder`` facet
    instead of a MIME type. Items expose an ephemeral pre-authenticated
    download URL, but downloads still go through the content endpoint.
    """

    label = "OneDrive"

    async def list_files(self, folder_id: Optional[str] = None) -> List[CloudFile]:
        target = folder_id or self.connection.root_folder_id or "root"
        if target == "root":
            url = f"{GRAPH_API_URL}/me/drive/root/children"
        else:
            url = f"{GRAPH_API_URL}/me/drive/items/{target}/children"

        files: List[CloudFile] = []
        while url:
            data = await self._get_json(url)
            files.extend(normalize_items(data.get("value") or [], self._to_cloud_file, self.label))
            url = data.get("@odata.nextLink")

        logger.debug(f"Listed {len(files)} items in OneDrive folder {target}")
        return files

    async def download_file(self, file_id: str) -> bytes:
        # The content endpoint answers with a redirect to the download host
        response = await self._request(
            "GET",
            f"{GRAPH_API_URL}/me/drive/items/{file_id}/content",
            follow_redirects=True,
        )
        return response.content

    async def get_file_metadata(self, file_id: str) -> CloudFile:
        data = await self._get_json(f"{GRAPH_API_URL}/me/drive/items/{file_id}")
        return self._to_cloud_file(data)

    async def get_user_info(self) -> UserInfo:
        data = await self._get_json(f"{GRAPH_API_URL}/me")
        return UserInfo(
            email=data.get("userPrincipalName") or data.get("mail"),
            name=data.get("displayName"),
        )

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
        file_facet = item.get("file") or {}
        return CloudFile(
            id=item["id"],
            name=item["name"],
            mime_type=file_facet.get("mimeType") or DEFAULT_MIME_TYPE,
            size=int(item.get("size") or 0),
            path=item["name"],
            modified_at=parse_timestamp(item.get("lastModifiedDateTime")),
            is_folder="folder" in item,
            download_url=item.get("@microsoft.graph.downloadUrl"),
        )

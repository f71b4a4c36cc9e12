"""
Provider-normalized value objects.

These are read models over a provider's live state and are never
persisted as-is.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class CloudFile:
    """A remote file or folder in one shape for every provider."""
    id: str
    name: str
    mime_type: str
    size: int
    path: str
    modified_at: datetime
    is_folder: bool
    download_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "mime_type": self.mime_type,
            "size": self.size,
            "path": self.path,
            "modified_at": self.modified_at.isoformat(),
            "is_folder": self.is_folder,
            "download_url": self.download_url,
        }


@dataclass(frozen=True)
class UserInfo:
    """Account identity used to label a connection."""
    email: Optional[str]
    name: Optional[str]


@dataclass(frozen=True)
class TokenGrant:
    """Result of an authorization-code exchange or a refresh."""
    access_token: str
    expires_at: datetime
    refresh_token: Optional[str] = None

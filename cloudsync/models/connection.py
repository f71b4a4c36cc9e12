"""
Cloud storage connection model.

A connection is one authorized link between an organization and a single
cloud account. Credential fields are mutated on token refresh; sync fields
are owned by the sync engine.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class ConnectionSyncStatus(Enum):
    """Sync state of a connection."""
    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"


@dataclass
class CloudStorageConnection:
    """Persisted authorization linking an organization to a cloud account."""
    provider: str
    id: Optional[int] = None
    organization_id: Optional[int] = None

    # Scope restriction
    root_folder_id: Optional[str] = None
    root_folder_name: Optional[str] = None

    # Credentials (secret)
    access_token: Optional[str] = field(default=None, repr=False)
    refresh_token: Optional[str] = field(default=None, repr=False)
    token_expires_at: Optional[datetime] = None

    # Sync state
    sync_status: ConnectionSyncStatus = ConnectionSyncStatus.IDLE
    last_sync_at: Optional[datetime] = None
    sync_error: Optional[str] = None
    sync_enabled: bool = True

    # Account labelling
    account_email: Optional[str] = None
    account_name: Optional[str] = None
    connected_by: Optional[str] = None

    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Public representation. Tokens are never included."""
        return {
            "id": self.id,
            "provider": self.provider,
            "organization_id": self.organization_id,
            "root_folder_id": self.root_folder_id,
            "root_folder_name": self.root_folder_name,
            "account_email": self.account_email,
            "account_name": self.account_name,
            "connected_by": self.connected_by,
            "sync_enabled": self.sync_enabled,
            "sync_status": self.sync_status.value,
            "last_sync_at": self.last_sync_at.isoformat() if self.last_sync_at else None,
            "sync_error": self.sync_error,
            "token_expires_at": self.token_expires_at.isoformat() if self.token_expires_at else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

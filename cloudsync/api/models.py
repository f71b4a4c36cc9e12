"""
Request and response schemas for the cloud storage API.
"""

from typing import List, Optional

from pydantic import BaseModel, Field


class ProviderResponse(BaseModel):
    id: str
    name: str
    icon: str
    configured: bool


class AuthUrlRequest(BaseModel):
    provider: str
    user_id: Optional[str] = None


class AuthUrlResponse(BaseModel):
    auth_url: str
    state: str


class SyncRequest(BaseModel):
    project_id: Optional[int] = Field(None, description="Project new records are attached to")


class SyncResponse(BaseModel):
    added: int
    updated: int
    errors: int


class CloudFileResponse(BaseModel):
    id: str
    name: str
    mime_type: str
    size: int
    path: str
    modified_at: str
    is_folder: bool
    download_url: Optional[str] = None


class FileListResponse(BaseModel):
    files: List[CloudFileResponse]


class ConnectionUpdateRequest(BaseModel):
    sync_enabled: Optional[bool] = None
    root_folder_id: Optional[str] = Field(None, description="Folder synced from (root when unset)")
    root_folder_name: Optional[str] = None

"""
Pydantic schemas for the sync API.
"""

from typing import Optional

from pydantic import BaseModel, Field


# ============================================================================
# Requests
# ============================================================================

class PullRequest(BaseModel):
    force: bool = Field(False, description="Overwrite local changes even if both sides changed")


class ValidateTargetRequest(BaseModel):
    target: str = Field(..., min_length=1, description="Drive folder/file link or id")


# ============================================================================
# Responses
# ============================================================================

class SyncTargetResponse(BaseModel):
    mode: str
    display_name: str
    folder_id: Optional[str] = None
    file_id: Optional[str] = None
    filename: Optional[str] = None


class SyncConfigResponse(BaseModel):
    sync_enabled: bool
    authenticated: bool
    configured: bool
    target: Optional[SyncTargetResponse] = None
    last_synced_at: Optional[int] = None
    user_email: Optional[str] = None


class FileInfoResponse(BaseModel):
    exists: bool
    modified_time: Optional[str] = None
    error: Optional[str] = None


class SyncStatusResponse(BaseModel):
    configured: bool
    authenticated: bool
    display_name: Optional[str] = None
    last_synced_at: Optional[int] = None
    user_email: Optional[str] = None
    local: FileInfoResponse
    remote: FileInfoResponse


class SyncCheckResponse(BaseModel):
    reason: str
    needs_attention: bool
    local_changed: bool
    cloud_changed: bool
    last_synced_at: Optional[int] = None
    cloud_modified_time: Optional[str] = None
    error: Optional[str] = None


class SyncResultResponse(BaseModel):
    success: bool
    error: Optional[str] = None
    error_code: Optional[str] = None
    backup_path: Optional[str] = None
    synced_at: Optional[int] = None


class ValidateTargetResponse(BaseModel):
    success: bool
    display_name: Optional[str] = None
    mode: Optional[str] = None
    error: Optional[str] = None


class AuthUrlResponse(BaseModel):
    url: str
    state: str


class AccessTokenResponse(BaseModel):
    access_token: str


# ============================================================================
# Credentials
# ============================================================================

class CredentialsRequest(BaseModel):
    client_id: str = Field("", description="OAuth client id ending in .apps.googleusercontent.com")
    client_secret: str = ""
    api_key: str = Field("", description="Browser API key for Google Picker")


class CredentialsResponse(BaseModel):
    client_id: str
    api_key: str
    configured: bool
    has_api_key: bool


class SuccessResponse(BaseModel):
    success: bool

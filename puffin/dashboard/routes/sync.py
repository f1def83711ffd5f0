"""
Sync API routes.

Push/pull/validate failures come back as ``{"success": false, "error": ...}``
with status 200. Rejected credentials raise ValidationError, which the app
turns into a 400.
"""

import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import RedirectResponse

from ...exceptions import AuthError
from ...sync.base import FileTarget, FolderTarget, GoogleCredentials
from ...sync.oauth import INVALID_STATE_ERROR, OAuthBroker
from ...sync.service import SyncOrchestrator
from ..models import (
    AccessTokenResponse,
    AuthUrlResponse,
    CredentialsRequest,
    CredentialsResponse,
    PullRequest,
    SuccessResponse,
    SyncCheckResponse,
    SyncConfigResponse,
    SyncResultResponse,
    SyncStatusResponse,
    SyncTargetResponse,
    ValidateTargetRequest,
    ValidateTargetResponse,
)
from . import get_broker, get_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])

SETTINGS_PAGE = "/settings"


@router.get("/config", response_model=SyncConfigResponse)
async def get_sync_config(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """Current sync target and connection state."""
    config = await orchestrator.config_manager.get_config()

    target = None
    if isinstance(config.target, FolderTarget):
        target = SyncTargetResponse(
            mode=config.target.mode.value,
            display_name=config.target.display_name,
            folder_id=config.target.folder_id,
            file_id=config.target.file_id,
            filename=config.target.filename,
        )
    elif isinstance(config.target, FileTarget):
        target = SyncTargetResponse(
            mode=config.target.mode.value,
            display_name=config.target.display_name,
            file_id=config.target.file_id,
        )

    return SyncConfigResponse(
        sync_enabled=await orchestrator.broker.is_configured(),
        authenticated=await orchestrator.config_manager.has_tokens(),
        configured=config.is_configured,
        target=target,
        last_synced_at=config.last_synced_at,
        user_email=config.user_email,
    )


@router.get("/status", response_model=SyncStatusResponse)
async def get_sync_status(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """Local vs remote modification times."""
    try:
        status = await orchestrator.get_status()
    except Exception as e:
        logger.error(f"Status check failed: {e}", exc_info=True)
        raise HTTPException(500, f"Status check failed: {e}")
    return SyncStatusResponse(**status.to_dict())


@router.get("/check", response_model=SyncCheckResponse)
async def check_sync(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """Advisory divergence check before editing or pulling."""
    result = await orchestrator.check()
    return SyncCheckResponse(**result.to_dict())


@router.post("/push", response_model=SyncResultResponse)
async def push(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """Upload the local database to Google Drive."""
    result = await orchestrator.push()
    return SyncResultResponse(**result.to_dict())


@router.post("/pull", response_model=SyncResultResponse)
async def pull(
    request: Optional[PullRequest] = None,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Replace the local database with the Google Drive copy."""
    force = request.force if request else False
    result = await orchestrator.pull(force=force)
    return SyncResultResponse(**result.to_dict())


@router.post("/validate", response_model=ValidateTargetResponse)
async def validate_target(
    request: ValidateTargetRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Check a Drive link and save it as the sync target."""
    result = await orchestrator.validate_target(request.target)
    return ValidateTargetResponse(**result.to_dict())


@router.post("/disconnect", response_model=SyncResultResponse)
async def disconnect(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """Revoke access and forget the sync target."""
    result = await orchestrator.disconnect()
    return SyncResultResponse(**result.to_dict())


@router.get("/oauth/url", response_model=AuthUrlResponse)
async def get_auth_url(broker: OAuthBroker = Depends(get_broker)):
    """Google consent URL for connecting Drive."""
    state = broker.issue_state()
    try:
        url = await broker.build_auth_url(state)
    except AuthError as e:
        raise HTTPException(400, e.user_message)
    return AuthUrlResponse(url=url, state=state)


@router.get("/oauth/callback")
async def oauth_callback(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    broker: OAuthBroker = Depends(get_broker),
):
    """Google redirects here after consent; bounce back to the settings page."""
    if error:
        logger.warning(f"OAuth denied: {error}")
        return RedirectResponse(f"{SETTINGS_PAGE}?{urlencode({'sync_error': error})}")

    if not code:
        return RedirectResponse(f"{SETTINGS_PAGE}?{urlencode({'sync_error': 'missing_code'})}")

    if not state:
        logger.warning("OAuth callback without state")
        return RedirectResponse(f"{SETTINGS_PAGE}?{urlencode({'sync_error': INVALID_STATE_ERROR})}")

    result = await broker.handle_callback(code, state)
    if not result.success:
        return RedirectResponse(f"{SETTINGS_PAGE}?{urlencode({'sync_error': result.error})}")

    params = {"sync_connected": "true"}
    if result.email:
        params["email"] = result.email
    return RedirectResponse(f"{SETTINGS_PAGE}?{urlencode(params)}")


@router.get("/token", response_model=AccessTokenResponse)
async def get_access_token(broker: OAuthBroker = Depends(get_broker)):
    """Current access token for the Google Picker."""
    client = await broker.get_client()
    if client is None or not client.access_token:
        raise HTTPException(401, "Not authenticated")
    return AccessTokenResponse(access_token=client.access_token)


@router.get("/credentials", response_model=CredentialsResponse)
async def get_credentials(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """Public OAuth client id and Picker API key. The secret is never returned."""
    credentials = await orchestrator.config_manager.get_credentials()
    return CredentialsResponse(
        client_id=credentials.client_id,
        api_key=credentials.api_key,
        configured=credentials.is_configured(),
        has_api_key=bool(credentials.api_key),
    )


@router.post("/credentials", response_model=SuccessResponse)
async def save_credentials(
    request: CredentialsRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Save user-supplied OAuth client credentials (first-run setup)."""
    await orchestrator.config_manager.save_credentials(
        GoogleCredentials(
            client_id=request.client_id,
            client_secret=request.client_secret,
            api_key=request.api_key,
        )
    )
    return SuccessResponse(success=True)


@router.delete("/credentials", response_model=SuccessResponse)
async def delete_credentials(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """Forget stored credentials along with the sync target and tokens."""
    await orchestrator.config_manager.clear_credentials()
    await orchestrator.config_manager.clear()
    return SuccessResponse(success=True)

# backend/app/routers/integrations.py
# API endpoints for stylist integrations (Google Calendar)

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from ..dependencies import get_calendar_client, get_store
from ..schemas.integrations import AuthUrlResponse, OAuthCallbackResponse
from ..services.google_calendar import GoogleCalendarClient
from ..services.schedule_store import SqlScheduleStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/integrations", tags=["integrations"])


@router.get("/google/auth-url", response_model=AuthUrlResponse)
def get_google_auth_url(
    stylist_id: int = Query(..., description="Stylist ID requesting OAuth"),
    store: SqlScheduleStore = Depends(get_store),
    client: GoogleCalendarClient = Depends(get_calendar_client),
):
    """
    Generate OAuth URL for Google Calendar authorization.

    The stylist should be redirected to this URL to authorize access.
    """
    if store.get_stylist(stylist_id) is None:
        raise HTTPException(status_code=404, detail="Stylist not found")

    return AuthUrlResponse(auth_url=client.get_oauth_url(stylist_id))


@router.get("/google/callback", response_model=OAuthCallbackResponse)
def handle_google_callback(
    code: str = Query(..., description="Authorization code from Google"),
    state: str = Query(..., description="State parameter with encoded stylist_id"),
    store: SqlScheduleStore = Depends(get_store),
    client: GoogleCalendarClient = Depends(get_calendar_client),
):
    """
    Handle OAuth callback from Google.

    Exchanges the authorization code for tokens and saves the integration;
    a successful reconnect clears needs_reconnect.
    """
    try:
        tokens = client.exchange_code_for_tokens(code, state)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    stylist_id = tokens["stylist_id"]
    if store.get_stylist(stylist_id) is None:
        raise HTTPException(status_code=404, detail="Stylist not found")

    store.save_integration_tokens(
        stylist_id,
        access_token=tokens["access_token"],
        refresh_token=tokens["refresh_token"],
        token_expires_at=tokens["token_expires_at"],
    )
    store.commit()

    logger.info(f"Google Calendar connected for stylist {stylist_id}")

    return OAuthCallbackResponse(
        success=True,
        stylist_id=stylist_id,
        message="Google Calendar connected successfully",
    )

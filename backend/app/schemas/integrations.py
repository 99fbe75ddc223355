# backend/app/schemas/integrations.py

from pydantic import BaseModel


class AuthUrlResponse(BaseModel):
    auth_url: str


class OAuthCallbackResponse(BaseModel):
    """Response after OAuth callback."""
    success: bool
    stylist_id: int
    message: str

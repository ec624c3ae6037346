"""OAuth consent schemas."""

from pydantic import BaseModel


class OAuthStartResponse(BaseModel):
    auth_url: str
    state: str


class OAuthCallbackResponse(BaseModel):
    ok: bool = True
    agency_id: str
    scopes: str

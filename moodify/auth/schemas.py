from __future__ import annotations

from pydantic import BaseModel


class TokenResponse(BaseModel):
    """Token endpoint reply for both grant types."""

    access_token: str
    expires_in: int
    token_type: str = "Bearer"
    refresh_token: str | None = None
    scope: str | None = None

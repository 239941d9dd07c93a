"""Schemas related to OAuth flows."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class AuthorizationStart(BaseModel):
    """Returned by the connect endpoint to non-browser clients."""

    authorization_url: str = Field(..., description="FreeAgent consent URL.")
    state: str = Field(..., description="Signed state token echoed back on callback.")


class CallbackResult(BaseModel):
    status: str = "connected"
    owner_id: str
    redirect_to: Optional[str] = None


__all__ = ["AuthorizationStart", "CallbackResult"]

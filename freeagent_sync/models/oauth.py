"""
Domain model for persisted FreeAgent OAuth tokens.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel, Field, field_validator

EXPIRY_BUFFER = timedelta(minutes=5)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OAuthToken(BaseModel):
    """An access/refresh token pair owned by one owner key."""

    owner_id: str = Field(..., description="Owner key resolved for the principal.")
    access_token: str = Field(..., repr=False)
    refresh_token: str = Field(..., repr=False)
    expires_at: datetime
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("expires_at", "created_at", "updated_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at <= (now or _utcnow())

    def is_expiring_soon(self, now: Optional[datetime] = None) -> bool:
        """True once the token is inside the five minute refresh window."""
        return self.expires_at - EXPIRY_BUFFER <= (now or _utcnow())

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        return not self.is_expired(now)


__all__ = ["EXPIRY_BUFFER", "OAuthToken"]

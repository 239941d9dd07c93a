"""
Error taxonomy shared by the OAuth, gateway and sync layers.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class FreeAgentError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(FreeAgentError):
    """Raised when client credentials or other required settings are missing."""


class OAuthFailure(str, Enum):
    AUTHORIZATION_FAILED = "authorization_failed"
    REFRESH_FAILED = "refresh_failed"
    INVALID_CALLBACK = "invalid_callback"
    NO_TOKEN = "no_token"


class OAuthError(FreeAgentError):
    """Raised for failures in the OAuth authorization or refresh flow."""

    def __init__(self, reason: OAuthFailure, message: str) -> None:
        super().__init__(message)
        self.reason = reason

    @classmethod
    def authorization_failed(cls, message: str) -> "OAuthError":
        return cls(
            OAuthFailure.AUTHORIZATION_FAILED,
            f"FreeAgent OAuth authorization failed: {message}",
        )

    @classmethod
    def refresh_failed(cls, message: str) -> "OAuthError":
        return cls(
            OAuthFailure.REFRESH_FAILED,
            f"Failed to refresh FreeAgent OAuth token: {message}",
        )

    @classmethod
    def invalid_callback(cls, message: str) -> "OAuthError":
        return cls(OAuthFailure.INVALID_CALLBACK, f"Invalid OAuth callback: {message}")

    @classmethod
    def no_token(cls) -> "OAuthError":
        return cls(
            OAuthFailure.NO_TOKEN,
            "No valid FreeAgent OAuth token available for this owner",
        )


class ApiError(FreeAgentError):
    """Raised when a call against the FreeAgent API does not succeed."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int = 0,
        response_data: Optional[Any] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response_data = response_data


class RequestFailed(ApiError):
    def __init__(self, status_code: int, response_data: Optional[Any] = None) -> None:
        super().__init__(
            f"FreeAgent API request failed with status: {status_code}",
            status_code=status_code,
            response_data=response_data,
        )


class RateLimitError(ApiError):
    def __init__(self, message: str = "FreeAgent API rate limit exceeded") -> None:
        super().__init__(message, status_code=429)


class AuthenticationError(ApiError):
    def __init__(self, message: str = "Authentication failed") -> None:
        super().__init__(message, status_code=401)


class NetworkError(ApiError):
    def __init__(self, message: str) -> None:
        super().__init__(f"Network error: {message}")


class DecodingError(ApiError):
    """Raised when an embedded binary payload cannot be extracted or decoded."""


class AccessDeniedError(FreeAgentError):
    """Raised when a principal is outside the scope of the requested record."""


__all__ = [
    "AccessDeniedError",
    "ApiError",
    "AuthenticationError",
    "ConfigurationError",
    "DecodingError",
    "FreeAgentError",
    "NetworkError",
    "OAuthError",
    "OAuthFailure",
    "RateLimitError",
    "RequestFailed",
]

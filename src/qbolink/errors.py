"""
Error taxonomy for qbolink.

Every failure that crosses a component boundary is one of these. HTTP-facing
code maps them to status codes; the refresh loop logs them and goes idle.
"""

from __future__ import annotations


class QBOLinkError(Exception):
    """Base class for all qbolink errors."""


class ConfigError(QBOLinkError):
    """Configuration is missing or invalid."""


class AuthError(QBOLinkError):
    """The OAuth provider rejected a code or token exchange."""

    def __init__(self, message: str, *, status_code: int | None = None, error: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error = error


class RefreshError(AuthError):
    """A refresh-token exchange failed (expired or revoked refresh token)."""


class WebhookAuthError(QBOLinkError):
    """An inbound webhook failed authentication."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"Webhook rejected: {reason}")
        self.reason = reason


class StoreError(QBOLinkError):
    """The key-value store is unavailable or returned an unreadable value."""

"""
Tenant credential model: one OAuth2 token set per QuickBooks realm.
"""

from __future__ import annotations

import time
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def now_millis() -> int:
    """Current local wall-clock time in milliseconds."""
    return int(time.time() * 1000)


class TenantCredential(BaseModel):
    """OAuth2 tokens for a single tenant (QuickBooks realm).

    ``created_at_millis`` is always stamped locally when the token set is
    acquired or refreshed. The provider only reports relative lifetimes, so
    absolute expiry times are derived from it.
    """

    model_config = ConfigDict(frozen=True)

    tenant_id: str | None = None
    access_token: str
    refresh_token: str
    created_at_millis: int
    expires_in_seconds: int = Field(default=3600, ge=0)
    refresh_expires_in_seconds: int = Field(default=0, ge=0)

    @property
    def access_expires_at_millis(self) -> int:
        return self.created_at_millis + self.expires_in_seconds * 1000

    @property
    def refresh_expires_at_millis(self) -> int:
        return self.created_at_millis + self.refresh_expires_in_seconds * 1000

    def is_access_expired(self, now: int, margin_millis: int = 0) -> bool:
        """Whether the access token is expired (or within ``margin_millis`` of it)."""
        return now >= self.access_expires_at_millis - margin_millis

    @classmethod
    def from_oauth_response(
        cls,
        data: dict[str, Any],
        *,
        tenant_id: str | None,
        created_at_millis: int,
        previous_refresh_token: str = "",
    ) -> TenantCredential:
        """Parse an Intuit token endpoint response.

        Intuit rotates refresh tokens; if a response omits one, the
        previously held refresh token stays valid and is kept.
        """
        return cls(
            tenant_id=tenant_id,
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or previous_refresh_token,
            created_at_millis=created_at_millis,
            expires_in_seconds=int(data.get("expires_in", 3600)),
            refresh_expires_in_seconds=int(data.get("x_refresh_token_expires_in", 0)),
        )

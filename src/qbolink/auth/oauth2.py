"""
OAuth2 client for QuickBooks Online (Intuit).

Two halves of the authorization code grant:

- ``AuthorizationUrlBuilder`` builds the consent URL the user visits, with a
  random anti-forgery ``state`` token.
- ``TokenExchange`` trades an authorization code, or a refresh token, for a
  new ``TenantCredential`` at the Intuit token endpoint.

Neither retries. Retry policy, if any, belongs to the caller.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from typing import Any, Callable
from urllib.parse import urlencode

import httpx

from qbolink.errors import AuthError, RefreshError
from qbolink.models.credential import TenantCredential, now_millis

logger = logging.getLogger("qbolink.auth.oauth2")

INTUIT_AUTH_URL = "https://appcenter.intuit.com/connect/oauth2"
INTUIT_TOKEN_URL = "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer"

SCOPE_ACCOUNTING = "com.intuit.quickbooks.accounting"
SCOPE_OPENID = "openid"
DEFAULT_SCOPES = (SCOPE_ACCOUNTING, SCOPE_OPENID)

# Bytes of randomness in the anti-forgery state token
_STATE_BYTES = 20


def generate_state() -> str:
    """Generate an unguessable hex-encoded ``state`` token."""
    return secrets.token_hex(_STATE_BYTES)


@dataclass(frozen=True)
class AuthorizationRequest:
    """A consent URL plus the state token embedded in it."""

    url: str
    state: str
    sandbox: bool = False


class AuthorizationUrlBuilder:
    """Builds Intuit consent URLs.

    Usage::

        builder = AuthorizationUrlBuilder(
            client_id="AB...",
            client_secret="...",
            redirect_uri="https://example.com/callbacks/quickbooks",
            sandbox=True,
        )
        request = builder.build()
        # send the user to request.url; keep request.state to check the callback
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        *,
        sandbox: bool = False,
        authorize_url: str = INTUIT_AUTH_URL,
        scopes: tuple[str, ...] = DEFAULT_SCOPES,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.sandbox = sandbox
        self.authorize_url = authorize_url
        self.scopes = scopes

    def build(self, state: str | None = None) -> AuthorizationRequest:
        state = state or generate_state()
        params = {
            "client_id": self.client_id,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "redirect_uri": self.redirect_uri,
            "state": state,
        }
        url = f"{self.authorize_url}?{urlencode(params)}"
        return AuthorizationRequest(url=url, state=state, sandbox=self.sandbox)


class TokenExchange:
    """Exchanges codes and refresh tokens for ``TenantCredential`` records.

    The returned record's ``created_at_millis`` comes from the local clock;
    Intuit reports lifetimes relative to the response, not absolute times.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        *,
        token_url: str = INTUIT_TOKEN_URL,
        clock: Callable[[], int] = now_millis,
        timeout: float = 30.0,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_url = token_url
        self._clock = clock
        self._timeout = timeout
        self._http_client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create a reusable httpx client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=self._timeout,
                headers={"Accept": "application/json"},
            )
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def _post(self, payload: dict[str, str], error_cls: type[AuthError]) -> dict[str, Any]:
        client = await self._get_client()
        try:
            resp = await client.post(
                self.token_url,
                data=payload,
                auth=(self.client_id, self.client_secret),
            )
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as e:
            error = _provider_error(e.response)
            raise error_cls(
                f"Token endpoint rejected {payload['grant_type']} grant: {error or e.response.status_code}",
                status_code=e.response.status_code,
                error=error,
            ) from e
        except httpx.HTTPError as e:
            raise error_cls(f"Token endpoint unreachable: {e}") from e
        except ValueError as e:
            raise error_cls(f"Token endpoint returned invalid JSON: {e}") from e

    async def exchange_code(
        self,
        code: str,
        redirect_uri: str,
        tenant_id: str | None = None,
    ) -> TenantCredential:
        """Exchange an authorization code for a new credential.

        Raises:
            AuthError: If the code is expired, reused, or the redirect URI
                does not match the one used for consent.
        """
        data = await self._post(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
            },
            AuthError,
        )
        credential = _credential_from(data, tenant_id=tenant_id, created_at_millis=self._clock(), error_cls=AuthError)
        logger.info("Exchanged auth code for tenant %s", tenant_id or "default")
        return credential

    async def refresh(self, credential: TenantCredential) -> TenantCredential:
        """Obtain a new credential using ``credential.refresh_token``.

        Raises:
            RefreshError: If the refresh token is missing, expired, or revoked.
        """
        if not credential.refresh_token:
            raise RefreshError(f"No refresh token stored for tenant {credential.tenant_id or 'default'}")

        data = await self._post(
            {
                "grant_type": "refresh_token",
                "refresh_token": credential.refresh_token,
            },
            RefreshError,
        )
        refreshed = _credential_from(
            data,
            tenant_id=credential.tenant_id,
            created_at_millis=self._clock(),
            previous_refresh_token=credential.refresh_token,
            error_cls=RefreshError,
        )
        logger.info(
            "Refreshed access token for tenant %s (expires in %ds)",
            refreshed.tenant_id or "default",
            refreshed.expires_in_seconds,
        )
        return refreshed


def _credential_from(
    data: dict[str, Any],
    *,
    tenant_id: str | None,
    created_at_millis: int,
    error_cls: type[AuthError],
    previous_refresh_token: str = "",
) -> TenantCredential:
    try:
        return TenantCredential.from_oauth_response(
            data,
            tenant_id=tenant_id,
            created_at_millis=created_at_millis,
            previous_refresh_token=previous_refresh_token,
        )
    except (KeyError, TypeError, ValueError) as e:
        raise error_cls(f"Token endpoint response missing fields: {e}") from e


def _provider_error(response: httpx.Response) -> str | None:
    """Pull the OAuth ``error`` field out of a failed token response."""
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        return body.get("error_description") or body.get("error")
    return None

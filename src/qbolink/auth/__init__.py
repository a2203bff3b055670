"""
qbolink authentication.

Consent URL construction and OAuth2 code/refresh-token exchange against
Intuit's token endpoint.
"""

from qbolink.auth.oauth2 import (
    AuthorizationRequest,
    AuthorizationUrlBuilder,
    TokenExchange,
    generate_state,
)

__all__ = [
    "AuthorizationRequest",
    "AuthorizationUrlBuilder",
    "TokenExchange",
    "generate_state",
]

"""
Webhook signature verification.

QuickBooks signs each webhook body with HMAC-SHA256 keyed by the app's
verifier token and sends the base64 digest in the ``intuit-signature``
header. Verification must run over the raw request bytes: re-serializing
parsed JSON can change the bytes and break the signature.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from dataclasses import dataclass
from enum import Enum

from qbolink.errors import WebhookAuthError

logger = logging.getLogger("qbolink.webhooks.verifier")

SIGNATURE_HEADER = "intuit-signature"


class RejectReason(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    SIGNATURE_MISMATCH = "signature_mismatch"


@dataclass(frozen=True)
class Verdict:
    """Outcome of verifying one webhook request."""

    accepted: bool
    reason: RejectReason | None = None

    def raise_for_reject(self) -> None:
        if not self.accepted:
            raise WebhookAuthError(self.reason.value if self.reason else "rejected")


ACCEPT = Verdict(accepted=True)


def sign(raw_body: bytes, secret: str) -> str:
    """Compute the ``intuit-signature`` header value for ``raw_body``."""
    digest = hmac.new(secret.encode(), raw_body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


class WebhookVerifier:
    """Checks ``intuit-signature`` headers against a shared verifier token.

    Without a verifier token every request is rejected as unauthenticated,
    since anyone can sign a body with an empty key.
    """

    def __init__(self, secret: str) -> None:
        self.secret = secret
        if not secret:
            logger.warning("No webhook verifier token configured, all webhooks will be rejected")

    @property
    def configured(self) -> bool:
        return bool(self.secret)

    def verify(self, raw_body: bytes, signature_header: str | None) -> Verdict:
        if not self.configured:
            logger.warning("Webhook rejected: no verifier token configured")
            return Verdict(accepted=False, reason=RejectReason.UNAUTHENTICATED)
        return verify(raw_body, signature_header, self.secret)


def verify(raw_body: bytes, signature_header: str | None, secret: str) -> Verdict:
    """Verify a webhook body against its signature header.

    Policy, in order:

    1. No signature header → reject as unauthenticated.
    2. Empty body → accept (a no-op heartbeat).
    3. Signature differs from base64(HMAC-SHA256(secret, body)) → reject.
    """
    if signature_header is None:
        logger.warning("Webhook rejected: missing %s header", SIGNATURE_HEADER)
        return Verdict(accepted=False, reason=RejectReason.UNAUTHENTICATED)

    if not raw_body:
        return ACCEPT

    expected = sign(raw_body, secret)
    if not hmac.compare_digest(expected.encode(), signature_header.encode()):
        logger.warning("Webhook rejected: signature mismatch")
        return Verdict(accepted=False, reason=RejectReason.SIGNATURE_MISMATCH)

    return ACCEPT

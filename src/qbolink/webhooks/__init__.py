"""Inbound webhook authentication and event routing."""

from qbolink.webhooks.router import EventRouter
from qbolink.webhooks.verifier import (
    SIGNATURE_HEADER,
    RejectReason,
    Verdict,
    WebhookVerifier,
    sign,
    verify,
)

__all__ = [
    "SIGNATURE_HEADER",
    "EventRouter",
    "RejectReason",
    "Verdict",
    "WebhookVerifier",
    "sign",
    "verify",
]

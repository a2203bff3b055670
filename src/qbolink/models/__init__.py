"""Data models for credentials and webhook events."""

from qbolink.models.credential import TenantCredential, now_millis
from qbolink.models.events import (
    KNOWN_ACTION_KEYS,
    ChangeNotification,
    EventSubscription,
    SubscriptionOptions,
    WebhookOperation,
    WebhookPayload,
    is_known_action_key,
    make_action_key,
)

__all__ = [
    "KNOWN_ACTION_KEYS",
    "ChangeNotification",
    "EventSubscription",
    "SubscriptionOptions",
    "TenantCredential",
    "WebhookOperation",
    "WebhookPayload",
    "is_known_action_key",
    "make_action_key",
    "now_millis",
]

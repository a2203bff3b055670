"""
Event router — fans verified change notifications out to subscribers.

Subscribers register for an action key (``"<Entity>/<Operation>"``, e.g.
``"Invoice/Create"``). Matching is exact and case-sensitive; there are no
wildcards. Every matching handler is invoked once per entity entry.
"""

from __future__ import annotations

import inspect
import logging
import uuid

from qbolink.models.events import (
    ChangeNotification,
    EventHandler,
    EventSubscription,
    WebhookPayload,
    is_known_action_key,
)

logger = logging.getLogger("qbolink.webhooks.router")


class EventRouter:
    """Holds subscriptions and dispatches notifications to them."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, EventSubscription] = {}

    def __len__(self) -> int:
        return len(self._subscriptions)

    @property
    def subscriptions(self) -> list[EventSubscription]:
        return list(self._subscriptions.values())

    def register(
        self,
        action_key: str,
        handler: EventHandler,
        subscription_id: str | None = None,
    ) -> EventSubscription:
        """Subscribe ``handler`` to ``action_key``.

        Keys outside the known QuickBooks table are accepted (the provider
        adds entities over time) but logged.
        """
        if not is_known_action_key(action_key):
            logger.warning("Subscribing to unrecognized action key %r", action_key)

        sub_id = subscription_id or f"quickbooks/{action_key}/{uuid.uuid4().hex[:12]}"
        if sub_id in self._subscriptions:
            raise ValueError(f"Subscription id already registered: {sub_id}")

        subscription = EventSubscription(id=sub_id, action_key=action_key, handler=handler)
        self._subscriptions[sub_id] = subscription
        logger.info("Registered subscription %s", sub_id)
        return subscription

    def unregister(self, subscription_id: str) -> bool:
        removed = self._subscriptions.pop(subscription_id, None)
        if removed:
            logger.info("Removed subscription %s", subscription_id)
        return removed is not None

    def matching(self, action_key: str) -> list[EventSubscription]:
        return [s for s in self._subscriptions.values() if s.action_key == action_key]

    async def dispatch(self, payload: WebhookPayload) -> int:
        """Deliver every entity change in ``payload``.

        Returns the number of handler invocations. A handler that raises is
        logged and does not stop delivery to the others.
        """
        delivered = 0
        for notification in payload.notifications():
            delivered += await self.dispatch_one(notification)
        return delivered

    async def dispatch_one(self, notification: ChangeNotification) -> int:
        subscriptions = self.matching(notification.action_key)
        if not subscriptions:
            logger.debug("No subscribers for %s", notification.action_key)
            return 0

        for subscription in subscriptions:
            try:
                result = subscription.handler(notification)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(
                    "Handler %s failed for %s %s",
                    subscription.id,
                    notification.action_key,
                    notification.entity_id,
                )
        return len(subscriptions)

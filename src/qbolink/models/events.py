"""
Webhook event models: subscriptions, change notifications, and the
QuickBooks ``eventNotifications`` payload.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Union

from pydantic import BaseModel, ConfigDict, Field


class WebhookOperation(str, Enum):
    """Operations QuickBooks reports in change notifications."""

    CREATE = "Create"
    UPDATE = "Update"
    DELETE = "Delete"
    MERGE = "Merge"
    VOID = "Void"
    EMAILED = "Emailed"


_C, _U, _D, _M, _V, _E = (
    WebhookOperation.CREATE,
    WebhookOperation.UPDATE,
    WebhookOperation.DELETE,
    WebhookOperation.MERGE,
    WebhookOperation.VOID,
    WebhookOperation.EMAILED,
)

# Entities QuickBooks sends webhooks for, and the operations each supports.
# Informational only: the provider can add entities or operations at any time.
ENTITY_OPERATIONS: dict[str, tuple[WebhookOperation, ...]] = {
    "Account": (_C, _U, _M, _D),
    "Bill": (_C, _U, _D),
    "BillPayment": (_C, _U, _D, _V),
    "Budget": (_C, _U),
    "Class": (_C, _U, _M, _D),
    "CreditMemo": (_C, _U, _D, _V, _E),
    "Currency": (_C, _U),
    "Customer": (_C, _U, _M, _D),
    "Department": (_C, _U, _M),
    "Deposit": (_C, _U, _D),
    "Employee": (_C, _U, _M, _D),
    "Estimate": (_C, _U, _D, _E),
    "Invoice": (_C, _U, _D, _V, _E),
    "Item": (_C, _U, _M, _D),
    "JournalCode": (_C, _U),
    "JournalEntry": (_C, _U, _D),
    "Payment": (_C, _U, _D, _V, _E),
    "PaymentMethod": (_C, _U, _M),
    "Preferences": (_U,),
    "Purchase": (_C, _U, _D, _V),
    "PurchaseOrder": (_C, _U, _D, _E),
    "RefundReceipt": (_C, _U, _D, _V, _E),
    "SalesReceipt": (_C, _U, _D, _V, _E),
    "TaxAgency": (_C, _U),
    "Term": (_C, _U),
    "TimeActivity": (_C, _U, _D),
    "Transfer": (_C, _U, _D, _V),
    "Vendor": (_C, _U, _M, _D),
    "VendorCredit": (_C, _U, _D),
}


def make_action_key(entity: str, operation: str) -> str:
    """Build an action key such as ``"Invoice/Create"``."""
    return f"{entity}/{operation}"


KNOWN_ACTION_KEYS: frozenset[str] = frozenset(
    make_action_key(entity, op.value)
    for entity, ops in ENTITY_OPERATIONS.items()
    for op in ops
)


def is_known_action_key(action_key: str) -> bool:
    return action_key in KNOWN_ACTION_KEYS


@dataclass(frozen=True)
class ChangeNotification:
    """A single entity change, derived from one webhook entry."""

    tenant_id: str | None
    entity_name: str
    entity_id: str
    operation: str
    last_updated: str | None = None
    deleted_id: str | None = None

    @property
    def action_key(self) -> str:
        return make_action_key(self.entity_name, self.operation)


EventHandler = Callable[[ChangeNotification], Union[Awaitable[None], None]]


@dataclass(frozen=True)
class SubscriptionOptions:
    """What a subscriber wants to hear about."""

    entity: str
    operation: str

    @property
    def action_key(self) -> str:
        return make_action_key(self.entity, self.operation)

    @classmethod
    def from_action_key(cls, action_key: str) -> SubscriptionOptions:
        entity, sep, operation = action_key.partition("/")
        if not sep or not entity or not operation:
            raise ValueError(f"Action key must look like 'Entity/Operation', got {action_key!r}")
        return cls(entity=entity, operation=operation)


@dataclass(frozen=True)
class EventSubscription:
    """A registered handler for one action key."""

    id: str
    action_key: str
    handler: EventHandler


# ---------------------------------------------------------------------------
# Webhook payload
# ---------------------------------------------------------------------------


class _PayloadModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class EntityChange(_PayloadModel):
    """One ``entities[]`` element of a data change event."""

    name: str
    id: str
    operation: str
    last_updated: str | None = Field(default=None, alias="lastUpdated")
    deleted_id: str | None = Field(default=None, alias="deletedId")


class DataChangeEvent(_PayloadModel):
    entities: list[EntityChange] = Field(default_factory=list)


class EventNotification(_PayloadModel):
    """One notification batch for a single realm."""

    realm_id: str | None = Field(default=None, alias="realmId")
    data_change_event: DataChangeEvent = Field(
        default_factory=DataChangeEvent, alias="dataChangeEvent"
    )

    def notifications(self) -> list[ChangeNotification]:
        return [
            ChangeNotification(
                tenant_id=self.realm_id,
                entity_name=entity.name,
                entity_id=entity.id,
                operation=entity.operation,
                last_updated=entity.last_updated,
                deleted_id=entity.deleted_id,
            )
            for entity in self.data_change_event.entities
        ]


class WebhookPayload(_PayloadModel):
    """Top-level QuickBooks webhook body."""

    event_notifications: list[EventNotification] = Field(
        default_factory=list, alias="eventNotifications"
    )

    @classmethod
    def parse(cls, data: dict[str, Any]) -> WebhookPayload:
        return cls.model_validate(data)

    def notifications(self) -> list[ChangeNotification]:
        """Flatten every batch into per-entity notifications, in payload order."""
        return [n for batch in self.event_notifications for n in batch.notifications()]

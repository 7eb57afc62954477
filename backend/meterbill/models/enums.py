"""
Billing enums - strongly typed enumerations for subscription, transaction
and consumption states, with the allowed status transitions.
"""
from enum import Enum


class SubscriptionStatus(str, Enum):
    """
    Subscription status lifecycle.

    Flow: active <-> suspended, active|suspended -> cancelled|expired
    """

    ACTIVE = "active"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in (SubscriptionStatus.CANCELLED, SubscriptionStatus.EXPIRED)

    def can_transition_to(self, target: "SubscriptionStatus") -> bool:
        return target in SUBSCRIPTION_TRANSITIONS[self]


SUBSCRIPTION_TRANSITIONS = {
    SubscriptionStatus.ACTIVE: frozenset({
        SubscriptionStatus.SUSPENDED, SubscriptionStatus.CANCELLED, SubscriptionStatus.EXPIRED,
    }),
    SubscriptionStatus.SUSPENDED: frozenset({
        SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELLED, SubscriptionStatus.EXPIRED,
    }),
    SubscriptionStatus.CANCELLED: frozenset(),
    SubscriptionStatus.EXPIRED: frozenset(),
}


class TransactionStatus(str, Enum):
    """Payment attempt status. Pending resolves to a terminal status exactly once."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not TransactionStatus.PENDING

    def can_transition_to(self, target: "TransactionStatus") -> bool:
        return target in TRANSACTION_TRANSITIONS[self]


TRANSACTION_TRANSITIONS = {
    TransactionStatus.PENDING: frozenset({
        TransactionStatus.COMPLETED, TransactionStatus.FAILED, TransactionStatus.CANCELLED,
    }),
    TransactionStatus.COMPLETED: frozenset(),
    TransactionStatus.FAILED: frozenset(),
    TransactionStatus.CANCELLED: frozenset(),
}


class TransactionType(str, Enum):
    PURCHASE = "purchase"
    REFUND = "refund"
    UPGRADE = "upgrade"


class MessageType(str, Enum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"
    ACTIVITY = "activity"
    TEMPLATE = "template"
    INPUT_CSAT = "input_csat"


class SourceType(str, Enum):
    """Where a quota-consuming message came from."""

    AGENT = "agent"
    BOT = "bot"
    API = "api"
    WEBHOOK = "webhook"
    SYSTEM = "system"


class PaymentOutcomeStatus(str, Enum):
    """Result of feeding a gateway outcome into the orchestrator."""

    SETTLED = "settled"
    FAILED = "failed"
    DUPLICATE = "duplicate"
    NOT_FOUND = "not_found"
    PENDING = "pending"

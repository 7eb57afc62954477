"""Billing exception types shared by the ledgers and the orchestrator."""


class BillingError(Exception):
    """Base billing exception."""


class ValidationError(BillingError):
    """Bad plan/amount/currency data, rejected before any state change."""


class NotFound(BillingError):
    """Unknown account, plan, subscription or transaction."""


class AccountNotFound(NotFound):
    pass


class PlanNotFound(NotFound):
    pass


class SubscriptionNotFound(NotFound):
    pass


class TransactionNotFound(NotFound):
    pass


class QuotaExceeded(BillingError):
    """Consumption refused because the period's message limit is used up."""


class SubscriptionInactive(BillingError):
    """Consumption refused because the subscription is not active."""


class InvalidUpgrade(BillingError):
    """Plan change refused: the new plan does not raise the message limit."""


class InvalidTransition(BillingError):
    """Status change not allowed by the state machine."""


class PlanInUse(BillingError):
    """Plan is referenced by a subscription or transaction."""


class DuplicatePayment(BillingError):
    """Settlement of an already-terminal transaction.

    Never raised: carried on settlement results so callers can tell a
    re-delivered callback from a first application.
    """


class TransactionIdCollision(BillingError):
    """A freshly generated transaction identifier already exists."""

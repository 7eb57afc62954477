"""Subscription service - the per-account quota ledger

Functions here flush but never commit: callers wrap them in a unit of work
so that ledger changes commit together with whatever else the operation
touches (consumption records, transactions).
"""
import calendar
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from meterbill.core.exceptions import (
    BillingError, InvalidTransition, InvalidUpgrade, QuotaExceeded,
    SubscriptionInactive, SubscriptionNotFound, ValidationError,
)
from meterbill.core.metrics import quota_consumption_counter
from meterbill.models.enums import SubscriptionStatus
from meterbill.models.plan import Plan
from meterbill.models.subscription import Subscription

logger = logging.getLogger(__name__)


@dataclass
class ConsumptionResult:
    """Outcome of one quota consumption attempt; refusals are typed, not raised"""
    allowed: bool
    remaining: int
    error: Optional[BillingError] = None

    def raise_for_refusal(self) -> None:
        if self.error is not None:
            raise self.error


def month_bounds(today: Optional[date] = None) -> Tuple[date, date]:
    """First and last day of the calendar month containing ``today``"""
    today = today or date.today()
    last_day = calendar.monthrange(today.year, today.month)[1]
    return today.replace(day=1), today.replace(day=last_day)


def create_subscription(account_id: int, plan: Plan, db: Session) -> Subscription:
    """Open the account's one subscription on ``plan`` for the current month"""
    existing = db.query(Subscription).filter(Subscription.account_id == account_id).first()
    if existing:
        raise ValidationError(f"Account {account_id} already has a subscription")

    period_start, period_end = month_bounds()
    subscription = Subscription(
        account_id=account_id,
        plan_id=plan.id,
        status=SubscriptionStatus.ACTIVE.value,
        current_period_start=period_start,
        current_period_end=period_end,
        messages_limit=plan.monthly_message_limit,
        messages_used=0,
        last_reset_at=datetime.now(timezone.utc),
        subscription_metadata={},
    )
    db.add(subscription)
    db.flush()
    return subscription


def get_subscription(account_id: int, db: Session, for_update: bool = False) -> Subscription:
    """Load an account's subscription

    Raises:
        SubscriptionNotFound: the account has no subscription
    """
    query = select(Subscription).where(Subscription.account_id == account_id)
    if for_update:
        query = query.with_for_update()
    subscription = db.execute(query).scalar_one_or_none()
    if not subscription:
        raise SubscriptionNotFound(f"No subscription for account {account_id}")
    return subscription


def consume(account_id: int, db: Session) -> ConsumptionResult:
    """Use one message of the account's quota.

    A single conditional UPDATE (active and used < limit) does the check and
    the increment, so concurrent callers can never push ``messages_used``
    past ``messages_limit``. A refused call changes nothing.
    """
    result = db.execute(
        update(Subscription)
        .where(
            Subscription.account_id == account_id,
            Subscription.status == SubscriptionStatus.ACTIVE.value,
            Subscription.messages_used < Subscription.messages_limit,
        )
        .values(
            messages_used=Subscription.messages_used + 1,
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    subscription = db.execute(
        select(Subscription)
        .where(Subscription.account_id == account_id)
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()

    if result.rowcount == 1:
        quota_consumption_counter.labels(outcome="allowed").inc()
        return ConsumptionResult(allowed=True, remaining=subscription.messages_remaining)

    if subscription is None:
        quota_consumption_counter.labels(outcome="not_found").inc()
        return ConsumptionResult(
            allowed=False, remaining=0,
            error=SubscriptionNotFound(f"No subscription for account {account_id}"),
        )
    if not subscription.is_active:
        quota_consumption_counter.labels(outcome="inactive").inc()
        return ConsumptionResult(
            allowed=False, remaining=subscription.messages_remaining,
            error=SubscriptionInactive(f"Subscription for account {account_id} is {subscription.status}"),
        )

    quota_consumption_counter.labels(outcome="quota_exceeded").inc()
    logger.warning(
        f"Account {account_id} reached its message limit "
        f"({subscription.messages_used}/{subscription.messages_limit})"
    )
    return ConsumptionResult(
        allowed=False, remaining=subscription.messages_remaining,
        error=QuotaExceeded(f"Account {account_id} exceeded its monthly message limit"),
    )


def renew_period(subscription: Subscription, db: Session, today: Optional[date] = None) -> Subscription:
    """Start a fresh period: usage back to 0, period set to the current month"""
    period_start, period_end = month_bounds(today)
    subscription.messages_used = 0
    subscription.current_period_start = period_start
    subscription.current_period_end = period_end
    subscription.last_reset_at = datetime.now(timezone.utc)
    db.flush()
    logger.info(f"Renewed period for account {subscription.account_id}: {period_start} - {period_end}")
    return subscription


def _transition(subscription: Subscription, target: SubscriptionStatus, db: Session) -> Subscription:
    current = subscription.status_enum
    if current is target:
        return subscription
    if not current.can_transition_to(target):
        raise InvalidTransition(
            f"Subscription for account {subscription.account_id} cannot go from {current.value} to {target.value}"
        )
    subscription.status = target.value
    db.flush()
    logger.info(f"Subscription for account {subscription.account_id}: {current.value} -> {target.value}")
    return subscription


def suspend(subscription: Subscription, db: Session) -> Subscription:
    return _transition(subscription, SubscriptionStatus.SUSPENDED, db)


def activate(subscription: Subscription, db: Session) -> Subscription:
    return _transition(subscription, SubscriptionStatus.ACTIVE, db)


def cancel(subscription: Subscription, db: Session) -> Subscription:
    return _transition(subscription, SubscriptionStatus.CANCELLED, db)


def expire(subscription: Subscription, db: Session) -> Subscription:
    return _transition(subscription, SubscriptionStatus.EXPIRED, db)


def suspend_if_exceeded(subscription_id: int, db: Session) -> bool:
    """Suspend an active subscription whose usage reached its limit.

    Conditional on the row still being active and over the limit, so a
    renewal or upgrade that landed in between is not overwritten.
    """
    result = db.execute(
        update(Subscription)
        .where(
            Subscription.id == subscription_id,
            Subscription.status == SubscriptionStatus.ACTIVE.value,
            Subscription.messages_used >= Subscription.messages_limit,
        )
        .values(status=SubscriptionStatus.SUSPENDED.value, updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def validate_upgrade(subscription: Subscription, new_plan: Plan) -> int:
    """Check the monotonic-upgrade policy; returns the current plan's limit

    Raises:
        InvalidUpgrade: the new plan's limit is not larger than the current one
        InvalidTransition: the subscription is cancelled or expired
    """
    current_plan = subscription.plan
    current_limit = current_plan.monthly_message_limit if current_plan else subscription.messages_limit
    if new_plan.monthly_message_limit <= current_limit:
        raise InvalidUpgrade(
            f"Plan {new_plan.name} ({new_plan.monthly_message_limit}) does not raise the limit "
            f"of {current_plan.name if current_plan else 'current plan'} ({current_limit})"
        )
    if subscription.status_enum.is_terminal:
        raise InvalidTransition(f"Cannot upgrade a {subscription.status} subscription")
    return current_limit


def upgrade(subscription: Subscription, new_plan: Plan, db: Session) -> Subscription:
    """Move to a plan with a strictly larger monthly limit; usage is kept.

    Raises:
        InvalidUpgrade: the new plan's limit is not larger than the current one
        InvalidTransition: the subscription is cancelled or expired
    """
    current_limit = validate_upgrade(subscription, new_plan)
    apply_plan(subscription, new_plan, db)
    logger.info(
        f"Upgraded account {subscription.account_id} to {new_plan.name} "
        f"(limit {current_limit} -> {new_plan.monthly_message_limit}, used {subscription.messages_used})"
    )
    return subscription


def apply_plan(subscription: Subscription, plan: Plan, db: Session, reset_usage: bool = False) -> Subscription:
    """Put the subscription on ``plan`` and make it active.

    With ``reset_usage`` the period restarts as well (fresh purchase);
    without it usage carries over (upgrade).
    """
    if subscription.status_enum.is_terminal:
        raise InvalidTransition(f"Cannot change plan of a {subscription.status} subscription")
    subscription.plan_id = plan.id
    subscription.plan = plan
    subscription.messages_limit = plan.monthly_message_limit
    subscription.status = SubscriptionStatus.ACTIVE.value
    if reset_usage:
        renew_period(subscription, db)
    db.flush()
    return subscription


def grant_messages(subscription: Subscription, count: int, db: Session) -> Subscription:
    """Raise the current period's limit by ``count`` messages"""
    if not isinstance(count, int) or count <= 0:
        raise ValidationError("Granted message count must be a positive integer")
    db.execute(
        update(Subscription)
        .where(Subscription.id == subscription.id)
        .values(messages_limit=Subscription.messages_limit + count)
        .execution_options(synchronize_session=False)
    )
    db.refresh(subscription)
    logger.info(f"Granted {count} messages to account {subscription.account_id} (limit now {subscription.messages_limit})")
    return subscription

"""Report service - read-only usage reports, alerts and billing overview"""
import logging
from datetime import date, datetime, time, timezone
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from meterbill.core.config import settings
from meterbill.models.account import Account
from meterbill.models.enums import SubscriptionStatus, TransactionStatus
from meterbill.models.subscription import Subscription
from meterbill.models.transaction import Transaction
from meterbill.schemas.billing import (
    Alert, BillingOverview, CurrentPlanSummary, ReportPeriod,
    TransactionSummary, UsageReport, UsageSummary,
)
from meterbill.services import consumption_service, subscription_service, transaction_service
from meterbill.services.account_service import get_account

logger = logging.getLogger(__name__)


def generate_usage_report(
    account_id: int,
    db: Session,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> UsageReport:
    """Usage report for an account over a period (default: the current month)
    
    Read-only; safe to call while consumption and settlement run.
    """
    default_start, default_end = subscription_service.month_bounds()
    start_date = start_date or default_start
    end_date = end_date or default_end

    account = get_account(account_id, db)
    subscription = subscription_service.get_subscription(account_id, db)
    plan = subscription.plan

    transactions = transaction_service.list_account_transactions(
        account_id, db, limit=settings.RECENT_TRANSACTIONS_LIMIT
    )

    return UsageReport(
        account_id=account.id,
        account_name=account.name,
        period=ReportPeriod(start=start_date, end=end_date),
        current_plan=CurrentPlanSummary(
            name=plan.name,
            limit=subscription.messages_limit,
            price=plan.formatted_price,
        ),
        usage=UsageSummary(
            messages_used=subscription.messages_used,
            messages_remaining=subscription.messages_remaining,
            usage_percentage=subscription.usage_percentage,
        ),
        consumption_by_source=consumption_service.consumption_by_source(
            account_id, db, start_date=start_date, end_date=end_date
        ),
        daily_trend=consumption_service.daily_consumption_trend(account_id, db),
        transactions=[
            TransactionSummary(
                id=t.transaction_id,
                type=t.transaction_type,
                amount=t.formatted_amount,
                status=t.status,
                date=t.created_at,
                plan=t.plan.name,
            )
            for t in transactions
        ],
    )


def build_alerts(subscription: Subscription) -> List[Alert]:
    """Alert feed for a subscription, most severe first"""
    alerts = []

    if subscription.limit_exceeded:
        alerts.append(Alert(
            type="danger",
            title="Message limit exceeded",
            message="You have reached your plan's message limit. Upgrade your plan to keep sending messages.",
            action="upgrade_plan",
        ))
    elif subscription.near_limit(settings.NEAR_LIMIT_THRESHOLD):
        alerts.append(Alert(
            type="warning",
            title="Approaching message limit",
            message=f"You have used {round(subscription.usage_percentage)}% of your monthly messages.",
            action="view_usage",
        ))

    days = subscription.days_until_renewal
    if days <= settings.RENEWAL_NOTICE_DAYS:
        alerts.append(Alert(
            type="info",
            title="Renewal coming up",
            message=f"Your plan renews in {days} days.",
            action="view_billing",
        ))

    return alerts


def billing_overview(db: Session) -> BillingOverview:
    """Account, subscription and revenue totals (completed transactions only)"""
    month_start = datetime.combine(subscription_service.month_bounds()[0], time.min, tzinfo=timezone.utc)

    def count_status(status: SubscriptionStatus) -> int:
        return db.query(func.count(Subscription.id)).filter(Subscription.status == status.value).scalar()

    completed = db.query(func.coalesce(func.sum(Transaction.amount), 0)).filter(
        Transaction.status == TransactionStatus.COMPLETED.value
    )
    return BillingOverview(
        total_accounts=db.query(func.count(Account.id)).scalar(),
        active_subscriptions=count_status(SubscriptionStatus.ACTIVE),
        suspended_accounts=count_status(SubscriptionStatus.SUSPENDED),
        total_revenue=float(completed.scalar()),
        monthly_revenue=float(completed.filter(Transaction.created_at >= month_start).scalar()),
    )

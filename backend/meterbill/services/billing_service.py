"""Billing service - orchestrates the transaction and subscription ledgers

Every operation that touches more than one ledger runs inside a single
``unit_of_work``: the transaction status and the subscription change commit
together or not at all. Notifications are queued on the unit and published
only after the commit.
"""
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from meterbill.core.config import GATEWAY_APPROVED_STATUSES, GATEWAY_DECLINED_STATUSES, settings
from meterbill.core.exceptions import InvalidTransition, TransactionNotFound, ValidationError
from meterbill.core.logging import billing_logger, gateway_logger, sweep_logger
from meterbill.core.metrics import settlement_counter, sweep_rows_counter
from meterbill.db.unit_of_work import unit_of_work
from meterbill.models.enums import PaymentOutcomeStatus, SubscriptionStatus, TransactionType
from meterbill.models.plan import Plan
from meterbill.models.subscription import Subscription
from meterbill.models.transaction import Transaction
from meterbill.schemas.billing import GatewayCallback, SweepResult
from meterbill.services import notification_service, subscription_service, transaction_service
from meterbill.services.report_service import generate_usage_report  # noqa: F401

RESET_SWEEP = "reset_usage"
SUSPEND_SWEEP = "suspend_exceeded"


@dataclass
class PaymentOutcome:
    """What a settlement attempt did, with the resulting entity state"""
    status: PaymentOutcomeStatus
    transaction: Optional[Transaction] = None
    subscription: Optional[Subscription] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status in (PaymentOutcomeStatus.SETTLED, PaymentOutcomeStatus.FAILED)


def create_transaction(
    account_id: int,
    plan: Plan,
    db: Session,
    payment_gateway: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Transaction:
    """Open a pending purchase; the subscription is not touched until settlement"""
    with unit_of_work(db):
        transaction = transaction_service.open_transaction(
            account_id, plan, db, payment_gateway=payment_gateway, metadata=metadata
        )
    db.refresh(transaction)
    billing_logger.info(f"Created transaction {transaction.transaction_id} for account {account_id} ({plan.name})")
    return transaction


def process_successful_payment(
    transaction_id: str,
    gateway_response: Optional[Dict[str, Any]],
    db: Session
) -> PaymentOutcome:
    """Settle a transaction and apply its plan to the subscription, atomically.

    Purchases restart the period (usage back to 0). Upgrades replace plan and
    limit but keep usage. Refunds settle without touching the subscription.
    A re-delivered callback finds the transaction terminal and changes nothing.

    Raises:
        InvalidTransition: the subscription is cancelled or expired; nothing
            is committed and the transaction stays pending
    """
    try:
        with unit_of_work(db) as uow:
            settlement = transaction_service.settle(transaction_id, gateway_response, db)
            transaction = settlement.transaction
            if not settlement.applied:
                settlement_counter.labels(result="success", outcome="duplicate").inc()
                return PaymentOutcome(
                    status=PaymentOutcomeStatus.DUPLICATE,
                    transaction=transaction,
                    message=str(settlement.duplicate),
                )

            subscription = None
            if transaction.transaction_type != TransactionType.REFUND.value:
                subscription = subscription_service.get_subscription(transaction.account_id, db, for_update=True)
                if transaction.is_upgrade and (
                    transaction.plan.monthly_message_limit < subscription.plan.monthly_message_limit
                ):
                    # A later upgrade already moved the account past this plan
                    billing_logger.warning(
                        f"Upgrade {transaction_id} to {transaction.plan.name} settled after the account "
                        f"moved to {subscription.plan.name}; subscription left unchanged"
                    )
                else:
                    subscription_service.apply_plan(
                        subscription, transaction.plan, db, reset_usage=not transaction.is_upgrade
                    )

            uow.after_commit(
                notification_service.send_payment_confirmation,
                transaction.account_id,
                transaction.transaction_id,
                transaction.formatted_amount,
                transaction.plan.name,
            )
    except TransactionNotFound:
        settlement_counter.labels(result="success", outcome="not_found").inc()
        gateway_logger.warning(f"Payment confirmation for unknown transaction {transaction_id}; nothing to settle")
        return PaymentOutcome(status=PaymentOutcomeStatus.NOT_FOUND, message="Transaction not found")
    except InvalidTransition:
        settlement_counter.labels(result="success", outcome="error").inc()
        billing_logger.error(f"Could not apply transaction {transaction_id}: subscription is closed")
        raise

    settlement_counter.labels(result="success", outcome="settled").inc()
    billing_logger.info(
        f"Payment {transaction_id} settled for account {transaction.account_id} "
        f"({transaction.transaction_type}, plan {transaction.plan.name})"
    )
    return PaymentOutcome(
        status=PaymentOutcomeStatus.SETTLED,
        transaction=transaction,
        subscription=subscription,
    )


def process_failed_payment(transaction_id: str, reason: Optional[str], db: Session) -> PaymentOutcome:
    """Mark a transaction failed; the subscription is never touched"""
    try:
        with unit_of_work(db) as uow:
            settlement = transaction_service.fail(transaction_id, reason, db)
            transaction = settlement.transaction
            if not settlement.applied:
                settlement_counter.labels(result="failure", outcome="duplicate").inc()
                return PaymentOutcome(
                    status=PaymentOutcomeStatus.DUPLICATE,
                    transaction=transaction,
                    message=str(settlement.duplicate),
                )
            uow.after_commit(
                notification_service.send_payment_failure,
                transaction.account_id,
                transaction.transaction_id,
                transaction.formatted_amount,
                reason,
            )
    except TransactionNotFound:
        settlement_counter.labels(result="failure", outcome="not_found").inc()
        gateway_logger.warning(f"Payment failure for unknown transaction {transaction_id}; nothing to settle")
        return PaymentOutcome(status=PaymentOutcomeStatus.NOT_FOUND, message="Transaction not found")

    settlement_counter.labels(result="failure", outcome="failed").inc()
    billing_logger.warning(f"Payment {transaction_id} failed for account {transaction.account_id}: {reason}")
    return PaymentOutcome(status=PaymentOutcomeStatus.FAILED, transaction=transaction)


def upgrade_account_plan(
    account_id: int,
    new_plan: Plan,
    db: Session,
    payment_gateway: Optional[str] = None,
) -> Transaction:
    """Open an upgrade transaction and move the subscription to ``new_plan``.

    Both writes commit together. If either fails neither is kept. The
    transaction stays pending until the gateway settles it.

    Raises:
        InvalidUpgrade: ``new_plan`` does not raise the message limit
        InvalidTransition: the subscription is cancelled or expired
        ValidationError: ``new_plan`` is inactive or has no price
    """
    subscription = subscription_service.get_subscription(account_id, db)
    subscription_service.validate_upgrade(subscription, new_plan)
    if not new_plan.active:
        raise ValidationError(f"Plan {new_plan.name} is not available")
    old_plan_name = subscription.plan.name

    with unit_of_work(db):
        subscription = subscription_service.get_subscription(account_id, db, for_update=True)
        transaction = transaction_service.open_transaction(
            account_id,
            new_plan,
            db,
            payment_gateway=payment_gateway,
            metadata={"upgrade_from": old_plan_name, "upgrade_to": new_plan.name},
            transaction_type=TransactionType.UPGRADE,
        )
        subscription_service.upgrade(subscription, new_plan, db)
    db.refresh(transaction)

    billing_logger.info(
        f"Account {account_id} upgraded {old_plan_name} -> {new_plan.name} "
        f"(transaction {transaction.transaction_id} pending)"
    )
    return transaction


def handle_gateway_callback(payload: Dict[str, Any], db: Session) -> PaymentOutcome:
    """Dispatch a gateway callback on its status

    ``approved``/``success`` settle, ``declined``/``failed`` fail, anything
    else is reported as pending and mutates nothing.
    """
    try:
        callback = GatewayCallback.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid gateway callback: {e.errors()}") from e

    status = str(callback.status or "").lower()
    gateway_logger.info(f"Gateway callback for {callback.transaction_id}: {status}")

    if status in GATEWAY_APPROVED_STATUSES:
        return process_successful_payment(callback.transaction_id, callback.raw_payload(), db)
    if status in GATEWAY_DECLINED_STATUSES:
        return process_failed_payment(callback.transaction_id, callback.error_message, db)

    gateway_logger.info(f"Transaction {callback.transaction_id} still pending at the gateway ({status})")
    return PaymentOutcome(
        status=PaymentOutcomeStatus.PENDING,
        message=f"Gateway status {callback.status!r} is not final",
    )


def _candidates(db: Session, criteria, after_id: int, batch_size: int):
    return db.execute(
        select(Subscription.id, Subscription.account_id)
        .where(Subscription.id > after_id, *criteria)
        .order_by(Subscription.id)
        .limit(batch_size)
    ).all()


def _sweep(
    name: str,
    criteria,
    handle_row: Callable[[int, Session], Optional[bool]],
    db: Session,
) -> SweepResult:
    """Walk candidate subscription ids in keyset batches, one unit per row.

    ``handle_row`` returns True when it changed the row and False when the row
    no longer qualified. A row that raises is rolled back, logged and counted;
    the sweep moves on.
    """
    result = SweepResult(sweep=name)
    last_id = 0
    batch_size = settings.SWEEP_BATCH_SIZE

    while True:
        rows = _candidates(db, criteria, last_id, batch_size)
        if not rows:
            break
        last_id = rows[-1].id

        for subscription_id, account_id in rows:
            result.scanned += 1
            try:
                changed = handle_row(subscription_id, db)
            except Exception as e:
                result.failed += 1
                result.failed_account_ids.append(account_id)
                sweep_rows_counter.labels(sweep=name, outcome="failed").inc()
                sweep_logger.error(f"{name}: subscription {subscription_id} (account {account_id}) failed: {e}", exc_info=True)
                continue

            if changed:
                result.processed += 1
                sweep_rows_counter.labels(sweep=name, outcome="processed").inc()
            else:
                result.skipped += 1
                sweep_rows_counter.labels(sweep=name, outcome="skipped").inc()

        if len(rows) < batch_size:
            break

    sweep_logger.info(
        f"{name}: scanned={result.scanned} processed={result.processed} "
        f"skipped={result.skipped} failed={result.failed}"
    )
    return result


def reset_monthly_usage(db: Session, today: Optional[date] = None) -> SweepResult:
    """Renew every active, auto-renewing subscription whose period has ended"""
    today = today or date.today()

    def renew_row(subscription_id: int, db: Session) -> bool:
        with unit_of_work(db):
            subscription = db.get(Subscription, subscription_id, with_for_update=True, populate_existing=True)
            if (
                subscription is None
                or not subscription.is_active
                or subscription.current_period_end is None
                or subscription.current_period_end >= today
                or not subscription.auto_renewable
            ):
                return False
            subscription_service.renew_period(subscription, db, today=today)
            return True

    return _sweep(
        RESET_SWEEP,
        (
            Subscription.status == SubscriptionStatus.ACTIVE.value,
            Subscription.current_period_end < today,
        ),
        renew_row,
        db,
    )


def check_and_suspend_exceeded_accounts(db: Session) -> SweepResult:
    """Suspend every active subscription whose usage reached its limit"""

    def suspend_row(subscription_id: int, db: Session) -> bool:
        with unit_of_work(db) as uow:
            if not subscription_service.suspend_if_exceeded(subscription_id, db):
                return False
            subscription = db.get(Subscription, subscription_id, populate_existing=True)
            uow.after_commit(
                notification_service.send_limit_exceeded,
                subscription.account_id,
                subscription.messages_used,
                subscription.messages_limit,
            )
            sweep_logger.info(f"Suspended account {subscription.account_id} for exceeding its message limit")
            return True

    return _sweep(
        SUSPEND_SWEEP,
        (
            Subscription.status == SubscriptionStatus.ACTIVE.value,
            Subscription.messages_used >= Subscription.messages_limit,
        ),
        suspend_row,
        db,
    )

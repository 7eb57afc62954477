"""Transaction service - payment attempt state machine

A transaction is opened ``pending`` and resolved to a terminal status exactly
once. Resolution is a conditional UPDATE on ``status = 'pending'``; whoever
loses that race (a re-delivered gateway callback, a retry after a timeout)
gets the already-terminal record back with ``applied=False``.
Like the subscription ledger, nothing here commits.
"""
import logging
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timezone, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from meterbill.core.config import settings
from meterbill.core.exceptions import (
    DuplicatePayment, TransactionIdCollision, TransactionNotFound, ValidationError,
)
from meterbill.models.enums import TransactionStatus, TransactionType
from meterbill.models.plan import Plan
from meterbill.models.transaction import Transaction

logger = logging.getLogger(__name__)


@dataclass
class SettlementResult:
    transaction: Transaction
    applied: bool
    duplicate: Optional[DuplicatePayment] = None


def generate_transaction_id() -> str:
    return f"TXN_{secrets.token_hex(8).upper()}_{int(time.time())}"


def open_transaction(
    account_id: int,
    plan: Plan,
    db: Session,
    payment_gateway: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    transaction_type: TransactionType = TransactionType.PURCHASE,
) -> Transaction:
    """Open a pending payment attempt charging the plan's current price

    Amount and currency are copied from the plan at this moment; later plan
    edits do not touch the transaction.

    Raises:
        ValidationError: inactive plan, non-positive amount or missing currency
        TransactionIdCollision: the generated identifier already exists
    """
    if not plan.active:
        raise ValidationError(f"Plan {plan.name} is not available")
    amount = Decimal(plan.price)
    if amount <= 0:
        raise ValidationError(f"Transaction amount must be positive (plan {plan.name} costs {plan.price})")
    if not plan.currency or not plan.currency.strip():
        raise ValidationError(f"Plan {plan.name} has no currency")

    transaction_id = generate_transaction_id()
    if db.query(Transaction.id).filter(Transaction.transaction_id == transaction_id).first():
        logger.critical(f"Generated transaction id {transaction_id} already exists")
        raise TransactionIdCollision(transaction_id)

    transaction = Transaction(
        transaction_id=transaction_id,
        account_id=account_id,
        plan_id=plan.id,
        transaction_type=TransactionType(transaction_type).value,
        status=TransactionStatus.PENDING.value,
        amount=amount,
        currency=plan.currency,
        payment_gateway=payment_gateway or settings.DEFAULT_PAYMENT_GATEWAY,
        transaction_metadata=dict(metadata or {}),
    )
    db.add(transaction)
    db.flush()
    logger.info(
        f"Opened {transaction.transaction_type} transaction {transaction_id} for account {account_id}: "
        f"{transaction.amount} {transaction.currency} via {transaction.payment_gateway}"
    )
    return transaction


def get_transaction(transaction_id: str, db: Session) -> Transaction:
    """Load a transaction by its public identifier

    Raises:
        TransactionNotFound: unknown identifier
    """
    transaction = db.execute(
        select(Transaction)
        .where(Transaction.transaction_id == transaction_id)
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if not transaction:
        raise TransactionNotFound(f"Transaction not found: {transaction_id}")
    return transaction


def _resolve(
    transaction_id: str,
    target: TransactionStatus,
    gateway_response: Optional[Dict[str, Any]],
    db: Session,
) -> SettlementResult:
    if not TransactionStatus.PENDING.can_transition_to(target):
        raise ValueError(f"{target.value} is not a terminal transaction status")

    now = datetime.now(timezone.utc)
    result = db.execute(
        update(Transaction)
        .where(
            Transaction.transaction_id == transaction_id,
            Transaction.status == TransactionStatus.PENDING.value,
        )
        .values(
            status=target.value,
            processed_at=now,
            gateway_response=gateway_response,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    transaction = get_transaction(transaction_id, db)

    if result.rowcount == 1:
        logger.info(f"Transaction {transaction_id}: pending -> {target.value}")
        return SettlementResult(transaction=transaction, applied=True)

    logger.info(
        f"Transaction {transaction_id} already {transaction.status}; ignoring {target.value} re-delivery"
    )
    return SettlementResult(
        transaction=transaction,
        applied=False,
        duplicate=DuplicatePayment(f"Transaction {transaction_id} already {transaction.status}"),
    )


def settle(transaction_id: str, gateway_response: Optional[Dict[str, Any]], db: Session) -> SettlementResult:
    """Mark a pending transaction completed and keep the raw gateway payload"""
    return _resolve(transaction_id, TransactionStatus.COMPLETED, dict(gateway_response or {}), db)


def fail(transaction_id: str, reason: Optional[str], db: Session) -> SettlementResult:
    """Mark a pending transaction failed, storing the reason"""
    return _resolve(transaction_id, TransactionStatus.FAILED, {"error": reason}, db)


def cancel(transaction_id: str, db: Session, reason: Optional[str] = None) -> SettlementResult:
    """Operator resolution of a transaction the gateway never settled"""
    return _resolve(transaction_id, TransactionStatus.CANCELLED, {"cancelled": True, "reason": reason}, db)


def list_account_transactions(account_id: int, db: Session, page: int = 1, limit: int = 20) -> List[Transaction]:
    """Account transactions, most recent first"""
    return (
        db.query(Transaction)
        .filter(Transaction.account_id == account_id)
        .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .offset((max(page, 1) - 1) * limit)
        .limit(limit)
        .all()
    )


def pending_transactions(db: Session, older_than: Optional[timedelta] = None) -> List[Transaction]:
    """Pending transactions, optionally only those opened before ``now - older_than``"""
    query = db.query(Transaction).filter(Transaction.status == TransactionStatus.PENDING.value)
    if older_than is not None:
        query = query.filter(Transaction.created_at < datetime.now(timezone.utc) - older_than)
    return query.order_by(Transaction.created_at).all()

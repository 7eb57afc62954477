"""Consumption service - append-only log of quota-consuming messages"""
import logging
from datetime import date, timedelta
from typing import Dict, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from meterbill.core.config import settings
from meterbill.core.exceptions import ValidationError
from meterbill.db.unit_of_work import unit_of_work
from meterbill.models.consumption import ConsumptionRecord
from meterbill.models.enums import SourceType
from meterbill.schemas.billing import MessageEvent
from meterbill.services import subscription_service
from meterbill.services.subscription_service import ConsumptionResult, month_bounds

logger = logging.getLogger(__name__)


def determine_source_type(message: MessageEvent) -> SourceType:
    """Classify where a message came from"""
    if message.external_source_id:
        return SourceType.WEBHOOK
    if message.source_id:
        return SourceType.API
    if message.sender_type == "AgentBot":
        return SourceType.BOT
    if message.sender_type == "User":
        return SourceType.AGENT
    return SourceType.SYSTEM


def get_record(message_id: str, db: Session) -> Optional[ConsumptionRecord]:
    return db.query(ConsumptionRecord).filter(ConsumptionRecord.message_id == message_id).first()


def log_consumption(
    account_id: int,
    message: MessageEvent,
    remaining: Optional[int],
    db: Session
) -> ConsumptionRecord:
    """Append one consumption record (flushes, caller commits)"""
    record = ConsumptionRecord(
        account_id=account_id,
        message_id=message.message_id,
        conversation_id=message.conversation_id,
        message_type=message.message_type.value,
        source_type=determine_source_type(message).value,
        consumption_date=date.today(),
        messages_remaining_after=remaining,
        record_metadata={
            **message.metadata,
            "inbox_id": message.inbox_id,
            "sender_type": message.sender_type,
            "sender_id": message.sender_id,
        },
    )
    db.add(record)
    db.flush()
    return record


def _prior_outcome(record: ConsumptionRecord, account_id: int) -> ConsumptionResult:
    if record.account_id != account_id:
        logger.warning(
            f"Message {record.message_id} already counted for account {record.account_id}; "
            f"refusing it for account {account_id}"
        )
        return ConsumptionResult(
            allowed=False,
            remaining=0,
            error=ValidationError(f"Message {record.message_id} belongs to another account"),
        )
    return ConsumptionResult(allowed=True, remaining=record.messages_remaining_after or 0)


def record_message(account_id: int, message: MessageEvent, db: Session) -> ConsumptionResult:
    """Consume quota for a message and log it, as one atomic unit.

    A message that is already logged is not counted again: the first
    outcome is returned. A message id already logged under another account
    is refused. Refused messages are not logged.
    """
    existing = get_record(message.message_id, db)
    if existing:
        logger.info(f"Message {message.message_id} already counted for account {existing.account_id}")
        return _prior_outcome(existing, account_id)

    try:
        with unit_of_work(db):
            result = subscription_service.consume(account_id, db)
            if result.allowed:
                log_consumption(account_id, message, result.remaining, db)
    except IntegrityError:
        # Same message counted concurrently; our increment was rolled back with the insert
        existing = get_record(message.message_id, db)
        if existing is None:
            raise
        logger.info(f"Message {message.message_id} was counted by a concurrent call")
        return _prior_outcome(existing, account_id)

    return result


def daily_consumption(account_id: int, db: Session, day: Optional[date] = None) -> int:
    return db.query(func.count(ConsumptionRecord.id)).filter(
        ConsumptionRecord.account_id == account_id,
        ConsumptionRecord.consumption_date == (day or date.today()),
    ).scalar()


def monthly_consumption(account_id: int, db: Session, month: Optional[date] = None) -> int:
    start, end = month_bounds(month)
    return db.query(func.count(ConsumptionRecord.id)).filter(
        ConsumptionRecord.account_id == account_id,
        ConsumptionRecord.consumption_date >= start,
        ConsumptionRecord.consumption_date <= end,
    ).scalar()


def consumption_by_source(
    account_id: int,
    db: Session,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> Dict[str, int]:
    """Message counts per source type since ``start_date`` (default: start of month)"""
    start_date = start_date or month_bounds()[0]
    query = db.query(ConsumptionRecord.source_type, func.count(ConsumptionRecord.id)).filter(
        ConsumptionRecord.account_id == account_id,
        ConsumptionRecord.consumption_date >= start_date,
    )
    if end_date is not None:
        query = query.filter(ConsumptionRecord.consumption_date <= end_date)
    rows = query.group_by(ConsumptionRecord.source_type).all()
    return {source: count for source, count in rows}


def daily_consumption_trend(account_id: int, db: Session, days: Optional[int] = None) -> Dict[str, int]:
    """ISO date -> message count for the trailing ``days`` days"""
    days = days or settings.USAGE_TREND_DAYS
    since = date.today() - timedelta(days=days)
    rows = (
        db.query(ConsumptionRecord.consumption_date, func.count(ConsumptionRecord.id))
        .filter(
            ConsumptionRecord.account_id == account_id,
            ConsumptionRecord.consumption_date >= since,
        )
        .group_by(ConsumptionRecord.consumption_date)
        .order_by(ConsumptionRecord.consumption_date)
        .all()
    )
    return {day.isoformat(): count for day, count in rows}

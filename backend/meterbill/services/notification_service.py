"""Notification service - billing events over Redis pub/sub

Dispatch is fire-and-forget from the ledger's point of view: these functions
are registered as post-commit hooks, and a publish failure is logged and
counted but never propagated.
"""
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from meterbill.core.config import settings
from meterbill.core.metrics import notifications_counter
from meterbill.db.redis import get_redis_client

logger = logging.getLogger(__name__)

PAYMENT_CONFIRMED = "payment_confirmed"
PAYMENT_FAILED = "payment_failed"
LIMIT_EXCEEDED = "limit_exceeded"


def billing_channel(account_id: int) -> str:
    return f"account:{account_id}:billing"


def publish_event(
    account_id: int,
    event_type: str,
    data: Dict[str, Any],
    channel: Optional[str] = None
) -> bool:
    """Publish a billing event for an account

    Args:
        account_id: Account the event is about
        event_type: Event type (payment_confirmed, payment_failed, limit_exceeded)
        data: Event payload data
        channel: Optional channel override (defaults to the account's billing channel)

    Returns:
        True if the event was handed to Redis, False otherwise
    """
    if not settings.NOTIFICATIONS_ENABLED:
        logger.debug(f"Notifications disabled, dropping {event_type} for account {account_id}")
        return False

    channel = channel or billing_channel(account_id)
    event = {
        "type": event_type,
        "account_id": account_id,
        "data": data,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }

    try:
        receivers = get_redis_client().publish(channel, json.dumps(event, default=str))
    except Exception as e:
        notifications_counter.labels(event_type=event_type, status="error").inc()
        logger.error(f"Failed to publish {event_type} for account {account_id}: {e}", exc_info=True)
        return False

    notifications_counter.labels(event_type=event_type, status="published").inc()
    if receivers > 0:
        logger.info(f"Event {event_type} published to {channel}: {receivers} subscriber(s)")
    else:
        logger.debug(f"Event {event_type} published to {channel} with no subscribers")
    return True


def send_payment_confirmation(account_id: int, transaction_id: str, amount: str, plan_name: str) -> bool:
    logger.info(f"Payment confirmed for account {account_id}: {amount}")
    return publish_event(
        account_id,
        PAYMENT_CONFIRMED,
        {"transaction_id": transaction_id, "amount": amount, "plan": plan_name}
    )


def send_payment_failure(account_id: int, transaction_id: str, amount: str, reason: Optional[str]) -> bool:
    logger.error(f"Payment failed for account {account_id}: {amount} ({reason or 'no reason given'})")
    return publish_event(
        account_id,
        PAYMENT_FAILED,
        {"transaction_id": transaction_id, "amount": amount, "reason": reason}
    )


def send_limit_exceeded(account_id: int, messages_used: int, messages_limit: int) -> bool:
    logger.warning(f"Account {account_id} exceeded message limit ({messages_used}/{messages_limit})")
    return publish_event(
        account_id,
        LIMIT_EXCEEDED,
        {"messages_used": messages_used, "messages_limit": messages_limit}
    )

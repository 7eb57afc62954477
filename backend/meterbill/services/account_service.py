"""Account service - accounts and their initial subscription"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from meterbill.core.exceptions import AccountNotFound, ValidationError
from meterbill.db.unit_of_work import unit_of_work
from meterbill.models.account import Account
from meterbill.models.plan import Plan
from meterbill.services import subscription_service
from meterbill.services.plan_service import get_default_plan

logger = logging.getLogger(__name__)


def create_account(name: str, db: Session, plan: Optional[Plan] = None) -> Account:
    """Create an account together with its subscription.

    Args:
        name: Account display name
        db: Database session
        plan: Initial plan (defaults to the configured default plan)
    """
    if not name or not name.strip():
        raise ValidationError("Account name is required")
    plan = plan or get_default_plan(db)

    with unit_of_work(db):
        account = Account(name=name.strip())
        db.add(account)
        db.flush()
        subscription_service.create_subscription(account.id, plan, db)
    db.refresh(account)
    logger.info(f"Created account {account.id} ({account.name}) on plan {plan.name}")
    return account


def get_account(account_id: int, db: Session) -> Account:
    account = db.get(Account, account_id)
    if not account:
        raise AccountNotFound(f"Account {account_id} not found")
    return account

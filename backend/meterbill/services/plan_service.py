"""Plan service - the plan catalog (quota tiers and prices)"""
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from sqlalchemy import exists, select
from sqlalchemy.orm import Session

from meterbill.core.config import settings, AUTO_RENEWAL_FEATURE
from meterbill.core.exceptions import PlanInUse, PlanNotFound, ValidationError
from meterbill.db.unit_of_work import unit_of_work
from meterbill.models.plan import Plan
from meterbill.models.subscription import Subscription
from meterbill.models.transaction import Transaction

logger = logging.getLogger(__name__)

# Fields that may change after a plan is referenced; they never alter existing subscriptions
MUTABLE_PLAN_FIELDS = {"price", "description", "features", "active", "payment_link_url"}
# Fields frozen once a subscription or transaction points at the plan
FROZEN_PLAN_FIELDS = {"name", "monthly_message_limit", "currency"}

DEFAULT_PLAN_FEATURES = {
    AUTO_RENEWAL_FEATURE: True,
    "api_access": True,
}


def _to_price(value: Any) -> Decimal:
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"Invalid price: {value!r}")
    if price < 0:
        raise ValidationError("Plan price must be non-negative")
    return price.quantize(Decimal("0.01"))


def _validate_limit(value: Any) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise ValidationError("Plan monthly_message_limit must be a positive integer")
    return value


def _validate_currency(value: Optional[str]) -> str:
    if not value or not value.strip():
        raise ValidationError("Plan currency is required")
    return value.strip().upper()


def create_plan(
    name: str,
    monthly_message_limit: int,
    price: Any,
    db: Session,
    currency: Optional[str] = None,
    features: Optional[Dict[str, Any]] = None,
    description: Optional[str] = None,
    active: bool = True,
    payment_link_url: Optional[str] = None,
) -> Plan:
    """Create a plan
    
    Raises:
        ValidationError: blank name, non-positive limit, negative price,
            blank currency or a name that is already taken
    """
    if not name or not name.strip():
        raise ValidationError("Plan name is required")
    name = name.strip()
    limit = _validate_limit(monthly_message_limit)
    plan_price = _to_price(price)
    plan_currency = _validate_currency(currency or settings.DEFAULT_CURRENCY)
    
    if db.query(Plan).filter(Plan.name == name).first():
        raise ValidationError(f"Plan name already exists: {name}")
    
    plan = Plan(
        name=name,
        monthly_message_limit=limit,
        price=plan_price,
        currency=plan_currency,
        features=dict(features or {}),
        description=description,
        active=active,
        payment_link_url=payment_link_url,
    )
    with unit_of_work(db):
        db.add(plan)
    db.refresh(plan)
    logger.info(f"Created plan {plan.name}: {plan.monthly_message_limit} messages for {plan.price} {plan.currency}")
    return plan


def get_plan(plan_id: int, db: Session) -> Plan:
    plan = db.get(Plan, plan_id)
    if not plan:
        raise PlanNotFound(f"Plan {plan_id} not found")
    return plan


def get_plan_by_name(name: str, db: Session) -> Plan:
    plan = db.query(Plan).filter(Plan.name == name).first()
    if not plan:
        raise PlanNotFound(f"Plan {name!r} not found")
    return plan


def list_active_plans(db: Session) -> List[Plan]:
    """Active plans, cheapest first"""
    return db.query(Plan).filter(Plan.active.is_(True)).order_by(Plan.price, Plan.id).all()


def is_plan_referenced(plan_id: int, db: Session) -> bool:
    """True while any subscription or transaction points at the plan"""
    return bool(db.execute(
        select(
            exists().where(Subscription.plan_id == plan_id)
            | exists().where(Transaction.plan_id == plan_id)
        )
    ).scalar())


def update_plan(plan_id: int, db: Session, **changes) -> Plan:
    """Edit a plan
    
    Price, description, features, active flag and payment link can always
    change. Name, limit and currency are frozen once the plan is referenced.
    Existing subscriptions keep their own messages_limit either way.
    """
    plan = get_plan(plan_id, db)
    unknown = set(changes) - MUTABLE_PLAN_FIELDS - FROZEN_PLAN_FIELDS
    if unknown:
        raise ValidationError(f"Unknown plan fields: {', '.join(sorted(unknown))}")
    
    frozen = {
        key for key in set(changes) & FROZEN_PLAN_FIELDS
        if changes[key] != getattr(plan, key)
    }
    if frozen and is_plan_referenced(plan.id, db):
        raise ValidationError(
            f"Plan {plan.name} is in use; cannot change {', '.join(sorted(frozen))}"
        )
    
    with unit_of_work(db):
        for key, value in changes.items():
            if key == "price":
                value = _to_price(value)
            elif key == "monthly_message_limit":
                value = _validate_limit(value)
            elif key == "currency":
                value = _validate_currency(value)
            elif key == "features":
                value = dict(value or {})
            elif key == "name":
                if not value or not value.strip():
                    raise ValidationError("Plan name is required")
                value = value.strip()
            setattr(plan, key, value)
    db.refresh(plan)
    logger.info(f"Updated plan {plan.name}: {sorted(changes)}")
    return plan


def delete_plan(plan_id: int, db: Session) -> None:
    """Delete an unreferenced plan
    
    Raises:
        PlanInUse: a subscription or transaction references the plan
    """
    plan = get_plan(plan_id, db)
    if is_plan_referenced(plan.id, db):
        raise PlanInUse(f"Plan {plan.name} is referenced by subscriptions or transactions")
    with unit_of_work(db):
        db.delete(plan)
    logger.info(f"Deleted plan {plan_id}")


def get_default_plan(db: Session) -> Plan:
    """The plan new accounts start on; falls back to the first plan"""
    plan = db.query(Plan).filter(Plan.name == settings.DEFAULT_PLAN_NAME).first()
    if plan:
        return plan
    plan = db.query(Plan).order_by(Plan.id).first()
    if not plan:
        raise PlanNotFound("No plans configured")
    return plan


def seed_default_plan(db: Session) -> Plan:
    """Create the free default plan if it does not exist yet (idempotent)"""
    plan = db.query(Plan).filter(Plan.name == settings.DEFAULT_PLAN_NAME).first()
    if plan:
        return plan
    return create_plan(
        name=settings.DEFAULT_PLAN_NAME,
        monthly_message_limit=settings.DEFAULT_PLAN_MESSAGE_LIMIT,
        price=0,
        currency=settings.DEFAULT_CURRENCY,
        features=DEFAULT_PLAN_FEATURES,
        description=f"Free plan with {settings.DEFAULT_PLAN_MESSAGE_LIMIT} monthly messages",
        db=db,
    )

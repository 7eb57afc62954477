"""SQLAlchemy models package - imports all models so they register with Base.metadata"""
from meterbill.models.base import Base
from meterbill.models.account import Account
from meterbill.models.plan import Plan
from meterbill.models.subscription import Subscription
from meterbill.models.transaction import Transaction
from meterbill.models.consumption import ConsumptionRecord

# Export all for convenience
__all__ = [
    "Base", "Account", "Plan", "Subscription", "Transaction", "ConsumptionRecord"
]

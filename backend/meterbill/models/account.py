"""Account model"""
from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from meterbill.models.base import Base


class Account(Base):
    """Billable account (owner of exactly one subscription)"""
    __tablename__ = "accounts"
    
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    
    # Relationships
    subscription = relationship("Subscription", back_populates="account", uselist=False)
    transactions = relationship("Transaction", back_populates="account")
    consumption_records = relationship("ConsumptionRecord", back_populates="account")

    @property
    def current_plan(self):
        return self.subscription.plan if self.subscription else None

"""Subscription model"""
from sqlalchemy import Column, Integer, String, Date, DateTime, ForeignKey, JSON, Index, CheckConstraint
from sqlalchemy.orm import relationship
from datetime import date, datetime, timezone
from meterbill.core.config import AUTO_RENEWAL_FEATURE
from meterbill.models.base import Base
from meterbill.models.enums import SubscriptionStatus


class Subscription(Base):
    """Per-account quota and billing period; the quota source of truth"""
    __tablename__ = "subscriptions"
    
    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, unique=True, index=True)
    plan_id = Column(Integer, ForeignKey("plans.id"), nullable=False, index=True)
    status = Column(String(20), default=SubscriptionStatus.ACTIVE.value, nullable=False, index=True)  # active, suspended, cancelled, expired
    current_period_start = Column(Date, nullable=True)
    current_period_end = Column(Date, nullable=True, index=True)
    messages_limit = Column(Integer, nullable=False)
    messages_used = Column(Integer, default=0, nullable=False)
    last_reset_at = Column(DateTime(timezone=True), nullable=True)
    subscription_metadata = Column("metadata", JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)
    
    # Relationships
    account = relationship("Account", back_populates="subscription")
    plan = relationship("Plan")
    
    __table_args__ = (
        CheckConstraint("messages_limit > 0", name="ck_subscriptions_limit_positive"),
        CheckConstraint("messages_used >= 0", name="ck_subscriptions_used_non_negative"),
        CheckConstraint(
            "status IN ('active', 'suspended', 'cancelled', 'expired')",
            name="ck_subscriptions_status",
        ),
        Index('ix_subscriptions_status_period_end', 'status', 'current_period_end'),
    )

    @property
    def status_enum(self) -> SubscriptionStatus:
        return SubscriptionStatus(self.status)

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE.value

    @property
    def messages_remaining(self) -> int:
        return max(self.messages_limit - self.messages_used, 0)

    @property
    def usage_percentage(self) -> float:
        if not self.messages_limit:
            return 0.0
        return round(self.messages_used / self.messages_limit * 100, 2)

    def near_limit(self, threshold: int = 80) -> bool:
        return self.usage_percentage >= threshold

    @property
    def limit_exceeded(self) -> bool:
        return self.messages_used >= self.messages_limit

    @property
    def can_send_messages(self) -> bool:
        return self.is_active and not self.limit_exceeded

    @property
    def days_until_renewal(self) -> int:
        if not self.current_period_end:
            return 0
        return (self.current_period_end - date.today()).days

    @property
    def period_expired(self) -> bool:
        return bool(self.current_period_end and self.current_period_end < date.today())

    @property
    def auto_renewable(self) -> bool:
        return bool(self.plan and self.plan.feature_enabled(AUTO_RENEWAL_FEATURE))

    def __repr__(self):
        return f"<Subscription(account_id={self.account_id}, status={self.status}, used={self.messages_used}/{self.messages_limit})>"

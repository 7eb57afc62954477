"""Transaction model"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey, JSON, Index, CheckConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, timezone, timedelta
from typing import Optional
from meterbill.core.config import settings
from meterbill.models.base import Base
from meterbill.models.enums import TransactionStatus, TransactionType
from meterbill.models.plan import CURRENCY_SYMBOLS


class Transaction(Base):
    """One payment attempt for an account and a plan"""
    __tablename__ = "transactions"
    
    id = Column(Integer, primary_key=True, index=True)
    transaction_id = Column(String(64), unique=True, nullable=False, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    plan_id = Column(Integer, ForeignKey("plans.id"), nullable=False, index=True)
    transaction_type = Column(String(20), default=TransactionType.PURCHASE.value, nullable=False, index=True)  # purchase, refund, upgrade
    status = Column(String(20), default=TransactionStatus.PENDING.value, nullable=False, index=True)  # pending, completed, failed, cancelled
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), default="USD", nullable=False)
    payment_gateway = Column(String(50), default="wompi", nullable=False)
    payment_method = Column(String(50), nullable=True)
    gateway_response = Column(JSON, nullable=True)  # Raw gateway payload
    processed_at = Column(DateTime(timezone=True), nullable=True, index=True)
    transaction_metadata = Column("metadata", JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)
    
    # Relationships
    account = relationship("Account", back_populates="transactions")
    plan = relationship("Plan")
    
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
        CheckConstraint(
            "status IN ('pending', 'completed', 'failed', 'cancelled')",
            name="ck_transactions_status",
        ),
        CheckConstraint(
            "transaction_type IN ('purchase', 'refund', 'upgrade')",
            name="ck_transactions_type",
        ),
        Index('ix_transactions_account_created', 'account_id', 'created_at'),
    )

    @property
    def status_enum(self) -> TransactionStatus:
        return TransactionStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.status_enum.is_terminal

    @property
    def is_upgrade(self) -> bool:
        return self.transaction_type == TransactionType.UPGRADE.value

    @property
    def succeeded(self) -> bool:
        return self.status == TransactionStatus.COMPLETED.value

    @property
    def formatted_amount(self) -> str:
        symbol = CURRENCY_SYMBOLS.get((self.currency or "").upper(), self.currency)
        return f"{symbol}{int(self.amount)}"

    @property
    def gateway_name(self) -> str:
        return (self.payment_gateway or "").capitalize()

    def can_refund(self, window_days: Optional[int] = None) -> bool:
        """Completed purchases can be refunded within the refund window (REFUND_WINDOW_DAYS by default)"""
        window_days = settings.REFUND_WINDOW_DAYS if window_days is None else window_days
        if not (self.succeeded and self.transaction_type == TransactionType.PURCHASE.value and self.processed_at):
            return False
        processed_at = self.processed_at
        if processed_at.tzinfo is None:
            processed_at = processed_at.replace(tzinfo=timezone.utc)
        return processed_at > datetime.now(timezone.utc) - timedelta(days=window_days)

    def __repr__(self):
        return f"<Transaction(transaction_id={self.transaction_id}, type={self.transaction_type}, status={self.status})>"

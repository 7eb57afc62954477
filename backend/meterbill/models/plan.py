"""Plan model"""
from decimal import Decimal
from sqlalchemy import Column, Integer, String, Text, Boolean, Numeric, JSON, DateTime, Index, CheckConstraint
from datetime import datetime, timezone
from meterbill.models.base import Base

CURRENCY_SYMBOLS = {
    "USD": "$",
    "EUR": "€",
    "COP": "$",
}


class Plan(Base):
    """Quota tier definition (monthly message allowance and price)"""
    __tablename__ = "plans"
    
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False, index=True)
    description = Column(Text, nullable=True)
    monthly_message_limit = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), default="USD", nullable=False)
    active = Column(Boolean, default=True, nullable=False)
    features = Column(JSON, default=dict)  # feature flag -> bool
    payment_link_url = Column(String(512), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)
    
    __table_args__ = (
        CheckConstraint("monthly_message_limit > 0", name="ck_plans_limit_positive"),
        CheckConstraint("price >= 0", name="ck_plans_price_non_negative"),
        Index('ix_plans_active_price', 'active', 'price'),
    )

    @property
    def is_free(self) -> bool:
        return Decimal(self.price) == 0

    @property
    def is_paid(self) -> bool:
        return Decimal(self.price) > 0

    @property
    def currency_symbol(self) -> str:
        return CURRENCY_SYMBOLS.get((self.currency or "").upper(), self.currency)

    @property
    def formatted_price(self) -> str:
        if self.is_free:
            return "Free"
        return f"{self.currency_symbol}{int(self.price)}"

    def feature_enabled(self, feature_name: str) -> bool:
        return (self.features or {}).get(str(feature_name)) is True

    def __repr__(self):
        return f"<Plan(name={self.name!r}, limit={self.monthly_message_limit}, price={self.price} {self.currency})>"

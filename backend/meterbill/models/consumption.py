"""ConsumptionRecord model"""
from sqlalchemy import Column, Integer, String, Date, DateTime, ForeignKey, JSON, Index, CheckConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from meterbill.models.base import Base


class ConsumptionRecord(Base):
    """Append-only log of quota-consuming messages (one row per message)"""
    __tablename__ = "consumption_records"
    
    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    message_id = Column(String(64), unique=True, nullable=False, index=True)
    conversation_id = Column(String(64), nullable=False, index=True)
    message_type = Column(String(20), nullable=False)  # incoming, outgoing, activity, template, input_csat
    source_type = Column(String(20), nullable=False)  # agent, bot, api, webhook, system
    consumption_date = Column(Date, nullable=False)
    messages_remaining_after = Column(Integer, nullable=True)
    record_metadata = Column("metadata", JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    
    # Relationship
    account = relationship("Account", back_populates="consumption_records")
    
    __table_args__ = (
        CheckConstraint(
            "messages_remaining_after IS NULL OR messages_remaining_after >= 0",
            name="ck_consumption_remaining_non_negative",
        ),
        Index('ix_consumption_account_date', 'account_id', 'consumption_date'),
        Index('ix_consumption_account_created', 'account_id', 'created_at'),
    )

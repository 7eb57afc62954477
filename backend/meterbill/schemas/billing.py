"""Pydantic schemas for the billing core's inbound and outbound shapes"""
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from meterbill.models.enums import MessageType


class GatewayCallback(BaseModel):
    """Payment gateway callback; unknown gateway fields are kept verbatim"""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    transaction_id: str = Field(alias="transactionId")
    status: Optional[Any] = None
    error_message: Optional[str] = Field(default=None, alias="errorMessage")

    def raw_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class MessageEvent(BaseModel):
    """A quota-consuming message as seen by the consumption log"""
    message_id: str
    conversation_id: str
    message_type: MessageType = MessageType.OUTGOING
    sender_type: Optional[str] = None  # User, AgentBot, Contact, ...
    sender_id: Optional[str] = None
    inbox_id: Optional[str] = None
    source_id: Optional[str] = None
    external_source_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ReportPeriod(BaseModel):
    start: date
    end: date


class CurrentPlanSummary(BaseModel):
    name: str
    limit: int
    price: str


class UsageSummary(BaseModel):
    messages_used: int
    messages_remaining: int
    usage_percentage: float


class TransactionSummary(BaseModel):
    id: str
    type: str
    amount: str
    status: str
    date: datetime
    plan: str


class UsageReport(BaseModel):
    account_id: int
    account_name: str
    period: ReportPeriod
    current_plan: CurrentPlanSummary
    usage: UsageSummary
    consumption_by_source: Dict[str, int]
    daily_trend: Dict[str, int]
    transactions: List[TransactionSummary]


class Alert(BaseModel):
    type: str  # info, warning, danger
    title: str
    message: str
    action: str


class BillingOverview(BaseModel):
    total_accounts: int
    active_subscriptions: int
    suspended_accounts: int
    total_revenue: float
    monthly_revenue: float


class SweepResult(BaseModel):
    sweep: str
    scanned: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    failed_account_ids: List[int] = Field(default_factory=list)

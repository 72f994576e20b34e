from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from uuid import UUID
from typing import Optional


class TradeSubmit(BaseModel):
    """Request to buy or sell an instrument after the cooling-off window."""
    instrument_id: int
    side: str = Field(..., pattern="^(BUY|SELL)$")
    quantity: int = Field(..., gt=0)


class TradeIntentResponse(BaseModel):
    id: UUID
    instrument_id: int
    side: str
    quantity: int
    quoted_price: Decimal  # advisory; execution uses the price at the deadline
    admitted_at: datetime
    deadline: datetime

    class Config:
        from_attributes = True


class TradeOutcomeResponse(BaseModel):
    intent_id: UUID
    status: str  # EXECUTED, FAILED, CANCELLED
    kind: Optional[str] = None
    reason: str
    price_executed: Optional[Decimal] = None
    total_amount: Optional[Decimal] = None
    ledger_entry_id: Optional[int] = None
    completed_at: datetime

    class Config:
        from_attributes = True


class OrderStatusResponse(BaseModel):
    intent_id: UUID
    status: str  # PENDING, EXECUTING, EXECUTED, FAILED, CANCELLED
    intent: Optional[TradeIntentResponse] = None
    outcome: Optional[TradeOutcomeResponse] = None


class CancelResponse(BaseModel):
    cancelled: bool
    status: str
    reason: str


class LedgerEntryResponse(BaseModel):
    id: int
    instrument_id: int
    ticker: Optional[str] = None
    side: str
    quantity: int
    price_executed: Decimal
    total_amount: Decimal
    executed_at: datetime

    class Config:
        from_attributes = True

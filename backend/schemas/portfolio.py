from pydantic import BaseModel
from decimal import Decimal
from typing import Optional

from schemas.trade import LedgerEntryResponse


class HoldingResponse(BaseModel):
    instrument_id: int
    ticker: str
    name: str
    quantity: int
    average_cost: Decimal
    current_price: Decimal
    market_value: Decimal
    total_gain: Decimal
    total_gain_pct: float
    daily_open: Optional[Decimal] = None


class PortfolioSummary(BaseModel):
    cash: Decimal
    stock_value: Decimal
    total_value: Decimal
    positions: int
    recent_activity: Optional[LedgerEntryResponse] = None

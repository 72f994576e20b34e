from pydantic import BaseModel
from decimal import Decimal
from typing import Optional


class InstrumentResponse(BaseModel):
    id: int
    ticker: str
    name: str
    sector: Optional[str]
    current_price: Decimal

    class Config:
        from_attributes = True


class InstrumentSnapshot(BaseModel):
    """Live price plus the current day's statistics."""
    id: int
    ticker: str
    name: str
    sector: Optional[str]
    volatility: Decimal
    current_price: Decimal
    daily_open: Optional[Decimal]
    day_high: Optional[Decimal]
    day_low: Optional[Decimal]

    class Config:
        from_attributes = True

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional


class WalletAmount(BaseModel):
    amount: Decimal = Field(..., gt=0, decimal_places=2)


class WalletResponse(BaseModel):
    balance: Decimal
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class WalletMutationResponse(BaseModel):
    success: bool = True
    new_balance: Decimal
    message: str

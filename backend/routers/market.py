from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from schemas.market import MarketStatusResponse
from services.market_gate import check_market

router = APIRouter(prefix="/api/market", tags=["market"])


@router.get("/status", response_model=MarketStatusResponse)
async def get_market_status(db: Session = Depends(get_db)):
    """Whether trading is allowed right now, and why."""
    return check_market(db).to_dict()

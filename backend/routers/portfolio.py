from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from models.user import User
from routers.auth import get_current_user
from schemas.portfolio import HoldingResponse, PortfolioSummary
from services.portfolio import list_holdings, portfolio_summary

router = APIRouter(prefix="/api/portfolio", tags=["portfolio"])


@router.get("/summary", response_model=PortfolioSummary)
async def get_summary(
    current_user: Annotated[User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    """Cash, holdings value and most recent trade."""
    return portfolio_summary(db, current_user.id)


@router.get("/holdings", response_model=list[HoldingResponse])
async def get_holdings(
    current_user: Annotated[User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    return list_holdings(db, current_user.id)

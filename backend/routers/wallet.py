from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from models.user import User
from routers.auth import get_current_user
from schemas.wallet import WalletAmount, WalletMutationResponse, WalletResponse
from services import wallet_service

router = APIRouter(prefix="/api/wallet", tags=["wallet"])


@router.get("/", response_model=WalletResponse)
async def get_balance(
    current_user: Annotated[User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    return wallet_service.get_wallet(db, current_user.id)


@router.post("/deposit", response_model=WalletMutationResponse)
async def deposit(
    data: WalletAmount,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    """Add funds, subject to the single-transaction and total-balance caps."""
    wallet = wallet_service.deposit(db, current_user.id, data.amount)
    return WalletMutationResponse(
        new_balance=wallet.balance,
        message=f"${data.amount:,.2f} added successfully!",
    )


@router.post("/withdraw", response_model=WalletMutationResponse)
async def withdraw(
    data: WalletAmount,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    wallet = wallet_service.withdraw(db, current_user.id, data.amount)
    return WalletMutationResponse(
        new_balance=wallet.balance,
        message=f"${data.amount:,.2f} withdrawn successfully!",
    )

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from database import get_db
from models.user import User
from routers.auth import get_current_user
from routers.stocks import get_instrument_or_404
from schemas.trade import (
    CancelResponse,
    LedgerEntryResponse,
    OrderStatusResponse,
    TradeIntentResponse,
    TradeOutcomeResponse,
    TradeSubmit,
)
from services.exceptions import MarketClosed
from services.market_gate import check_market
from services.portfolio import ledger_history
from services.stock_math import to_price
from services.trade_queue import DeferredTradeQueue

router = APIRouter(prefix="/api/orders", tags=["orders"])


def get_trade_queue(request: Request) -> DeferredTradeQueue:
    return request.app.state.trade_queue


@router.post("/", response_model=TradeIntentResponse, status_code=status.HTTP_202_ACCEPTED)
async def submit_trade(
    data: TradeSubmit,
    current_user: Annotated[User, Depends(get_current_user)],
    queue: Annotated[DeferredTradeQueue, Depends(get_trade_queue)],
    db: Session = Depends(get_db)
):
    """Admit an order to the cooling-off queue. It settles at the deadline unless cancelled."""
    # Non-binding pre-check; settlement re-checks the gate at the deadline
    market = check_market(db)
    if not market.allowed:
        raise MarketClosed(market.reason)

    instrument = get_instrument_or_404(db, data.instrument_id)
    return queue.submit(
        user_id=current_user.id,
        instrument_id=instrument.id,
        side=data.side,
        quantity=data.quantity,
        quoted_price=to_price(instrument.current_price),
    )


@router.get("/pending", response_model=list[TradeIntentResponse])
async def list_pending_trades(
    current_user: Annotated[User, Depends(get_current_user)],
    queue: Annotated[DeferredTradeQueue, Depends(get_trade_queue)],
):
    """Orders still inside their cancellation window."""
    return queue.pending_for(current_user.id)


@router.get("/history", response_model=list[LedgerEntryResponse])
async def trade_history(
    current_user: Annotated[User, Depends(get_current_user)],
    db: Session = Depends(get_db),
    limit: int = Query(50, ge=1, le=500),
):
    """Settled trades from the ledger, newest first."""
    return ledger_history(db, current_user.id, limit)


@router.get("/{intent_id}", response_model=OrderStatusResponse)
async def get_order_status(
    intent_id: UUID,
    current_user: Annotated[User, Depends(get_current_user)],
    queue: Annotated[DeferredTradeQueue, Depends(get_trade_queue)],
):
    """Pending intent, or the outcome once it has matured or been cancelled."""
    state, intent, outcome = queue.lookup(intent_id, current_user.id)
    return OrderStatusResponse(
        intent_id=intent_id,
        status=state,
        intent=TradeIntentResponse.model_validate(intent) if intent else None,
        outcome=TradeOutcomeResponse.model_validate(outcome) if outcome else None,
    )


@router.delete("/{intent_id}", response_model=CancelResponse)
async def cancel_trade(
    intent_id: UUID,
    current_user: Annotated[User, Depends(get_current_user)],
    queue: Annotated[DeferredTradeQueue, Depends(get_trade_queue)],
):
    """Cancel a pending order. Reports "too late" once it has been handed to settlement."""
    result = queue.cancel(intent_id, current_user.id)
    return CancelResponse(cancelled=result.cancelled, status=result.status, reason=result.reason)

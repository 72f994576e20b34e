"""
Read-only portfolio views derived from wallet, positions and the trade ledger.
"""
import uuid
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session, joinedload

from models.position import Position
from models.trade import TradeLedgerEntry
from services.stock_math import to_price
from services.wallet_service import get_wallet


def list_holdings(db: Session, user_id: uuid.UUID) -> list[dict[str, Any]]:
    positions = (
        db.query(Position)
        .options(joinedload(Position.instrument))
        .filter(Position.user_id == user_id)
        .all()
    )
    holdings = []
    for pos in positions:
        inst = pos.instrument
        current = to_price(inst.current_price)
        avg = pos.average_cost
        market_value = to_price(current * pos.quantity)
        total_cost = to_price(avg * pos.quantity)
        gain = market_value - total_cost
        holdings.append({
            "instrument_id": inst.id,
            "ticker": inst.ticker,
            "name": inst.name,
            "quantity": pos.quantity,
            "average_cost": avg,
            "current_price": current,
            "market_value": market_value,
            "total_gain": gain,
            "total_gain_pct": round(float(gain / total_cost * 100), 2) if total_cost else 0.0,
            "daily_open": inst.daily_open,
        })
    holdings.sort(key=lambda h: h["market_value"], reverse=True)
    return holdings


def ledger_history(db: Session, user_id: uuid.UUID, limit: int = 50) -> list[TradeLedgerEntry]:
    return (
        db.query(TradeLedgerEntry)
        .options(joinedload(TradeLedgerEntry.instrument))
        .filter(TradeLedgerEntry.user_id == user_id)
        .order_by(TradeLedgerEntry.executed_at.desc(), TradeLedgerEntry.id.desc())
        .limit(limit)
        .all()
    )


def portfolio_summary(db: Session, user_id: uuid.UUID) -> dict[str, Any]:
    cash = to_price(get_wallet(db, user_id).balance)
    holdings = list_holdings(db, user_id)
    stock_value = sum((h["market_value"] for h in holdings), Decimal("0.00"))
    recent = ledger_history(db, user_id, limit=1)
    return {
        "cash": cash,
        "stock_value": stock_value,
        "total_value": cash + stock_value,
        "positions": len(holdings),
        "recent_activity": recent[0] if recent else None,
    }

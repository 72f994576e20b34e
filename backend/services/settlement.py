"""
Order settlement: atomic BUY and SELL against wallet, positions and the trade ledger.

Each operation is one transaction. Wallet and position rows are read under an
exclusive row lock (``SELECT ... FOR UPDATE``) so concurrent trades and wallet
movements for the same user serialize. Every path locks the wallet before the
position. The instrument price is a plain snapshot read taken at settlement
time; any failure rolls the whole transaction back.
"""
import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models.instrument import Instrument
from models.position import Position
from models.trade import TradeLedgerEntry
from models.wallet import Wallet
from services.exceptions import (
    InsufficientFunds,
    InsufficientShares,
    InstrumentNotFound,
    MarketClosed,
    StoreUnavailable,
    TradingError,
    WalletNotFound,
)
from services.market_gate import check_market, to_naive_utc
from services.stock_math import to_price

logger = logging.getLogger(__name__)

BUY = "BUY"
SELL = "SELL"
SIDES = (BUY, SELL)


def _require_open_market(db: Session, now: datetime | None) -> None:
    status = check_market(db, now)
    if not status.allowed:
        raise MarketClosed(status.reason)


def _current_price(db: Session, instrument_id: int) -> Decimal:
    instrument = db.get(Instrument, instrument_id)
    if instrument is None:
        raise InstrumentNotFound(f"Instrument {instrument_id} not found")
    return to_price(instrument.current_price)


def _lock_wallet(db: Session, user_id: uuid.UUID) -> Wallet:
    wallet = (
        db.query(Wallet)
        .filter(Wallet.user_id == user_id)
        .with_for_update()
        .one_or_none()
    )
    if wallet is None:
        raise WalletNotFound("Wallet not found")
    return wallet


def _lock_position(db: Session, user_id: uuid.UUID, instrument_id: int) -> Optional[Position]:
    return (
        db.query(Position)
        .filter(Position.user_id == user_id, Position.instrument_id == instrument_id)
        .with_for_update()
        .one_or_none()
    )


def _append_ledger(db, user_id, instrument_id, side, quantity, price, total, intent_id, executed_at):
    entry = TradeLedgerEntry(
        user_id=user_id,
        instrument_id=instrument_id,
        intent_id=intent_id,
        side=side,
        quantity=quantity,
        price_executed=price,
        total_amount=total,
        executed_at=executed_at or datetime.utcnow(),
    )
    db.add(entry)
    return entry


def _settle(db: Session, side: str, apply, user_id, instrument_id, quantity, intent_id, now):
    """Run ``apply`` inside one transaction, committing on success and rolling back on any failure."""
    if quantity <= 0:
        raise ValueError("Quantity must be positive")
    try:
        _require_open_market(db, now)
        price = _current_price(db, instrument_id)
        total = to_price(price * quantity)
        apply(price, total)
        entry = _append_ledger(
            db, user_id, instrument_id, side, quantity, price, total, intent_id,
            to_naive_utc(now) if now else None,
        )
        db.commit()
    except TradingError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("%s settlement failed for user %s: %s", side, user_id, e)
        raise StoreUnavailable("Trade could not be settled: store unavailable") from e

    db.refresh(entry)
    logger.info(
        "Settled %s %d x instrument %s @ %s for user %s",
        side, quantity, instrument_id, price, user_id,
        extra={"intent_id": intent_id, "user_id": user_id, "instrument_id": instrument_id},
    )
    return entry


def execute_buy(
    db: Session,
    user_id: uuid.UUID,
    instrument_id: int,
    quantity: int,
    intent_id: uuid.UUID | None = None,
    now: datetime | None = None,
) -> TradeLedgerEntry:
    """Buy ``quantity`` shares at the instrument's current price."""

    def apply(price: Decimal, total: Decimal):
        wallet = _lock_wallet(db, user_id)
        balance = Decimal(wallet.balance)
        if balance < total:
            raise InsufficientFunds(
                f"Insufficient funds. Need ${total:,.2f}, available ${balance:,.2f}"
            )
        wallet.balance = balance - total

        position = _lock_position(db, user_id, instrument_id)
        if position is None:
            position = Position(
                user_id=user_id,
                instrument_id=instrument_id,
                quantity=quantity,
                bought_quantity=quantity,
                bought_cost=total,
            )
            db.add(position)
        else:
            position.quantity += quantity
            position.bought_quantity += quantity
            position.bought_cost = Decimal(position.bought_cost) + total

    return _settle(db, BUY, apply, user_id, instrument_id, quantity, intent_id, now)


def execute_sell(
    db: Session,
    user_id: uuid.UUID,
    instrument_id: int,
    quantity: int,
    intent_id: uuid.UUID | None = None,
    now: datetime | None = None,
) -> TradeLedgerEntry:
    """Sell ``quantity`` held shares at the instrument's current price."""

    def apply(price: Decimal, total: Decimal):
        # Wallet first, same order as execute_buy
        wallet = _lock_wallet(db, user_id)
        position = _lock_position(db, user_id, instrument_id)
        held = position.quantity if position else 0
        if held < quantity:
            raise InsufficientShares(
                f"Insufficient shares. You only own {held} shares."
            )
        if held == quantity:
            db.delete(position)
        else:
            position.quantity = held - quantity

        wallet.balance = Decimal(wallet.balance) + total

    return _settle(db, SELL, apply, user_id, instrument_id, quantity, intent_id, now)


def execute_trade(
    db: Session,
    side: str,
    user_id: uuid.UUID,
    instrument_id: int,
    quantity: int,
    intent_id: uuid.UUID | None = None,
    now: datetime | None = None,
) -> TradeLedgerEntry:
    if side == BUY:
        return execute_buy(db, user_id, instrument_id, quantity, intent_id, now)
    if side == SELL:
        return execute_sell(db, user_id, instrument_id, quantity, intent_id, now)
    raise ValueError(f"Unknown side {side!r}")

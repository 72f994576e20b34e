"""
Direct wallet movements (deposit / withdraw). These bypass the trade queue and
the market gate but take the same exclusive wallet row lock as settlement.
"""
import logging
import uuid
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import get_settings
from models.wallet import Wallet, WalletTransaction
from services.exceptions import (
    InsufficientFunds,
    LimitExceeded,
    StoreUnavailable,
    TradingError,
    WalletNotFound,
)
from services.stock_math import to_price

logger = logging.getLogger(__name__)

DEPOSIT = "DEPOSIT"
WITHDRAW = "WITHDRAW"


def create_wallet(db: Session, user_id: uuid.UUID, balance: Decimal | None = None) -> Wallet:
    wallet = Wallet(
        user_id=user_id,
        balance=to_price(balance if balance is not None else get_settings().starting_balance),
    )
    db.add(wallet)
    return wallet


def get_wallet(db: Session, user_id: uuid.UUID) -> Wallet:
    wallet = db.query(Wallet).filter(Wallet.user_id == user_id).first()
    if wallet is None:
        raise WalletNotFound("Wallet not found")
    return wallet


def _check_amount(amount: Decimal, max_single: Decimal) -> Decimal:
    amount = to_price(amount)
    if amount <= 0:
        raise LimitExceeded("Amount must be positive.")
    if amount > max_single:
        raise LimitExceeded(f"Cannot move more than ${max_single:,.2f} at once.")
    return amount


def _apply(db: Session, user_id: uuid.UUID, kind: str, amount: Decimal) -> Wallet:
    settings = get_settings()
    amount = _check_amount(amount, settings.max_deposit_amount)
    try:
        wallet = (
            db.query(Wallet)
            .filter(Wallet.user_id == user_id)
            .with_for_update()
            .one_or_none()
        )
        if wallet is None:
            raise WalletNotFound("Wallet not found")

        balance = Decimal(wallet.balance)
        if kind == DEPOSIT:
            if balance + amount > settings.max_wallet_balance:
                raise LimitExceeded(
                    f"Deposit failed. Maximum wallet limit is ${settings.max_wallet_balance:,.2f}. "
                    f"You can only add ${settings.max_wallet_balance - balance:,.2f}."
                )
            new_balance = balance + amount
        else:
            if amount > balance:
                raise InsufficientFunds(
                    f"Insufficient funds. Requested ${amount:,.2f}, available ${balance:,.2f}"
                )
            new_balance = balance - amount

        wallet.balance = new_balance
        db.add(WalletTransaction(
            wallet_id=wallet.id,
            transaction_type=kind,
            amount=amount,
            balance_after=new_balance,
        ))
        db.commit()
    except TradingError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Wallet %s failed for user %s: %s", kind.lower(), user_id, e)
        raise StoreUnavailable("Wallet update failed: store unavailable") from e

    db.refresh(wallet)
    logger.info("Wallet %s of %s for user %s", kind.lower(), amount, user_id)
    return wallet


def deposit(db: Session, user_id: uuid.UUID, amount: Decimal) -> Wallet:
    return _apply(db, user_id, DEPOSIT, amount)


def withdraw(db: Session, user_id: uuid.UUID, amount: Decimal) -> Wallet:
    return _apply(db, user_id, WITHDRAW, amount)

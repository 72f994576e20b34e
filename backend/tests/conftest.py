"""Shared test configuration."""
import sys
import os
import uuid
from datetime import datetime, timezone
from decimal import Decimal

# Add backend directory to path so imports work
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

os.environ["DATABASE_URL"] = "sqlite:///test.db"
os.environ["PRICE_ENGINE_ENABLED"] = "false"

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, init_db
from models.instrument import Instrument
from models.system_settings import SystemSettings, SETTINGS_ROW_ID
from models.user import User
from models.wallet import Wallet

# Wednesday 2025-01-15, inside the default 09:30-16:00 UTC session
SESSION_NOW = datetime(2025, 1, 15, 14, 0, tzinfo=timezone.utc)
# Saturday
WEEKEND_NOW = datetime(2025, 1, 18, 14, 0, tzinfo=timezone.utc)


@pytest.fixture
def session_factory():
    """Fresh in-memory database per test, shared across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


def make_user(db, balance="1000.00", with_wallet=True) -> User:
    suffix = uuid.uuid4().hex[:8]
    user = User(
        email=f"trader-{suffix}@sim.com",
        username=f"trader-{suffix}",
        password_hash="not-a-real-hash",
    )
    db.add(user)
    db.flush()
    if with_wallet:
        db.add(Wallet(user_id=user.id, balance=Decimal(balance)))
    db.commit()
    return user


def make_instrument(db, ticker="XYZ", price="100.00", volatility="0.02", with_daily_stats=True) -> Instrument:
    inst = Instrument(
        ticker=ticker,
        name=f"{ticker} Corp",
        sector="Tech",
        base_price=Decimal(price),
        current_price=Decimal(price),
        volatility=Decimal(volatility),
    )
    if with_daily_stats:
        inst.daily_open = inst.day_high = inst.day_low = Decimal(price)
    db.add(inst)
    db.commit()
    return inst


def set_market(db, **fields) -> SystemSettings:
    row = db.get(SystemSettings, SETTINGS_ROW_ID)
    for key, value in fields.items():
        setattr(row, key, value)
    db.commit()
    return row


def force_open(db) -> SystemSettings:
    return set_market(db, force_override=True, override_status="OPEN")


def force_closed(db) -> SystemSettings:
    return set_market(db, force_override=True, override_status="CLOSED")


def wallet_balance(db, user) -> Decimal:
    db.expire_all()
    return Decimal(db.query(Wallet).filter(Wallet.user_id == user.id).one().balance)

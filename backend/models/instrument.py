from datetime import datetime
from sqlalchemy import Column, String, DateTime, Integer, Numeric, CheckConstraint
from database import Base


class Instrument(Base):
    """A tradable simulated stock with its live price and daily statistics."""
    __tablename__ = "instruments"
    __table_args__ = (
        CheckConstraint("current_price > 0", name="ck_instruments_price_positive"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    ticker = Column(String(10), unique=True, nullable=False, index=True)
    name = Column(String(100), nullable=False)
    sector = Column(String(50), nullable=True)

    volatility = Column(Numeric(6, 4), nullable=False, default=0.02)  # sigma, per tick
    base_price = Column(Numeric(12, 2), nullable=False)
    current_price = Column(Numeric(12, 2), nullable=False)

    # Daily stats, reset on every simulated-day transition
    daily_open = Column(Numeric(12, 2), nullable=True)
    day_high = Column(Numeric(12, 2), nullable=True)
    day_low = Column(Numeric(12, 2), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

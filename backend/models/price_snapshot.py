from sqlalchemy import Column, DateTime, Integer, ForeignKey, Numeric, UniqueConstraint
from database import Base


class PriceSnapshot(Base):
    """Point-in-time price, one row per instrument per slot. Feeds historical charts."""
    __tablename__ = "price_snapshots"
    __table_args__ = (
        UniqueConstraint("instrument_id", "recorded_at", name="uq_price_snapshots_instrument_slot"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    instrument_id = Column(Integer, ForeignKey("instruments.id", ondelete="CASCADE"), nullable=False, index=True)
    price = Column(Numeric(12, 2), nullable=False)
    recorded_at = Column(DateTime, nullable=False)

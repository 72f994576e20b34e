from datetime import datetime
from decimal import Decimal
from sqlalchemy import (
    Column, DateTime, Integer, ForeignKey, Numeric, CheckConstraint, UniqueConstraint, Uuid
)
from sqlalchemy.orm import relationship
from database import Base


class Position(Base):
    """Shares a user holds in one instrument. Rows with zero quantity are deleted."""
    __tablename__ = "positions"
    __table_args__ = (
        UniqueConstraint("user_id", "instrument_id", name="uq_positions_user_instrument"),
        CheckConstraint("quantity > 0", name="ck_positions_quantity_positive"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    instrument_id = Column(Integer, ForeignKey("instruments.id", ondelete="CASCADE"), nullable=False)
    quantity = Column(Integer, nullable=False)

    # Lifetime buy lots; average_cost is their weighted mean
    bought_quantity = Column(Integer, nullable=False, default=0)
    bought_cost = Column(Numeric(18, 2), nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="positions")
    instrument = relationship("Instrument")

    @property
    def average_cost(self) -> Decimal:
        if not self.bought_quantity:
            return Decimal("0.00")
        return (Decimal(self.bought_cost) / self.bought_quantity).quantize(Decimal("0.0001"))

from datetime import datetime
from sqlalchemy import Column, String, DateTime, Integer, ForeignKey, Numeric, Index, Uuid, event
from sqlalchemy.orm import relationship
from database import Base


class TradeLedgerEntry(Base):
    """Append-only record of a settled trade. Source of truth for cost basis and history."""
    __tablename__ = "trades"
    __table_args__ = (
        Index("ix_trades_user_time", "user_id", "executed_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False)
    instrument_id = Column(Integer, ForeignKey("instruments.id"), nullable=False)
    intent_id = Column(Uuid(as_uuid=True), nullable=True)  # deferred intent that produced it

    side = Column(String(4), nullable=False)  # BUY, SELL
    quantity = Column(Integer, nullable=False)
    price_executed = Column(Numeric(12, 2), nullable=False)
    total_amount = Column(Numeric(15, 2), nullable=False)
    executed_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    instrument = relationship("Instrument")

    @property
    def ticker(self):
        return self.instrument.ticker if self.instrument else None


@event.listens_for(TradeLedgerEntry, "before_update")
def _refuse_ledger_update(mapper, connection, target):
    raise ValueError("Ledger entries are immutable")


@event.listens_for(TradeLedgerEntry, "before_delete")
def _refuse_ledger_delete(mapper, connection, target):
    raise ValueError("Ledger entries cannot be deleted")

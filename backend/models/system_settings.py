from datetime import datetime
from sqlalchemy import Column, String, Date, DateTime, Integer, Boolean, JSON
from sqlalchemy.orm import Session
from config import get_settings
from database import Base

SETTINGS_ROW_ID = 1


class SystemSettings(Base):
    """Singleton row (id=1) holding market schedule and operator overrides."""
    __tablename__ = "system_settings"

    id = Column(Integer, primary_key=True, default=SETTINGS_ROW_ID)

    # Cached result of the last gate evaluation; display only, never read to decide
    market_status = Column(String(10), nullable=False, default="OPEN")

    # Operator override
    force_override = Column(Boolean, nullable=False, default=False)
    override_status = Column(String(10), nullable=False, default="OPEN")
    simulated_clock = Column(DateTime, nullable=True)  # replaces wall-clock "now" when set

    # Schedule, HH:MM in the market timezone
    open_time = Column(String(5), nullable=False, default="09:30")
    close_time = Column(String(5), nullable=False, default="16:00")
    holidays = Column(JSON, nullable=False, default=list)  # [{"date": "2025-12-25", "name": "Christmas"}]

    # Trading day the price generator last observed; survives restarts
    last_trading_day = Column(Date, nullable=True)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


def ensure_settings_row(db: Session) -> SystemSettings:
    """Create the singleton settings row from configured defaults if it is missing."""
    row = db.get(SystemSettings, SETTINGS_ROW_ID)
    if row is None:
        config = get_settings()
        row = SystemSettings(
            id=SETTINGS_ROW_ID,
            market_status="OPEN",
            force_override=False,
            override_status="OPEN",
            open_time=config.default_open_time,
            close_time=config.default_close_time,
            holidays=[],
        )
        db.add(row)
        db.commit()
        db.refresh(row)
    return row

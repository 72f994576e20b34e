"""
Bulk price-history seeding.

Backfills price snapshots over a past date range by replaying the GBM step used
by the live generator, one point per ``step_minutes`` of each trading session.
Paths walk backwards from each instrument's current price so the seeded history
joins the live price. Existing (instrument, timestamp) rows are left untouched.
"""
import logging
import random
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterator, Optional

from sqlalchemy.orm import Session

from config import get_settings
from models.instrument import Instrument
from services.exceptions import InvalidSchedule
from services.market_gate import MarketConfig, load_market_config, parse_hhmm
from services.price_engine import insert_snapshots
from services.stock_math import floor_price, gbm_step, to_price

logger = logging.getLogger(__name__)

CHUNK_SIZE = 250


@dataclass
class SeedReport:
    start: date
    end: date
    points_per_instrument: int = 0
    rows_written: int = 0
    instruments: list[str] = field(default_factory=list)


def session_timestamps(start: date, end: date, config: MarketConfig, step_minutes: int) -> Iterator[datetime]:
    """Yield naive-UTC timestamps for every step of every session day in [start, end]."""
    opens_at = parse_hhmm(config.open_time)
    closes_at = parse_hhmm(config.close_time)
    tz = config.tz

    day = start
    while day <= end:
        if config.is_session_day(day):
            session_open = datetime.combine(day, time(0, 0), tzinfo=tz) + timedelta(minutes=opens_at)
            for minute in range(0, closes_at - opens_at, step_minutes):
                local = session_open + timedelta(minutes=minute)
                yield local.astimezone(timezone.utc).replace(tzinfo=None)
        day += timedelta(days=1)


def seed_price_history(
    db: Session,
    start: date,
    end: date,
    step_minutes: int | None = None,
    rng: Optional[random.Random] = None,
    config: Optional[MarketConfig] = None,
    now: Optional[datetime] = None,
) -> SeedReport:
    """Backfill snapshots for every instrument between ``start`` and ``end`` inclusive.

    Only whole past days may be seeded: ``end`` must be before today in the
    market timezone, so seeded points never occupy slots the live generator
    has yet to write. Daily open/high/low are left alone.
    """
    if end < start:
        raise InvalidSchedule("end date must not be before start date")

    settings = get_settings()
    step_minutes = step_minutes or settings.history_step_minutes
    rng = rng or random.Random()
    config = config or load_market_config(db) or MarketConfig(tz_name=settings.market_timezone)

    today = (now or datetime.now(timezone.utc)).astimezone(config.tz).date()
    if end >= today:
        raise InvalidSchedule(f"History can only be seeded for days before {today.isoformat()}")

    session_minutes = parse_hhmm(config.close_time) - parse_hhmm(config.open_time)
    if session_minutes <= 0:
        raise InvalidSchedule("market close time must be after open time")
    dt = step_minutes / session_minutes

    timestamps = list(session_timestamps(start, end, config, step_minutes))
    report = SeedReport(start=start, end=end, points_per_instrument=len(timestamps))

    instruments = db.query(Instrument).order_by(Instrument.id).all()
    for inst in instruments:
        volatility = float(inst.volatility or 0)
        price = to_price(inst.current_price)
        rows = []
        for recorded_at in reversed(timestamps):
            rows.append({"instrument_id": inst.id, "price": price, "recorded_at": recorded_at})
            price = floor_price(gbm_step(float(price), volatility, dt, rng), settings.min_price)

        for i in range(0, len(rows), CHUNK_SIZE):
            report.rows_written += insert_snapshots(db, rows[i:i + CHUNK_SIZE])
        db.commit()

        report.instruments.append(inst.ticker)
        logger.info("Seeded %d history points for %s", len(rows), inst.ticker)

    return report

"""
Background price generator.

Every tick it
  - detects simulated-day transitions and resets daily open/high/low,
  - asks the market gate whether prices may move, and if so perturbs every
    instrument's price,
  - once per wall-clock snapshot slot, persists one price snapshot per instrument.

The generator holds only two pieces of state between ticks: the last trading
day it observed and the last snapshot slot it wrote. Both are explicit
attributes so the boundary logic can be driven deterministically in tests.
The trading day is also stored on the system settings row, so a restart on a
later day still resets the daily statistics.
"""
import asyncio
import logging
import random
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Callable, Iterable, Optional

from sqlalchemy import insert as generic_insert
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from config import get_settings
from models.instrument import Instrument
from models.price_snapshot import PriceSnapshot
from models.system_settings import SystemSettings, SETTINGS_ROW_ID
from services.market_gate import MarketConfig, check_market, load_market_config, to_naive_utc
from services.stock_math import TRADING_DAY_MINUTES, floor_price, gbm_step, to_price, uniform_step

logger = logging.getLogger(__name__)

UNIFORM = "uniform"
GBM = "gbm"

_CONFLICT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def slot_start(now: datetime, slot_minutes: int = 5) -> datetime:
    """Round ``now`` down to the start of its snapshot slot."""
    return now.replace(minute=now.minute - now.minute % slot_minutes, second=0, microsecond=0)


def snapshot_slot(now: datetime, last_slot: Optional[datetime], slot_minutes: int = 5) -> Optional[datetime]:
    """Return the slot to persist for ``now``, or None if ``last_slot`` already covers it."""
    slot = slot_start(now, slot_minutes)
    if last_slot is not None and slot == last_slot:
        return None
    return slot


def insert_snapshots(db: Session, rows: list[dict]) -> int:
    """Insert snapshot rows, skipping any (instrument, slot) that already exists."""
    if not rows:
        return 0
    dialect_insert = _CONFLICT_INSERTS.get(db.get_bind().dialect.name)
    if dialect_insert is not None:
        stmt = (
            dialect_insert(PriceSnapshot)
            .values(rows)
            .on_conflict_do_nothing(index_elements=["instrument_id", "recorded_at"])
        )
        return db.execute(stmt).rowcount or 0

    written = 0
    for row in rows:
        try:
            with db.begin_nested():
                db.execute(generic_insert(PriceSnapshot).values(**row))
            written += 1
        except IntegrityError:
            continue
    return written


def persist_snapshots(db: Session, recorded_at: datetime, instruments: Iterable[Instrument]) -> int:
    rows = [
        {"instrument_id": inst.id, "price": to_price(inst.current_price), "recorded_at": recorded_at}
        for inst in instruments
    ]
    return insert_snapshots(db, rows)


def reset_daily_stats(instrument: Instrument) -> None:
    price = to_price(instrument.current_price)
    instrument.daily_open = price
    instrument.day_high = price
    instrument.day_low = price


def init_daily_stats(instrument: Instrument) -> None:
    """Fill missing daily stats from the current price, keeping low <= price <= high."""
    price = to_price(instrument.current_price)
    if instrument.daily_open is None:
        instrument.daily_open = price
    instrument.day_high = price if instrument.day_high is None else max(to_price(instrument.day_high), price)
    instrument.day_low = price if instrument.day_low is None else min(to_price(instrument.day_low), price)


@dataclass
class TickReport:
    trading_day: date
    market_open: bool
    day_reset: bool = False
    ticked: int = 0
    snapshot_slot: Optional[datetime] = None
    snapshots_written: int = 0


class PriceGenerator:
    """Advances instrument prices on a fixed interval, independent of requests."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        tick_interval: float | None = None,
        tick_model: str | None = None,
        min_price: Decimal | None = None,
        slot_minutes: int | None = None,
        tz_name: str | None = None,
        rng: random.Random | None = None,
    ):
        settings = get_settings()
        self.session_factory = session_factory
        self.tick_interval = tick_interval if tick_interval is not None else settings.tick_interval_seconds
        self.tick_model = tick_model or settings.tick_model
        self.min_price = min_price if min_price is not None else settings.min_price
        self.slot_minutes = slot_minutes or settings.snapshot_slot_minutes
        self.tz_name = tz_name or settings.market_timezone
        self.rng = rng or random.Random()

        if self.tick_model not in (UNIFORM, GBM):
            raise ValueError(f"Unknown tick model {self.tick_model!r}")

        self.last_trading_day: Optional[date] = None
        self.last_snapshot_slot: Optional[datetime] = None
        self._task: Optional[asyncio.Task] = None

    # ── Price step ──────────────────────────────────────────────────

    def next_price(self, instrument: Instrument) -> Decimal:
        price = to_price(instrument.current_price)
        volatility = float(instrument.volatility or 0)
        if self.tick_model == GBM:
            dt = self.tick_interval / (TRADING_DAY_MINUTES * 60)
            new_price = gbm_step(float(price), volatility, dt, self.rng)
        else:
            new_price = uniform_step(price, volatility, self.rng)
        return floor_price(new_price, self.min_price)

    def _apply_tick(self, instrument: Instrument) -> None:
        new_price = self.next_price(instrument)
        instrument.current_price = new_price
        instrument.day_high = max(to_price(instrument.day_high), new_price)
        instrument.day_low = min(to_price(instrument.day_low), new_price)

    # ── One tick ────────────────────────────────────────────────────

    def tick(self, db: Session, wall_clock: datetime | None = None) -> TickReport:
        """Run one generator step against ``db``; ``wall_clock`` defaults to now (UTC)."""
        wall_clock = wall_clock or datetime.now(timezone.utc)

        status = check_market(db, wall_clock, self.tz_name)
        config = load_market_config(db, self.tz_name) or MarketConfig(tz_name=self.tz_name)
        day = config.trading_day(wall_clock)
        report = TickReport(trading_day=day, market_open=status.allowed)

        instruments = db.query(Instrument).order_by(Instrument.id).with_for_update().all()
        settings_row = db.get(SystemSettings, SETTINGS_ROW_ID)

        # After a restart the previous day comes from the store
        previous_day = self.last_trading_day
        if previous_day is None and settings_row is not None:
            previous_day = settings_row.last_trading_day

        if previous_day is not None and day != previous_day:
            for inst in instruments:
                reset_daily_stats(inst)
            report.day_reset = True
            logger.info("New trading day %s, daily stats reset for %d instruments", day, len(instruments))
        elif self.last_trading_day is None:
            for inst in instruments:
                init_daily_stats(inst)
        self.last_trading_day = day
        if settings_row is not None and settings_row.last_trading_day != day:
            settings_row.last_trading_day = day

        # A day-reset tick only establishes the new baseline
        if status.allowed and not report.day_reset:
            for inst in instruments:
                self._apply_tick(inst)
            report.ticked = len(instruments)

        db.commit()

        slot = snapshot_slot(to_naive_utc(wall_clock), self.last_snapshot_slot, self.slot_minutes)
        if slot is not None:
            try:
                report.snapshots_written = persist_snapshots(db, slot, instruments)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.warning("Snapshot write for slot %s failed, will retry: %s", slot, e)
            else:
                self.last_snapshot_slot = slot
                report.snapshot_slot = slot
                logger.info("Persisted %d price snapshots for slot %s", report.snapshots_written, slot)

        return report

    def run_once(self, wall_clock: datetime | None = None) -> TickReport:
        db = self.session_factory()
        try:
            return self.tick(db, wall_clock)
        finally:
            db.close()

    # ── Background loop ─────────────────────────────────────────────

    async def run(self):
        logger.info("Price engine started (interval=%ss, model=%s)", self.tick_interval, self.tick_model)
        while True:
            try:
                await asyncio.to_thread(self.run_once)
            except Exception:
                logger.exception("Price engine tick failed")
            await asyncio.sleep(self.tick_interval)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="price-engine")
        return self._task

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Price engine stopped")


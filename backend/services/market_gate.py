"""
Market availability gate.

Decides whether trading is allowed at a given instant. Rules are evaluated in
order, first match wins:

1. operator force override
2. weekend
3. configured holiday
4. outside configured session hours
5. otherwise open

The decision is always re-derived from the rules. The result is written back
to ``system_settings.market_status`` as a display cache only. If the settings
lookup itself fails the gate fails open.
"""
import logging
from dataclasses import dataclass, asdict
from datetime import date, datetime, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import get_settings
from models.system_settings import SystemSettings, SETTINGS_ROW_ID

logger = logging.getLogger(__name__)

OPEN = "OPEN"
CLOSED = "CLOSED"


def parse_hhmm(value: str) -> int:
    """'09:30' -> minute of day (570)."""
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def format_hhmm(minute_of_day: int) -> str:
    return f"{minute_of_day // 60:02d}:{minute_of_day % 60:02d}"


def _as_utc(value: datetime) -> datetime:
    # Naive datetimes in the store are UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_naive_utc(value: datetime) -> datetime:
    """Aware datetimes are converted to UTC and stored naive."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _holiday_entries(raw: Any) -> tuple[tuple[str, str], ...]:
    entries = []
    for item in raw or []:
        if isinstance(item, str):
            entries.append((item, item))
        elif isinstance(item, dict) and item.get("date"):
            entries.append((str(item["date"]), item.get("name") or str(item["date"])))
    return tuple(entries)


@dataclass(frozen=True)
class MarketConfig:
    """Immutable view of the settings a gate evaluation or generator tick reads."""
    force_override: bool = False
    override_status: str = OPEN
    simulated_clock: Optional[datetime] = None
    open_time: str = "09:30"
    close_time: str = "16:00"
    holidays: tuple[tuple[str, str], ...] = ()
    tz_name: str = "UTC"

    @classmethod
    def from_row(cls, row: SystemSettings, tz_name: str | None = None) -> "MarketConfig":
        return cls(
            force_override=bool(row.force_override),
            override_status=row.override_status or OPEN,
            simulated_clock=row.simulated_clock,
            open_time=row.open_time or get_settings().default_open_time,
            close_time=row.close_time or get_settings().default_close_time,
            holidays=_holiday_entries(row.holidays),
            tz_name=tz_name or get_settings().market_timezone,
        )

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.tz_name)

    def now(self, wall_clock: datetime | None = None) -> datetime:
        """Simulated "now" in the market timezone: the simulated clock if set, else wall clock."""
        base = self.simulated_clock or wall_clock or datetime.now(timezone.utc)
        return _as_utc(base).astimezone(self.tz)

    def trading_day(self, wall_clock: datetime | None = None) -> date:
        return self.now(wall_clock).date()

    def holiday_name(self, day: date) -> str | None:
        key = day.isoformat()
        for holiday_date, name in self.holidays:
            if holiday_date == key:
                return name
        return None

    def is_session_day(self, day: date) -> bool:
        return day.weekday() < 5 and self.holiday_name(day) is None


@dataclass(frozen=True)
class MarketStatus:
    allowed: bool
    reason: str
    status: str
    forced: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


def evaluate_market(config: MarketConfig, wall_clock: datetime | None = None) -> MarketStatus:
    """Pure gate decision for ``config`` at ``wall_clock`` (or the simulated clock)."""
    # 1. Force override
    if config.force_override:
        is_open = config.override_status == OPEN
        return MarketStatus(
            allowed=is_open,
            reason="Market forced OPEN by administrator" if is_open else "Market forced CLOSED by administrator",
            status=OPEN if is_open else CLOSED,
            forced=True,
        )

    now = config.now(wall_clock)

    # 2. Weekend
    if now.weekday() >= 5:
        day_name = "Saturday" if now.weekday() == 5 else "Sunday"
        return MarketStatus(False, f"Market closed: {day_name} (weekend)", CLOSED)

    # 3. Holiday
    holiday = config.holiday_name(now.date())
    if holiday:
        return MarketStatus(False, f"Market closed for holiday: {holiday}", CLOSED)

    # 4. Session hours
    current = now.hour * 60 + now.minute
    opens_at = parse_hhmm(config.open_time)
    closes_at = parse_hhmm(config.close_time)
    if current < opens_at:
        return MarketStatus(
            False,
            f"Market closed: Opens at {config.open_time} (current: {format_hhmm(current)})",
            CLOSED,
        )
    if current >= closes_at:
        return MarketStatus(
            False,
            f"Market closed: Closed at {config.close_time} (current: {format_hhmm(current)})",
            CLOSED,
        )

    return MarketStatus(True, "Market is open", OPEN)


def load_market_config(db: Session, tz_name: str | None = None) -> MarketConfig | None:
    row = db.get(SystemSettings, SETTINGS_ROW_ID)
    if row is None:
        return None
    return MarketConfig.from_row(row, tz_name)


def check_market(db: Session, now: datetime | None = None, tz_name: str | None = None) -> MarketStatus:
    """Evaluate the gate against the stored settings and cache the result.

    Fails open when the settings store cannot be read.
    """
    try:
        row = db.get(SystemSettings, SETTINGS_ROW_ID)
    except SQLAlchemyError:
        logger.exception("Market status check failed, defaulting to open")
        db.rollback()
        return MarketStatus(True, "Status check error, defaulting to open", OPEN)

    if row is None:
        return MarketStatus(True, "No settings found, defaulting to open", OPEN)

    result = evaluate_market(MarketConfig.from_row(row, tz_name), now)

    if row.market_status != result.status:
        try:
            row.market_status = result.status
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning("Could not cache market status %s: %s", result.status, e)

    return result

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from models.system_settings import ensure_settings_row
from models.user import User
from routers.auth import get_current_admin
from schemas.market import (
    SeedHistoryRequest,
    SeedHistoryResponse,
    SystemSettingsResponse,
    SystemSettingsUpdate,
)
from services.exceptions import InvalidSchedule
from services.history_seeder import seed_price_history
from services.market_gate import parse_hhmm, to_naive_utc

router = APIRouter(prefix="/api/admin", tags=["admin"])
logger = logging.getLogger(__name__)


@router.get("/settings", response_model=SystemSettingsResponse)
async def get_system_settings(
    admin: Annotated[User, Depends(get_current_admin)],
    db: Session = Depends(get_db)
):
    return ensure_settings_row(db)


@router.put("/settings", response_model=SystemSettingsResponse)
async def update_system_settings(
    data: SystemSettingsUpdate,
    admin: Annotated[User, Depends(get_current_admin)],
    db: Session = Depends(get_db)
):
    """Operator overrides: force open/closed, simulated clock, session hours, holidays."""
    row = ensure_settings_row(db)

    # A one-sided edit is checked against the stored other side
    open_time = data.open_time or row.open_time
    close_time = data.close_time or row.close_time
    if (data.open_time or data.close_time) and parse_hhmm(open_time) >= parse_hhmm(close_time):
        raise InvalidSchedule(f"Market must open before it closes (open {open_time}, close {close_time})")

    if data.force_override is not None:
        row.force_override = data.force_override
    if data.override_status is not None:
        row.override_status = data.override_status
    if data.clear_simulated_clock:
        row.simulated_clock = None
    elif data.simulated_clock is not None:
        row.simulated_clock = to_naive_utc(data.simulated_clock)
    if data.open_time is not None:
        row.open_time = data.open_time
    if data.close_time is not None:
        row.close_time = data.close_time
    if data.holidays is not None:
        row.holidays = [
            {"date": h.date.isoformat(), "name": h.name or h.date.isoformat()}
            for h in data.holidays
        ]

    db.commit()
    db.refresh(row)
    logger.info("System settings updated by %s", admin.username)
    return row


@router.post("/seed-history", response_model=SeedHistoryResponse)
async def seed_history(
    data: SeedHistoryRequest,
    admin: Annotated[User, Depends(get_current_admin)],
    db: Session = Depends(get_db)
):
    """Backfill price snapshots over a past date range."""
    report = seed_price_history(db, data.start_date, data.end_date, step_minutes=data.step_minutes)
    return SeedHistoryResponse(
        start_date=report.start,
        end_date=report.end,
        instruments=report.instruments,
        points_per_instrument=report.points_per_instrument,
        rows_written=report.rows_written,
    )

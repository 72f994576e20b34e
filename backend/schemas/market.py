from pydantic import BaseModel, Field, field_validator, model_validator
from datetime import date, datetime
from typing import Optional

HHMM_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class MarketStatusResponse(BaseModel):
    allowed: bool
    reason: str
    status: str  # OPEN, CLOSED
    forced: bool = False


class Holiday(BaseModel):
    date: date
    name: Optional[str] = None


class SystemSettingsResponse(BaseModel):
    market_status: str
    force_override: bool
    override_status: str
    simulated_clock: Optional[datetime]
    open_time: str
    close_time: str
    holidays: list[Holiday]
    last_trading_day: Optional[date] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SystemSettingsUpdate(BaseModel):
    """Operator edits; omitted fields stay unchanged."""
    force_override: Optional[bool] = None
    override_status: Optional[str] = Field(None, pattern="^(OPEN|CLOSED)$")
    simulated_clock: Optional[datetime] = None
    clear_simulated_clock: bool = False
    open_time: Optional[str] = Field(None, pattern=HHMM_PATTERN)
    close_time: Optional[str] = Field(None, pattern=HHMM_PATTERN)
    holidays: Optional[list[Holiday]] = None

    @model_validator(mode="after")
    def open_before_close(self):
        if self.open_time and self.close_time and self.open_time >= self.close_time:
            raise ValueError("open_time must be before close_time")
        return self


class SeedHistoryRequest(BaseModel):
    start_date: date
    end_date: date
    step_minutes: int = Field(2, ge=1, le=60)

    @field_validator("end_date")
    @classmethod
    def end_after_start(cls, v, info):
        start = info.data.get("start_date")
        if start and v < start:
            raise ValueError("end_date must not be before start_date")
        return v


class SeedHistoryResponse(BaseModel):
    start_date: date
    end_date: date
    instruments: list[str]
    points_per_instrument: int
    rows_written: int

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from models.instrument import Instrument
from schemas.instrument import InstrumentResponse, InstrumentSnapshot
from services.exceptions import InstrumentNotFound

router = APIRouter(prefix="/api/stocks", tags=["stocks"])


def get_instrument_or_404(db: Session, instrument_id: int) -> Instrument:
    instrument = db.get(Instrument, instrument_id)
    if instrument is None:
        raise InstrumentNotFound(f"Instrument {instrument_id} not found")
    return instrument


@router.get("/", response_model=list[InstrumentResponse])
async def list_instruments(db: Session = Depends(get_db)):
    """All instruments with their current price."""
    return db.query(Instrument).order_by(Instrument.id).all()


@router.get("/{instrument_id}", response_model=InstrumentSnapshot)
async def get_instrument_snapshot(instrument_id: int, db: Session = Depends(get_db)):
    """Current price and today's open / high / low for one instrument."""
    return get_instrument_or_404(db, instrument_id)

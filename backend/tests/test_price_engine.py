"""
Tests for the background price generator:
- day-boundary detection and daily stat resets
- tick gating on market status
- low <= price <= high invariant and price floor
- snapshot slot logic and idempotent snapshot persistence
"""
import random
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from models.instrument import Instrument
from models.price_snapshot import PriceSnapshot
from models.system_settings import SystemSettings, SETTINGS_ROW_ID
from services.price_engine import (
    PriceGenerator,
    persist_snapshots,
    snapshot_slot,
    slot_start,
)
from conftest import SESSION_NOW, force_closed, force_open, make_instrument


def _generator(session_factory, **kwargs):
    kwargs.setdefault("rng", random.Random(1234))
    kwargs.setdefault("tz_name", "UTC")
    return PriceGenerator(session_factory, **kwargs)


def _assert_daily_invariant(inst: Instrument):
    assert inst.current_price > 0
    assert inst.day_low <= inst.current_price <= inst.day_high


class TestSnapshotSlot:
    def test_rounds_down_to_slot(self):
        assert slot_start(datetime(2025, 1, 15, 10, 7, 31, 500)) == datetime(2025, 1, 15, 10, 5)

    def test_first_call_is_due(self):
        assert snapshot_slot(datetime(2025, 1, 15, 10, 7), None) == datetime(2025, 1, 15, 10, 5)

    def test_same_slot_not_due_again(self):
        last = datetime(2025, 1, 15, 10, 5)
        assert snapshot_slot(datetime(2025, 1, 15, 10, 9, 59), last) is None

    def test_next_slot_is_due(self):
        last = datetime(2025, 1, 15, 10, 5)
        assert snapshot_slot(datetime(2025, 1, 15, 10, 10), last) == datetime(2025, 1, 15, 10, 10)

    def test_same_minute_on_next_hour_is_due(self):
        last = datetime(2025, 1, 15, 10, 5)
        assert snapshot_slot(datetime(2025, 1, 15, 11, 6), last) == datetime(2025, 1, 15, 11, 5)


class TestTick:
    def test_prices_move_while_open(self, db, session_factory):
        force_open(db)
        inst = make_instrument(db, volatility="0.05")
        gen = _generator(session_factory)

        reports = [gen.run_once(SESSION_NOW + timedelta(seconds=10 * i)) for i in range(20)]

        assert all(r.market_open for r in reports)
        assert sum(r.ticked for r in reports) == 20
        db.refresh(inst)
        assert inst.current_price != Decimal("100.00")

    def test_closed_market_skips_tick(self, db, session_factory):
        force_closed(db)
        inst = make_instrument(db, volatility="0.05")
        gen = _generator(session_factory)

        report = gen.run_once(SESSION_NOW)

        assert report.market_open is False
        assert report.ticked == 0
        db.refresh(inst)
        assert inst.current_price == Decimal("100.00")

    def test_invariant_holds_after_every_tick(self, db, session_factory):
        force_open(db)
        ids = [make_instrument(db, ticker=t, volatility=v).id
               for t, v in (("AAA", "0.02"), ("BBB", "0.15"), ("CCC", "0.30"))]
        gen = _generator(session_factory)

        for i in range(200):
            gen.run_once(SESSION_NOW + timedelta(seconds=10 * i))
            db.expire_all()
            for inst_id in ids:
                _assert_daily_invariant(db.get(Instrument, inst_id))

    def test_price_floor(self, db, session_factory):
        force_open(db)
        inst = make_instrument(db, price="0.02", volatility="0.9")
        gen = _generator(session_factory, min_price=Decimal("0.01"))

        for i in range(100):
            gen.run_once(SESSION_NOW + timedelta(seconds=10 * i))
            db.refresh(inst)
            assert inst.current_price >= Decimal("0.01")

    def test_gbm_model_ticks(self, db, session_factory):
        force_open(db)
        inst = make_instrument(db, volatility="0.5")
        gen = _generator(session_factory, tick_model="gbm")

        for i in range(30):
            gen.run_once(SESSION_NOW + timedelta(seconds=10 * i))
        db.refresh(inst)
        _assert_daily_invariant(inst)

    def test_unknown_tick_model_rejected(self, session_factory):
        with pytest.raises(ValueError):
            _generator(session_factory, tick_model="brownian")


class TestDailyStats:
    def test_first_tick_fills_missing_baseline(self, db, session_factory):
        force_closed(db)
        inst = make_instrument(db, price="42.00", with_daily_stats=False)
        gen = _generator(session_factory)

        report = gen.run_once(SESSION_NOW)

        assert report.day_reset is False
        db.refresh(inst)
        assert inst.daily_open == inst.day_high == inst.day_low == Decimal("42.00")

    def test_first_tick_keeps_existing_stats(self, db, session_factory):
        force_closed(db)
        inst = make_instrument(db, price="50.00")
        inst.daily_open = Decimal("48.00")
        inst.day_high = Decimal("55.00")
        inst.day_low = Decimal("47.00")
        db.commit()

        _generator(session_factory).run_once(SESSION_NOW)

        db.refresh(inst)
        assert inst.daily_open == Decimal("48.00")
        assert inst.day_high == Decimal("55.00")
        assert inst.day_low == Decimal("47.00")

    def test_day_boundary_resets_stats(self, db, session_factory):
        force_open(db)
        inst = make_instrument(db, volatility="0.1")
        gen = _generator(session_factory)
        for i in range(20):
            gen.run_once(SESSION_NOW + timedelta(seconds=10 * i))

        next_day = SESSION_NOW + timedelta(days=1)
        report = gen.run_once(next_day)

        assert report.day_reset is True
        assert report.trading_day == date(2025, 1, 16)
        db.refresh(inst)
        assert inst.daily_open == inst.day_high == inst.day_low == inst.current_price

    def test_no_reset_within_same_day(self, db, session_factory):
        force_open(db)
        make_instrument(db)
        gen = _generator(session_factory)
        gen.run_once(SESSION_NOW)
        report = gen.run_once(SESSION_NOW + timedelta(hours=1))
        assert report.day_reset is False

    def test_day_boundary_follows_simulated_clock(self, db, session_factory):
        force_open(db)
        make_instrument(db)
        gen = _generator(session_factory)
        gen.run_once(SESSION_NOW)

        force_open(db).simulated_clock = datetime(2025, 1, 20, 10, 0)
        db.commit()
        report = gen.run_once(SESSION_NOW + timedelta(seconds=10))

        assert report.day_reset is True
        assert report.trading_day == date(2025, 1, 20)


class TestSnapshots:
    def test_one_row_per_instrument_per_slot(self, db, session_factory):
        force_open(db)
        make_instrument(db, ticker="AAA")
        make_instrument(db, ticker="BBB")
        gen = _generator(session_factory)

        gen.run_once(datetime(2025, 1, 15, 14, 0, 5, tzinfo=timezone.utc))
        gen.run_once(datetime(2025, 1, 15, 14, 3, 0, tzinfo=timezone.utc))
        gen.run_once(datetime(2025, 1, 15, 14, 5, 0, tzinfo=timezone.utc))

        rows = db.query(PriceSnapshot).all()
        assert len(rows) == 4
        assert {r.recorded_at for r in rows} == {
            datetime(2025, 1, 15, 14, 0),
            datetime(2025, 1, 15, 14, 5),
        }

    def test_snapshots_written_while_closed(self, db, session_factory):
        force_closed(db)
        make_instrument(db)
        report = _generator(session_factory).run_once(SESSION_NOW)
        assert report.snapshot_slot == datetime(2025, 1, 15, 14, 0)
        assert db.query(PriceSnapshot).count() == 1

    def test_persist_twice_same_slot_is_idempotent(self, db):
        inst = make_instrument(db)
        slot = datetime(2025, 1, 15, 14, 5)

        persist_snapshots(db, slot, [inst])
        db.commit()
        persist_snapshots(db, slot, [inst])
        db.commit()

        assert db.query(PriceSnapshot).filter(PriceSnapshot.instrument_id == inst.id).count() == 1

    def test_restarted_generator_reenters_same_slot(self, db, session_factory):
        force_open(db)
        make_instrument(db)
        _generator(session_factory).run_once(SESSION_NOW)
        # Fresh generator has no memory of the slot it already wrote
        _generator(session_factory).run_once(SESSION_NOW + timedelta(seconds=30))
        assert db.query(PriceSnapshot).count() == 1


class TestRestart:
    def test_restart_on_later_day_resets_stats(self, db, session_factory):
        force_open(db)
        inst = make_instrument(db, volatility="0.1")
        gen = _generator(session_factory)
        for i in range(20):
            gen.run_once(SESSION_NOW + timedelta(seconds=10 * i))
        db.refresh(inst)
        assert inst.day_high != inst.day_low

        restarted = _generator(session_factory, rng=random.Random(99))
        report = restarted.run_once(SESSION_NOW + timedelta(days=1))

        assert report.day_reset is True
        db.refresh(inst)
        assert inst.daily_open == inst.day_high == inst.day_low == inst.current_price

    def test_restart_on_same_day_keeps_stats(self, db, session_factory):
        force_open(db)
        inst = make_instrument(db, volatility="0.1")
        gen = _generator(session_factory)
        for i in range(20):
            gen.run_once(SESSION_NOW + timedelta(seconds=10 * i))
        db.refresh(inst)
        opened = inst.daily_open

        report = _generator(session_factory).run_once(SESSION_NOW + timedelta(hours=1))

        assert report.day_reset is False
        db.refresh(inst)
        assert inst.daily_open == opened

    def test_observed_day_is_stored(self, db, session_factory):
        make_instrument(db)
        _generator(session_factory).run_once(SESSION_NOW)
        db.expire_all()
        assert db.get(SystemSettings, SETTINGS_ROW_ID).last_trading_day == date(2025, 1, 15)

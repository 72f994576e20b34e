"""
Tests for atomic order settlement:
- BUY/SELL balance arithmetic and position bookkeeping
- failures leave wallet, position and ledger untouched
- market gate and store failures
"""
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from models.instrument import Instrument
from models.position import Position
from models.trade import TradeLedgerEntry
from services import settlement
from services.exceptions import (
    InsufficientFunds,
    InsufficientShares,
    InstrumentNotFound,
    MarketClosed,
    StoreUnavailable,
    WalletNotFound,
)
from services.settlement import BUY, SELL, execute_buy, execute_sell, execute_trade
from conftest import SESSION_NOW, WEEKEND_NOW, force_closed, make_instrument, make_user, wallet_balance


def _position(db, user, inst):
    db.expire_all()
    return (
        db.query(Position)
        .filter(Position.user_id == user.id, Position.instrument_id == inst.id)
        .one_or_none()
    )


def _ledger(db, user):
    return (
        db.query(TradeLedgerEntry)
        .filter(TradeLedgerEntry.user_id == user.id)
        .order_by(TradeLedgerEntry.id)
        .all()
    )


def _set_price(db, inst, price):
    db.get(Instrument, inst.id).current_price = Decimal(price)
    db.commit()


class TestBuy:
    def test_buy_scenario(self, db):
        """X at 100.00, wallet 1000.00: BUY 5 leaves 500.00 and a 5-share position."""
        user = make_user(db, balance="1000.00")
        inst = make_instrument(db, price="100.00", volatility="0.02")

        entry = execute_buy(db, user.id, inst.id, 5, now=SESSION_NOW)

        assert entry.side == BUY
        assert entry.price_executed == Decimal("100.00")
        assert entry.total_amount == Decimal("500.00")
        assert wallet_balance(db, user) == Decimal("500.00")
        assert _position(db, user, inst).quantity == 5

    def test_buy_exact_balance_allowed(self, db):
        user = make_user(db, balance="500.00")
        inst = make_instrument(db, price="100.00")
        execute_buy(db, user.id, inst.id, 5, now=SESSION_NOW)
        assert wallet_balance(db, user) == Decimal("0.00")

    def test_insufficient_funds_changes_nothing(self, db):
        user = make_user(db, balance="1000.00")
        inst = make_instrument(db, price="100.00")

        with pytest.raises(InsufficientFunds) as exc:
            execute_buy(db, user.id, inst.id, 11, now=SESSION_NOW)

        assert exc.value.kind == "InsufficientFunds"
        assert "1,100.00" in exc.value.reason
        assert wallet_balance(db, user) == Decimal("1000.00")
        assert _position(db, user, inst) is None
        assert _ledger(db, user) == []

    def test_insufficient_funds_keeps_existing_position(self, db):
        user = make_user(db, balance="300.00")
        inst = make_instrument(db, price="100.00")
        execute_buy(db, user.id, inst.id, 2, now=SESSION_NOW)

        with pytest.raises(InsufficientFunds):
            execute_buy(db, user.id, inst.id, 2, now=SESSION_NOW)

        assert wallet_balance(db, user) == Decimal("100.00")
        assert _position(db, user, inst).quantity == 2
        assert len(_ledger(db, user)) == 1

    def test_average_cost_is_weighted_mean_of_buy_lots(self, db):
        user = make_user(db, balance="10000.00")
        inst = make_instrument(db, price="100.00")

        execute_buy(db, user.id, inst.id, 2, now=SESSION_NOW)
        _set_price(db, inst, "110.00")
        execute_buy(db, user.id, inst.id, 2, now=SESSION_NOW)

        pos = _position(db, user, inst)
        assert pos.quantity == 4
        assert pos.average_cost == Decimal("105.0000")

    def test_executes_at_price_current_at_settlement(self, db):
        user = make_user(db, balance="1000.00")
        inst = make_instrument(db, price="100.00")
        _set_price(db, inst, "90.00")

        entry = execute_buy(db, user.id, inst.id, 5, now=SESSION_NOW)

        assert entry.price_executed == Decimal("90.00")
        assert wallet_balance(db, user) == Decimal("550.00")


class TestSell:
    def test_sell_more_than_held_changes_nothing(self, db):
        user = make_user(db, balance="1000.00")
        inst = make_instrument(db, price="100.00")
        execute_buy(db, user.id, inst.id, 3, now=SESSION_NOW)

        with pytest.raises(InsufficientShares) as exc:
            execute_sell(db, user.id, inst.id, 4, now=SESSION_NOW)

        assert "only own 3" in exc.value.reason
        assert wallet_balance(db, user) == Decimal("700.00")
        assert _position(db, user, inst).quantity == 3
        assert len(_ledger(db, user)) == 1

    def test_sell_without_position(self, db):
        user = make_user(db)
        inst = make_instrument(db)
        with pytest.raises(InsufficientShares):
            execute_sell(db, user.id, inst.id, 1, now=SESSION_NOW)

    def test_partial_sell_keeps_average_cost(self, db):
        user = make_user(db, balance="1000.00")
        inst = make_instrument(db, price="100.00")
        execute_buy(db, user.id, inst.id, 5, now=SESSION_NOW)
        _set_price(db, inst, "120.00")

        entry = execute_sell(db, user.id, inst.id, 2, now=SESSION_NOW)

        assert entry.side == SELL
        assert entry.total_amount == Decimal("240.00")
        assert wallet_balance(db, user) == Decimal("740.00")
        pos = _position(db, user, inst)
        assert pos.quantity == 3
        assert pos.average_cost == Decimal("100.0000")

    def test_selling_everything_removes_position_row(self, db):
        user = make_user(db, balance="1000.00")
        inst = make_instrument(db, price="100.00")
        execute_buy(db, user.id, inst.id, 5, now=SESSION_NOW)

        execute_sell(db, user.id, inst.id, 5, now=SESSION_NOW)

        assert _position(db, user, inst) is None
        assert db.query(Position).filter(Position.quantity <= 0).count() == 0
        assert wallet_balance(db, user) == Decimal("1000.00")
        assert [e.side for e in _ledger(db, user)] == [BUY, SELL]


class TestFailures:
    def test_market_closed_by_schedule(self, db):
        user = make_user(db)
        inst = make_instrument(db)
        with pytest.raises(MarketClosed) as exc:
            execute_buy(db, user.id, inst.id, 1, now=WEEKEND_NOW)
        assert "weekend" in exc.value.reason
        assert wallet_balance(db, user) == Decimal("1000.00")

    def test_market_closed_by_override(self, db):
        user = make_user(db)
        inst = make_instrument(db)
        execute_buy(db, user.id, inst.id, 1, now=SESSION_NOW)
        force_closed(db)
        with pytest.raises(MarketClosed):
            execute_sell(db, user.id, inst.id, 1, now=SESSION_NOW)
        assert _position(db, user, inst).quantity == 1

    def test_unknown_instrument(self, db):
        user = make_user(db)
        with pytest.raises(InstrumentNotFound):
            execute_buy(db, user.id, 9999, 1, now=SESSION_NOW)

    def test_missing_wallet(self, db):
        user = make_user(db, with_wallet=False)
        inst = make_instrument(db)
        with pytest.raises(WalletNotFound):
            execute_buy(db, user.id, inst.id, 1, now=SESSION_NOW)

    def test_non_positive_quantity(self, db):
        user = make_user(db)
        inst = make_instrument(db)
        with pytest.raises(ValueError):
            execute_buy(db, user.id, inst.id, 0, now=SESSION_NOW)

    def test_unknown_side(self, db):
        user = make_user(db)
        inst = make_instrument(db)
        with pytest.raises(ValueError):
            execute_trade(db, "SHORT", user.id, inst.id, 1, now=SESSION_NOW)

    def test_store_failure_rolls_back_everything(self, db, monkeypatch):
        user = make_user(db, balance="1000.00")
        inst = make_instrument(db, price="100.00")

        def broken_ledger(*args, **kwargs):
            raise OperationalError("INSERT INTO trades", {}, Exception("disk I/O error"))

        monkeypatch.setattr(settlement, "_append_ledger", broken_ledger)

        with pytest.raises(StoreUnavailable) as exc:
            execute_buy(db, user.id, inst.id, 5, now=SESSION_NOW)

        assert exc.value.kind == "StoreUnavailable"
        assert exc.value.status_code == 503
        assert wallet_balance(db, user) == Decimal("1000.00")
        assert _position(db, user, inst) is None


class TestLedger:
    def test_balance_tracks_every_operation_exactly(self, db):
        user = make_user(db, balance="5000.00")
        inst = make_instrument(db, price="100.00")
        expected = Decimal("5000.00")

        steps = [
            (BUY, 10, "100.00"),
            (SELL, 3, "104.37"),
            (BUY, 7, "98.11"),
            (SELL, 14, "101.01"),
            (BUY, 1, "250.55"),
        ]
        for side, qty, price in steps:
            _set_price(db, inst, price)
            execute_trade(db, side, user.id, inst.id, qty, now=SESSION_NOW)
            total = Decimal(price) * qty
            expected = expected - total if side == BUY else expected + total
            balance = wallet_balance(db, user)
            assert balance == expected
            assert balance >= 0

        assert _position(db, user, inst).quantity == 1
        assert len(_ledger(db, user)) == len(steps)

    def test_ledger_entries_are_immutable(self, db):
        user = make_user(db)
        inst = make_instrument(db)
        entry = execute_buy(db, user.id, inst.id, 1, now=SESSION_NOW)

        entry.quantity = 100
        with pytest.raises(ValueError):
            db.commit()
        db.rollback()


class TestLockOrder:
    """BUY and SELL must lock rows in the same order or they can deadlock each other."""

    @pytest.fixture
    def lock_log(self, monkeypatch):
        log = []
        lock_wallet = settlement._lock_wallet
        lock_position = settlement._lock_position

        def recording_wallet(db, user_id):
            log.append("wallet")
            return lock_wallet(db, user_id)

        def recording_position(db, user_id, instrument_id):
            log.append("position")
            return lock_position(db, user_id, instrument_id)

        monkeypatch.setattr(settlement, "_lock_wallet", recording_wallet)
        monkeypatch.setattr(settlement, "_lock_position", recording_position)
        return log

    def test_buy_and_sell_lock_wallet_first(self, db, lock_log):
        user = make_user(db, balance="1000.00")
        inst = make_instrument(db, price="100.00")

        execute_buy(db, user.id, inst.id, 2, now=SESSION_NOW)
        buy_order = list(lock_log)
        lock_log.clear()
        execute_sell(db, user.id, inst.id, 1, now=SESSION_NOW)

        assert buy_order == ["wallet", "position"]
        assert lock_log == buy_order

    def test_refused_sell_still_locks_wallet_first(self, db, lock_log):
        user = make_user(db)
        inst = make_instrument(db)
        with pytest.raises(InsufficientShares):
            execute_sell(db, user.id, inst.id, 1, now=SESSION_NOW)
        assert lock_log == ["wallet", "position"]

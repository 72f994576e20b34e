"""
Deferred trade queue.

A submitted order is held for a fixed cooling-off window before it settles.
During the window it can be cancelled with no side effect. At the deadline it
is handed to settlement, which re-reads the instrument price, and the outcome is
recorded for the submitter to collect later.

All state lives in memory and on the running event loop. Queue methods must be
called from that loop: removal from the pending map is the single step that
decides a cancel/maturity race, and it never spans an ``await``. Pending
intents do not survive a restart.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Awaitable, Callable, Optional

from cachetools import TTLCache
from sqlalchemy.orm import Session

from config import get_settings
from services.exceptions import IntentNotFound, TradingError
from services.settlement import execute_trade

logger = logging.getLogger(__name__)

PENDING = "PENDING"
EXECUTING = "EXECUTING"
EXECUTED = "EXECUTED"
FAILED = "FAILED"
CANCELLED = "CANCELLED"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TradeIntent:
    user_id: uuid.UUID
    instrument_id: int
    side: str
    quantity: int
    quoted_price: Decimal  # advisory only
    admitted_at: datetime
    deadline: datetime
    id: uuid.UUID = field(default_factory=uuid.uuid4)


@dataclass
class TradeOutcome:
    intent_id: uuid.UUID
    user_id: uuid.UUID
    status: str
    kind: Optional[str] = None
    reason: str = ""
    price_executed: Optional[Decimal] = None
    total_amount: Optional[Decimal] = None
    ledger_entry_id: Optional[int] = None
    completed_at: datetime = field(default_factory=_utcnow)


@dataclass
class CancelResult:
    cancelled: bool
    status: str
    reason: str


Settler = Callable[[TradeIntent], Awaitable[TradeOutcome]]
OutcomeListener = Callable[[TradeOutcome], None]


class DeferredTradeQueue:
    """Holds trade intents for ``delay_seconds`` and then settles them."""

    def __init__(
        self,
        settle: Settler,
        delay_seconds: float | None = None,
        outcome_ttl_seconds: int | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        settings = get_settings()
        self._settle = settle
        self.delay_seconds = delay_seconds if delay_seconds is not None else settings.trade_delay_seconds
        self._clock = clock

        self._pending: dict[uuid.UUID, TradeIntent] = {}
        self._executing: dict[uuid.UUID, TradeIntent] = {}
        self._timers: dict[uuid.UUID, asyncio.Task] = {}
        self._listeners: list[OutcomeListener] = []
        self.outcomes: TTLCache = TTLCache(
            maxsize=10_000,
            ttl=outcome_ttl_seconds or settings.trade_outcome_ttl_seconds,
        )

    def subscribe(self, listener: OutcomeListener) -> None:
        self._listeners.append(listener)

    # ── Submit ──────────────────────────────────────────────────────

    def submit(
        self,
        user_id: uuid.UUID,
        instrument_id: int,
        side: str,
        quantity: int,
        quoted_price: Decimal,
    ) -> TradeIntent:
        """Admit an intent and schedule its settlement at admission time + delay."""
        loop = asyncio.get_running_loop()
        admitted_at = self._clock()
        intent = TradeIntent(
            user_id=user_id,
            instrument_id=instrument_id,
            side=side,
            quantity=quantity,
            quoted_price=quoted_price,
            admitted_at=admitted_at,
            deadline=admitted_at + timedelta(seconds=self.delay_seconds),
        )
        fire_at = loop.time() + self.delay_seconds
        self._pending[intent.id] = intent
        self._timers[intent.id] = loop.create_task(
            self._mature_at(intent.id, fire_at), name=f"trade-intent-{intent.id}"
        )
        logger.info(
            "Admitted %s %d x instrument %s for user %s, settles at %s",
            side, quantity, instrument_id, user_id, intent.deadline.isoformat(),
            extra={"intent_id": intent.id, "user_id": user_id, "instrument_id": instrument_id},
        )
        return intent

    # ── Maturity ────────────────────────────────────────────────────

    async def _mature_at(self, intent_id: uuid.UUID, fire_at: float):
        loop = asyncio.get_running_loop()
        await asyncio.sleep(max(0.0, fire_at - loop.time()))
        return await self.mature(intent_id)

    async def mature(self, intent_id: uuid.UUID) -> Optional[TradeOutcome]:
        """Hand a pending intent to settlement. Returns None if it was cancelled first."""
        intent = self._pending.pop(intent_id, None)
        if intent is None:
            return None

        self._executing[intent_id] = intent
        try:
            outcome = await self._settle(intent)
        except Exception as e:
            logger.exception("Settlement of intent %s raised", intent_id)
            outcome = TradeOutcome(
                intent_id=intent.id,
                user_id=intent.user_id,
                status=FAILED,
                kind=getattr(e, "kind", type(e).__name__),
                reason=str(e) or "Settlement failed",
            )
        finally:
            self._executing.pop(intent_id, None)
            self._timers.pop(intent_id, None)

        self._record(outcome)
        return outcome

    def _record(self, outcome: TradeOutcome) -> None:
        self.outcomes[outcome.intent_id] = outcome
        logger.info(
            "Intent %s %s%s",
            outcome.intent_id, outcome.status, f" ({outcome.kind}: {outcome.reason})" if outcome.kind else "",
            extra={"intent_id": outcome.intent_id, "user_id": outcome.user_id},
        )
        for listener in self._listeners:
            try:
                listener(outcome)
            except Exception:
                logger.exception("Trade outcome listener failed")

    # ── Cancel ──────────────────────────────────────────────────────

    def cancel(self, intent_id: uuid.UUID, user_id: uuid.UUID | None = None) -> CancelResult:
        """Remove a pending intent. Too late once it has been handed to settlement."""
        intent = self._pending.get(intent_id)
        if intent is not None:
            self._check_owner(intent.user_id, user_id)
            del self._pending[intent_id]
            timer = self._timers.pop(intent_id, None)
            if timer is not None:
                timer.cancel()
            self._record(TradeOutcome(
                intent_id=intent_id,
                user_id=intent.user_id,
                status=CANCELLED,
                reason="Order cancelled before execution",
            ))
            return CancelResult(True, CANCELLED, "Order cancelled before execution")

        executing = self._executing.get(intent_id)
        if executing is not None:
            self._check_owner(executing.user_id, user_id)
            return CancelResult(False, EXECUTING, "Too late: order is already executing")

        outcome = self.outcomes.get(intent_id)
        if outcome is not None:
            self._check_owner(outcome.user_id, user_id)
            if outcome.status == CANCELLED:
                return CancelResult(False, CANCELLED, "Order was already cancelled")
            if outcome.status == FAILED:
                return CancelResult(False, FAILED, "Too late: order already settled and failed")
            return CancelResult(False, outcome.status, "Too late: order already executed")

        raise IntentNotFound(f"Order {intent_id} not found")

    @staticmethod
    def _check_owner(owner: uuid.UUID, user_id: uuid.UUID | None) -> None:
        if user_id is not None and owner != user_id:
            raise IntentNotFound("Order not found")

    # ── Queries ─────────────────────────────────────────────────────

    def lookup(self, intent_id: uuid.UUID, user_id: uuid.UUID | None = None) -> tuple[str, Optional[TradeIntent], Optional[TradeOutcome]]:
        """Current status of an intent plus whichever of intent / outcome is known."""
        for status, table in ((PENDING, self._pending), (EXECUTING, self._executing)):
            intent = table.get(intent_id)
            if intent is not None:
                self._check_owner(intent.user_id, user_id)
                return status, intent, None
        outcome = self.outcomes.get(intent_id)
        if outcome is not None:
            self._check_owner(outcome.user_id, user_id)
            return outcome.status, None, outcome
        raise IntentNotFound(f"Order {intent_id} not found")

    def pending_for(self, user_id: uuid.UUID) -> list[TradeIntent]:
        return sorted(
            (i for i in self._pending.values() if i.user_id == user_id),
            key=lambda i: i.deadline,
        )

    def __len__(self) -> int:
        return len(self._pending)

    async def shutdown(self) -> None:
        """Drop pending intents and wait for in-flight settlements."""
        dropped = list(self._pending)
        for intent_id in dropped:
            self._pending.pop(intent_id, None)
            timer = self._timers.pop(intent_id, None)
            if timer is not None:
                timer.cancel()
        if dropped:
            logger.warning("Dropped %d pending trade intents on shutdown", len(dropped))

        inflight = list(self._timers.values())
        if inflight:
            await asyncio.gather(*inflight, return_exceptions=True)


def make_settler(session_factory: Callable[[], Session]) -> Settler:
    """Build a settler that runs the blocking settlement transaction in a worker thread."""

    def settle_sync(intent: TradeIntent) -> TradeOutcome:
        db = session_factory()
        try:
            entry = execute_trade(
                db,
                intent.side,
                intent.user_id,
                intent.instrument_id,
                intent.quantity,
                intent_id=intent.id,
            )
            return TradeOutcome(
                intent_id=intent.id,
                user_id=intent.user_id,
                status=EXECUTED,
                reason=f"{'Bought' if intent.side == 'BUY' else 'Sold'} {intent.quantity} shares",
                price_executed=entry.price_executed,
                total_amount=entry.total_amount,
                ledger_entry_id=entry.id,
            )
        except TradingError as e:
            return TradeOutcome(
                intent_id=intent.id,
                user_id=intent.user_id,
                status=FAILED,
                kind=e.kind,
                reason=e.reason,
            )
        finally:
            db.close()

    async def settle(intent: TradeIntent) -> TradeOutcome:
        return await asyncio.to_thread(settle_sync, intent)

    return settle

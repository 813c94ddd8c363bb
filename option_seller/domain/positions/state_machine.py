"""Per-leg position state machine.

CLOSED -> PENDING_ENTRY -> OPEN -> PENDING_EXIT -> CLOSED

Every method is synchronous so that a check-and-set on the pending state
completes before any await can hand control to another loop iteration.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from option_seller.domain.models import (
    EntryCategory,
    PositionState,
    TradeAction,
    TradeRecord,
)
from option_seller.domain.services.config_engine import ExitConfig

logger = logging.getLogger(__name__)


class InvalidTransitionError(RuntimeError):
    """A transition was requested from the wrong state."""


@dataclass
class Position:
    state: PositionState = PositionState.CLOSED
    entry_price: Optional[float] = None
    entry_time: Optional[datetime] = None
    entry_order_id: Optional[str] = None
    category: Optional[EntryCategory] = None
    quantity: int = 0
    trailing_stop_threshold: Optional[float] = None
    trailing_steps_completed: int = 0
    next_trail_trigger: Optional[float] = None

    @property
    def is_open(self) -> bool:
        return self.state in (PositionState.OPEN, PositionState.PENDING_EXIT)

    @property
    def pending(self) -> bool:
        return self.state in (PositionState.PENDING_ENTRY, PositionState.PENDING_EXIT)


class PositionStateMachine:
    def __init__(self, symbol: str, exits: ExitConfig):
        self.symbol = symbol
        self.exits = exits
        self.position = Position()
        self.has_exited_in_cycle = False
        self.last_exit_price: Optional[float] = None

    @property
    def state(self) -> PositionState:
        return self.position.state

    def _require(self, expected: PositionState, action: str) -> None:
        if self.position.state != expected:
            raise InvalidTransitionError(
                f"{self.symbol}: cannot {action} from {self.position.state.value}"
            )

    # ------------------------------------------------------------------
    # Entry
    # ------------------------------------------------------------------

    def begin_entry(self) -> bool:
        """Claim the leg for an entry. False if anything is open or in flight."""
        if self.position.state != PositionState.CLOSED:
            return False
        self.position.state = PositionState.PENDING_ENTRY
        return True

    def confirm_entry(
        self,
        price: float,
        timestamp: datetime,
        quantity: int,
        category: EntryCategory,
        order_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> TradeRecord:
        self._require(PositionState.PENDING_ENTRY, "confirm entry")
        offset = (
            self.exits.initial_stop_offset
            if category == EntryCategory.PRIMARY
            else self.exits.reentry_stop_offset
        )
        self.position = Position(
            state=PositionState.OPEN,
            entry_price=price,
            entry_time=timestamp,
            entry_order_id=order_id,
            category=category,
            quantity=quantity,
            trailing_stop_threshold=price + offset,
            trailing_steps_completed=0,
            next_trail_trigger=max(0.0, price - self.exits.trailing_step),
        )
        if category == EntryCategory.PRIMARY:
            self.has_exited_in_cycle = False
        logger.info(
            f"{self.symbol}: OPEN short @ {price:.2f} qty={quantity} "
            f"({category.value}, stop {self.position.trailing_stop_threshold:.2f})"
        )
        return TradeRecord(
            timestamp=timestamp,
            instrument=self.symbol,
            action=TradeAction.ENTRY,
            price=price,
            quantity=quantity,
            reason=reason or category.value,
            order_id=order_id,
        )

    def abort_entry(self) -> None:
        self._require(PositionState.PENDING_ENTRY, "abort entry")
        self.position = Position()

    # ------------------------------------------------------------------
    # Exit
    # ------------------------------------------------------------------

    def begin_exit(self) -> bool:
        """Claim an open position for exit. False unless OPEN."""
        if self.position.state != PositionState.OPEN:
            return False
        self.position.state = PositionState.PENDING_EXIT
        return True

    def confirm_exit(
        self,
        price: float,
        timestamp: datetime,
        reason: str,
        order_id: Optional[str] = None,
    ) -> TradeRecord:
        self._require(PositionState.PENDING_EXIT, "confirm exit")
        position = self.position
        pnl = (position.entry_price - price) * position.quantity
        record = TradeRecord(
            timestamp=timestamp,
            instrument=self.symbol,
            action=TradeAction.EXIT,
            price=price,
            quantity=position.quantity,
            reason=reason,
            order_id=order_id,
            pnl=pnl,
        )
        self.position = Position()
        self.has_exited_in_cycle = True
        self.last_exit_price = price
        logger.info(f"{self.symbol}: CLOSED @ {price:.2f} pnl={pnl:.2f} ({reason})")
        return record

    def abort_exit(self) -> None:
        """Return to OPEN so the exit is attempted again next tick."""
        self._require(PositionState.PENDING_EXIT, "abort exit")
        self.position.state = PositionState.OPEN

    # ------------------------------------------------------------------
    # Trailing stop
    # ------------------------------------------------------------------

    def advance_trailing(self, price: float) -> int:
        """
        Tighten the stop for every full step price has fallen below the
        next trigger. Returns the number of steps taken on this call.
        """
        position = self.position
        if not position.is_open or position.next_trail_trigger is None:
            return 0

        steps = 0
        while position.next_trail_trigger > 0 and price < position.next_trail_trigger:
            if position.trailing_steps_completed == 0:
                target = position.entry_price - self.exits.trailing_adjustment
            else:
                target = position.trailing_stop_threshold - self.exits.trailing_adjustment
            position.trailing_stop_threshold = min(position.trailing_stop_threshold, target)
            position.trailing_steps_completed += 1
            position.next_trail_trigger = max(0.0, position.next_trail_trigger - self.exits.trailing_step)
            steps += 1

        if steps:
            logger.info(
                f"{self.symbol}: trailing stop -> {position.trailing_stop_threshold:.2f} "
                f"(step {position.trailing_steps_completed}, next trigger {position.next_trail_trigger:.2f})"
            )
        return steps

"""Explicit engine state for one trading session."""
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, Dict, Iterator, List, Optional

from option_seller.domain.models import Bar, Instrument, OptionSide
from option_seller.domain.positions.state_machine import PositionStateMachine
from option_seller.domain.risk.risk_manager import DailyStopLossGuard


@dataclass
class IndicatorState:
    """Closed bars and the indicator values computed from them."""
    max_bars: int = 200
    history_length: int = 50
    bars: Deque[Bar] = field(init=False)
    history: Deque[Optional[float]] = field(init=False)
    last_closed_bar: Optional[datetime] = None
    # Previous session's bars; None until fetched
    warmup_bars: Optional[List[Bar]] = None

    def __post_init__(self):
        self.bars = deque(maxlen=self.max_bars)
        self.history = deque(maxlen=self.history_length)

    def replace(self, closed: List[Bar], values: List[Optional[float]]) -> None:
        """Rebuild from closed bars; ``values`` is aligned with ``closed``."""
        self.bars.clear()
        self.bars.extend(closed)
        self.history.clear()
        self.history.extend(values)
        self.last_closed_bar = closed[-1].timestamp if closed else None

    @property
    def current(self) -> Optional[float]:
        return self.history[-1] if self.history else None

    @property
    def previous(self) -> Optional[float]:
        return self.history[-2] if len(self.history) > 1 else None


@dataclass
class LegState:
    side: OptionSide
    instrument: Instrument
    machine: PositionStateMachine
    indicator: IndicatorState
    price: Optional[float] = None
    previous_price: Optional[float] = None
    reference: Optional[float] = None
    previous_reference: Optional[float] = None
    consecutive_above_band: int = 0
    cycle_low: Optional[float] = None
    last_zone_bar: Optional[datetime] = None
    last_oscillator_bar: Optional[datetime] = None

    @property
    def symbol(self) -> str:
        return self.instrument.tradingsymbol

    def observe(self, price: float, reference: Optional[float] = None) -> None:
        """Shift the last tick into the previous slot and record the new one."""
        self.previous_price = self.price
        self.previous_reference = self.reference
        self.price = price
        if reference is not None:
            self.reference = reference


@dataclass
class EngineState:
    legs: Dict[str, LegState]
    risk: DailyStopLossGuard
    active: bool = True
    stop_reason: Optional[str] = None

    def __iter__(self) -> Iterator[LegState]:
        return iter(self.legs.values())

    def leg(self, side: str) -> LegState:
        return self.legs[side]

    def deactivate(self, reason: str) -> None:
        if self.active:
            self.active = False
            self.stop_reason = reason

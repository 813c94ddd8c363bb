"""
Typed engine events for log tailers, dashboards and notifiers.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Union

from option_seller.domain.models import TradeRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LegStatus:
    symbol: str
    price: Optional[float]
    reference: Optional[float]
    state: str
    entry_price: Optional[float] = None
    stop: Optional[float] = None


@dataclass(frozen=True)
class StatusEvent:
    ts: datetime
    legs: tuple[LegStatus, ...]
    stop_losses: int

    def line(self) -> str:
        parts = []
        for leg in self.legs:
            price = "-" if leg.price is None else f"{leg.price:.2f}"
            ref = "-" if not leg.reference else f"{leg.reference:.2f}"
            marker = leg.state
            if leg.entry_price is not None:
                marker = f"{leg.state} @ {leg.entry_price:.2f} stop {leg.stop:.2f}"
            parts.append(f"{leg.symbol} {price} ref {ref} [{marker}]")
        return f"[{self.ts:%H:%M:%S}] " + " | ".join(parts) + f" | SL {self.stop_losses}"


@dataclass(frozen=True)
class TradeEvent:
    record: TradeRecord


@dataclass(frozen=True)
class EngineStoppedEvent:
    ts: datetime
    reason: str
    day_pnl: float


EngineEvent = Union[StatusEvent, TradeEvent, EngineStoppedEvent]
Handler = Callable[[EngineEvent], Union[None, Awaitable[None]]]


class EngineEvents:
    """Fan-out of engine events to subscribers (sync or async callables)."""

    def __init__(self):
        self._handlers: List[Handler] = []

    def subscribe(self, handler: Handler) -> None:
        self._handlers.append(handler)

    async def publish(self, event: EngineEvent) -> None:
        for handler in list(self._handlers):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Event handler {getattr(handler, '__name__', handler)} failed")

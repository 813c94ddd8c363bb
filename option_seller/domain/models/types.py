"""Typed structures for the option-selling domain.

Keep these as simple, serializable structures. Do not embed strategy logic here.
"""
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Literal, Optional

OptionSide = Literal["CE", "PE"]
OrderSide = Literal["BUY", "SELL"]
SignalFamily = Literal["band", "oscillator"]
CrossDirection = Literal["falling", "rising"]


class PositionState(str, Enum):
    """Lifecycle of a short position on one leg"""
    CLOSED = "CLOSED"
    PENDING_ENTRY = "PENDING_ENTRY"
    OPEN = "OPEN"
    PENDING_EXIT = "PENDING_EXIT"


class TradeAction(str, Enum):
    ENTRY = "ENTRY"
    EXIT = "EXIT"


class EntryCategory(str, Enum):
    """Which entry rule opened the position"""
    PRIMARY = "PRIMARY"
    REENTRY = "REENTRY"


class EntryTrigger(str, Enum):
    ZONE = "ZONE"
    INTRABAR_CROSS = "INTRABAR_CROSS"
    REENTRY = "REENTRY"
    OSCILLATOR_CROSS = "OSCILLATOR_CROSS"


class ExitReason(str, Enum):
    PROFIT_TARGET = "PROFIT_TARGET"
    STOP_LOSS = "STOP_LOSS"
    TRAILING_STOP = "TRAILING_STOP"
    REFERENCE_RECLAIM = "REFERENCE_RECLAIM"
    OSCILLATOR_EXIT = "OSCILLATOR_EXIT"
    SESSION_END = "SESSION_END"
    ENGINE_STOP = "ENGINE_STOP"


@dataclass(frozen=True)
class Bar:
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    @property
    def typical_price(self) -> float:
        return (self.high + self.low + self.close) / 3


@dataclass(frozen=True)
class Instrument:
    instrument_token: int
    tradingsymbol: str
    name: str
    exchange: str
    strike: float = 0.0
    option_type: Optional[str] = None
    expiry: Optional[date] = None
    lot_size: int = 1
    tick_size: float = 0.05


@dataclass(frozen=True)
class Quote:
    last_price: float
    average_price: float = 0.0
    volume: float = 0.0
    instrument_token: Optional[int] = None


@dataclass(frozen=True)
class OrderStatus:
    order_id: str
    status: str
    status_message: Optional[str] = None

    @property
    def is_rejected(self) -> bool:
        return self.status.upper() in ("REJECTED", "CANCELLED")


@dataclass(frozen=True)
class TradeRecord:
    timestamp: datetime
    instrument: str
    action: TradeAction
    price: float
    quantity: int
    reason: str
    order_id: Optional[str] = None
    pnl: Optional[float] = None


@dataclass(frozen=True)
class SessionWindow:
    session_start: datetime
    strike_selection_time: datetime
    trade_start_time: datetime
    session_end: datetime


@dataclass(frozen=True)
class MarketObservation:
    """One evaluation input: current vs previous price and indicator."""
    price: float
    previous_price: Optional[float]
    indicator: Optional[float]
    previous_indicator: Optional[float]

"""
Domain Models Package
Export all domain types
"""

from .types import (
    # Literals
    CrossDirection,
    OptionSide,
    OrderSide,
    SignalFamily,

    # Enums
    EntryCategory,
    EntryTrigger,
    ExitReason,
    PositionState,
    TradeAction,

    # Values
    Bar,
    Instrument,
    MarketObservation,
    OrderStatus,
    Quote,
    SessionWindow,
    TradeRecord,
)

__all__ = [
    "CrossDirection",
    "OptionSide",
    "OrderSide",
    "SignalFamily",
    "EntryCategory",
    "EntryTrigger",
    "ExitReason",
    "PositionState",
    "TradeAction",
    "Bar",
    "Instrument",
    "MarketObservation",
    "OrderStatus",
    "Quote",
    "SessionWindow",
    "TradeRecord",
]

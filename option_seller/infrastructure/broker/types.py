"""
Broker client protocol for type hints.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Protocol

from option_seller.domain.models import Bar, Instrument, OrderStatus, Quote


class BrokerClient(Protocol):
    async def get_historical_bars(
        self,
        instrument_token: int,
        interval: str,
        start: datetime,
        end: datetime,
    ) -> List[Bar]:
        ...

    async def get_instruments(self, exchange: str) -> List[Instrument]:
        ...

    async def get_quote(self, symbols: List[str]) -> Dict[str, Quote]:
        ...

    async def place_order(
        self,
        exchange: str,
        tradingsymbol: str,
        side: str,
        quantity: int,
        product: str,
        order_type: str,
    ) -> str:
        ...

    async def get_order_status(self, order_id: str) -> OrderStatus:
        ...

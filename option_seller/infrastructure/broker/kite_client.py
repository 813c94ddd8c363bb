"""
Kite Connect v3 broker client
Historical bars, instrument dump, quotes and regular orders over REST.
"""

from __future__ import annotations

import csv
import io
import logging
import time
from datetime import date, datetime
from typing import Any, Dict, List, Optional

import httpx

from option_seller.domain.models import Bar, Instrument, OrderStatus, Quote
from option_seller.infrastructure.broker.errors import (
    AuthenticationError,
    BrokerError,
    BrokerValidationError,
    OrderRejectedError,
    TransientBrokerError,
)
from option_seller.utils.time import IST, to_ist

logger = logging.getLogger(__name__)

KITE_VERSION = "3"
_TRANSIENT_ERROR_TYPES = ("NetworkException", "DataException")


class KiteClient:
    def __init__(
        self,
        api_key: str,
        access_token: str,
        api_base_url: str = "https://api.kite.trade",
        timeout: float = 15.0,
        instruments_cache_ttl_seconds: int = 6 * 3600,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not api_key or not access_token:
            raise AuthenticationError("Kite api_key and access_token are required")
        self.api_base_url = api_base_url.rstrip("/")
        self.api_key = api_key.strip()
        self.access_token = access_token.strip()
        self.timeout = timeout
        self.instruments_cache_ttl_seconds = instruments_cache_ttl_seconds
        self._transport = transport
        self._instruments_cache: Dict[str, tuple[float, List[Instrument]]] = {}

    def _headers(self) -> Dict[str, str]:
        return {
            "X-Kite-Version": KITE_VERSION,
            "Authorization": f"token {self.api_key}:{self.access_token}",
        }

    async def _request(
        self,
        method: str,
        path: str,
        params: Any = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                base_url=self.api_base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(
                    method, path, params=params, data=data, headers=self._headers()
                )
        except httpx.TransportError as exc:
            raise TransientBrokerError(f"Kite {method} {path} failed: {exc}") from exc

        if response.status_code >= 400:
            self._raise_for_error(response, method, path)
        return response

    async def _request_json(self, method: str, path: str, **kwargs) -> Any:
        response = await self._request(method, path, **kwargs)
        try:
            payload = response.json()
        except ValueError as exc:
            raise TransientBrokerError(f"Kite {method} {path} returned non-JSON body") from exc
        return payload.get("data")

    def _raise_for_error(self, response: httpx.Response, method: str, path: str) -> None:
        error_type = None
        message = response.text
        try:
            payload = response.json()
            error_type = payload.get("error_type")
            message = payload.get("message") or message
        except ValueError:
            pass

        status = response.status_code
        text = f"Kite {method} {path} -> {status} {error_type or ''}: {message}".strip()
        if error_type == "TokenException" or status == 403:
            raise AuthenticationError(text, error_type=error_type, status_code=status)
        if error_type == "OrderException":
            raise OrderRejectedError(text, error_type=error_type, status_code=status)
        if error_type == "InputException" or status == 400:
            raise BrokerValidationError(text, error_type=error_type, status_code=status)
        if error_type in _TRANSIENT_ERROR_TYPES or status == 429 or status >= 500:
            raise TransientBrokerError(text, error_type=error_type, status_code=status)
        raise BrokerError(text, error_type=error_type, status_code=status)

    # ------------------------------------------------------------------
    # MARKET DATA
    # ------------------------------------------------------------------

    async def get_historical_bars(
        self,
        instrument_token: int,
        interval: str,
        start: datetime,
        end: datetime,
    ) -> List[Bar]:
        params = {
            "from": to_ist(start, naive_assumed_tz=IST).strftime("%Y-%m-%d %H:%M:%S"),
            "to": to_ist(end, naive_assumed_tz=IST).strftime("%Y-%m-%d %H:%M:%S"),
        }
        data = await self._request_json(
            "GET", f"/instruments/historical/{instrument_token}/{interval}", params=params
        )
        candles = (data or {}).get("candles") or []
        bars = []
        for candle in candles:
            ts, open_, high, low, close = candle[:5]
            volume = candle[5] if len(candle) > 5 else 0
            bars.append(
                Bar(
                    timestamp=_parse_kite_timestamp(ts),
                    open=float(open_),
                    high=float(high),
                    low=float(low),
                    close=float(close),
                    volume=float(volume or 0),
                )
            )
        return bars

    async def get_instruments(self, exchange: str) -> List[Instrument]:
        cached = self._instruments_cache.get(exchange)
        if cached and time.time() - cached[0] < self.instruments_cache_ttl_seconds:
            return cached[1]

        response = await self._request("GET", f"/instruments/{exchange}")
        instruments = parse_instruments_csv(response.text)
        self._instruments_cache[exchange] = (time.time(), instruments)
        logger.info(f"Loaded {len(instruments)} instruments for {exchange}")
        return instruments

    async def get_quote(self, symbols: List[str]) -> Dict[str, Quote]:
        if not symbols:
            return {}
        data = await self._request_json("GET", "/quote", params=[("i", s) for s in symbols])
        quotes: Dict[str, Quote] = {}
        for symbol, item in (data or {}).items():
            if not isinstance(item, dict) or item.get("last_price") is None:
                continue
            quotes[symbol] = Quote(
                last_price=float(item["last_price"]),
                average_price=float(item.get("average_price") or 0.0),
                volume=float(item.get("volume") or 0.0),
                instrument_token=item.get("instrument_token"),
            )
        return quotes

    # ------------------------------------------------------------------
    # ORDERS
    # ------------------------------------------------------------------

    async def place_order(
        self,
        exchange: str,
        tradingsymbol: str,
        side: str,
        quantity: int,
        product: str,
        order_type: str,
    ) -> str:
        form = {
            "exchange": exchange,
            "tradingsymbol": tradingsymbol,
            "transaction_type": side,
            "quantity": str(quantity),
            "product": product,
            "order_type": order_type,
            "validity": "DAY",
        }
        data = await self._request_json("POST", "/orders/regular", data=form)
        order_id = (data or {}).get("order_id")
        if not order_id:
            raise TransientBrokerError(f"Kite order for {tradingsymbol} returned no order_id")
        return str(order_id)

    async def get_order_status(self, order_id: str) -> OrderStatus:
        history = await self._request_json("GET", f"/orders/{order_id}")
        if not history:
            raise TransientBrokerError(f"Kite order {order_id} has no history yet")
        latest = history[-1]
        return OrderStatus(
            order_id=str(order_id),
            status=str(latest.get("status") or "UNKNOWN"),
            status_message=latest.get("status_message"),
        )


def _parse_kite_timestamp(value: str) -> datetime:
    return datetime.strptime(value, "%Y-%m-%dT%H:%M:%S%z").astimezone(IST)


def parse_instruments_csv(text: str) -> List[Instrument]:
    """Parse the Kite instrument dump (CSV) into Instrument values."""
    instruments = []
    for row in csv.DictReader(io.StringIO(text)):
        expiry_raw = (row.get("expiry") or "").strip()
        instruments.append(
            Instrument(
                instrument_token=int(row["instrument_token"]),
                tradingsymbol=row["tradingsymbol"],
                name=(row.get("name") or "").strip('"'),
                exchange=row.get("exchange") or "",
                strike=float(row.get("strike") or 0.0),
                option_type=row.get("instrument_type") or None,
                expiry=date.fromisoformat(expiry_raw) if expiry_raw else None,
                lot_size=int(float(row.get("lot_size") or 1)),
                tick_size=float(row.get("tick_size") or 0.05),
            )
        )
    return instruments

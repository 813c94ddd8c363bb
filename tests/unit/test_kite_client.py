from datetime import date, datetime
from urllib.parse import parse_qs

import httpx
import pytest

from option_seller.infrastructure.broker.errors import (
    AuthenticationError,
    BrokerValidationError,
    OrderRejectedError,
    TransientBrokerError,
)
from option_seller.infrastructure.broker.kite_client import KiteClient, parse_instruments_csv
from option_seller.utils.time import IST

INSTRUMENTS_CSV = (
    "instrument_token,exchange_token,tradingsymbol,name,last_price,expiry,strike,tick_size,"
    "lot_size,instrument_type,segment,exchange\n"
    '10001,39,NIFTY24JAN21400CE,"NIFTY",0,2024-01-11,21400,0.05,75,CE,NFO-OPT,NFO\n'
    '10002,40,NIFTY24JAN22000PE,"NIFTY",0,2024-01-11,22000,0.05,75,PE,NFO-OPT,NFO\n'
    "10003,41,NIFTY24JANFUT,NIFTY,0,2024-01-25,0,0.05,75,FUT,NFO-FUT,NFO\n"
)


def make_client(handler):
    return KiteClient(
        api_key="key",
        access_token="secret",
        api_base_url="https://kite.test",
        transport=httpx.MockTransport(handler),
    )


def kite_error(status, error_type, message="failed"):
    return httpx.Response(status, json={"status": "error", "error_type": error_type, "message": message})


@pytest.mark.unit
def test_missing_credentials_fail_fast():
    with pytest.raises(AuthenticationError):
        KiteClient(api_key="", access_token="token")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_historical_bars_parse_candles():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        seen["auth"] = request.headers["Authorization"]
        seen["version"] = request.headers["X-Kite-Version"]
        return httpx.Response(
            200,
            json={
                "status": "success",
                "data": {
                    "candles": [
                        ["2024-01-10T09:15:00+0530", 100, 105, 99, 104, 1200],
                        ["2024-01-10T09:20:00+0530", 104, 106, 101, 102, 800],
                    ]
                },
            },
        )

    client = make_client(handler)
    bars = await client.get_historical_bars(
        10001,
        "5minute",
        datetime(2024, 1, 10, 9, 15, tzinfo=IST),
        datetime(2024, 1, 10, 9, 30, tzinfo=IST),
    )

    assert seen["path"] == "/instruments/historical/10001/5minute"
    assert seen["params"] == {"from": "2024-01-10 09:15:00", "to": "2024-01-10 09:30:00"}
    assert seen["auth"] == "token key:secret"
    assert seen["version"] == "3"
    assert len(bars) == 2
    assert bars[0].timestamp == datetime(2024, 1, 10, 9, 15, tzinfo=IST)
    assert bars[1].close == 102.0
    assert bars[1].volume == 800.0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_quotes_keep_last_and_average_price():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params.get_list("i") == ["NFO:NIFTY24JAN21400CE", "NFO:MISSING"]
        return httpx.Response(
            200,
            json={
                "status": "success",
                "data": {
                    "NFO:NIFTY24JAN21400CE": {
                        "instrument_token": 10001,
                        "last_price": 112.5,
                        "average_price": 118.2,
                        "volume": 50000,
                    }
                },
            },
        )

    quotes = await make_client(handler).get_quote(["NFO:NIFTY24JAN21400CE", "NFO:MISSING"])

    assert list(quotes) == ["NFO:NIFTY24JAN21400CE"]
    quote = quotes["NFO:NIFTY24JAN21400CE"]
    assert quote.last_price == 112.5
    assert quote.average_price == 118.2


@pytest.mark.unit
@pytest.mark.asyncio
async def test_place_order_posts_regular_market_order():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["form"] = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        return httpx.Response(200, json={"status": "success", "data": {"order_id": "240110000001"}})

    order_id = await make_client(handler).place_order(
        exchange="NFO",
        tradingsymbol="NIFTY24JAN21400CE",
        side="SELL",
        quantity=75,
        product="MIS",
        order_type="MARKET",
    )

    assert order_id == "240110000001"
    assert seen["method"] == "POST"
    assert seen["path"] == "/orders/regular"
    assert seen["form"] == {
        "exchange": "NFO",
        "tradingsymbol": "NIFTY24JAN21400CE",
        "transaction_type": "SELL",
        "quantity": "75",
        "product": "MIS",
        "order_type": "MARKET",
        "validity": "DAY",
    }


@pytest.mark.unit
@pytest.mark.asyncio
async def test_order_status_uses_latest_history_entry():
    def handler(request: httpx.Request) -> httpx.Response:
        history = [
            {"status": "PUT ORDER REQ RECEIVED"},
            {"status": "REJECTED", "status_message": "Insufficient margin"},
        ]
        return httpx.Response(200, json={"status": "success", "data": history})

    status = await make_client(handler).get_order_status("1")

    assert status.status == "REJECTED"
    assert status.is_rejected
    assert status.status_message == "Insufficient margin"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_instruments_are_cached():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        return httpx.Response(200, text=INSTRUMENTS_CSV)

    client = make_client(handler)
    first = await client.get_instruments("NFO")
    second = await client.get_instruments("NFO")

    assert calls == ["/instruments/NFO"]
    assert first == second
    assert len(first) == 3


@pytest.mark.unit
def test_parse_instruments_csv():
    ce, pe, fut = parse_instruments_csv(INSTRUMENTS_CSV)

    assert ce.tradingsymbol == "NIFTY24JAN21400CE"
    assert ce.name == "NIFTY"
    assert ce.strike == 21400.0
    assert ce.option_type == "CE"
    assert ce.expiry == date(2024, 1, 11)
    assert ce.lot_size == 75
    assert pe.option_type == "PE"
    assert fut.option_type == "FUT"


@pytest.mark.unit
@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response, expected",
    [
        (kite_error(403, "TokenException", "Incorrect api_key or access_token"), AuthenticationError),
        (kite_error(400, "OrderException", "Order rejected"), OrderRejectedError),
        (kite_error(400, "InputException", "Invalid quantity"), BrokerValidationError),
        (kite_error(429, "NetworkException", "Too many requests"), TransientBrokerError),
        (kite_error(503, "DataException", "Upstream error"), TransientBrokerError),
        (httpx.Response(502, text="Bad gateway"), TransientBrokerError),
    ],
)
async def test_error_mapping(response, expected):
    client = make_client(lambda request: response)

    with pytest.raises(expected):
        await client.get_quote(["NFO:NIFTY24JAN21400CE"])


@pytest.mark.unit
@pytest.mark.asyncio
async def test_connection_errors_are_transient():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransientBrokerError):
        await make_client(handler).get_order_status("1")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_token_error_keeps_error_type():
    client = make_client(lambda request: kite_error(403, "TokenException"))

    with pytest.raises(AuthenticationError) as excinfo:
        await client.place_order("NFO", "X", "BUY", 75, "MIS", "MARKET")

    assert excinfo.value.error_type == "TokenException"
    assert excinfo.value.status_code == 403

from datetime import date, timedelta

import pytest

from option_seller.domain.analytics.indicators import rsi_series
from option_seller.domain.models import Bar, PositionState
from option_seller.infrastructure.broker.errors import TransientBrokerError
from tests.fakes import CE_INSTRUMENT, PE_INSTRUMENT, at, build_engine, override


def minute_bars(closes, start=None):
    start = start or at(10, 0)
    return [
        Bar(timestamp=start + timedelta(minutes=i), open=c, high=c, low=c, close=c, volume=100.0)
        for i, c in enumerate(closes)
    ]


@pytest.fixture()
def momentum_broker(broker):
    # 15 rising closes pin RSI at 100, then a drop to 105 pulls it to ~59
    broker.bars[CE_INSTRUMENT.instrument_token] = minute_bars([100.0 + i for i in range(15)] + [105.0])
    return broker


@pytest.mark.asyncio
@pytest.mark.integration
async def test_rsi_cross_entry_and_mirrored_exit(rsi_config, momentum_broker):
    engine = build_engine(rsi_config, momentum_broker)
    ce = engine.state.leg("CE")

    await engine.slow_tick(at(10, 16, 2))

    assert ce.indicator.previous == pytest.approx(100.0)
    assert ce.indicator.current == pytest.approx(59.09, abs=0.01)
    assert ce.machine.state == PositionState.OPEN
    assert ce.machine.position.entry_price == 105.0
    assert ce.machine.position.trailing_stop_threshold == 135.0
    assert engine.trade_log.records()[0].reason == "OSCILLATOR_CROSS"
    # PE has no bars yet and stays flat
    assert engine.state.leg("PE").machine.state == PositionState.CLOSED

    momentum_broker.bars[CE_INSTRUMENT.instrument_token].extend(minute_bars([60.0], start=at(10, 16)))
    await engine.slow_tick(at(10, 17, 2))

    assert ce.indicator.current == pytest.approx(18.45, abs=0.01)
    exit_record = engine.trade_log.records()[-1]
    assert exit_record.reason == "OSCILLATOR_EXIT"
    assert exit_record.price == 60.0
    assert exit_record.pnl == pytest.approx(3375.0)
    assert momentum_broker.sides() == ["SELL", "BUY"]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_one_decision_per_closed_bar(rsi_config, momentum_broker):
    engine = build_engine(rsi_config, momentum_broker)
    await engine.slow_tick(at(10, 16, 2))
    ce = engine.state.leg("CE")
    assert ce.machine.begin_exit()
    ce.machine.confirm_exit(105.0, at(10, 16, 30), "manual")

    await engine.slow_tick(at(10, 16, 45))

    # same closed bar: the cross is not acted on twice
    assert momentum_broker.sides() == ["SELL"]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_partial_bar_is_excluded(rsi_config, momentum_broker):
    engine = build_engine(rsi_config, momentum_broker)

    # the 10:15 bar is still forming at 10:15:30
    await engine.slow_tick(at(10, 15, 30))

    ce = engine.state.leg("CE")
    assert ce.indicator.last_closed_bar == at(10, 14)
    assert ce.indicator.current == pytest.approx(100.0)
    assert momentum_broker.orders == []


@pytest.mark.asyncio
@pytest.mark.integration
async def test_fast_loop_enforces_stop_for_oscillator_legs(rsi_config, momentum_broker):
    engine = build_engine(rsi_config, momentum_broker)
    await engine.slow_tick(at(10, 16, 2))

    momentum_broker.set_price(PE_INSTRUMENT, 80.0)
    momentum_broker.set_price(CE_INSTRUMENT, 136.0)
    await engine.fast_tick(at(10, 16, 10))

    exit_record = engine.trade_log.records()[-1]
    assert exit_record.reason == "STOP_LOSS"
    assert exit_record.pnl == pytest.approx(-2325.0)
    assert engine.state.risk.stop_loss_count == 1


@pytest.mark.asyncio
@pytest.mark.integration
async def test_missing_bars_skip_refresh(rsi_config, momentum_broker):
    momentum_broker.bar_errors.extend([TransientBrokerError("timeout")] * 3)
    engine = build_engine(rsi_config, momentum_broker)

    await engine.slow_tick(at(10, 16, 2))

    ce = engine.state.leg("CE")
    assert ce.indicator.current is None
    assert momentum_broker.orders == []


@pytest.mark.asyncio
@pytest.mark.integration
async def test_rsi_is_warm_at_the_open_from_previous_session(rsi_config, broker):
    previous_day = at(15, 0, day=date(2024, 1, 9))
    yesterday = minute_bars([100.0 + i for i in range(15)], start=previous_day)
    broker.bars[CE_INSTRUMENT.instrument_token] = yesterday + minute_bars([105.0], start=at(9, 15))
    engine = build_engine(rsi_config, broker, now=at(9, 16, 2))
    ce = engine.state.leg("CE")

    await engine.slow_tick(at(9, 16, 2))

    expected = rsi_series([bar.close for bar in yesterday] + [105.0], rsi_config.oscillator.period)
    assert ce.indicator.current == pytest.approx(expected[-1])
    assert ce.indicator.current == pytest.approx(59.09, abs=0.01)
    assert ce.indicator.previous == pytest.approx(100.0)
    assert ce.indicator.last_closed_bar == at(9, 15)
    # Before the trade start, so no order despite the cross
    assert broker.orders == []

    ce_requests = [r for r in broker.bar_requests if r[0] == CE_INSTRUMENT.instrument_token]
    assert ce_requests[1][2:] == (at(9, 15, day=date(2024, 1, 9)), at(15, 20, day=date(2024, 1, 9)))

    # The previous session is fetched once
    await engine.slow_tick(at(9, 17, 2))
    ce_requests = [r for r in broker.bar_requests if r[0] == CE_INSTRUMENT.instrument_token]
    assert len(ce_requests) == 3


@pytest.mark.asyncio
@pytest.mark.integration
async def test_warmup_can_be_disabled(rsi_config, broker):
    broker.bars[CE_INSTRUMENT.instrument_token] = minute_bars(
        [100.0 + i for i in range(15)], start=at(15, 0, day=date(2024, 1, 9))
    ) + minute_bars([105.0], start=at(9, 15))
    config = override(rsi_config, oscillator={"warmup_previous_session": False})
    engine = build_engine(config, broker, now=at(9, 16, 2))

    await engine.slow_tick(at(9, 16, 2))

    assert engine.state.leg("CE").indicator.current is None

from datetime import date, timedelta

import pytest

from option_seller.infrastructure.calendar.session_clock import SessionClock
from tests.fakes import TRADING_DAY, at


@pytest.fixture()
def clock(band_config):
    return SessionClock(band_config.session, now_fn=lambda: at(10, 30), trading_day=TRADING_DAY)


@pytest.mark.unit
def test_window_is_built_for_trading_day(clock):
    window = clock.window
    assert window.session_start == at(9, 15)
    assert window.strike_selection_time == at(9, 20)
    assert window.trade_start_time == at(10, 0)
    assert window.session_end == at(15, 15)


@pytest.mark.unit
def test_entry_gate_is_half_open(clock):
    assert not clock.entries_allowed(at(9, 59, 59))
    assert clock.entries_allowed(at(10, 0))
    assert clock.entries_allowed(at(15, 14, 59))
    assert not clock.entries_allowed(at(15, 15))


@pytest.mark.unit
def test_session_end_and_strike_selection(clock):
    assert not clock.session_ended()
    assert clock.session_ended(at(15, 15))
    assert not clock.strike_selection_due(at(9, 19, 59))
    assert clock.strike_selection_due(at(9, 20))
    assert clock.seconds_until(at(10, 31)) == 60.0
    assert clock.seconds_until(at(10, 0)) == 0.0


@pytest.mark.unit
def test_weekends_are_not_trading_days(clock):
    assert clock.is_trading_day()
    saturday = at(10, 0) + timedelta(days=3)
    assert not clock.is_trading_day(saturday)


@pytest.mark.unit
def test_previous_trading_day_skips_weekends(clock):
    assert clock.previous_trading_day() == date(2024, 1, 9)
    # Monday looks back to Friday
    assert clock.previous_trading_day(date(2024, 1, 8)) == date(2024, 1, 5)
    assert clock.previous_trading_day(date(2024, 1, 7)) == date(2024, 1, 5)


@pytest.mark.unit
def test_naive_now_is_taken_as_exchange_time(band_config):
    naive = at(11, 0).replace(tzinfo=None)
    clock = SessionClock(band_config.session, now_fn=lambda: naive)
    assert clock.now() == at(11, 0)
    assert clock.window.session_end == at(15, 15)


@pytest.mark.unit
def test_bar_alignment(clock):
    five = timedelta(minutes=5)
    settle = timedelta(seconds=2)
    assert clock.bar_start(at(10, 32, 41), five) == at(10, 30)
    assert clock.next_bar_close(at(10, 32, 41), five, settle) == at(10, 35, 2)
    # inside the settle window the previous boundary is still pending
    assert clock.next_bar_close(at(10, 35, 1), five, settle) == at(10, 35, 2)
    assert clock.next_bar_close(at(10, 35, 2), five, settle) == at(10, 40, 2)

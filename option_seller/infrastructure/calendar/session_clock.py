"""
Session clock
Fixed intraday boundaries for one trading day in the exchange timezone.
"""

from datetime import date, datetime, timedelta
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from option_seller.domain.models import SessionWindow
from option_seller.domain.services.config_engine import SessionConfig
from option_seller.utils.time import floor_to_interval, parse_hhmm


class SessionClock:
    """
    Derives the day's SessionWindow once and answers gating questions.

    ``now_fn`` is injectable so tests can drive a fixed or scripted clock.
    """

    def __init__(
        self,
        session: SessionConfig,
        now_fn: Optional[Callable[[], datetime]] = None,
        trading_day: Optional[date] = None,
    ):
        self.tz = ZoneInfo(session.timezone)
        self._config = session
        self._now_fn = now_fn or (lambda: datetime.now(self.tz))
        day = trading_day or self.now().date()
        self.window = self.window_for(day)

    def now(self) -> datetime:
        current = self._now_fn()
        if current.tzinfo is None:
            return current.replace(tzinfo=self.tz)
        return current.astimezone(self.tz)

    def window_for(self, day: date) -> SessionWindow:
        def at(value: str) -> datetime:
            return datetime.combine(day, parse_hhmm(value), tzinfo=self.tz)

        return SessionWindow(
            session_start=at(self._config.session_start),
            strike_selection_time=at(self._config.strike_selection_time),
            trade_start_time=at(self._config.trade_start_time),
            session_end=at(self._config.session_end),
        )

    # ------------------------------------------------------------------
    # Gates
    # ------------------------------------------------------------------

    def is_trading_day(self, now: Optional[datetime] = None) -> bool:
        """Weekdays only; exchange holidays are not tracked."""
        return (now or self.now()).weekday() < 5

    def previous_trading_day(self, day: Optional[date] = None) -> date:
        """The last weekday before ``day`` (default: this session's day)."""
        previous = (day or self.window.session_start.date()) - timedelta(days=1)
        while previous.weekday() >= 5:
            previous -= timedelta(days=1)
        return previous

    def strike_selection_due(self, now: Optional[datetime] = None) -> bool:
        return (now or self.now()) >= self.window.strike_selection_time

    def entries_allowed(self, now: Optional[datetime] = None) -> bool:
        current = now or self.now()
        return self.window.trade_start_time <= current < self.window.session_end

    def session_ended(self, now: Optional[datetime] = None) -> bool:
        return (now or self.now()) >= self.window.session_end

    def seconds_until(self, target: datetime, now: Optional[datetime] = None) -> float:
        return max(0.0, (target - (now or self.now())).total_seconds())

    # ------------------------------------------------------------------
    # Bar alignment
    # ------------------------------------------------------------------

    def bar_start(self, now: datetime, interval: timedelta) -> datetime:
        return floor_to_interval(now, interval)

    def next_bar_close(self, now: datetime, interval: timedelta, settle: timedelta = timedelta(0)) -> datetime:
        """
        The next bar boundary plus ``settle``. A time inside the settle
        window of a boundary maps to that same boundary.
        """
        return floor_to_interval(now - settle, interval) + interval + settle

"""Runtime wiring for the intraday option-selling engine."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional

from option_seller.domain.analytics.indicators import closed_bars, rsi_series, vwap
from option_seller.domain.execution.executor import OrderExecutor
from option_seller.domain.models import (
    Bar,
    ExitReason,
    Instrument,
    MarketObservation,
    PositionState,
    Quote,
)
from option_seller.domain.positions.state_machine import PositionStateMachine
from option_seller.domain.risk.risk_manager import DailyStopLossGuard
from option_seller.domain.services.config_engine import StrategyConfig
from option_seller.domain.signals.evaluator import (
    EntrySignal,
    ExitSignal,
    evaluate_exit,
    intrabar_cross_entry,
    is_above_band,
    is_below_band,
    next_consecutive_count,
    next_cycle_low,
    oscillator_entry,
    oscillator_exit,
    reentry_entry,
    zone_entry,
)
from option_seller.domain.state.engine_state import EngineState, IndicatorState, LegState
from option_seller.infrastructure.broker.errors import (
    AuthenticationError,
    BrokerError,
    TransientBrokerError,
)
from option_seller.infrastructure.broker.types import BrokerClient
from option_seller.infrastructure.calendar.session_clock import SessionClock
from option_seller.infrastructure.data.trade_log import TradeLog
from option_seller.infrastructure.market_data.strike_selector import StrikeSelector
from option_seller.realtime.events import (
    EngineEvents,
    EngineStoppedEvent,
    LegStatus,
    StatusEvent,
    TradeEvent,
)
from option_seller.scheduler.loops import DualCadenceScheduler

logger = logging.getLogger(__name__)


def round_to_tick(price: float, tick_size: float) -> float:
    return round(round(price / tick_size) * tick_size, 4)


class TradingEngine:
    """
    One trading session: strike selection, fast/slow ticks, square-off.

    All mutable session data lives in ``self.state``. The engine never
    touches module-level state, so several engines can run side by side
    in one process (e.g. in tests).
    """

    def __init__(
        self,
        config: StrategyConfig,
        broker: BrokerClient,
        clock: SessionClock,
        trade_log: Optional[TradeLog] = None,
        events: Optional[EngineEvents] = None,
        trade_log_path: Optional[Path] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.broker = broker
        self.clock = clock
        self.trade_log = trade_log or TradeLog()
        self.events = events or EngineEvents()
        self.trade_log_path = trade_log_path
        self._sleep = sleep
        self.executor = OrderExecutor(
            broker, config.order, config.executor, config.underlying.exchange, sleep=sleep
        )
        self.strike_selector = StrikeSelector(broker, config.underlying, config.data, sleep=sleep)
        self.bar_interval = timedelta(minutes=config.cadence.bar_interval_minutes)
        self.state: Optional[EngineState] = None
        self._last_reference_attempt: Optional[datetime] = None
        self._shutdown_done = False
        self._shutdown_exit_reason = ExitReason.ENGINE_STOP
        self._log_flushed = False

    @property
    def is_band(self) -> bool:
        return self.config.signal_family == "band"

    @property
    def is_active(self) -> bool:
        return self.state is not None and self.state.active

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def attach(self, legs: Dict[str, Instrument]) -> EngineState:
        """Build fresh session state for the given CE/PE instruments."""
        cadence = self.config.cadence
        self.state = EngineState(
            legs={
                side: LegState(
                    side=side,
                    instrument=instrument,
                    machine=PositionStateMachine(instrument.tradingsymbol, self.config.exits),
                    indicator=IndicatorState(
                        max_bars=cadence.max_bars,
                        history_length=self.config.oscillator.history_length,
                    ),
                )
                for side, instrument in legs.items()
            },
            risk=DailyStopLossGuard(self.config.risk.max_stop_losses_per_day),
        )
        self._last_reference_attempt = None
        self._shutdown_done = False
        self._shutdown_exit_reason = ExitReason.ENGINE_STOP
        self._log_flushed = False
        return self.state

    async def select_instruments(self, now: Optional[datetime] = None) -> EngineState:
        at = self.clock.window.strike_selection_time
        current = now or self.clock.now()
        if current < at:
            raise ValueError(f"Strike selection requested at {current:%H:%M:%S}, before {at:%H:%M}")
        selection = await self.strike_selector.select(at)
        return self.attach(selection.legs)

    async def run(self) -> None:
        """Run both loops until the session ends or the engine stops; always shuts down."""
        if self.state is None:
            raise RuntimeError("No instruments attached. Call select_instruments() first.")
        cadence = self.config.cadence
        scheduler = DualCadenceScheduler(
            fast_tick=self.fast_tick,
            slow_tick=self.slow_tick,
            now_fn=self.clock.now,
            next_slow_at=lambda now: self.clock.next_bar_close(
                now, self.bar_interval, timedelta(seconds=cadence.settle_seconds)
            ),
            is_active=lambda: self.is_active,
            fast_interval_seconds=cadence.fast_interval_seconds,
        )
        try:
            await scheduler.run()
        finally:
            reason = self.state.stop_reason or scheduler.stop_reason or "session complete"
            await self.shutdown(reason)

    # ------------------------------------------------------------------
    # Market data
    # ------------------------------------------------------------------

    @staticmethod
    def _quote_key(instrument: Instrument) -> str:
        return f"{instrument.exchange}:{instrument.tradingsymbol}"

    async def _fetch_quotes(self) -> Dict[str, Quote]:
        keys = [self._quote_key(leg.instrument) for leg in self.state]
        return await self.broker.get_quote(keys)

    async def _fetch_bars(self, leg: LegState, start: datetime, end: datetime) -> List[Bar]:
        data = self.config.data
        for attempt in range(1, data.max_attempts + 1):
            try:
                return await self.broker.get_historical_bars(
                    leg.instrument.instrument_token,
                    self.config.cadence.indicator_interval,
                    start,
                    end,
                )
            except TransientBrokerError as exc:
                logger.warning(f"{leg.symbol}: bar fetch attempt {attempt}/{data.max_attempts} failed: {exc}")
                if attempt < data.max_attempts:
                    await self._sleep(data.retry_delay_seconds)
        logger.error(f"{leg.symbol}: no bars after {data.max_attempts} attempts")
        return []

    async def _warmup_bars(self, leg: LegState) -> List[Bar]:
        """The previous weekday's session, fetched once per leg."""
        if not self.config.oscillator.warmup_previous_session:
            return []
        if leg.indicator.warmup_bars is None:
            window = self.clock.window_for(self.clock.previous_trading_day())
            bars = await self._fetch_bars(leg, window.session_start, window.session_end)
            leg.indicator.warmup_bars = [bar for bar in bars if bar.timestamp < window.session_end]
            logger.info(
                f"{leg.symbol}: {len(leg.indicator.warmup_bars)} warm-up bars from {window.session_start:%Y-%m-%d}"
            )
        return leg.indicator.warmup_bars

    async def refresh_indicators(self, now: datetime) -> None:
        """Rebuild every leg's indicator history from closed bars only."""
        if self.is_band and self.config.band.reference_source == "quote":
            return
        for leg in self.state:
            bars = await self._fetch_bars(leg, self.clock.window.session_start, now)
            closed = closed_bars(bars, now, self.bar_interval)
            if not closed:
                logger.debug(f"{leg.symbol}: no closed bars yet, skipping refresh")
                continue
            if self.is_band:
                window = self.config.band.vwap_window
                values = [vwap(closed[: i + 1], window) for i in range(len(closed))]
            else:
                # Previous session first, so RSI is warm from the open
                closed = await self._warmup_bars(leg) + closed
                values = rsi_series([bar.close for bar in closed], self.config.oscillator.period)
            leg.indicator.replace(closed, values)

            current = leg.indicator.current
            if not self.is_band or current:
                leg.reference = current

    def _reference_refresh_due(self, now: datetime) -> bool:
        """Missing reference, or a bar has closed since the last attempt."""
        if not self.is_band or self.config.band.reference_source != "bars":
            return False
        if any(not leg.reference for leg in self.state):
            return True
        bar_start = self.clock.bar_start(now, self.bar_interval)
        return self._last_reference_attempt != bar_start and any(
            leg.indicator.last_closed_bar is None
            or leg.indicator.last_closed_bar < bar_start - self.bar_interval
            for leg in self.state
        )

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    def _observation(self, leg: LegState) -> MarketObservation:
        if self.is_band:
            return MarketObservation(
                price=leg.price,
                previous_price=leg.previous_price,
                indicator=leg.reference,
                previous_indicator=leg.previous_reference,
            )
        price = leg.price
        if price is None and leg.indicator.bars:
            price = leg.indicator.bars[-1].close
        return MarketObservation(
            price=price,
            previous_price=leg.previous_price,
            indicator=leg.indicator.current,
            previous_indicator=leg.indicator.previous,
        )

    def _entries_allowed(self, now: datetime) -> bool:
        return self.is_active and self.clock.entries_allowed(now)

    async def fast_tick(self, now: Optional[datetime] = None) -> None:
        """Prices, exits, intra-bar entries, trailing stops and the status line."""
        if not self.is_active:
            return
        now = now or self.clock.now()
        if self.clock.session_ended(now):
            await self.shutdown("session end", exit_reason=ExitReason.SESSION_END, now=now)
            return

        quotes = await self._fetch_quotes()
        if self._reference_refresh_due(now):
            self._last_reference_attempt = self.clock.bar_start(now, self.bar_interval)
            await self.refresh_indicators(now)

        use_quote_reference = self.is_band and self.config.band.reference_source == "quote"
        for leg in self.state:
            quote = quotes.get(self._quote_key(leg.instrument))
            if quote is None:
                logger.warning(f"{leg.symbol}: no quote this tick")
                continue
            reference = quote.average_price if use_quote_reference and quote.average_price > 0 else None
            leg.observe(quote.last_price, reference)
            await self._process_fast(leg, now)

        await self._publish_status(now)
        await self._enforce_stop_loss_cap(now)

    async def _process_fast(self, leg: LegState, now: datetime) -> None:
        machine = leg.machine
        obs = self._observation(leg)

        if machine.state == PositionState.OPEN:
            machine.advance_trailing(obs.price)
            position = machine.position
            signal = evaluate_exit(
                price=obs.price,
                reference=leg.reference if self.is_band else None,
                entry_price=position.entry_price,
                trailing_stop_threshold=position.trailing_stop_threshold,
                trailing_steps_completed=position.trailing_steps_completed,
                exits=self.config.exits,
                honor_reference_reclaim=self.is_band,
            )
            if signal is not None:
                await self.exit_position(leg, signal, now)
        elif machine.state == PositionState.CLOSED and self.is_band and self._entries_allowed(now):
            band = self.config.band
            entry = intrabar_cross_entry(obs, band, leg.consecutive_above_band) or reentry_entry(
                obs, band, machine.has_exited_in_cycle, leg.cycle_low, machine.last_exit_price
            )
            if entry is not None:
                await self.enter_position(leg, entry, now)

        if self.is_band:
            self._update_band_tracking(leg, obs)

    def _update_band_tracking(self, leg: LegState, obs: MarketObservation) -> None:
        band = self.config.band
        position_open = leg.machine.position.is_open
        leg.cycle_low = next_cycle_low(
            leg.cycle_low,
            obs,
            leg.previous_reference,
            position_open=position_open,
            has_exited_in_cycle=leg.machine.has_exited_in_cycle,
        )
        leg.consecutive_above_band = next_consecutive_count(
            leg.consecutive_above_band,
            above_band=is_above_band(obs.price, leg.reference, band),
            below_band=is_below_band(obs.price, leg.reference, band),
            position_open=position_open,
            reset_policy=band.consecutive_reset,
        )

    async def slow_tick(self, now: Optional[datetime] = None) -> None:
        """Bar-close work: indicator history, boundary entries, oscillator exits, trailing."""
        if not self.is_active:
            return
        now = now or self.clock.now()
        if self.clock.session_ended(now):
            await self.shutdown("session end", exit_reason=ExitReason.SESSION_END, now=now)
            return

        await self.refresh_indicators(now)
        bar_start = self.clock.bar_start(now, self.bar_interval)

        for leg in self.state:
            machine = leg.machine
            if machine.state == PositionState.OPEN and leg.price is not None:
                machine.advance_trailing(leg.price)

            obs = self._observation(leg)
            if obs.price is None:
                continue
            if self.is_band:
                if (
                    machine.state == PositionState.CLOSED
                    and leg.last_zone_bar != bar_start
                    and self._entries_allowed(now)
                ):
                    entry = zone_entry(obs, self.config.band, leg.consecutive_above_band)
                    if entry is not None:
                        leg.last_zone_bar = bar_start
                        await self.enter_position(leg, entry, now)
                continue

            closed_at = leg.indicator.last_closed_bar
            if closed_at is None or closed_at == leg.last_oscillator_bar:
                continue
            leg.last_oscillator_bar = closed_at
            direction = self.config.oscillator.entry_direction.get(leg.side, "falling")
            if machine.state == PositionState.OPEN:
                signal = oscillator_exit(obs, self.config.oscillator, direction)
                if signal is not None:
                    await self.exit_position(leg, signal, now)
            elif machine.state == PositionState.CLOSED and self._entries_allowed(now):
                entry = oscillator_entry(obs, self.config.oscillator, direction)
                if entry is not None:
                    await self.enter_position(leg, entry, now)

        await self._enforce_stop_loss_cap(now)

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    async def enter_position(self, leg: LegState, signal: EntrySignal, now: datetime) -> bool:
        """Short one lot on ``leg``. False if blocked, already claimed, or the order failed."""
        decision = self.state.risk.check_entry()
        if not decision.allowed:
            logger.info(f"{leg.symbol}: entry suppressed, {decision.reason}")
            return False
        machine = leg.machine
        if not machine.begin_entry():
            logger.debug(f"{leg.symbol}: entry skipped, position is {machine.state.value}")
            return False

        quantity = self.config.order.lot_size
        logger.info(f"🔔 {leg.symbol}: {signal.trigger.value} entry signal, {signal.reason}")
        try:
            order_id = await self.executor.place(leg.instrument, "SELL", quantity)
        except AuthenticationError:
            machine.abort_entry()
            logger.critical(f"{leg.symbol}: SELL x{quantity} failed, broker session expired")
            raise
        except BrokerError as exc:
            machine.abort_entry()
            logger.error(f"{leg.symbol}: SELL x{quantity} abandoned: {exc}")
            return False
        except BaseException:
            machine.abort_entry()
            raise

        price = round_to_tick(signal.price, leg.instrument.tick_size)
        record = machine.confirm_entry(
            price, now, quantity, signal.category, order_id=order_id, reason=signal.trigger.value
        )
        leg.consecutive_above_band = 0
        leg.cycle_low = price
        await self._record(record)
        if self._shutdown_done:
            await self._close_after_shutdown(leg, now)
        return True

    async def exit_position(
        self,
        leg: LegState,
        signal: ExitSignal,
        now: datetime,
        best_effort: bool = False,
    ) -> bool:
        """
        Buy back the open short on ``leg``.

        A failed order leaves the position OPEN for the next tick, unless
        ``best_effort`` is set or the engine has already shut down. Then the
        position is closed locally and flagged for manual reconciliation.
        """
        machine = leg.machine
        if not machine.begin_exit():
            return False

        quantity = machine.position.quantity
        reason = signal.reason.value
        logger.info(f"{leg.symbol}: {reason} exit signal, {signal.detail}")
        order_id = None
        try:
            order_id = await self.executor.place(leg.instrument, "BUY", quantity)
        except BrokerError as exc:
            if best_effort or self._shutdown_done:
                logger.critical(
                    f"{leg.symbol}: BUY x{quantity} failed after shutdown ({exc}); "
                    "closing locally, reconcile with the broker manually"
                )
                reason = f"{reason} (unconfirmed: {type(exc).__name__})"
            else:
                machine.abort_exit()
                if isinstance(exc, AuthenticationError):
                    logger.critical(f"{leg.symbol}: BUY x{quantity} failed, broker session expired")
                    raise
                logger.error(f"{leg.symbol}: BUY x{quantity} failed, will retry next tick: {exc}")
                return False
        except BaseException:
            machine.abort_exit()
            raise

        price = round_to_tick(signal.price, leg.instrument.tick_size)
        record = machine.confirm_exit(price, now, reason, order_id=order_id)
        if self.state.risk.record_exit(signal.reason):
            logger.warning(f"🛑 Daily stop-loss cap reached after {leg.symbol} exit; no further entries")
        leg.consecutive_above_band = 0
        await self._record(record)
        return True

    async def _record(self, record) -> None:
        self.trade_log.append(record)
        await self.events.publish(TradeEvent(record=record))
        if self._log_flushed:
            self.trade_log.flush(self.trade_log_path)

    async def _close_after_shutdown(self, leg: LegState, now: datetime) -> None:
        """A short that filled after square-off already ran."""
        logger.warning(f"{leg.symbol}: entry filled after shutdown, squaring off")
        position = leg.machine.position
        price = leg.price if leg.price is not None else position.entry_price
        signal = ExitSignal(reason=self._shutdown_exit_reason, price=price, detail="late square-off")
        await self.exit_position(leg, signal, now, best_effort=True)

    async def _enforce_stop_loss_cap(self, now: datetime) -> None:
        if self.is_active and self.state.risk.cap_reached and self.config.risk.stop_engine_on_cap:
            await self.shutdown("daily stop-loss cap reached", now=now)

    # ------------------------------------------------------------------
    # Square-off / shutdown
    # ------------------------------------------------------------------

    async def square_off(self, exit_reason: ExitReason, now: Optional[datetime] = None) -> int:
        """Force-close every OPEN leg at its last price. Returns legs closed."""
        now = now or self.clock.now()
        closed = 0
        for leg in self.state:
            machine = leg.machine
            if machine.state in (PositionState.PENDING_ENTRY, PositionState.PENDING_EXIT):
                logger.warning(
                    f"{leg.symbol}: {machine.state.value} in flight during square-off, closing once it settles"
                )
                continue
            if machine.state != PositionState.OPEN:
                continue
            price = leg.price if leg.price is not None else machine.position.entry_price
            signal = ExitSignal(reason=exit_reason, price=price, detail="square-off")
            if await self.exit_position(leg, signal, now, best_effort=True):
                closed += 1
        return closed

    async def shutdown(
        self,
        reason: str,
        exit_reason: ExitReason = ExitReason.ENGINE_STOP,
        now: Optional[datetime] = None,
    ) -> None:
        """Deactivate, square off, flush the trade log. Runs once."""
        if self.state is None or self._shutdown_done:
            return
        self._shutdown_done = True
        self._shutdown_exit_reason = exit_reason
        self.state.deactivate(reason)
        now = now or self.clock.now()
        logger.warning(f"🛑 Engine stopping: {reason}")
        try:
            await self.square_off(exit_reason, now)
        finally:
            if self.trade_log_path is not None:
                self.trade_log.flush(self.trade_log_path)
                self._log_flushed = True
            day_pnl = self.trade_log.day_pnl()
            logger.info(f"Session closed: {len(self.trade_log)} trade records, day P&L {day_pnl:.2f}")
            await self.events.publish(EngineStoppedEvent(ts=now, reason=reason, day_pnl=day_pnl))

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self, now: datetime) -> StatusEvent:
        legs = []
        for leg in self.state:
            position = leg.machine.position
            legs.append(
                LegStatus(
                    symbol=leg.symbol,
                    price=leg.price,
                    reference=leg.reference,
                    state=position.state.value,
                    entry_price=position.entry_price,
                    stop=position.trailing_stop_threshold,
                )
            )
        return StatusEvent(ts=now, legs=tuple(legs), stop_losses=self.state.risk.stop_loss_count)

    async def _publish_status(self, now: datetime) -> None:
        event = self.status(now)
        logger.info(event.line())
        await self.events.publish(event)

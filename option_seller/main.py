"""
Intraday option-selling engine entry point

Waits for the strike-selection time, picks the day's CE/PE contracts and
runs the fast/slow loops until the session ends or the engine stops.
"""

import argparse
import asyncio
import logging
from pathlib import Path
from typing import Optional

from option_seller.config import settings
from option_seller.core.logging import setup_logging
from option_seller.domain.runtime import TradingEngine
from option_seller.domain.services.config_engine import ConfigEngine, StrategyConfig
from option_seller.infrastructure.broker.errors import AuthenticationError, FatalEngineError
from option_seller.infrastructure.broker.kite_client import KiteClient
from option_seller.infrastructure.calendar.session_clock import SessionClock
from option_seller.infrastructure.data.trade_log import TradeLog
from option_seller.realtime.events import EngineEvents
from option_seller.utils.notifications import TelegramTradeNotifier

logger = logging.getLogger(__name__)


def load_strategy(profile: Optional[str] = None) -> StrategyConfig:
    engine = ConfigEngine(Path(settings.CONFIG_DIR), profile=profile or settings.STRATEGY_PROFILE)
    return engine.load_all()


def build_engine(config: StrategyConfig) -> TradingEngine:
    clock = SessionClock(config.session)
    broker = KiteClient(
        api_key=settings.KITE_API_KEY,
        access_token=settings.KITE_ACCESS_TOKEN,
        api_base_url=settings.KITE_API_BASE_URL,
        timeout=settings.KITE_REQUEST_TIMEOUT_SECONDS,
    )
    events = EngineEvents()
    if settings.TELEGRAM_ENABLED:
        events.subscribe(TelegramTradeNotifier())

    day = clock.window.session_start.date()
    trade_log_path = Path(settings.TRADE_LOG_DIR) / f"trades_{config.profile}_{day:%Y%m%d}.csv"
    return TradingEngine(
        config,
        broker,
        clock,
        trade_log=TradeLog(),
        events=events,
        trade_log_path=trade_log_path,
    )


async def run_session(engine: TradingEngine) -> None:
    clock = engine.clock
    if not clock.is_trading_day():
        logger.warning("Not a trading day (weekend); nothing to do")
        return
    if clock.session_ended():
        logger.warning(f"Session already ended at {clock.window.session_end:%H:%M}; nothing to do")
        return

    if not clock.strike_selection_due():
        wait = clock.seconds_until(clock.window.strike_selection_time)
        logger.info(f"Waiting {wait:.0f}s for strike selection at {clock.window.strike_selection_time:%H:%M}")
        await asyncio.sleep(wait)

    await engine.select_instruments()
    logger.info(
        f"Trading {engine.config.profile} ({engine.config.signal_family}) from "
        f"{clock.window.trade_start_time:%H:%M} to {clock.window.session_end:%H:%M}"
    )
    await engine.run()


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Intraday NIFTY option-selling engine")
    parser.add_argument("--profile", type=str, default=None, help="Strategy profile under config/strategies")
    parser.add_argument("--log-level", type=str, default=None, help="Override LOG_LEVEL")
    parser.add_argument(
        "--check-config",
        action="store_true",
        help="Load and validate the strategy configuration, then exit",
    )
    args = parser.parse_args(argv)

    setup_logging(
        args.log_level or settings.LOG_LEVEL,
        log_file=settings.LOG_FILE,
        max_bytes=settings.LOG_MAX_BYTES,
        backup_count=settings.LOG_BACKUP_COUNT,
    )
    config = load_strategy(args.profile)
    logger.info(
        f"Strategy profile '{config.profile}' loaded ({config.signal_family}, {settings.ENVIRONMENT})"
    )
    if args.check_config:
        return

    try:
        engine = build_engine(config)
        asyncio.run(run_session(engine))
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
    except (AuthenticationError, FatalEngineError) as exc:
        logger.critical(f"Engine aborted: {exc}")
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()

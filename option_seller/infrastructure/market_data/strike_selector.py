"""
Strike selection
Spot at the selection time -> ATM -> offset CE/PE strikes on the next expiry.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from option_seller.domain.models import Instrument
from option_seller.domain.services.config_engine import DataConfig, UnderlyingConfig
from option_seller.infrastructure.broker.errors import FatalEngineError, TransientBrokerError
from option_seller.infrastructure.broker.types import BrokerClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StrikeSelection:
    spot: float
    atm_strike: float
    expiry: date
    legs: Dict[str, Instrument]


class StrikeSelector:
    def __init__(
        self,
        broker: BrokerClient,
        underlying: UnderlyingConfig,
        data: DataConfig,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.broker = broker
        self.underlying = underlying
        self.data = data
        self._sleep = sleep

    async def select(self, at: datetime) -> StrikeSelection:
        spot = await self.spot_at(at)
        atm, strikes = self.target_strikes(spot)
        instruments = await self.broker.get_instruments(self.underlying.exchange)
        expiry = self.next_expiry(instruments, at.date())
        if expiry is None:
            raise FatalEngineError(f"No {self.underlying.name} option expiry found after {at.date()}")

        legs = {}
        for side, strike in strikes.items():
            instrument = self._find(instruments, strike, side, expiry)
            if instrument is None:
                raise FatalEngineError(
                    f"No {self.underlying.name} {strike:g} {side} contract for expiry {expiry}"
                )
            legs[side] = instrument

        logger.info(
            f"✅ Strikes selected: spot {spot:.2f} ATM {atm:g} expiry {expiry} | "
            + " | ".join(f"{side} {inst.tradingsymbol}" for side, inst in legs.items())
        )
        return StrikeSelection(spot=spot, atm_strike=atm, expiry=expiry, legs=legs)

    # ------------------------------------------------------------------
    # Spot
    # ------------------------------------------------------------------

    async def spot_at(self, at: datetime) -> float:
        """Close of the last 1-minute spot bar that started at or before ``at``."""
        attempts = self.data.spot_max_attempts
        for attempt in range(1, attempts + 1):
            try:
                bars = await self.broker.get_historical_bars(
                    self.underlying.spot_instrument_token,
                    "minute",
                    at - timedelta(minutes=5),
                    at + timedelta(minutes=1),
                )
            except TransientBrokerError as exc:
                logger.warning(f"Spot fetch attempt {attempt}/{attempts} failed: {exc}")
                bars = []

            eligible = [bar for bar in bars if bar.timestamp <= at]
            if eligible:
                return eligible[-1].close
            if attempt < attempts:
                logger.info(f"Spot bar for {at:%H:%M} not available yet, retrying")
                await self._sleep(self.data.spot_retry_delay_seconds)

        raise FatalEngineError(f"Spot price for {self.underlying.spot_symbol} at {at:%H:%M} unavailable")

    # ------------------------------------------------------------------
    # Strikes / expiry
    # ------------------------------------------------------------------

    def target_strikes(self, spot: float) -> Tuple[float, Dict[str, float]]:
        step = self.underlying.strike_step
        # Half-up, so a spot midway between strikes always takes the higher one
        atm = float(math.floor(spot / step + 0.5) * step)
        return atm, {
            "CE": atm + self.underlying.ce_strike_offset,
            "PE": atm + self.underlying.pe_strike_offset,
        }

    def _is_underlying_option(self, instrument: Instrument) -> bool:
        return (
            instrument.name == self.underlying.name
            and instrument.option_type in ("CE", "PE")
            and instrument.expiry is not None
        )

    def next_expiry(self, instruments: List[Instrument], today: date) -> Optional[date]:
        expiries = {
            inst.expiry
            for inst in instruments
            if self._is_underlying_option(inst)
            and (inst.expiry > today or (self.underlying.allow_same_day_expiry and inst.expiry == today))
        }
        return min(expiries) if expiries else None

    def _find(self, instruments: List[Instrument], strike: float, side: str, expiry: date) -> Optional[Instrument]:
        for inst in instruments:
            if (
                self._is_underlying_option(inst)
                and inst.option_type == side
                and inst.expiry == expiry
                and abs(inst.strike - strike) < 1e-6
            ):
                return inst
        return None

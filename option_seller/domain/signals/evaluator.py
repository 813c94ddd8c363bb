"""Entry and exit decisions for short option legs.

Pure and stateless: every input (prices, indicator values, counters, cycle
tracking, position levels) is passed in. Comparisons are strict; a tie is
"no signal" and is re-checked on the next tick.
"""
from dataclasses import dataclass
from typing import Optional, Tuple

from option_seller.domain.models import (
    CrossDirection,
    EntryCategory,
    EntryTrigger,
    ExitReason,
    MarketObservation,
)
from option_seller.domain.services.config_engine import (
    BandConfig,
    ExitConfig,
    OscillatorConfig,
)


@dataclass(frozen=True)
class EntrySignal:
    trigger: EntryTrigger
    category: EntryCategory
    price: float
    reason: str


@dataclass(frozen=True)
class ExitSignal:
    reason: ExitReason
    price: float
    detail: str


def _available(value: Optional[float]) -> bool:
    return value is not None and value > 0


# ----------------------------------------------------------------------
# Band family (reference = VWAP)
# ----------------------------------------------------------------------

def band_edges(reference: float, band: BandConfig) -> Tuple[float, float]:
    """(low_edge, high_edge) of the entry zone below the reference."""
    return reference - band.high_offset, reference - band.low_offset


def is_above_band(price: float, reference: Optional[float], band: BandConfig) -> bool:
    if not _available(reference):
        return False
    _, high_edge = band_edges(reference, band)
    return price > high_edge


def is_below_band(price: float, reference: Optional[float], band: BandConfig) -> bool:
    if not _available(reference):
        return False
    low_edge, _ = band_edges(reference, band)
    return price < low_edge


def zone_entry(
    obs: MarketObservation,
    band: BandConfig,
    consecutive_above_band: int,
) -> Optional[EntrySignal]:
    """Boundary-aligned entry: price sits strictly inside the zone."""
    if not _available(obs.indicator):
        return None
    if consecutive_above_band < band.required_consecutive_above_band:
        return None
    low_edge, high_edge = band_edges(obs.indicator, band)
    if low_edge < obs.price < high_edge:
        return EntrySignal(
            trigger=EntryTrigger.ZONE,
            category=EntryCategory.PRIMARY,
            price=obs.price,
            reason=f"price {obs.price:.2f} inside zone [{low_edge:.2f}, {high_edge:.2f}] at bar close",
        )
    return None


def intrabar_cross_entry(
    obs: MarketObservation,
    band: BandConfig,
    consecutive_above_band: int,
) -> Optional[EntrySignal]:
    """Price fell through the zone's lower edge between two ticks."""
    if not _available(obs.indicator) or obs.previous_price is None:
        return None
    if consecutive_above_band < band.required_consecutive_above_band:
        return None
    low_edge, _ = band_edges(obs.indicator, band)
    if obs.previous_price > low_edge and obs.price < low_edge:
        return EntrySignal(
            trigger=EntryTrigger.INTRABAR_CROSS,
            category=EntryCategory.PRIMARY,
            price=obs.price,
            reason=(
                f"price crossed below {low_edge:.2f} "
                f"({obs.previous_price:.2f} -> {obs.price:.2f})"
            ),
        )
    return None


def reentry_midpoint(cycle_low: float, last_exit_price: float) -> float:
    return (cycle_low + last_exit_price) / 2


def reentry_entry(
    obs: MarketObservation,
    band: BandConfig,
    has_exited_in_cycle: bool,
    cycle_low: Optional[float],
    last_exit_price: Optional[float],
) -> Optional[EntrySignal]:
    """
    Secondary entry after an exit in the same cycle.

    Not gated by the consecutive-above-band counter. Requires price below
    the reference and below the midpoint of the tracked post-cross low and
    the last exit price.
    """
    if not band.reentry_enabled or not has_exited_in_cycle:
        return None
    if not _available(obs.indicator) or cycle_low is None or last_exit_price is None:
        return None
    if not obs.price < obs.indicator:
        return None
    midpoint = reentry_midpoint(cycle_low, last_exit_price)
    if obs.price < midpoint:
        return EntrySignal(
            trigger=EntryTrigger.REENTRY,
            category=EntryCategory.REENTRY,
            price=obs.price,
            reason=(
                f"re-entry below midpoint {midpoint:.2f} "
                f"(low {cycle_low:.2f}, last exit {last_exit_price:.2f})"
            ),
        )
    return None


# ----------------------------------------------------------------------
# Oscillator family (reference = RSI of the leg)
# ----------------------------------------------------------------------

def _crossed(previous: float, current: float, level: float, direction: CrossDirection) -> bool:
    if direction == "falling":
        return previous >= level and current < level
    return previous <= level and current > level


def oscillator_entry(
    obs: MarketObservation,
    osc: OscillatorConfig,
    direction: CrossDirection,
) -> Optional[EntrySignal]:
    if obs.indicator is None or obs.previous_indicator is None:
        return None
    level = osc.upper if direction == "falling" else osc.lower
    if _crossed(obs.previous_indicator, obs.indicator, level, direction):
        return EntrySignal(
            trigger=EntryTrigger.OSCILLATOR_CROSS,
            category=EntryCategory.PRIMARY,
            price=obs.price,
            reason=(
                f"RSI {direction} through {level:g} "
                f"({obs.previous_indicator:.2f} -> {obs.indicator:.2f})"
            ),
        )
    return None


def oscillator_exit(
    obs: MarketObservation,
    osc: OscillatorConfig,
    direction: CrossDirection,
) -> Optional[ExitSignal]:
    """Mirror of the entry: a falling entry exits on the lower bound and vice versa."""
    if obs.indicator is None or obs.previous_indicator is None:
        return None
    level = osc.lower if direction == "falling" else osc.upper
    if _crossed(obs.previous_indicator, obs.indicator, level, direction):
        return ExitSignal(
            reason=ExitReason.OSCILLATOR_EXIT,
            price=obs.price,
            detail=(
                f"RSI {direction} through {level:g} "
                f"({obs.previous_indicator:.2f} -> {obs.indicator:.2f})"
            ),
        )
    return None


# ----------------------------------------------------------------------
# Exits (short position: profit when price falls)
# ----------------------------------------------------------------------

def effective_stop(entry_price: float, trailing_stop_threshold: float, exits: ExitConfig) -> float:
    """The tighter (lower) of the fixed stop and the trailing threshold."""
    return min(entry_price + exits.stop_loss_points, trailing_stop_threshold)


def evaluate_exit(
    price: float,
    reference: Optional[float],
    entry_price: float,
    trailing_stop_threshold: float,
    trailing_steps_completed: int,
    exits: ExitConfig,
    honor_reference_reclaim: bool = True,
) -> Optional[ExitSignal]:
    """
    Exit checks in priority order:
    1. profit target
    2. stop loss / trailing stop, whichever is tighter
    3. reference reclaim, only after at least one trailing step
    """
    gain = entry_price - price
    if gain > exits.profit_target_points:
        return ExitSignal(
            reason=ExitReason.PROFIT_TARGET,
            price=price,
            detail=f"gain {gain:.2f} > target {exits.profit_target_points:g}",
        )

    stop = effective_stop(entry_price, trailing_stop_threshold, exits)
    if price > stop:
        reason = ExitReason.TRAILING_STOP if trailing_steps_completed > 0 else ExitReason.STOP_LOSS
        return ExitSignal(
            reason=reason,
            price=price,
            detail=f"price {price:.2f} above stop {stop:.2f}",
        )

    if (
        honor_reference_reclaim
        and _available(reference)
        and trailing_steps_completed >= 1
        and price > reference
    ):
        return ExitSignal(
            reason=ExitReason.REFERENCE_RECLAIM,
            price=price,
            detail=f"price {price:.2f} reclaimed reference {reference:.2f}",
        )
    return None


# ----------------------------------------------------------------------
# Band bookkeeping
# ----------------------------------------------------------------------

def next_consecutive_count(
    count: int,
    above_band: bool,
    below_band: bool,
    position_open: bool,
    reset_policy: str,
) -> int:
    """
    Consecutive above-band observations while flat.

    Ticks inside the zone hold the count. A tick below the zone resets it
    under ``below_band``; under ``exit`` only the explicit resets at entry
    and exit apply.
    """
    if position_open:
        return count
    if above_band:
        return count + 1
    if below_band and reset_policy == "below_band":
        return 0
    return count


def next_cycle_low(
    cycle_low: Optional[float],
    obs: MarketObservation,
    previous_reference: Optional[float],
    position_open: bool,
    has_exited_in_cycle: bool,
) -> Optional[float]:
    """Track the lowest price of the current short cycle for re-entry."""
    price = obs.price
    if position_open:
        return price if cycle_low is None else min(cycle_low, price)
    if not has_exited_in_cycle or not _available(obs.indicator):
        return cycle_low

    crossed_below = (
        obs.previous_price is not None
        and _available(previous_reference)
        and obs.previous_price > previous_reference
        and price <= obs.indicator
    )
    if crossed_below:
        return price
    if price < obs.indicator:
        return None if cycle_low is None else min(cycle_low, price)
    return None

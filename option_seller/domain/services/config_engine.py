"""
CONFIG ENGINE
Load, validate, and expose strategy configuration

RESPONSIBILITIES:
- Load strategy.yml plus an optional profile override
- Validate configuration integrity
- Expose read-only typed objects

RULES:
❌ No defaults for missing sections
❌ No hardcoded strategy values
✅ Fail fast on invalid config
✅ Deterministic output
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from option_seller.utils.time import parse_hhmm

SIGNAL_FAMILIES = ("band", "oscillator")
RESET_POLICIES = ("below_band", "exit")
CROSS_DIRECTIONS = ("falling", "rising")
REFERENCE_SOURCES = ("bars", "quote")


@dataclass(frozen=True)
class UnderlyingConfig:
    name: str
    spot_symbol: str
    spot_instrument_token: int
    exchange: str
    strike_step: int
    ce_strike_offset: int
    pe_strike_offset: int
    allow_same_day_expiry: bool = False


@dataclass(frozen=True)
class OrderConfig:
    product: str
    order_type: str
    lot_size: int
    tick_size: float


@dataclass(frozen=True)
class BandConfig:
    high_offset: float
    low_offset: float
    required_consecutive_above_band: int
    consecutive_reset: str = "below_band"
    reentry_enabled: bool = True
    reference_source: str = "bars"
    vwap_window: Optional[int] = None


@dataclass(frozen=True)
class OscillatorConfig:
    period: int
    upper: float
    lower: float
    history_length: int = 50
    warmup_previous_session: bool = True
    entry_direction: Dict[str, str] = field(default_factory=lambda: {"CE": "falling", "PE": "falling"})


@dataclass(frozen=True)
class ExitConfig:
    profit_target_points: float
    stop_loss_points: float
    initial_stop_offset: float
    reentry_stop_offset: float
    trailing_step: float
    trailing_adjustment: float


@dataclass(frozen=True)
class RiskConfig:
    max_stop_losses_per_day: int
    stop_engine_on_cap: bool = True


@dataclass(frozen=True)
class SessionConfig:
    timezone: str
    session_start: str
    strike_selection_time: str
    trade_start_time: str
    session_end: str


@dataclass(frozen=True)
class CadenceConfig:
    fast_interval_seconds: float
    bar_interval_minutes: int
    indicator_interval: str
    settle_seconds: float = 2.0
    max_bars: int = 200


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int
    retry_delay_seconds: float
    status_check_delay_seconds: float = 0.5


@dataclass(frozen=True)
class DataConfig:
    max_attempts: int
    retry_delay_seconds: float
    spot_max_attempts: int = 5
    spot_retry_delay_seconds: float = 5.0


@dataclass(frozen=True)
class StrategyConfig:
    """Complete, validated configuration for one trading session"""
    profile: str
    signal_family: str
    underlying: UnderlyingConfig
    order: OrderConfig
    band: BandConfig
    oscillator: OscillatorConfig
    exits: ExitConfig
    risk: RiskConfig
    session: SessionConfig
    cadence: CadenceConfig
    executor: RetryConfig
    data: DataConfig


class ConfigEngine:
    """
    Configuration Engine
    Single source of truth for strategy configuration
    """

    SECTIONS = (
        "underlying", "order", "band", "oscillator", "exits",
        "risk", "session", "cadence", "executor", "data",
    )

    def __init__(self, config_dir: Path, profile: Optional[str] = None):
        """Initialize with config directory and optional profile override"""
        self.config_dir = Path(config_dir)
        self._profile_override = profile
        self._raw: Dict[str, Any] = None
        self._strategy: StrategyConfig = None

    def load_all(self) -> StrategyConfig:
        """Load, merge and validate strategy configuration"""
        self._load_strategy_file()
        self._apply_strategy_profile()
        self._strategy = self._build(self._raw)
        return self._strategy

    def _load_strategy_file(self) -> None:
        strategy_file = self.config_dir / "strategy.yml"
        if not strategy_file.exists():
            raise FileNotFoundError(f"Strategy config not found: {strategy_file}")

        with open(strategy_file, "r") as f:
            data = yaml.safe_load(f) or {}
        if "strategy" not in data or not isinstance(data["strategy"], dict):
            raise ValueError("strategy.yml must contain a 'strategy' mapping")
        self._raw = data["strategy"]

    def _deep_merge_dicts(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep-merge override into base (override wins)."""
        merged = dict(base or {})
        for key, value in (override or {}).items():
            if isinstance(value, dict) and isinstance(merged.get(key), dict):
                merged[key] = self._deep_merge_dicts(merged[key], value)
            else:
                merged[key] = value
        return merged

    def _apply_strategy_profile(self) -> None:
        """
        Optionally apply a profile override from strategies/*.yml.
        Priority:
        1) explicit profile argument
        2) ENV: STRATEGY_PROFILE
        3) strategy.strategy_profile in strategy.yml
        """
        profile = (
            self._profile_override
            or os.getenv("STRATEGY_PROFILE")
            or self._raw.get("strategy_profile")
        )
        if not profile or str(profile).lower() in ("default", "base", "none"):
            self._raw["strategy_profile"] = "default"
            return

        profile_file = self.config_dir / "strategies" / f"{profile}.yml"
        if not profile_file.exists():
            raise ValueError(
                f"Strategy profile '{profile}' not found at {profile_file}"
            )
        with open(profile_file, "r") as f:
            override = yaml.safe_load(f) or {}
        self._raw = self._deep_merge_dicts(self._raw, override.get("strategy", override))
        self._raw["strategy_profile"] = str(profile)

    def _section(self, raw: Dict[str, Any], name: str) -> Dict[str, Any]:
        section = raw.get(name)
        if not isinstance(section, dict):
            raise ValueError(f"Missing config section: strategy.{name}")
        return section

    def _build(self, raw: Dict[str, Any]) -> StrategyConfig:
        for name in self.SECTIONS:
            self._section(raw, name)

        try:
            cfg = StrategyConfig(
                profile=str(raw.get("strategy_profile", "default")),
                signal_family=str(raw.get("signal_family", "")),
                underlying=UnderlyingConfig(**raw["underlying"]),
                order=OrderConfig(**raw["order"]),
                band=BandConfig(**raw["band"]),
                oscillator=OscillatorConfig(**raw["oscillator"]),
                exits=ExitConfig(**raw["exits"]),
                risk=RiskConfig(**raw["risk"]),
                session=SessionConfig(**raw["session"]),
                cadence=CadenceConfig(**raw["cadence"]),
                executor=RetryConfig(**raw["executor"]),
                data=DataConfig(**raw["data"]),
            )
        except TypeError as exc:
            raise ValueError(f"Invalid strategy config: {exc}") from exc

        validate_strategy(cfg)
        return cfg

    @property
    def strategy(self) -> StrategyConfig:
        """Get validated strategy config"""
        if self._strategy is None:
            raise RuntimeError("Config not loaded. Call load_all() first.")
        return self._strategy


def validate_strategy(cfg: StrategyConfig) -> None:
    """Raise ValueError on any inconsistent value."""
    if cfg.signal_family not in SIGNAL_FAMILIES:
        raise ValueError(f"signal_family must be one of {SIGNAL_FAMILIES}, got {cfg.signal_family!r}")
    if cfg.band.consecutive_reset not in RESET_POLICIES:
        raise ValueError(f"band.consecutive_reset must be one of {RESET_POLICIES}")
    if cfg.band.reference_source not in REFERENCE_SOURCES:
        raise ValueError(f"band.reference_source must be one of {REFERENCE_SOURCES}")
    if cfg.band.high_offset <= cfg.band.low_offset:
        raise ValueError("band.high_offset must be greater than band.low_offset")
    if cfg.band.required_consecutive_above_band < 0:
        raise ValueError("band.required_consecutive_above_band cannot be negative")
    if cfg.band.vwap_window is not None and cfg.band.vwap_window < 1:
        raise ValueError("band.vwap_window must be positive when set")

    osc = cfg.oscillator
    if osc.period < 1:
        raise ValueError("oscillator.period must be positive")
    if not 0 <= osc.lower < osc.upper <= 100:
        raise ValueError("oscillator bounds must satisfy 0 <= lower < upper <= 100")
    if osc.history_length < 2:
        raise ValueError("oscillator.history_length must be at least 2")
    for side, direction in osc.entry_direction.items():
        if side not in ("CE", "PE") or direction not in CROSS_DIRECTIONS:
            raise ValueError(f"Invalid oscillator.entry_direction entry: {side}={direction}")

    for name in ("profit_target_points", "stop_loss_points", "trailing_step", "trailing_adjustment"):
        if getattr(cfg.exits, name) <= 0:
            raise ValueError(f"exits.{name} must be positive")
    if cfg.exits.initial_stop_offset < 0 or cfg.exits.reentry_stop_offset < 0:
        raise ValueError("exits stop offsets cannot be negative")

    if cfg.order.lot_size < 1:
        raise ValueError("order.lot_size must be positive")
    if cfg.order.tick_size <= 0:
        raise ValueError("order.tick_size must be positive")
    if cfg.underlying.strike_step < 1:
        raise ValueError("underlying.strike_step must be positive")
    if cfg.risk.max_stop_losses_per_day < 1:
        raise ValueError("risk.max_stop_losses_per_day must be positive")

    if cfg.cadence.fast_interval_seconds <= 0 or cfg.cadence.bar_interval_minutes < 1:
        raise ValueError("cadence intervals must be positive")
    if cfg.executor.max_attempts < 1 or cfg.data.max_attempts < 1:
        raise ValueError("retry max_attempts must be at least 1")

    times = [
        parse_hhmm(cfg.session.session_start),
        parse_hhmm(cfg.session.strike_selection_time),
        parse_hhmm(cfg.session.trade_start_time),
        parse_hhmm(cfg.session.session_end),
    ]
    if times != sorted(times):
        raise ValueError(
            "session times must be ordered: session_start <= strike_selection_time "
            "<= trade_start_time <= session_end"
        )

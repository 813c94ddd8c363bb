from pathlib import Path

import pytest

from option_seller.domain.services.config_engine import ConfigEngine, StrategyConfig
from tests.fakes import CE_INSTRUMENT, PE_INSTRUMENT, FakeBroker

CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


@pytest.fixture()
def config_dir() -> Path:
    return CONFIG_DIR


@pytest.fixture()
def band_config() -> StrategyConfig:
    return ConfigEngine(CONFIG_DIR, profile="vwap_band").load_all()


@pytest.fixture()
def rsi_config() -> StrategyConfig:
    return ConfigEngine(CONFIG_DIR, profile="rsi_momentum").load_all()


@pytest.fixture()
def broker() -> FakeBroker:
    broker = FakeBroker()
    broker.instruments["NFO"] = [CE_INSTRUMENT, PE_INSTRUMENT]
    return broker

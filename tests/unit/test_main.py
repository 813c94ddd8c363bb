import pytest

from option_seller import main as entrypoint


@pytest.fixture()
def quiet_logging(monkeypatch):
    calls = []
    monkeypatch.setattr(entrypoint, "setup_logging", lambda *args, **kwargs: calls.append((args, kwargs)))
    return calls


@pytest.fixture()
def settings(monkeypatch, config_dir):
    monkeypatch.setattr(entrypoint.settings, "CONFIG_DIR", str(config_dir))
    monkeypatch.setattr(entrypoint.settings, "STRATEGY_PROFILE", None)
    monkeypatch.delenv("STRATEGY_PROFILE", raising=False)
    return entrypoint.settings


@pytest.mark.unit
def test_load_strategy_honours_profile(settings):
    assert entrypoint.load_strategy("rsi_momentum").signal_family == "oscillator"
    assert entrypoint.load_strategy().profile == "vwap_band"


@pytest.mark.unit
def test_check_config_stops_before_broker(settings, quiet_logging, monkeypatch):
    def fail(_config):
        raise AssertionError("engine must not be built")

    monkeypatch.setattr(entrypoint, "build_engine", fail)

    entrypoint.main(["--check-config", "--profile", "rsi_momentum", "--log-level", "DEBUG"])

    assert quiet_logging[0][0] == ("DEBUG",)


@pytest.mark.unit
def test_missing_broker_credentials_exit_nonzero(settings, quiet_logging, monkeypatch):
    monkeypatch.setattr(settings, "KITE_API_KEY", None)
    monkeypatch.setattr(settings, "KITE_ACCESS_TOKEN", None)

    with pytest.raises(SystemExit) as excinfo:
        entrypoint.main([])

    assert excinfo.value.code == 1


@pytest.mark.unit
def test_build_engine_names_trade_log_by_profile_and_day(settings, monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "KITE_API_KEY", "key")
    monkeypatch.setattr(settings, "KITE_ACCESS_TOKEN", "token")
    monkeypatch.setattr(settings, "TELEGRAM_ENABLED", False)
    monkeypatch.setattr(settings, "TRADE_LOG_DIR", str(tmp_path))

    engine = entrypoint.build_engine(entrypoint.load_strategy("vwap_band"))

    day = engine.clock.window.session_start.date()
    assert engine.trade_log_path == tmp_path / f"trades_vwap_band_{day:%Y%m%d}.csv"
    assert engine.state is None

"""Tests for environment-driven configuration and the CLI entry point."""

import pytest

import main
from config import AppConfig, VolumeConfig
from exchange.errors import ConfigError
from exchange.models import SessionRange

ENV_KEYS = [
    "BASE_URL", "OAUTH_URL", "WS_URL", "REFRESH_TOKEN", "EXCHANGE", "SYMBOL", "PAGE_LIMIT",
    "START_DATE", "WORK_DAYS", "DATA_DIR", "FLUSH_SIZE", "DEPTH", "FREQUENCY",
    "RECONNECT_DELAY_SEC", "TRADING_SESSIONS", "UTC_OFFSET_HOURS", "QTY_INTERVAL",
    "INTERVAL_COUNT", "VOLUME_RULES_JSON", "HTTP_TIMEOUT_SEC", "LOG_LEVEL", "DEBUG", "ENV_PATH",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


class TestFromEnv:
    def test_defaults(self) -> None:
        config = AppConfig.from_env()
        assert config.history.page_limit == 5000
        assert config.history.work_days == 5
        assert config.stream.flush_size == 500
        assert config.stream.reconnect_delay_sec == 2.0
        assert config.calendar.utc_offset_hours == 3.0
        assert config.volume.interval_count == 10
        assert config.api.debug_http is False

    def test_overrides(self, monkeypatch) -> None:
        monkeypatch.setenv("BASE_URL", "https://api.example")
        monkeypatch.setenv("SYMBOL", "SiH5")
        monkeypatch.setenv("PAGE_LIMIT", "1000")
        monkeypatch.setenv("FLUSH_SIZE", "250")
        monkeypatch.setenv("TRADING_SESSIONS", "10:00-18:45,19:05-23:50")
        monkeypatch.setenv("DEBUG", "1")

        config = AppConfig.from_env()
        assert config.api.base_url == "https://api.example"
        assert config.instrument.symbol == "SiH5"
        assert config.history.page_limit == 1000
        assert config.stream.flush_size == 250
        assert config.calendar.sessions == [SessionRange(600, 1125), SessionRange(1145, 1430)]
        assert config.api.debug_http is True

    def test_malformed_integers_fall_back(self, monkeypatch) -> None:
        monkeypatch.setenv("PAGE_LIMIT", "lots")
        monkeypatch.setenv("WORK_DAYS", "")
        config = AppConfig.from_env()
        assert config.history.page_limit == 5000
        assert config.history.work_days == 5

    def test_bad_sessions_are_config_error(self, monkeypatch) -> None:
        monkeypatch.setenv("TRADING_SESSIONS", "morning")
        with pytest.raises(ConfigError):
            AppConfig.from_env()

    def test_non_positive_flush_size_is_config_error(self, monkeypatch) -> None:
        monkeypatch.setenv("FLUSH_SIZE", "0")
        with pytest.raises(ConfigError):
            AppConfig.from_env()

    def test_invalid_flush_size_exits_cleanly(self, tmp_path, monkeypatch) -> None:
        monkeypatch.setenv("ENV_PATH", str(tmp_path / "missing.env"))
        monkeypatch.setenv("FLUSH_SIZE", "-5")
        assert main.main(["--dump"]) == 1


class TestVolumeRules:
    def test_symbol_rule_overrides_defaults(self) -> None:
        volume = VolumeConfig(
            qty_interval=5, interval_count=20,
            rules_json='{"SiH5": {"qtyInterval": 10, "intervalCount": 10}}',
        )
        assert volume.for_symbol("SiH5") == (10, 10)
        assert volume.for_symbol("BRH5") == (5, 20)

    def test_partial_rule(self) -> None:
        volume = VolumeConfig(qty_interval=5, interval_count=20, rules_json='{"SiH5": {"qtyInterval": 7}}')
        assert volume.for_symbol("SiH5") == (7, 20)

    def test_malformed_json_is_ignored(self) -> None:
        volume = VolumeConfig(qty_interval=5, interval_count=20, rules_json="{oops")
        assert volume.for_symbol("SiH5") == (5, 20)


class TestCli:
    def test_modes_are_exclusive(self) -> None:
        with pytest.raises(SystemExit):
            main.build_parser().parse_args(["--trades-stat", "--dump"])

    def test_no_mode_prints_hints(self, tmp_path, monkeypatch) -> None:
        monkeypatch.setenv("DATA_DIR", str(tmp_path))
        monkeypatch.setenv("ENV_PATH", str(tmp_path / "missing.env"))
        assert main.main([]) == 0

    def test_missing_settings_fail(self, tmp_path, monkeypatch) -> None:
        monkeypatch.setenv("DATA_DIR", str(tmp_path))
        monkeypatch.setenv("ENV_PATH", str(tmp_path / "missing.env"))
        assert main.main(["--dump"]) == 1

    def test_validate_by_mode(self) -> None:
        config = AppConfig()
        assert "WS_URL" in main.validate(config, stream=True)
        assert "BASE_URL" not in main.validate(config, stream=True)
        assert "START_DATE" in main.validate(config, stream=False)

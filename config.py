"""
Alor Ingester — Configuration
All tunable parameters in one place. Values come from the environment
(optionally a .env file loaded by main.py).
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import List, Tuple

from core.calendar import parse_sessions
from exchange.errors import ConfigError
from exchange.models import SessionRange

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    """int() of an env var, falling back to default when unset or malformed."""
    try:
        return int(os.getenv(name, ""))
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, ""))
    except ValueError:
        return default


@dataclass
class ApiConfig:
    base_url: str = ""
    auth_url: str = ""
    ws_url: str = ""
    refresh_token: str = ""
    http_timeout_sec: float = 90.0
    debug_http: bool = False


@dataclass
class InstrumentConfig:
    exchange: str = "MOEX"
    symbol: str = ""


@dataclass
class HistoryConfig:
    page_limit: int = 5000
    start_date: str = ""               # dd.mm.yyyy
    work_days: int = 5                 # Mon-Fri days to collect


@dataclass
class StreamConfig:
    data_dir: str = "./data"
    flush_size: int = 500              # Records per buffer before a swap
    depth: int = 20                    # Order book levels
    frequency: int = 25                # Order book update frequency, ms
    reconnect_delay_sec: float = 2.0
    ping_interval_sec: float = 20.0


@dataclass
class CalendarConfig:
    utc_offset_hours: float = 3.0      # MSK
    sessions: List[SessionRange] = field(default_factory=lambda: [
        SessionRange(9 * 60, 23 * 60 + 50),
    ])


@dataclass
class VolumeConfig:
    qty_interval: int = 0
    interval_count: int = 10
    rules_json: str = ""               # {"SiU5": {"qtyInterval": 10, "intervalCount": 10}}

    def for_symbol(self, symbol: str) -> Tuple[int, int]:
        """Per-symbol (qty_interval, interval_count), falling back to the defaults."""
        qty_interval = self.qty_interval
        interval_count = self.interval_count
        if not self.rules_json:
            return qty_interval, interval_count

        try:
            rules = json.loads(self.rules_json)
        except json.JSONDecodeError as e:
            logger.warning(f"[CONFIG] VOLUME_RULES_JSON ignored, not valid JSON: {e}")
            return qty_interval, interval_count

        rule = rules.get(symbol) if isinstance(rules, dict) else None
        if isinstance(rule, dict):
            qty_interval = _to_int(rule.get("qtyInterval"), qty_interval)
            interval_count = _to_int(rule.get("intervalCount"), interval_count)
        return qty_interval, interval_count


def _to_int(value, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass
class AppConfig:
    api: ApiConfig = field(default_factory=ApiConfig)
    instrument: InstrumentConfig = field(default_factory=InstrumentConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    stream: StreamConfig = field(default_factory=StreamConfig)
    calendar: CalendarConfig = field(default_factory=CalendarConfig)
    volume: VolumeConfig = field(default_factory=VolumeConfig)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Load config with environment variable overrides."""
        config = cls()
        config.api.base_url = os.getenv("BASE_URL", "")
        config.api.auth_url = os.getenv("OAUTH_URL", "")
        config.api.ws_url = os.getenv("WS_URL", "")
        config.api.refresh_token = os.getenv("REFRESH_TOKEN", "")
        config.api.http_timeout_sec = _env_float("HTTP_TIMEOUT_SEC", config.api.http_timeout_sec)
        config.api.debug_http = bool(os.getenv("DEBUG"))

        config.instrument.exchange = os.getenv("EXCHANGE", config.instrument.exchange)
        config.instrument.symbol = os.getenv("SYMBOL", "")

        config.history.page_limit = _env_int("PAGE_LIMIT", config.history.page_limit)
        config.history.start_date = os.getenv("START_DATE", "")
        config.history.work_days = _env_int("WORK_DAYS", config.history.work_days)

        config.stream.data_dir = os.getenv("DATA_DIR", config.stream.data_dir)
        config.stream.flush_size = _env_int("FLUSH_SIZE", config.stream.flush_size)
        if config.stream.flush_size <= 0:
            raise ConfigError(f"FLUSH_SIZE must be positive, got {config.stream.flush_size}")
        config.stream.depth = _env_int("DEPTH", config.stream.depth)
        config.stream.frequency = _env_int("FREQUENCY", config.stream.frequency)
        config.stream.reconnect_delay_sec = _env_float(
            "RECONNECT_DELAY_SEC", config.stream.reconnect_delay_sec
        )

        config.calendar.utc_offset_hours = _env_float(
            "UTC_OFFSET_HOURS", config.calendar.utc_offset_hours
        )
        sessions = os.getenv("TRADING_SESSIONS", "")
        if sessions:
            config.calendar.sessions = parse_sessions(sessions)

        config.volume.qty_interval = _env_int("QTY_INTERVAL", config.volume.qty_interval)
        config.volume.interval_count = _env_int("INTERVAL_COUNT", config.volume.interval_count)
        config.volume.rules_json = os.getenv("VOLUME_RULES_JSON", "")

        config.log_level = os.getenv("LOG_LEVEL", "INFO")
        return config

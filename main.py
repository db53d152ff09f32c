"""
Alor Market Data Ingester — Entry point.
  --trades-stat  fetch trade history for N working days and print the volume histogram
  --dump         stream order book + trades into daily files until SIGINT/SIGTERM
"""

from __future__ import annotations
import argparse
import asyncio
import logging
import os
import signal
import sys
from typing import List, Optional

from dotenv import load_dotenv

from config import AppConfig
from core import histogram
from core.calendar import TradingCalendar
from core.history import HistoryWindowFetcher
from core.pipeline import StreamIngestionPipeline
from exchange.alor_rest import AlorRestClient
from exchange.alor_ws import AlorWSClient
from exchange.auth import TokenProvider
from exchange.errors import IngestError
from storage.file_sink import DailyFileSink

logger = logging.getLogger(__name__)


def setup_logging(level: str, data_dir: str):
    os.makedirs(data_dir, exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-7s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(os.path.join(data_dir, "ingest.log")),
        ],
    )


def validate(config: AppConfig, *, stream: bool) -> List[str]:
    """Names of required settings that are missing for the chosen mode."""
    required = {
        "OAUTH_URL": config.api.auth_url,
        "REFRESH_TOKEN": config.api.refresh_token,
        "EXCHANGE": config.instrument.exchange,
        "SYMBOL": config.instrument.symbol,
    }
    if stream:
        required["WS_URL"] = config.api.ws_url
    else:
        required["BASE_URL"] = config.api.base_url
        required["START_DATE"] = config.history.start_date
    return [name for name, value in required.items() if not value]


async def run_trades_stat(config: AppConfig):
    """Fetch history, bucket it by volume and log the histogram."""
    symbol = config.instrument.symbol
    logger.info(f"[STAT] Instrument: {config.instrument.exchange}:{symbol}")

    # Validate binning before spending minutes on REST calls
    qty_interval, interval_count = config.volume.for_symbol(symbol)
    histogram.build([], qty_interval, interval_count)

    tokens = TokenProvider(config.api.auth_url, config.api.refresh_token, config.api.http_timeout_sec)
    client = AlorRestClient(config.api.base_url, config.api.http_timeout_sec, config.api.debug_http)
    fetcher = HistoryWindowFetcher(
        client=client,
        tokens=tokens,
        calendar=TradingCalendar(config.calendar.utc_offset_hours),
        exchange=config.instrument.exchange,
        symbol=symbol,
        page_limit=config.history.page_limit,
    )
    try:
        trades = await fetcher.fetch(config.history.start_date, config.history.work_days)
    finally:
        await client.close()
        await tokens.close()

    logger.info(f"[STAT] Trades received: {len(trades)}")
    if not trades:
        logger.info("[STAT] Empty result, nothing to print")
        return

    buckets = histogram.build(trades, qty_interval, interval_count)
    logger.info(
        f"[STAT] Volume buckets ({len(buckets) - 1} + overflow, step={qty_interval}) and trade counts:"
    )
    for line in histogram.format_report(buckets):
        logger.info(line)


async def run_dump(config: AppConfig):
    """Stream until a termination signal, then flush and close."""
    tokens = TokenProvider(config.api.auth_url, config.api.refresh_token, config.api.http_timeout_sec)
    ws = AlorWSClient(
        url=config.api.ws_url,
        tokens=tokens,
        exchange=config.instrument.exchange,
        symbol=config.instrument.symbol,
        depth=config.stream.depth,
        frequency=config.stream.frequency,
        reconnect_delay_sec=config.stream.reconnect_delay_sec,
        ping_interval_sec=config.stream.ping_interval_sec,
    )
    pipeline = StreamIngestionPipeline(
        ws=ws,
        sink=DailyFileSink(config.stream.data_dir, config.instrument.symbol),
        calendar=TradingCalendar(config.calendar.utc_offset_hours),
        sessions=config.calendar.sessions,
        flush_size=config.stream.flush_size,
    )

    if sys.platform != "win32":
        loop = asyncio.get_running_loop()

        def handle_signal(sig):
            logger.info(f"Received signal {sig}. Initiating shutdown...")
            asyncio.create_task(pipeline.shutdown())

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))

    logger.info("[DUMP] Press Ctrl+C to stop")
    try:
        await pipeline.run()
    finally:
        await tokens.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Alor market data ingester")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--trades-stat", action="store_true",
        help="Fetch trade history and print the volume histogram",
    )
    mode.add_argument(
        "--dump", action="store_true",
        help="Stream order book and trades into daily files",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    env_path = os.getenv("ENV_PATH")
    load_dotenv(env_path if env_path and os.path.exists(env_path) else None)

    try:
        config = AppConfig.from_env()
    except IngestError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1
    setup_logging(config.log_level, config.stream.data_dir)

    if not (args.trades_stat or args.dump):
        logger.info("[i] No mode selected")
        logger.info("[i] Trade statistics: python main.py --trades-stat")
        logger.info("[i] Stream dump:      python main.py --dump")
        return 0

    missing = validate(config, stream=args.dump)
    if missing:
        logger.critical(f"{', '.join(missing)} must be set!")
        return 1

    job = run_dump(config) if args.dump else run_trades_stat(config)
    try:
        asyncio.run(job)
    except KeyboardInterrupt:
        logger.info("KeyboardInterrupt received.")
    except IngestError as e:
        logger.critical(f"Fatal error: {e}")
        return 1
    except Exception as e:
        logger.critical(f"Fatal error: {e}", exc_info=True)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

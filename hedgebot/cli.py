"""
CLI entrypoint for the hedge trading bot.

Provides commands for live trading, status and candle backfill.
"""
import asyncio
import sys
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import typer

from hedgebot.config.config import DEFAULT_CONFIG_PATH, Config, load_config
from hedgebot.config.dotenv_loader import load_dotenv_files
from hedgebot.monitoring.logger import get_logger, setup_logging

app = typer.Typer(
    name="hedgebot",
    help="Binance hedge trading bot",
    add_completion=False,
)

logger = get_logger(__name__)


def _load(config_path: Path, log_file: Optional[Path] = None) -> Config:
    load_dotenv_files()
    try:
        config = load_config(config_path)
    except Exception as e:
        print("=" * 80, file=sys.stderr)
        print("CRITICAL ERROR - Failed to load configuration", file=sys.stderr)
        print("=" * 80, file=sys.stderr)
        print(f"Error: {e}", file=sys.stderr)
        print(f"Type: {type(e).__name__}", file=sys.stderr)
        print("=" * 80, file=sys.stderr)
        raise typer.Exit(1)

    setup_logging(
        config.monitoring.log_level,
        config.monitoring.log_format,
        log_file=str(log_file) if log_file else config.monitoring.log_file,
    )
    return config


def _build_gateway(config: Config):
    from hedgebot.data.binance_client import BinanceClient
    from hedgebot.data.gateway import RetryingGateway

    client = BinanceClient(
        api_key=config.exchange.api_key,
        api_secret=config.exchange.api_secret,
        use_testnet=config.exchange.use_testnet,
        request_timeout_seconds=config.exchange.request_timeout_seconds,
    )
    return RetryingGateway.from_config(client, config.exchange)


def _parse_date(value: str) -> datetime:
    try:
        return datetime.strptime(value, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    except ValueError:
        raise typer.BadParameter(f"Expected YYYY-MM-DD, got {value!r}")


@app.command()
def run(
    config_path: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config", help="Path to config file"),
    log_file: Optional[Path] = typer.Option(None, "--log-file", help="Path to log file"),
):
    """
    Run the hedge trading loop.

    Trades are simulated unless ``trading.mode`` is ``real``.

    Example:
        hedgebot run --config hedgebot/config/config.yaml
    """
    config = _load(config_path, log_file)

    if config.trading.mode == "real":
        typer.secho("REAL TRADING MODE: orders will be sent to Binance.", fg=typer.colors.RED, bold=True)

    from hedgebot.live.live_trading import LiveTrading
    from hedgebot.storage.db import init_db
    from hedgebot.storage.repository import SqlCandleStore, SqlTradeHistoryStore

    db = init_db(config.data.database_url)

    async def run_live():
        engine = LiveTrading(
            config,
            gateway=_build_gateway(config),
            history=SqlTradeHistoryStore(db),
            candle_store=SqlCandleStore(db),
            db=db,
        )
        await engine.run()

    try:
        asyncio.run(run_live())
    except KeyboardInterrupt:
        logger.info("Trading stopped by user")
    except Exception as e:
        logger.critical(
            "Trading failed with unhandled error",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        traceback.print_exc(file=sys.stderr)
        raise typer.Exit(1)


@app.command()
def status(
    config_path: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config", help="Path to config file"),
    limit: int = typer.Option(10, "--limit", help="Number of recent trades to show"),
):
    """
    Show recent settled trades and the current base probability.

    Example:
        hedgebot status --limit 5
    """
    config = _load(config_path)

    from hedgebot.storage.db import init_db
    from hedgebot.storage.repository import SqlTradeHistoryStore
    from hedgebot.strategy.probability import ProbabilityEngine

    db = init_db(config.data.database_url)
    history = SqlTradeHistoryStore(db)
    probability = ProbabilityEngine.from_config(config.strategy)

    async def collect():
        trades = await history.query_recent(limit)
        base = await probability.base_probability(history)
        return trades, base

    try:
        trades, base = asyncio.run(collect())
    finally:
        db.dispose()

    typer.echo("System Status")
    typer.echo("=" * 50)
    typer.echo(f"Environment:      {config.environment}")
    typer.echo(f"Symbol:           {config.exchange.symbol} ({config.strategy.timeframe})")
    typer.echo(f"Mode:             {config.trading.mode} / {config.trading.instrument_class}")
    typer.echo(f"Base probability: {base:.2f}%")

    if trades:
        typer.echo(f"\nRecent Trades ({len(trades)})")
        typer.echo("-" * 50)
        for t in trades:
            color = typer.colors.GREEN if t.net_pnl >= 0 else typer.colors.RED
            typer.secho(
                f"  {t.exit_time.strftime('%Y-%m-%d %H:%M')} | {t.direction.value.upper():5} | "
                f"{t.allocation.value:11} | {t.net_pnl:,.4f} ({t.outcome.value.upper()}, {t.exit_reason.value})",
                fg=color,
            )
    else:
        typer.echo("\nNo trades recorded yet.")

    typer.echo("=" * 50)


@app.command()
def backfill(
    start: str = typer.Option(..., "--start", help="Start date (YYYY-MM-DD)"),
    end: str = typer.Option(..., "--end", help="End date (YYYY-MM-DD), exclusive"),
    config_path: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config", help="Path to config file"),
):
    """
    Download historical candles into the candle store.

    Example:
        hedgebot backfill --start 2024-01-01 --end 2024-01-08
    """
    config = _load(config_path)
    start_date = _parse_date(start)
    end_date = _parse_date(end)
    if end_date <= start_date:
        raise typer.BadParameter("--end must be after --start")

    from hedgebot.data.candle_manager import CandleManager
    from hedgebot.storage.db import init_db
    from hedgebot.storage.repository import SqlCandleStore

    db = init_db(config.data.database_url)

    async def run_backfill() -> int:
        gateway = _build_gateway(config)
        try:
            manager = CandleManager(
                gateway,
                SqlCandleStore(db),
                config.exchange.symbol,
                config.strategy.timeframe,
            )
            return await manager.backfill(start_date, end_date)
        finally:
            await gateway.close()

    try:
        written = asyncio.run(run_backfill())
    finally:
        db.dispose()

    typer.echo(f"Backfilled {written} candles for {config.exchange.symbol} ({config.strategy.timeframe})")


@app.callback()
def main(
    version: bool = typer.Option(False, "--version", help="Show version and exit"),
):
    """
    Binance hedge trading bot.

    Opens a favorable and an unfavorable leg per signal and manages both
    with fixed stops, take-profit and a trailing drawdown exit.
    """
    if version:
        typer.echo("hedgebot v0.1.0")
        raise typer.Exit()


if __name__ == "__main__":
    app()

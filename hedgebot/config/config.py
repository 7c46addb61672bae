"""
Configuration models for the hedge trading bot.

Uses Pydantic for validation and type safety.
"""
import os
import re
from decimal import Decimal
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from hedgebot.constants import (
    DEFAULT_FUTURES_MAKER_FEE,
    DEFAULT_FUTURES_TAKER_FEE,
    DEFAULT_SPOT_MAKER_FEE,
    DEFAULT_SPOT_TAKER_FEE,
    INTERVAL_SECONDS,
)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"

_UNEXPANDED_ENV = re.compile(r'^\$\{?[A-Za-z_][A-Za-z0-9_]*\}?$')


class _DecimalSettings(BaseSettings):
    """Settings base that parses YAML floats into exact Decimals."""
    model_config = SettingsConfigDict(extra="ignore")

    @field_validator("*", mode="before")
    @classmethod
    def float_to_decimal_text(cls, v):
        # 1.5 -> "1.5" so Decimal fields never see binary float expansion
        if isinstance(v, float):
            return str(v)
        return v


class ExchangeConfig(BaseSettings):
    """Exchange configuration."""
    model_config = SettingsConfigDict(extra="ignore")

    name: str = "binance"
    symbol: str = "AVAX/USDT"
    base_asset: str = "AVAX"
    quote_asset: str = "USDT"

    # Credentials (loaded from env or yaml)
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    use_testnet: bool = False

    # Retry policy applied to every gateway call
    request_timeout_seconds: int = Field(default=30, ge=1, le=120)
    max_retries: int = Field(default=3, ge=0, le=10)
    retry_base_delay: float = Field(default=1.0, ge=0.0, le=30.0)
    retry_max_backoff: float = Field(default=10.0, ge=0.0, le=120.0)

    @field_validator("api_key", "api_secret", mode="before")
    @classmethod
    def drop_unexpanded_env(cls, v):
        # "${BINANCE_API_KEY}" left in place when the variable is unset
        if isinstance(v, str) and (not v.strip() or _UNEXPANDED_ENV.match(v.strip())):
            return None
        return v


class RiskConfig(_DecimalSettings):
    """Stop-loss, take-profit and trailing drawdown levels."""

    stop_loss_pct: Decimal = Field(default=Decimal("1.5"), gt=0, lt=100)
    take_profit_pct: Decimal = Field(default=Decimal("6"), gt=0, lt=100)
    max_drawdown_pct: Decimal = Field(default=Decimal("2"), gt=0, lt=100)
    leverage: Decimal = Field(default=Decimal("5"), ge=1, le=125)  # Futures only; spot is always 1x
    favorable_fraction: Decimal = Field(default=Decimal(2) / Decimal(3), gt=0, lt=1)


class ExecutionConfig(_DecimalSettings):
    """Fee fallbacks and monitor timing."""
    model_config = SettingsConfigDict(extra="ignore")

    spot_maker_fee: Decimal = Field(default=DEFAULT_SPOT_MAKER_FEE, ge=0, lt=1)
    spot_taker_fee: Decimal = Field(default=DEFAULT_SPOT_TAKER_FEE, ge=0, lt=1)
    futures_maker_fee: Decimal = Field(default=DEFAULT_FUTURES_MAKER_FEE, ge=0, lt=1)
    futures_taker_fee: Decimal = Field(default=DEFAULT_FUTURES_TAKER_FEE, ge=0, lt=1)

    monitor_interval_seconds: float = Field(default=5.0, gt=0, le=3600)
    lock_timeout_seconds: float = Field(default=5.0, gt=0, le=300)


class StrategyConfig(_DecimalSettings):
    """Probability engine and signal timing."""
    model_config = SettingsConfigDict(extra="ignore")

    default_base_probability: Decimal = Field(default=Decimal("75"), ge=0, le=100)
    base_window: int = Field(default=100, ge=1, le=10000)
    base_alpha: Decimal = Field(default=Decimal("0.1"), gt=0, lt=1)

    min_probability: Decimal = Field(default=Decimal("70"), ge=0, le=100)
    max_probability: Decimal = Field(default=Decimal("80"), ge=0, le=100)

    dampening_window_seconds: float = Field(default=900.0, gt=0)
    dampening_threshold: Decimal = Field(default=Decimal("20"), ge=0)
    dampening_penalty: Decimal = Field(default=Decimal("5"), ge=0, le=100)

    timeframe: str = "1m"
    indicator_window: int = Field(default=100, ge=26, le=1000)
    min_candles: int = Field(default=26, ge=1, le=1000)
    signal_interval_seconds: float = Field(default=60.0, gt=0)

    @field_validator("timeframe")
    @classmethod
    def validate_timeframe(cls, v):
        if v not in INTERVAL_SECONDS:
            raise ValueError(f"Unsupported timeframe: {v}")
        return v

    @model_validator(mode="after")
    def validate_probability_band(self):
        if self.min_probability > self.max_probability:
            raise ValueError("min_probability must be <= max_probability")
        return self


class TradingConfig(_DecimalSettings):
    """Automatic trade acceptance."""
    model_config = SettingsConfigDict(extra="ignore")

    auto_trade_enabled: bool = True
    instrument_class: Literal["spot", "futures"] = "futures"
    mode: Literal["real", "simulated"] = "simulated"
    amount_pct: Decimal = Field(default=Decimal("0.1"), gt=0, le=1)
    favorable_direction: Literal["long", "short"] = "long"


class DataConfig(BaseSettings):
    """Candle history, persistence and live feed."""
    model_config = SettingsConfigDict(extra="ignore")

    database_url: str = "sqlite:///hedgebot.db"
    history_lookback_days: int = Field(default=3, ge=0, le=3650)
    max_candles: int = Field(default=1000, ge=50, le=100000)

    ws_max_retries: int = Field(default=10, ge=1, le=100)
    ws_backoff_base_seconds: float = Field(default=1.0, ge=0.0, le=60.0)
    ws_backoff_cap_seconds: float = Field(default=30.0, ge=0.0, le=600.0)


class PaperConfig(_DecimalSettings):
    """Simulated trading configuration."""
    model_config = SettingsConfigDict(extra="ignore")

    # Seeds the simulated ledger instead of the first observed real balance
    starting_balance: Optional[Decimal] = Field(default=None, ge=0)


class MonitoringConfig(BaseSettings):
    """Logging configuration."""
    model_config = SettingsConfigDict(extra="ignore")

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Optional[str] = "logs/hedgebot.log"


class Config(BaseSettings):
    """Main configuration class."""
    model_config = SettingsConfigDict(
        env_nested_delimiter="__",
        extra="ignore",
    )

    exchange: ExchangeConfig = Field(default_factory=ExchangeConfig)
    risk: RiskConfig = Field(default_factory=RiskConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    strategy: StrategyConfig = Field(default_factory=StrategyConfig)
    trading: TradingConfig = Field(default_factory=TradingConfig)
    data: DataConfig = Field(default_factory=DataConfig)
    paper: PaperConfig = Field(default_factory=PaperConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    environment: Literal["dev", "paper", "prod"] = "dev"

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> "Config":
        """Load configuration from YAML file."""
        yaml_path = Path(yaml_path)
        if not yaml_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

        with open(yaml_path, "r") as f:
            raw_content = f.read()

        # Expand ${VAR} or $VAR
        pattern = re.compile(r'\$\{([^}]+)\}|\$([a-zA-Z_][a-zA-Z0-9_]*)')

        def replace_match(match):
            var_name = match.group(1) or match.group(2)
            return os.environ.get(var_name, match.group(0))  # Return original if not found

        expanded_content = pattern.sub(replace_match, raw_content)
        config_dict = yaml.safe_load(expanded_content) or {}

        if "ENVIRONMENT" in os.environ:
            config_dict["environment"] = os.environ["ENVIRONMENT"]

        db_url = os.getenv("DATABASE_URL")
        if db_url:
            config_dict.setdefault("data", {})
            config_dict["data"]["database_url"] = db_url

        return cls(**config_dict)

    def validate_config(self) -> None:
        """Perform cross-section checks."""
        if self.trading.mode == "real" and not (self.exchange.api_key and self.exchange.api_secret):
            raise ValueError("Real trading mode requires exchange.api_key and exchange.api_secret")
        if self.risk.stop_loss_pct >= Decimal("100"):
            raise ValueError("stop_loss_pct must be below 100")


def load_config(config_path: str | Path | None = None) -> Config:
    """
    Load and validate configuration.

    Args:
        config_path: Path to config.yaml file. If None, uses hedgebot/config/config.yaml

    Returns:
        Validated Config object

    Raises:
        FileNotFoundError: If config file not found
        ValueError: If configuration validation fails
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    config = Config.from_yaml(config_path)
    config.validate_config()

    return config

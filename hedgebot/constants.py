"""
System-wide constants for the hedge trading bot.

Centralizes magic numbers and fixed values used across modules.
"""
from decimal import Decimal

# Exchange endpoints
BINANCE_WS_BASE_URL = "wss://stream.binance.com:9443/ws"

# Fallback fee rates (used when the exchange fee lookup fails)
DEFAULT_SPOT_MAKER_FEE = Decimal("0.001")
DEFAULT_SPOT_TAKER_FEE = Decimal("0.001")
DEFAULT_FUTURES_MAKER_FEE = Decimal("0.0002")
DEFAULT_FUTURES_TAKER_FEE = Decimal("0.0004")

# Probability engine
PROBABILITY_FLOOR = Decimal("0")
PROBABILITY_CEILING = Decimal("100")

# Candle intervals -> duration in seconds
INTERVAL_SECONDS = {
    "1m": 60,
    "3m": 180,
    "5m": 300,
    "15m": 900,
    "30m": 1800,
    "1h": 3600,
    "2h": 7200,
    "4h": 14400,
    "6h": 21600,
    "8h": 28800,
    "12h": 43200,
    "1d": 86400,
    "3d": 259200,
    "1w": 604800,
}

# Trade history
TRADE_ID_PREFIX = "trade"

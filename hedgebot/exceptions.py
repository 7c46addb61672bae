"""
Custom exception hierarchy for the hedge trading bot.

Hierarchy:

    TradingSystemError (base)
    ├── OperationalError: transient/retryable (exchange, network, timeouts)
    │   ├── GatewayError: exchange gateway call failed
    │   │   └── RateLimitError
    │   └── CycleLockTimeout: trading cycle lock not acquired in time
    ├── DataError: bad or missing input, skip the operation
    │   ├── ValidationError
    │   └── InsufficientBalanceError
    ├── InvariantError: ledger/safety violation, halt immediately
    │   └── LedgerInvariantError
    └── FeedExhaustedError: live feed could not reconnect, shut down

Rules:
    - OperationalError: retry with backoff, then log and fall back locally
    - DataError: log, skip this trade or cycle, continue loop
    - InvariantError / FeedExhaustedError: propagate, trigger shutdown
"""


class TradingSystemError(Exception):
    """Base exception for all trading system errors."""
    pass


# ============ OPERATIONAL (transient, retryable) ============

class OperationalError(TradingSystemError):
    """Transient/retryable error: exchange API, network, timeouts."""
    pass


class GatewayError(OperationalError):
    """An exchange gateway call (price, balance, fee, order) failed."""
    pass


class RateLimitError(GatewayError):
    """Raised when the exchange rate limit is exceeded."""
    pass


class CycleLockTimeout(OperationalError):
    """The trading cycle lock could not be acquired within its timeout.

    Treatment: log and skip this cycle; the next tick tries again.
    """
    pass


# ============ DATA (bad input, skip) ============

class DataError(TradingSystemError):
    """Bad or missing data. Treatment: log, skip, continue loop."""
    pass


class ValidationError(DataError):
    """Raised when input validation fails."""
    pass


class InsufficientBalanceError(DataError):
    """Total cost of a trade exceeds the available ledger balance.

    Always raised before any balance is debited.
    """
    pass


# ============ INVARIANT (safety violation, halt) ============

class InvariantError(TradingSystemError):
    """Safety invariant violation. Halt immediately."""
    pass


class LedgerInvariantError(InvariantError):
    """A balance ledger went negative after settlement."""
    pass


# ============ FATAL FEED ============

class FeedExhaustedError(TradingSystemError):
    """Live candle feed exhausted its reconnect attempts."""
    pass

"""
Execution module.

Position sizing, opening, exit evaluation and settlement.

ARCHITECTURE:
    TradingEngine (single owner of active positions)
        │
        ├── BalanceLedger (real / simulated / wallet balances, PnL counters)
        ├── PositionManager (exit rules: take-profit, stop-loss, trailing drawdown)
        └── CycleGuard (serializes opens, monitor passes and settlements)
"""
from hedgebot.execution.engine import TradingEngine, generate_trade_id, risk_levels
from hedgebot.execution.ledger import BalanceLedger, PnLCounters
from hedgebot.execution.position_manager import ActionType, ManagementAction, PositionManager

__all__ = [
    "TradingEngine",
    "generate_trade_id",
    "risk_levels",
    "BalanceLedger",
    "PnLCounters",
    "ActionType",
    "ManagementAction",
    "PositionManager",
]

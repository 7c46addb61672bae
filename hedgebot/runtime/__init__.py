"""
Runtime utilities (trading-cycle serialization).
"""
from hedgebot.runtime.cycle_guard import (
    CycleGuard,
    CycleState,
)

__all__ = [
    "CycleGuard",
    "CycleState",
]

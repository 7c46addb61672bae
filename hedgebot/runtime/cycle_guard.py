"""
CycleGuard: serializes trading-cycle operations.

The active position set and the balance ledger are mutated by the monitor
pass and by signal-driven opens. Both run inside ``guard.cycle(...)`` so
only one of them touches shared state at a time.

Usage:
    guard = CycleGuard(lock_timeout_seconds=5)

    try:
        async with guard.cycle("monitor"):
            ...  # iterate / mutate active positions and balances
    except CycleLockTimeout:
        logger.warning("Cycle skipped")
"""
import asyncio
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncIterator, Dict, List, Optional

from hedgebot.exceptions import CycleLockTimeout
from hedgebot.monitoring.logger import get_logger

logger = get_logger(__name__)


@dataclass
class CycleState:
    """State of a single trading cycle."""
    cycle_id: str
    name: str
    started_at: datetime
    ended_at: Optional[datetime] = None
    is_complete: bool = False
    error: Optional[str] = None

    def duration_seconds(self) -> float:
        """Get cycle duration in seconds."""
        end = self.ended_at or datetime.now(timezone.utc)
        return (end - self.started_at).total_seconds()


class CycleGuard:
    """
    Mutual exclusion for one logical trading-cycle operation at a time.

    Acquisition is bounded by ``lock_timeout_seconds``; on timeout
    ``CycleLockTimeout`` is raised and nothing has been mutated. The lock
    is released on every exit path, including exceptions.
    """

    def __init__(self, lock_timeout_seconds: float = 5.0, history_size: int = 100):
        self.lock_timeout_seconds = lock_timeout_seconds
        self.history_size = history_size
        self._lock = asyncio.Lock()

        self.current_cycle: Optional[CycleState] = None
        self.cycle_history: List[CycleState] = []

        self._total_cycles = 0
        self._skipped_cycles = 0
        self._failed_cycles = 0

    @property
    def locked(self) -> bool:
        return self._lock.locked()

    @asynccontextmanager
    async def cycle(self, name: str, timeout: Optional[float] = None) -> AsyncIterator[CycleState]:
        """
        Run a block while holding the cycle lock.

        Raises:
            CycleLockTimeout: if the lock is not acquired within the timeout
        """
        wait = self.lock_timeout_seconds if timeout is None else timeout
        try:
            await asyncio.wait_for(self._lock.acquire(), timeout=wait)
        except asyncio.TimeoutError:
            self._skipped_cycles += 1
            holder = self.current_cycle
            logger.warning(
                "CYCLE_LOCK_TIMEOUT",
                name=name,
                timeout_seconds=wait,
                held_by=holder.cycle_id if holder else None,
                held_for_seconds=round(holder.duration_seconds(), 2) if holder else None,
            )
            raise CycleLockTimeout(f"Cycle lock not acquired within {wait}s for {name}")

        now = datetime.now(timezone.utc)
        state = CycleState(
            cycle_id=f"cycle_{now.strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:8]}",
            name=name,
            started_at=now,
        )
        self.current_cycle = state
        self._total_cycles += 1
        logger.debug("CYCLE_START", cycle_id=state.cycle_id, name=name)

        try:
            yield state
        except BaseException as e:
            state.error = f"{type(e).__name__}: {e}"
            self._failed_cycles += 1
            raise
        finally:
            state.ended_at = datetime.now(timezone.utc)
            state.is_complete = True
            self.cycle_history.append(state)
            if len(self.cycle_history) > self.history_size:
                self.cycle_history = self.cycle_history[-self.history_size:]
            self.current_cycle = None
            self._lock.release()
            logger.debug(
                "CYCLE_END",
                cycle_id=state.cycle_id,
                name=name,
                duration_seconds=round(state.duration_seconds(), 3),
                error=state.error,
            )

    def get_cycle_stats(self) -> Dict:
        """Get current cycle statistics."""
        return {
            "current_cycle_id": self.current_cycle.cycle_id if self.current_cycle else None,
            "locked": self.locked,
            "total_cycles": self._total_cycles,
            "skipped_cycles": self._skipped_cycles,
            "failed_cycles": self._failed_cycles,
        }

    def get_recent_cycles(self, limit: int = 10) -> List[Dict]:
        """Get recent cycle history for debugging."""
        return [
            {
                "cycle_id": c.cycle_id,
                "name": c.name,
                "started_at": c.started_at.isoformat(),
                "duration_seconds": c.duration_seconds(),
                "error": c.error,
            }
            for c in self.cycle_history[-limit:]
        ]

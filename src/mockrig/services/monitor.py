"""
Background Tasks
=================
Two long-lived asyncio tasks run beside the request handlers:

  • the bucket ticker advances the rate-bucket ring every interval
  • the state broadcaster pushes dials + requests/second to dashboard sockets
    once a second
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Optional

from mockrig.core.state import SimulationState
from mockrig.core.websocket import ConnectionManager
from mockrig.utils.rate_buckets import RateBucketTracker

logger = logging.getLogger("mockrig")

BROADCAST_INTERVAL_SECONDS = 1.0


def state_message(state: SimulationState, tracker: RateBucketTracker) -> Dict[str, Any]:
    return {"type": "state", "state": state.as_dict(), "metrics": tracker.snapshot()}


def due_ticks(now: float, next_tick: float, interval: float) -> int:
    """Ticks owed at `now` when the next one was scheduled for `next_tick`."""
    if now < next_tick:
        return 0
    return int((now - next_tick) // interval) + 1


async def run_bucket_ticker(tracker: RateBucketTracker, clock: Optional[Callable[[], float]] = None):
    clock = clock or asyncio.get_running_loop().time
    interval = tracker.interval_seconds
    next_tick = clock() + interval
    while True:
        await asyncio.sleep(max(0.0, next_tick - clock()))
        # a stalled loop owes several ticks; more than a full rotation clears everything anyway
        due = due_ticks(clock(), next_tick, interval)
        for _ in range(min(due, tracker.slot_count)):
            tracker.tick()
        next_tick += due * interval


async def run_state_broadcaster(state: SimulationState, tracker: RateBucketTracker, manager: ConnectionManager):
    while True:
        await asyncio.sleep(BROADCAST_INTERVAL_SECONDS)
        if len(manager):
            await manager.broadcast(state_message(state, tracker))
        logger.debug(f"Server state {state.as_dict()} rps {tracker.snapshot()}")

"""Periodic sweeper for in-memory gateway state.

Rate-limit windows are otherwise only replaced when the same client comes
back, so without this loop idle clients would accumulate forever.
"""

import asyncio

import structlog

from tryon.core.config import Settings
from tryon.core.state import GatewayState

logger = structlog.get_logger(__name__)


async def run_state_sweeper(state: GatewayState, settings: Settings) -> None:
    """Sweep expired state every STATE_SWEEP_INTERVAL_SECONDS until cancelled.

    Args:
        state: Gateway state container from app.state
        settings: Application settings (sweep interval)
    """
    interval = settings.state_sweep_interval_seconds
    logger.info("worker.started", worker="state_sweeper", interval_seconds=interval)

    try:
        while True:
            await asyncio.sleep(interval)
            state.sweep()
    except asyncio.CancelledError:
        logger.info("worker.shutdown", worker="state_sweeper")
        raise

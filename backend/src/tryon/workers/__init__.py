"""Background workers for in-process maintenance tasks."""

from tryon.workers.state_sweeper import run_state_sweeper

__all__ = [
    "run_state_sweeper",
]

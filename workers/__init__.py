"""
Long-running workers for the Agent Status monitor.

This package contains the agent presence monitoring loop and the
components it orchestrates each cycle.
"""

from workers.monitor.worker import LoopState, MonitorWorker

__all__ = [
    "LoopState",
    "MonitorWorker",
]

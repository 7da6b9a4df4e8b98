"""
Agent presence monitor: gate, name cache, fan-out, scheduler and loop.
"""

from workers.monitor.fanout import BoundedFanout
from workers.monitor.gate import ConfigurationGate
from workers.monitor.name_cache import NameCache
from workers.monitor.scheduler import AdaptiveScheduler, detect_change
from workers.monitor.worker import LoopState, MonitorWorker

__all__ = [
    "AdaptiveScheduler",
    "BoundedFanout",
    "ConfigurationGate",
    "LoopState",
    "MonitorWorker",
    "NameCache",
    "detect_change",
]

"""
SkillFeed Scheduling Module
===========================

Job scheduling, strategy dispatch and source health tracking.
"""

from .dispatcher import FeedStrategy, SkillStrategy, StrategyDispatcher, select_strategy
from .health import SourceHealthTracker
from .scheduler import Scheduler
from .single_flight import SingleFlight

__all__ = [
    "FeedStrategy",
    "SkillStrategy",
    "StrategyDispatcher",
    "select_strategy",
    "SourceHealthTracker",
    "Scheduler",
    "SingleFlight",
]

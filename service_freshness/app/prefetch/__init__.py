"""
Prefetch package.

Speculative cache warming that never competes with user-triggered
traffic: a governor vetoes attempts, a scheduler debounces them into idle
windows, and the planner decides which neighbouring periods to warm.
"""

from .governor import PrefetchDecision, PrefetchGovernor
from .planner import AdjacentPrefetcher, ViewState, plan_adjacent
from .scheduler import PrefetchScheduler

__all__ = [
    "AdjacentPrefetcher",
    "PrefetchDecision",
    "PrefetchGovernor",
    "PrefetchScheduler",
    "ViewState",
    "plan_adjacent",
]

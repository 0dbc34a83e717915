"""
Consumer-side helpers that turn cache reads into race-safe UI state.
"""

from .cached_fetch import CachedFetch
from .generation import GenerationGuard

__all__ = ["CachedFetch", "GenerationGuard"]

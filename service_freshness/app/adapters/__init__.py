"""
Adapters package.

HTTP client wrappers that produce the fetch functions the cache consumes.
Envelope unwrapping and error mapping to shared errors live here, never in
the cache.
"""

from .dashboard_client import DashboardClient

__all__ = ["DashboardClient"]

"""
Cache key grammar, TTL presets and per-date freshness policies.

Keys follow ``<namespace>:<subresource>:<dim1>=<val1>:<dim2>=<val2>...``.
Equal inputs always produce the same string, which is what predicate-based
invalidation matches against.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Callable, Optional, Union

from service_freshness.app.caching.store import CachePolicy

DateLike = Union[date, datetime, str, None]

TODAY = "today"


def normalize_date(value: DateLike) -> str:
    if value is None or value == "":
        return TODAY
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def build_key(namespace: str, subresource: str, **dims: object) -> str:
    parts = [namespace, subresource]
    parts.extend(f"{name}={value}" for name, value in dims.items())
    return ":".join(parts)


class CacheKeys:
    """Key factory for every dashboard resource."""

    @staticmethod
    def daily_dashboard(tz: str, day: DateLike = None) -> str:
        return build_key("dashboard", "daily", tz=tz, date=normalize_date(day))

    @staticmethod
    def weekly_stats(tz: str, week_start: DateLike = None) -> str:
        return build_key("dashboard", "weekStats", tz=tz, weekStart=normalize_date(week_start))

    @staticmethod
    def weekly_dashboard(tz: str, week_start: DateLike = None) -> str:
        return build_key("dashboard", "weekly", tz=tz, weekStart=normalize_date(week_start))

    @staticmethod
    def monthly_dashboard(tz: str, month_start: DateLike = None) -> str:
        return build_key("dashboard", "monthly", tz=tz, monthStart=normalize_date(month_start))

    @staticmethod
    def tech_daily(tech_id: object, tz: str, day: DateLike = None) -> str:
        return build_key("tech", "daily", id=tech_id, tz=tz, date=normalize_date(day))

    @staticmethod
    def tech_weekly(tech_id: object, tz: str, week_start: DateLike = None) -> str:
        return build_key("tech", "weekly", id=tech_id, tz=tz, weekStart=normalize_date(week_start))

    @staticmethod
    def tech_csat(tech_id: object) -> str:
        return build_key("tech", "csat", id=tech_id)


class TTL:
    """TTL presets in seconds."""

    TODAY = 60.0
    TODAY_SOFT = 20.0
    HIST = 5 * 60.0
    HIST_SOFT = 2 * 60.0
    TECH = 2 * 60.0
    TECH_SOFT = 45.0
    CSAT = 5 * 60.0
    CSAT_SOFT = 2 * 60.0


TODAY_POLICY = CachePolicy(ttl=TTL.TODAY, soft_ttl=TTL.TODAY_SOFT)
HIST_POLICY = CachePolicy(ttl=TTL.HIST, soft_ttl=TTL.HIST_SOFT)
TECH_POLICY = CachePolicy(ttl=TTL.TECH, soft_ttl=TTL.TECH_SOFT)
CSAT_POLICY = CachePolicy(ttl=TTL.CSAT, soft_ttl=TTL.CSAT_SOFT)


def policy_for_date(day: DateLike, today: Optional[date] = None) -> CachePolicy:
    """Today's numbers move, so they get the short policy; history gets the long one."""
    normalized = normalize_date(day)
    current = (today or date.today()).isoformat()
    if normalized in (TODAY, current):
        return TODAY_POLICY
    return HIST_POLICY


def matches_dimension(key: str, name: str, value: object) -> bool:
    return f"{name}={value}" in key.split(":")


def key_predicate(namespace: Optional[str] = None, **dims: object) -> Callable[[str], bool]:
    """Predicate matching keys in ``namespace`` carrying every given dimension."""

    def predicate(key: str) -> bool:
        if namespace and not key.startswith(f"{namespace}:"):
            return False
        return all(matches_dimension(key, name, normalize_date(value) if name == "date" else value)
                   for name, value in dims.items())

    return predicate

"""
Unit tests for cache key grammar and freshness policies.
"""

from datetime import date, datetime

from service_freshness.app.caching.keys import (
    HIST_POLICY,
    TODAY_POLICY,
    CacheKeys,
    build_key,
    key_predicate,
    matches_dimension,
    normalize_date,
    policy_for_date,
)

TZ = "America/Los_Angeles"


class TestCacheKeys:
    """Test cases for key construction."""

    def test_build_key_joins_dimensions(self):
        assert build_key("dashboard", "daily", tz=TZ, date="2024-05-01") == \
            "dashboard:daily:tz=America/Los_Angeles:date=2024-05-01"

    def test_equal_inputs_give_equal_keys(self):
        assert CacheKeys.daily_dashboard(TZ, date(2024, 5, 1)) == CacheKeys.daily_dashboard(TZ, "2024-05-01")
        assert CacheKeys.daily_dashboard(TZ, datetime(2024, 5, 1, 13, 30)) == \
            CacheKeys.daily_dashboard(TZ, date(2024, 5, 1))

    def test_missing_date_means_today(self):
        assert normalize_date(None) == "today"
        assert normalize_date("") == "today"
        assert CacheKeys.daily_dashboard(TZ).endswith(":date=today")

    def test_resource_keys(self):
        assert CacheKeys.weekly_stats(TZ, "2024-05-01") == "dashboard:weekStats:tz=America/Los_Angeles:weekStart=2024-05-01"
        assert CacheKeys.monthly_dashboard(TZ, "2024-05-01").startswith("dashboard:monthly:")
        assert CacheKeys.tech_daily(7, TZ, "2024-05-01") == "tech:daily:id=7:tz=America/Los_Angeles:date=2024-05-01"
        assert CacheKeys.tech_csat(7) == "tech:csat:id=7"


class TestPolicies:
    """Test cases for per-date policy selection."""

    def test_today_gets_short_policy(self):
        today = date(2024, 5, 1)
        assert policy_for_date(None, today) == TODAY_POLICY
        assert policy_for_date(today, today) == TODAY_POLICY

    def test_history_gets_long_policy(self):
        assert policy_for_date(date(2024, 4, 1), date(2024, 5, 1)) == HIST_POLICY

    def test_soft_ttl_below_ttl(self):
        assert TODAY_POLICY.soft_ttl < TODAY_POLICY.ttl
        assert HIST_POLICY.soft_ttl < HIST_POLICY.ttl


class TestPredicates:
    """Test cases for invalidation predicates."""

    def test_matches_whole_dimension_only(self):
        key = "dashboard:daily:tz=UTC:date=2024-05-01"
        assert matches_dimension(key, "date", "2024-05-01")
        assert not matches_dimension(key, "date", "2024-05-0")

    def test_key_predicate_by_date(self):
        predicate = key_predicate(date=date(2024, 5, 1))

        assert predicate("dashboard:daily:tz=UTC:date=2024-05-01")
        assert predicate("tech:daily:id=7:tz=UTC:date=2024-05-01")
        assert not predicate("dashboard:daily:tz=UTC:date=2024-05-02")

    def test_key_predicate_by_namespace(self):
        predicate = key_predicate("tech", id=7)

        assert predicate("tech:csat:id=7")
        assert not predicate("dashboard:daily:id=7")
        assert not predicate("tech:csat:id=70")

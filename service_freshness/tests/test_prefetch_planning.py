"""
Unit tests for prefetch scheduling and adjacent-period planning.
"""

from datetime import date

import httpx
import pytest

from shared.test_helpers import FakeClock, FakeScheduler
from service_freshness.app.adapters.dashboard_client import DashboardClient
from service_freshness.app.caching.data_cache import DataCache
from service_freshness.app.caching.keys import HIST_POLICY, TODAY_POLICY, CacheKeys
from service_freshness.app.capabilities import StaticPageState
from service_freshness.app.prefetch.governor import PrefetchDecision, PrefetchGovernor
from service_freshness.app.prefetch.planner import (
    AdjacentPrefetcher,
    ViewState,
    add_months,
    plan_adjacent,
    week_start,
)
from service_freshness.app.prefetch.scheduler import PrefetchScheduler

TZ = "America/Los_Angeles"


def ok_transport(requests):
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"success": True, "data": {"path": request.url.path}})

    return httpx.MockTransport(handler)


class TestPrefetchScheduler:
    """Test cases for PrefetchScheduler."""

    @pytest.fixture
    def timers(self):
        return FakeScheduler()

    @pytest.fixture
    def prefetch_scheduler(self, timers):
        return PrefetchScheduler(timers, debounce=0.4, idle_timeout=3.0)

    def test_job_runs_after_debounce_and_idle(self, prefetch_scheduler, timers):
        runs = []
        prefetch_scheduler.schedule(lambda: runs.append("job"))

        debounce = timers.fire_next()
        assert debounce.delay == 0.4
        assert runs == []

        idle = timers.fire_next()
        assert idle.idle
        assert idle.delay == 3.0
        assert runs == ["job"]
        assert not prefetch_scheduler.pending

    def test_new_schedule_supersedes_pending_job(self, prefetch_scheduler, timers):
        runs = []
        prefetch_scheduler.schedule(lambda: runs.append("first"))
        prefetch_scheduler.schedule(lambda: runs.append("second"))

        timers.fire_all()

        assert runs == ["second"]

    def test_reschedule_cancels_idle_handle(self, prefetch_scheduler, timers):
        runs = []
        prefetch_scheduler.schedule(lambda: runs.append("first"))
        timers.fire_next()
        assert timers.active[0].idle

        prefetch_scheduler.schedule(lambda: runs.append("second"))
        timers.fire_all()

        assert runs == ["second"]

    def test_cancel_drops_pending_job(self, prefetch_scheduler, timers):
        runs = []
        prefetch_scheduler.schedule(lambda: runs.append("job"))
        prefetch_scheduler.cancel()

        assert timers.fire_all() == 0
        assert runs == []

    def test_job_error_is_contained(self, prefetch_scheduler, timers):
        def broken():
            raise RuntimeError("planner bug")

        prefetch_scheduler.schedule(broken)
        timers.fire_all()

        assert not prefetch_scheduler.pending


class TestPlanning:
    """Test cases for adjacent-period planning."""

    @pytest.fixture
    def client(self):
        return DashboardClient(httpx.AsyncClient(base_url="http://test/api", transport=ok_transport([])))

    def test_add_months_clamps_day(self):
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
        assert add_months(date(2024, 1, 15), -1) == date(2023, 12, 15)

    def test_week_start_is_monday(self):
        assert week_start(date(2024, 5, 1)) == date(2024, 4, 29)

    def test_daily_plan(self, client):
        view = ViewState(view_mode="daily", selected_date=date(2024, 5, 1))

        targets = plan_adjacent(view, client, TZ, today=date(2024, 5, 2))

        assert [t.key for t in targets] == [
            CacheKeys.daily_dashboard(TZ, date(2024, 4, 30)),
            CacheKeys.daily_dashboard(TZ, date(2024, 5, 2)),
            CacheKeys.weekly_stats(TZ, date(2024, 5, 1)),
            CacheKeys.weekly_dashboard(TZ, date(2024, 4, 29)),
        ]
        assert targets[0].policy == HIST_POLICY
        assert targets[1].policy == TODAY_POLICY

    def test_weekly_plan(self, client):
        view = ViewState(view_mode="weekly", selected_week=date(2024, 4, 29))

        keys = [t.key for t in plan_adjacent(view, client, TZ, today=date(2024, 5, 2))]

        assert keys == [
            CacheKeys.weekly_dashboard(TZ, date(2024, 4, 22)),
            CacheKeys.weekly_dashboard(TZ, date(2024, 5, 6)),
            CacheKeys.daily_dashboard(TZ, None),
        ]

    def test_monthly_plan(self, client):
        view = ViewState(view_mode="monthly", selected_month=date(2024, 1, 1))

        keys = [t.key for t in plan_adjacent(view, client, TZ)]

        assert keys == [
            CacheKeys.monthly_dashboard(TZ, date(2023, 12, 1)),
            CacheKeys.monthly_dashboard(TZ, date(2024, 2, 1)),
        ]

    def test_unknown_view_plans_nothing(self, client):
        assert plan_adjacent(ViewState(view_mode="daily"), client, TZ) == []


class TestAdjacentPrefetcher:
    """Test cases for AdjacentPrefetcher."""

    @pytest.fixture
    def requests(self):
        return []

    @pytest.fixture
    def timers(self):
        return FakeScheduler()

    @pytest.fixture
    def cache(self):
        return DataCache(clock=FakeClock(start=0.0))

    @pytest.fixture
    def page_state(self):
        return StaticPageState()

    @pytest.fixture
    def prefetcher(self, requests, timers, cache, page_state):
        client = DashboardClient(httpx.AsyncClient(base_url="http://test/api", transport=ok_transport(requests)))
        governor = PrefetchGovernor(cache, timers, page_state=page_state, clock=FakeClock(start=0.0))
        return AdjacentPrefetcher(governor, PrefetchScheduler(timers), client, TZ)

    @pytest.mark.asyncio
    async def test_navigation_prefetches_up_to_cap(self, prefetcher, timers, requests, cache):
        view = ViewState(view_mode="daily", selected_date=date(2024, 5, 1))

        prefetcher.on_navigate(view, today=date(2024, 5, 10))
        timers.fire_next()
        timers.fire_next()
        await cache.aclose()

        assert len(requests) == 3
        assert cache.peek(CacheKeys.daily_dashboard(TZ, date(2024, 4, 30))) == {"path": "/api/dashboard"}

    @pytest.mark.asyncio
    async def test_rapid_navigation_runs_latest_plan_only(self, prefetcher, timers, requests, cache):
        prefetcher.on_navigate(ViewState(view_mode="daily", selected_date=date(2024, 5, 1)))
        prefetcher.on_navigate(ViewState(view_mode="monthly", selected_month=date(2024, 5, 1)))
        timers.fire_next()
        timers.fire_next()
        await cache.aclose()

        assert sorted(r.url.params["monthStart"] for r in requests) == ["2024-04-01", "2024-06-01"]

    @pytest.mark.asyncio
    async def test_tech_hover_vetoed_when_hidden(self, prefetcher, page_state, requests):
        page_state.hidden = True
        view = ViewState(view_mode="daily", selected_date=date(2024, 5, 1))

        assert prefetcher.prefetch_tech_detail(7, view) is PrefetchDecision.SKIPPED_HIDDEN
        assert requests == []

    @pytest.mark.asyncio
    async def test_tech_hover_prefetches_detail(self, prefetcher, requests, cache):
        view = ViewState(view_mode="weekly", selected_week=date(2024, 4, 29))

        assert prefetcher.prefetch_tech_detail(7, view).started
        await cache.aclose()

        assert requests[0].url.path == "/api/dashboard/technician/7/weekly"
        assert cache.peek(CacheKeys.tech_weekly(7, TZ, date(2024, 4, 29))) is not None

    def test_close_cancels_pending_plan(self, prefetcher, timers):
        prefetcher.on_navigate(ViewState(view_mode="daily", selected_date=date(2024, 5, 1)))
        prefetcher.close()
        assert timers.active == []

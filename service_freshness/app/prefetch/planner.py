"""
Prefetch plans for the periods a user is likely to open next.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from typing import List, Optional

from shared.logging import get_logger

from service_freshness.app.adapters.dashboard_client import DashboardClient
from service_freshness.app.caching.data_cache import FetchFn
from service_freshness.app.caching.keys import (
    HIST_POLICY,
    TECH_POLICY,
    CacheKeys,
    policy_for_date,
)
from service_freshness.app.caching.store import CachePolicy
from service_freshness.app.prefetch.governor import PrefetchDecision, PrefetchGovernor
from service_freshness.app.prefetch.scheduler import PrefetchScheduler


@dataclass(frozen=True)
class ViewState:
    view_mode: str = "daily"
    selected_date: Optional[date] = None
    selected_week: Optional[date] = None
    selected_month: Optional[date] = None


@dataclass(frozen=True)
class PrefetchTarget:
    key: str
    fetch_fn: FetchFn
    policy: CachePolicy


def add_months(day: date, months: int) -> date:
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def week_start(day: date) -> date:
    """Monday of the week containing ``day``."""
    return day - timedelta(days=day.weekday())


def plan_adjacent(view: ViewState, client: DashboardClient, tz: str,
                  today: Optional[date] = None) -> List[PrefetchTarget]:
    """Neighbouring periods of the current view plus the cheapest view switch."""
    today = today or date.today()
    targets: List[PrefetchTarget] = []

    if view.view_mode == "daily" and view.selected_date:
        selected = view.selected_date
        for day in (selected - timedelta(days=1), selected + timedelta(days=1)):
            targets.append(PrefetchTarget(
                CacheKeys.daily_dashboard(tz, day),
                client.daily(tz, day),
                policy_for_date(day, today),
            ))
        targets.append(PrefetchTarget(
            CacheKeys.weekly_stats(tz, selected),
            client.weekly_stats(tz, selected),
            HIST_POLICY,
        ))
        monday = week_start(selected)
        targets.append(PrefetchTarget(
            CacheKeys.weekly_dashboard(tz, monday),
            client.weekly(tz, monday),
            HIST_POLICY,
        ))

    elif view.view_mode == "weekly" and view.selected_week:
        for monday in (view.selected_week - timedelta(days=7), view.selected_week + timedelta(days=7)):
            targets.append(PrefetchTarget(
                CacheKeys.weekly_dashboard(tz, monday),
                client.weekly(tz, monday),
                HIST_POLICY,
            ))
        targets.append(PrefetchTarget(
            CacheKeys.daily_dashboard(tz, None),
            client.daily(tz, None),
            policy_for_date(None, today),
        ))

    elif view.view_mode == "monthly" and view.selected_month:
        for month_start in (add_months(view.selected_month, -1), add_months(view.selected_month, 1)):
            targets.append(PrefetchTarget(
                CacheKeys.monthly_dashboard(tz, month_start),
                client.monthly(tz, month_start),
                HIST_POLICY,
            ))

    return targets


def plan_tech_detail(tech_id: object, view: ViewState, client: DashboardClient, tz: str) -> PrefetchTarget:
    if view.view_mode == "weekly" and view.selected_week:
        return PrefetchTarget(
            CacheKeys.tech_weekly(tech_id, tz, view.selected_week),
            client.technician_weekly(tech_id, tz, view.selected_week),
            TECH_POLICY,
        )
    return PrefetchTarget(
        CacheKeys.tech_daily(tech_id, tz, view.selected_date),
        client.technician(tech_id, tz, view.selected_date),
        TECH_POLICY,
    )


class AdjacentPrefetcher:
    """Warms neighbouring periods after navigation settles."""

    def __init__(self, governor: PrefetchGovernor, scheduler: PrefetchScheduler,
                 client: DashboardClient, tz: str):
        self.governor = governor
        self.scheduler = scheduler
        self.client = client
        self.tz = tz
        self.logger = get_logger("freshness.prefetch.planner")

    def on_navigate(self, view: ViewState, today: Optional[date] = None) -> None:
        """Supersede any pending plan with the plan for ``view``."""
        self.scheduler.schedule(lambda: self.run_plan(view, today))

    def run_plan(self, view: ViewState, today: Optional[date] = None) -> List[PrefetchDecision]:
        targets = plan_adjacent(view, self.client, self.tz, today)
        decisions = [self.governor.try_prefetch(t.key, t.fetch_fn, t.policy) for t in targets]
        self.logger.debug(
            "Ran adjacent prefetch plan",
            view_mode=view.view_mode,
            planned=len(targets),
            started=sum(1 for d in decisions if d.started),
        )
        return decisions

    def prefetch_tech_detail(self, tech_id: object, view: ViewState) -> PrefetchDecision:
        """Hover/focus prefetch of one technician's detail view."""
        veto = self.governor.environment_allows()
        if veto is not None:
            return veto
        target = plan_tech_detail(tech_id, view, self.client, self.tz)
        return self.governor.try_prefetch(target.key, target.fetch_fn, target.policy)

    def close(self) -> None:
        self.scheduler.cancel()

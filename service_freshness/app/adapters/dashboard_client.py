"""
Dashboard API client producing fetch functions for the cache.

The server wraps every payload as ``{"success": bool, "data": ...}``. The
unwrapping happens here, at the fetch-function boundary, so the cache only
ever sees an Envelope around the payload proper.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from shared.errors import FetchError
from shared.logging import get_logger

from service_freshness.app.caching.data_cache import Envelope
from service_freshness.app.caching.keys import DateLike, TODAY, normalize_date

FetchFactory = Callable[[], Awaitable[Envelope]]


class DashboardClient:
    """Client for the dashboard read endpoints."""

    def __init__(self, http: httpx.AsyncClient, timeout: float = 10.0):
        self.http = http
        self.timeout = timeout
        self.logger = get_logger("freshness.api.dashboard")

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Envelope:
        """GET ``path`` and unwrap the ``data`` member of the response body."""
        try:
            response = await self.http.get(path, params=params, timeout=self.timeout)
        except httpx.TimeoutException:
            self.logger.error("Dashboard API timeout", path=path)
            raise FetchError("Dashboard API timeout", details={"path": path})
        except httpx.RequestError as e:
            self.logger.error("Dashboard API request error", path=path, error=str(e))
            raise FetchError("Network error. Please check your connection.", details={"path": path})

        if response.status_code != 200:
            message = self._error_message(response)
            self.logger.warning("Dashboard API error", path=path, status_code=response.status_code,
                                message=message)
            raise FetchError(message, status_code=response.status_code, details={"path": path})

        try:
            body = response.json()
        except ValueError:
            raise FetchError("Malformed response body", status_code=response.status_code,
                             details={"path": path})

        if isinstance(body, dict) and "success" in body:
            if not body.get("success"):
                raise FetchError(body.get("message") or "Request was not successful",
                                 status_code=response.status_code, details={"path": path})
            return Envelope(body.get("data"))
        return Envelope(body)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"
        if isinstance(body, dict) and body.get("message"):
            return str(body["message"])
        return f"HTTP {response.status_code}"

    @staticmethod
    def _params(tz: str, **dims: DateLike) -> Dict[str, Any]:
        params: Dict[str, Any] = {"timezone": tz}
        for name, value in dims.items():
            normalized = normalize_date(value)
            if normalized != TODAY:
                params[name] = normalized
        return params

    # Fetch-function factories: each returns a zero-argument coroutine function.

    def daily(self, tz: str, day: DateLike = None) -> FetchFactory:
        return lambda: self.get("/dashboard", self._params(tz, date=day))

    def weekly_stats(self, tz: str, day: DateLike = None) -> FetchFactory:
        return lambda: self.get("/dashboard/weekly-stats", self._params(tz, date=day))

    def weekly(self, tz: str, week_start: DateLike = None) -> FetchFactory:
        return lambda: self.get("/dashboard/weekly", self._params(tz, weekStart=week_start))

    def monthly(self, tz: str, month_start: DateLike = None) -> FetchFactory:
        return lambda: self.get("/dashboard/monthly", self._params(tz, monthStart=month_start))

    def technician(self, tech_id: object, tz: str, day: DateLike = None) -> FetchFactory:
        return lambda: self.get(f"/dashboard/technician/{tech_id}", self._params(tz, date=day))

    def technician_weekly(self, tech_id: object, tz: str, week_start: DateLike = None) -> FetchFactory:
        return lambda: self.get(f"/dashboard/technician/{tech_id}/weekly",
                                self._params(tz, weekStart=week_start))

    def technician_csat(self, tech_id: object) -> FetchFactory:
        return lambda: self.get(f"/dashboard/technician/{tech_id}/csat")

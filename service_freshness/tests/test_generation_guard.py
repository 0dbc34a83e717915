"""
Unit tests for last-request-wins generation tracking.
"""

import asyncio

import pytest

from shared.errors import FetchError
from shared.logging import stream_id_var
from shared.test_helpers import ControlledFetch, settle
from service_freshness.app.consumers.generation import GenerationGuard


class TestGenerationGuard:
    """Test cases for GenerationGuard."""

    @pytest.fixture
    def guard(self):
        return GenerationGuard("daily-view")

    def test_issue_supersedes_earlier_tokens(self, guard):
        first = guard.issue()
        second = guard.issue()

        assert second > first
        assert not guard.is_current(first)
        assert guard.is_current(second)

    def test_apply_if_current(self, guard):
        applied = []
        stale = guard.issue()
        fresh = guard.issue()

        assert not guard.apply_if_current(stale, applied.append, "old")
        assert guard.apply_if_current(fresh, applied.append, "new")
        assert applied == ["new"]

    def test_invalidate_drops_outstanding_token(self, guard):
        token = guard.issue()
        guard.invalidate()
        assert not guard.is_current(token)

    @pytest.mark.asyncio
    async def test_only_latest_response_is_applied(self, guard):
        fetch = ControlledFetch()
        applied = []

        runs = [asyncio.create_task(guard.run(fetch, applied.append)) for _ in range(3)]
        await settle()

        # responses arrive 2, 3, then 1
        fetch.resolve(1, "response-2")
        fetch.resolve(2, "response-3")
        await settle()
        fetch.resolve(0, "response-1")
        outcomes = await asyncio.gather(*runs)

        assert applied == ["response-3"]
        assert outcomes == [False, False, True]

    @pytest.mark.asyncio
    async def test_superseded_error_is_dropped(self, guard):
        fetch = ControlledFetch()
        errors = []
        applied = []

        first = asyncio.create_task(guard.run(fetch, applied.append, errors.append))
        second = asyncio.create_task(guard.run(fetch, applied.append, errors.append))
        await settle()

        fetch.reject(0, FetchError("stale failure"))
        fetch.resolve(1, "ok")

        assert await first is False
        assert await second is True
        assert errors == []
        assert applied == ["ok"]

    @pytest.mark.asyncio
    async def test_current_error_reaches_handler(self, guard):
        errors = []

        async def failing():
            raise FetchError("Server error", status_code=500)

        assert await guard.run(failing, lambda _: None, errors.append)
        assert isinstance(errors[0], FetchError)

    @pytest.mark.asyncio
    async def test_current_error_without_handler_propagates(self, guard):
        async def failing():
            raise FetchError("Server error")

        with pytest.raises(FetchError):
            await guard.run(failing, lambda _: None)

    @pytest.mark.asyncio
    async def test_stream_context_bound_during_request(self, guard):
        seen = []

        async def request():
            seen.append(stream_id_var.get())
            return "ok"

        await guard.run(request, lambda _: None)

        assert seen == ["daily-view"]
        assert stream_id_var.get() is None

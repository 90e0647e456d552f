"""Tests for job-scoped cancellation."""

from __future__ import annotations

import asyncio
import logging
from unittest.mock import MagicMock

import pytest

from translate_gateway.gateway.errors import Aborted
from translate_gateway.gateway.jobs import AbortController, JobRegistry


class TestAbortController:
    @pytest.mark.asyncio
    async def test_cancel_interrupts_running_call(self):
        controller = AbortController()
        task = asyncio.ensure_future(controller.run(asyncio.sleep(10)))
        await asyncio.sleep(0)

        controller.cancel()
        with pytest.raises(Aborted):
            await asyncio.wait_for(task, timeout=1)

    @pytest.mark.asyncio
    async def test_run_returns_result(self):
        async def work() -> str:
            return "done"

        assert await AbortController().run(work()) == "done"

    @pytest.mark.asyncio
    async def test_run_after_cancel_does_not_start(self):
        controller = AbortController()
        controller.cancel()
        started = False

        async def work() -> None:
            nonlocal started
            started = True

        with pytest.raises(Aborted):
            await controller.run(work())
        assert started is False

    @pytest.mark.asyncio
    async def test_sleep_ends_early_on_cancel(self):
        controller = AbortController()
        task = asyncio.ensure_future(controller.sleep(10))
        await asyncio.sleep(0)

        controller.cancel()
        with pytest.raises(Aborted):
            await asyncio.wait_for(task, timeout=1)

    @pytest.mark.asyncio
    async def test_sleep_times_out_normally(self):
        assert await AbortController().sleep(0.01) is None

    def test_callbacks(self):
        controller = AbortController()
        fired = []
        controller.add_callback(lambda: fired.append("a"))
        remove = controller.add_callback(lambda: fired.append("b"))
        remove()

        controller.cancel()
        controller.cancel()
        assert fired == ["a"]

        controller.add_callback(lambda: fired.append("late"))
        assert fired == ["a", "late"]

    def test_failing_callback_does_not_stop_others(self):
        controller = AbortController()
        fired = []

        def broken() -> None:
            raise RuntimeError("callback failed")

        controller.add_callback(broken)
        controller.add_callback(lambda: fired.append("ok"))
        controller.cancel()
        assert fired == ["ok"]
        with pytest.raises(Aborted):
            controller.raise_if_aborted()


class TestJobRegistry:
    @pytest.fixture
    def registry(self):
        return JobRegistry()

    def test_register_and_unregister(self, registry):
        a, b = MagicMock(), MagicMock()
        registry.register("job-1", a)
        registry.register("job-1", b)
        assert registry.handle_count("job-1") == 2

        registry.unregister("job-1", a)
        registry.unregister("job-1", b)
        assert "job-1" not in registry
        assert registry.active_jobs() == []

    def test_empty_job_id_is_ignored(self, registry):
        registry.register("", MagicMock())
        assert registry.active_jobs() == []

    def test_abort_cancels_every_handle(self, registry):
        handles = [MagicMock() for _ in range(3)]
        for handle in handles:
            registry.register("job-1", handle)
        registry.register("job-2", MagicMock())

        assert registry.abort("job-1") == 3
        for handle in handles:
            handle.cancel.assert_called_once()
        assert "job-1" not in registry
        assert "job-2" in registry

    def test_abort_unknown_job(self, registry):
        assert registry.abort("nope") == 0

    def test_failing_handle_does_not_stop_abort(self, registry):
        broken, ok = MagicMock(), MagicMock()
        broken.cancel.side_effect = RuntimeError("already gone")
        registry.register("job-1", broken)
        registry.register("job-1", ok)

        assert registry.abort("job-1") == 2
        ok.cancel.assert_called_once()

    def test_unregister_after_abort_is_noop(self, registry):
        handle = MagicMock()
        registry.register("job-1", handle)
        registry.abort("job-1")
        registry.unregister("job-1", handle)
        assert registry.active_jobs() == []

    def test_abort_log_is_tagged_with_job_id(self, registry, caplog):
        registry.register("job-5", MagicMock())

        with caplog.at_level(logging.INFO, logger="translate_gateway.gateway.jobs"):
            registry.abort("job-5")

        records = [r for r in caplog.records if "Aborted job" in r.getMessage()]
        assert len(records) == 1
        assert records[0].job_id == "job-5"

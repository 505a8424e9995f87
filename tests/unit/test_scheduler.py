"""Tests for the recurring task scheduler."""

import asyncio

from tokenbalancer.scheduler import RecurringTask


async def _settle(cycles: int = 10) -> None:
    for _ in range(cycles):
        await asyncio.sleep(0)


class TestRecurringTask:
    def test_immediate_start_runs_once(self):
        calls = []

        async def callback():
            calls.append(1)

        async def scenario():
            task = RecurringTask("test", 60, callback)
            task.start(immediate=True)
            await _settle()
            assert task.running is True
            task.cancel()
            assert task.running is False

        asyncio.run(scenario())
        assert calls == [1]

    def test_deferred_start_waits_for_interval(self):
        calls = []

        async def callback():
            calls.append(1)

        async def scenario():
            task = RecurringTask("test", 60, callback)
            task.start(immediate=False)
            await _settle()
            task.cancel()

        asyncio.run(scenario())
        assert calls == []

    def test_repeats_on_interval(self):
        calls = []

        async def callback():
            calls.append(1)

        async def scenario():
            task = RecurringTask("test", 0.01, callback)
            task.start()
            await asyncio.sleep(0.055)
            task.cancel()

        asyncio.run(scenario())
        assert len(calls) >= 3

    def test_overlapping_trigger_is_skipped(self):
        release = None
        calls = []

        async def callback():
            calls.append(1)
            await release.wait()

        async def scenario():
            nonlocal release
            release = asyncio.Event()
            task = RecurringTask("test", 60, callback)
            first = asyncio.create_task(task.trigger())
            await _settle()
            assert task.in_flight is True

            assert await task.trigger() is False
            release.set()
            assert await first is True
            return task

        task = asyncio.run(scenario())
        assert calls == [1]
        assert task.skipped == 1
        assert task.in_flight is False

    def test_cancel_from_inside_run(self):
        calls = []
        holder = {}

        async def callback():
            calls.append(1)
            holder["task"].cancel()
            await asyncio.sleep(0)
            calls.append(2)

        async def scenario():
            task = RecurringTask("test", 0.001, callback)
            holder["task"] = task
            task.start()
            await asyncio.sleep(0.02)
            assert task.running is False

        asyncio.run(scenario())
        # The run in progress completes, no further run follows
        assert calls == [1, 2]

    def test_failure_does_not_stop_loop(self):
        calls = []

        async def callback():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("boom")

        async def scenario():
            task = RecurringTask("test", 0.005, callback)
            task.start()
            await asyncio.sleep(0.03)
            task.cancel()

        asyncio.run(scenario())
        assert len(calls) >= 2

    def test_restart_after_cancel(self):
        calls = []

        async def callback():
            calls.append(1)

        async def scenario():
            task = RecurringTask("test", 60, callback)
            task.start()
            await _settle()
            task.cancel()
            task.start()
            await _settle()
            task.cancel()

        asyncio.run(scenario())
        assert calls == [1, 1]

    def test_start_twice_is_noop(self):
        calls = []

        async def callback():
            calls.append(1)

        async def scenario():
            task = RecurringTask("test", 60, callback)
            task.start()
            task.start()
            await _settle()
            task.cancel()

        asyncio.run(scenario())
        assert calls == [1]

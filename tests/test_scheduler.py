import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from finboard.models import WidgetConfig, WidgetUpdate
from finboard.scheduler import PollingScheduler, WidgetPoller
from finboard.widget_store import WidgetStore


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


async def noop():
    return None


def test_due_jobs_are_rescheduled_one_interval_later():
    clock = FakeClock()
    scheduler = PollingScheduler(clock=clock)
    scheduler.schedule("a", 10, noop)
    scheduler.schedule("b", 30, noop, run_now=False)

    assert [key for key, _ in scheduler.pop_due()] == ["a"]
    assert scheduler.next_due() == 10

    clock.now = 10
    assert [key for key, _ in scheduler.pop_due()] == ["a"]
    clock.now = 30
    assert sorted(key for key, _ in scheduler.pop_due()) == ["a", "b"]


def test_cancel_removes_job_by_id():
    clock = FakeClock()
    scheduler = PollingScheduler(clock=clock)
    scheduler.schedule("a", 10, noop)
    assert scheduler.cancel("a") is True
    assert scheduler.cancel("a") is False
    assert scheduler.pop_due() == []
    assert scheduler.next_due() is None
    assert "a" not in scheduler


def test_reschedule_replaces_previous_entry():
    clock = FakeClock()
    scheduler = PollingScheduler(clock=clock)
    scheduler.schedule("a", 10, noop)
    scheduler.schedule("a", 60, noop, run_now=False)
    assert scheduler.pop_due() == []
    assert scheduler.next_due() == 60
    assert len(scheduler) == 1


def test_invalid_interval():
    with pytest.raises(ValueError):
        PollingScheduler().schedule("a", 0, noop)


def test_run_loop_fires_jobs_and_survives_failures():
    calls = []

    async def ok():
        calls.append("ok")

    async def broken():
        calls.append("broken")
        raise RuntimeError("boom")

    async def scenario():
        scheduler = PollingScheduler()
        scheduler.schedule("ok", 0.01, ok)
        scheduler.schedule("broken", 0.01, broken)
        scheduler.start()
        await asyncio.sleep(0.05)
        await scheduler.stop()

    asyncio.run(scenario())
    assert calls.count("ok") >= 2
    assert calls.count("broken") >= 2


def test_stop_waits_for_cancelled_inflight_jobs():
    started = asyncio.Event()

    async def slow():
        started.set()
        await asyncio.sleep(60)

    async def scenario():
        scheduler = PollingScheduler()
        scheduler.schedule("slow", 30, slow)
        scheduler.start()
        await started.wait()
        tasks = list(scheduler._inflight)
        await scheduler.stop()
        return tasks

    tasks = asyncio.run(scenario())
    assert len(tasks) == 1
    assert tasks[0].cancelled()


def test_poller_follows_store_changes():
    clock = FakeClock()
    scheduler = PollingScheduler(clock=clock)
    store = WidgetStore()
    data_service = MagicMock()
    data_service.refresh = AsyncMock()
    WidgetPoller(scheduler, store, data_service)

    store.create(WidgetConfig(id="w1", api_endpoint="https://api.test/q", refresh_interval=30))
    store.create(WidgetConfig(id="empty", api_endpoint=""))
    assert "w1" in scheduler
    assert "empty" not in scheduler

    # cosmetic change keeps the running timer
    scheduler.pop_due()
    store.update("w1", WidgetUpdate(title="renamed"))
    assert scheduler.next_due() == 30

    # interval change restarts the timer
    store.update("w1", WidgetUpdate(refresh_interval=120))
    due = scheduler.pop_due()
    assert [key for key, _ in due] == ["w1"]
    assert scheduler.next_due() == 120
    asyncio.run(due[0][1]())
    data_service.refresh.assert_awaited_once_with("w1")

    store.remove("w1")
    assert "w1" not in scheduler
    data_service.drop_state.assert_called_once_with("w1")

import asyncio

import pytest

from familyos.services.infrastructure.background_runner import BackgroundTaskRunner


@pytest.mark.asyncio
async def test_submitted_work_runs_and_failures_are_contained():
    runner = BackgroundTaskRunner(workers=2, queue_size=10)
    ran = []

    async def ok(name):
        ran.append(name)

    async def boom():
        raise RuntimeError("task exploded")

    await runner.start()
    try:
        assert runner.submit("one", lambda: ok("one")) is True
        assert runner.submit("boom", boom) is True
        assert runner.submit("two", lambda: ok("two")) is True
        await runner.join()
        status = runner.status()
    finally:
        await runner.stop()

    assert sorted(ran) == ["one", "two"]
    assert status["completed"] == 2
    assert status["failed"] == 1
    assert status["running"] is True
    assert status["workers"] == 2


@pytest.mark.asyncio
async def test_submit_rejected_when_not_running():
    runner = BackgroundTaskRunner()

    async def never():
        raise AssertionError("should not run")

    assert runner.submit("late", never) is False
    assert runner.status()["rejected"] == 1
    assert runner.status()["running"] is False


@pytest.mark.asyncio
async def test_full_queue_rejects_without_blocking():
    runner = BackgroundTaskRunner(workers=1, queue_size=1, drain_timeout=1.0)
    release = asyncio.Event()

    async def blocker():
        await release.wait()

    await runner.start()
    try:
        assert runner.submit("blocker", blocker) is True
        while runner.status()["queued"]:
            await asyncio.sleep(0)
        assert runner.submit("queued", blocker) is True
        assert runner.submit("overflow", blocker) is False
        release.set()
        await runner.join()
    finally:
        await runner.stop()

    assert runner.status()["rejected"] == 1
    assert runner.status()["completed"] == 2


@pytest.mark.asyncio
async def test_stop_cancels_work_past_drain_timeout():
    runner = BackgroundTaskRunner(workers=1, queue_size=5, drain_timeout=0.05)

    async def forever():
        await asyncio.Event().wait()

    await runner.start()
    runner.submit("forever", forever)
    await asyncio.sleep(0)

    await runner.stop()

    assert runner.running is False
    assert runner.status()["workers"] == 0

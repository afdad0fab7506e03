"""Tests for the background job runner."""
import asyncio

import pytest

from app.workers.job_runner import JobRunner


@pytest.mark.asyncio
async def test_job_runs_handler_with_kwargs():
    runner = JobRunner(timeout_sec=5)
    received = {}

    async def handler(montage_id, user_id, **kwargs):
        received.update(montage_id=montage_id, user_id=user_id)

    runner.register_handler("montage", handler)

    assert await runner.start_job("montage:1", "montage", montage_id=1, user_id="u1") is True
    await runner.wait_for("montage:1")

    assert received == {"montage_id": 1, "user_id": "u1"}
    assert not runner.is_job_running("montage:1")


@pytest.mark.asyncio
async def test_unknown_job_type_is_not_started():
    runner = JobRunner()
    assert await runner.start_job("x:1", "missing") is False


@pytest.mark.asyncio
async def test_duplicate_job_key_is_rejected():
    runner = JobRunner(timeout_sec=5)
    release = asyncio.Event()

    async def handler(**kwargs):
        await release.wait()

    runner.register_handler("montage", handler)

    assert await runner.start_job("montage:1", "montage") is True
    assert await runner.start_job("montage:1", "montage") is False

    release.set()
    await runner.wait_for("montage:1")


@pytest.mark.asyncio
async def test_timeout_cancels_handler_and_runs_cleanup():
    runner = JobRunner(timeout_sec=0.1)
    events = []

    async def handler(**kwargs):
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            events.append("cancelled")
            raise
        finally:
            events.append("cleanup")

    runner.register_handler("montage", handler)
    await runner.start_job("montage:1", "montage")
    await runner.wait_for("montage:1")

    assert events == ["cancelled", "cleanup"]
    assert not runner.is_job_running("montage:1")


@pytest.mark.asyncio
async def test_handler_errors_are_contained():
    runner = JobRunner(timeout_sec=5)

    async def handler(**kwargs):
        raise RuntimeError("boom")

    runner.register_handler("montage", handler)
    await runner.start_job("montage:1", "montage")
    await runner.wait_for("montage:1")

    assert not runner.is_job_running("montage:1")


@pytest.mark.asyncio
async def test_shutdown_cancels_running_jobs():
    runner = JobRunner(timeout_sec=5)
    cancelled = []

    async def handler(**kwargs):
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.append(True)
            raise

    runner.register_handler("montage", handler)
    await runner.start_job("montage:1", "montage")
    await runner.start_job("montage:2", "montage")
    await asyncio.sleep(0.05)

    await runner.shutdown()

    assert cancelled == [True, True]
    assert not runner.is_job_running("montage:1")

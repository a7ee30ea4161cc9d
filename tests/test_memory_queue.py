import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from labmatch.v1.infra.jobs.backoff import BackoffPolicy
from labmatch.v1.infra.jobs.memory import InMemoryJobQueue
from labmatch.v1.infra.jobs.models import EnqueueOptions, JobPriority, JobStatus
from labmatch.v1.infra.jobs.payloads import (
    MonthlyRefreshJob,
    RunMatchingJob,
    SendEmailJob,
)

NO_BACKOFF = BackoffPolicy(base_delay_ms=0)


def make_queue(**kwargs) -> InMemoryJobQueue:
    kwargs.setdefault("poll_interval_s", 0.01)
    kwargs.setdefault("backoff", NO_BACKOFF)
    return InMemoryJobQueue(**kwargs)


def pair(a: str, b: str) -> RunMatchingJob:
    return RunMatchingJob(researcher_a_id=a, researcher_b_id=b)


async def test_enqueue_returns_id_and_tracks_pending():
    queue = make_queue()

    job_id = await queue.enqueue(pair("a", "b"))

    job = await queue.get_job(job_id)
    assert job.status == JobStatus.PENDING
    assert job.attempts == 0
    assert job.max_attempts == 3
    assert await queue.pending_count() == 1


async def test_get_job_unknown_id_returns_none():
    assert await make_queue().get_job("missing") is None


async def test_duplicate_pair_returns_existing_id_in_either_order():
    queue = make_queue()

    first = await queue.enqueue(pair("a", "b"))
    second = await queue.enqueue(pair("b", "a"))

    assert first == second
    assert await queue.pending_count() == 1


async def test_jobs_without_fingerprint_are_never_deduplicated():
    queue = make_queue()
    email = SendEmailJob(template_id="welcome", to="a@example.com")

    first = await queue.enqueue(email)
    second = await queue.enqueue(email)

    assert first != second
    assert await queue.pending_count() == 2


async def test_completed_job_no_longer_blocks_duplicates():
    queue = make_queue()
    queue.start(lambda job: asyncio.sleep(0))

    first = await queue.enqueue(pair("a", "b"))
    await queue.wait_for_idle()
    second = await queue.enqueue(pair("a", "b"))
    await queue.wait_for_idle()
    await queue.stop()

    assert first != second


@pytest.mark.parametrize("max_attempts", [0, -1])
async def test_invalid_max_attempts_is_rejected(max_attempts):
    with pytest.raises(ValueError):
        await make_queue().enqueue(pair("a", "b"), EnqueueOptions(max_attempts=max_attempts))


async def test_execution_order_is_priority_then_fifo():
    queue = make_queue()
    executed: list[str] = []

    async def handler(job):
        executed.append(job.payload.user_id)

    await queue.enqueue(MonthlyRefreshJob(user_id="normal-1"))
    await queue.enqueue(
        MonthlyRefreshJob(user_id="background"),
        EnqueueOptions(priority=JobPriority.BACKGROUND),
    )
    await queue.enqueue(
        MonthlyRefreshJob(user_id="interactive"),
        EnqueueOptions(priority=JobPriority.INTERACTIVE),
    )
    await queue.enqueue(MonthlyRefreshJob(user_id="normal-2"))

    queue.start(handler)
    await queue.wait_for_idle()
    await queue.stop()

    assert executed == ["interactive", "normal-1", "normal-2", "background"]


async def test_success_marks_completed():
    queue = make_queue()
    queue.start(lambda job: asyncio.sleep(0))

    job_id = await queue.enqueue(pair("a", "b"))
    await queue.wait_for_idle()
    await queue.stop()

    job = await queue.get_job(job_id)
    assert job.status == JobStatus.COMPLETED
    assert job.attempts == 1
    assert job.completed_at is not None
    assert job.last_error is None


async def test_always_failing_handler_is_dead_lettered_after_max_attempts():
    queue = make_queue()
    calls = 0

    async def handler(job):
        nonlocal calls
        calls += 1
        raise RuntimeError(f"boom {calls}")

    queue.start(handler)
    job_id = await queue.enqueue(pair("a", "b"))
    await queue.wait_for_idle()
    await queue.stop()

    job = await queue.get_job(job_id)
    assert calls == 3
    assert job.status == JobStatus.DEAD
    assert job.attempts == 3
    assert job.last_error == "boom 3"
    assert await queue.pending_count() == 0


async def test_handler_succeeding_on_third_attempt_completes():
    queue = make_queue()
    attempts_seen: list[int] = []

    async def handler(job):
        attempts_seen.append(job.attempts)
        if job.attempts < 3:
            raise RuntimeError("transient")

    queue.start(handler)
    job_id = await queue.enqueue(pair("a", "b"), EnqueueOptions(max_attempts=3))
    await queue.wait_for_idle()
    await queue.stop()

    job = await queue.get_job(job_id)
    assert attempts_seen == [1, 2, 3]
    assert job.status == JobStatus.COMPLETED
    assert job.attempts == 3
    assert job.last_error == "transient"


async def test_empty_exception_message_falls_back_to_class_name():
    queue = make_queue()

    async def handler(job):
        raise KeyError()

    queue.start(handler)
    job_id = await queue.enqueue(pair("a", "b"), EnqueueOptions(max_attempts=1))
    await queue.wait_for_idle()
    await queue.stop()

    job = await queue.get_job(job_id)
    assert job.status == JobStatus.DEAD
    assert job.last_error == "KeyError"


async def test_failed_job_waits_for_backoff_before_retry():
    queue = make_queue(backoff=BackoffPolicy(base_delay_ms=60_000, max_delay_ms=120_000))

    async def handler(job):
        raise RuntimeError("nope")

    queue.start(handler)
    job_id = await queue.enqueue(pair("a", "b"))
    # Returns once the only job is waiting out its retry delay
    await asyncio.sleep(0.05)
    await queue.stop()

    job = await queue.get_job(job_id)
    assert job.status == JobStatus.PENDING
    assert job.attempts == 1
    assert job.retry_after > datetime.now(UTC) + timedelta(seconds=50)
    assert await queue.pending_count() == 1


async def test_stop_waits_for_in_flight_handler():
    queue = make_queue()
    started = asyncio.Event()
    release = asyncio.Event()
    finished = False

    async def handler(job):
        nonlocal finished
        started.set()
        await release.wait()
        finished = True

    queue.start(handler)
    job_id = await queue.enqueue(pair("a", "b"))
    await started.wait()

    stop_task = asyncio.create_task(queue.stop())
    await asyncio.sleep(0.02)
    assert not stop_task.done()

    release.set()
    await stop_task

    assert finished
    assert (await queue.get_job(job_id)).status == JobStatus.COMPLETED


async def test_stop_is_idempotent_and_drains_current_job():
    queue = make_queue()
    job_id = await queue.enqueue(pair("a", "b"))

    queue.start(lambda job: asyncio.sleep(0.01))
    await queue.stop()
    await queue.stop()

    assert not queue.running
    assert (await queue.get_job(job_id)).status == JobStatus.COMPLETED


async def test_start_is_idempotent():
    queue = make_queue()
    calls: list[str] = []

    async def first(job):
        calls.append("first")

    async def second(job):
        calls.append("second")

    queue.start(first)
    queue.start(second)
    await queue.enqueue(pair("a", "b"))
    await queue.wait_for_idle()
    await queue.stop()

    assert calls == ["first"]


async def test_handler_receives_a_copy():
    queue = make_queue()

    async def handler(job):
        job.status = JobStatus.DEAD

    queue.start(handler)
    job_id = await queue.enqueue(pair("a", "b"))
    await queue.wait_for_idle()
    await queue.stop()

    assert (await queue.get_job(job_id)).status == JobStatus.COMPLETED

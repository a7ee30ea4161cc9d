from unittest.mock import AsyncMock

import pytest

from labmatch.v1.infra.jobs.backoff import BackoffPolicy
from labmatch.v1.infra.jobs.memory import InMemoryJobQueue
from labmatch.v1.infra.jobs.models import JobPriority
from labmatch.v1.infra.jobs.payloads import RunMatchingJob
from labmatch.v1.matching.eligibility import EligibilityEngine, EligiblePair, Visibility
from labmatch.v1.matching.triggers import MatchingTriggers


def eligible(a: str, b: str) -> EligiblePair:
    return EligiblePair(a, b, Visibility.VISIBLE, Visibility.VISIBLE, 1, 1)


@pytest.fixture
def queue() -> InMemoryJobQueue:
    return InMemoryJobQueue(backoff=BackoffPolicy(base_delay_ms=0))


@pytest.fixture
def engine(settings) -> EligibilityEngine:
    engine = EligibilityEngine(settings)
    engine.compute = AsyncMock(return_value=[])
    return engine


@pytest.fixture
def triggers(queue, engine, session_factory) -> MatchingTriggers:
    return MatchingTriggers(queue, engine, session_factory)


class TestTriggerPair:
    async def test_canonical_order_and_priority(self, triggers, queue):
        job_id = await triggers.trigger_pair("zoe", "adam", JobPriority.INTERACTIVE)

        job = await queue.get_job(job_id)
        assert job.payload == RunMatchingJob(researcher_a_id="adam", researcher_b_id="zoe")
        assert job.priority == JobPriority.INTERACTIVE

    async def test_either_order_deduplicates(self, triggers, queue):
        first = await triggers.trigger_pair("a", "b")
        second = await triggers.trigger_pair("b", "a")

        assert first == second
        assert await queue.pending_count() == 1

    async def test_self_pair_is_rejected(self, triggers, queue):
        with pytest.raises(ValueError, match="itself"):
            await triggers.trigger_pair("a", "a")

        assert await queue.pending_count() == 0


class TestTriggerPairsForNewEntity:
    async def test_one_job_per_new_selection(self, triggers, queue):
        count = await triggers.trigger_pairs_for_new_entity("m", ["z", "a", "m", "z"])

        assert count == 2
        assert await queue.pending_count() == 2

    async def test_no_targets(self, triggers, queue):
        assert await triggers.trigger_pairs_for_new_entity("m", []) == 0

    async def test_enqueue_failure_propagates(self, engine, session_factory):
        failing = AsyncMock()
        failing.enqueue.side_effect = RuntimeError("backlog unavailable")
        triggers = MatchingTriggers(failing, engine, session_factory)

        with pytest.raises(RuntimeError):
            await triggers.trigger_pairs_for_new_entity("m", ["a"])


class TestEligibilityDrivenTriggers:
    async def test_entity_refresh_is_scoped(self, triggers, engine, queue, mock_session):
        engine.compute.return_value = [eligible("a", "c"), eligible("c", "d")]

        count = await triggers.trigger_all_for_entity("c")

        assert count == 2
        assert await queue.pending_count() == 2
        session, options = engine.compute.await_args.args
        assert session is mock_session
        assert options.for_entity_id == "c"
        assert options.rotation_seed == "test-seed"

    async def test_entity_refresh_with_nothing_eligible(self, triggers, queue):
        assert await triggers.trigger_all_for_entity("c") == 0
        assert await queue.pending_count() == 0

    async def test_scheduled_scan_uses_background_priority(
        self, engine, session_factory
    ):
        queue = AsyncMock()
        engine.compute.return_value = [eligible("a", "b"), eligible("b", "c")]
        triggers = MatchingTriggers(queue, engine, session_factory)

        count = await triggers.trigger_scheduled_scan()

        assert count == 2
        assert engine.compute.await_args.args[1].for_entity_id is None
        for call in queue.enqueue.await_args_list:
            payload, options = call.args
            assert isinstance(payload, RunMatchingJob)
            assert options.priority == JobPriority.BACKGROUND

    async def test_scan_storage_failure_enqueues_nothing(
        self, triggers, engine, queue
    ):
        engine.compute.side_effect = ConnectionError("database is down")

        with pytest.raises(ConnectionError):
            await triggers.trigger_scheduled_scan()

        assert await queue.pending_count() == 0

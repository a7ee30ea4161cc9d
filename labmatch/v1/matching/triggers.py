"""
Matching triggers: turn application events into ``run_matching`` jobs.

Triggers only enqueue. The worker re-checks eligibility before any
evaluation runs, so enqueueing a pair that later turns out ineligible
is harmless.
"""

from collections.abc import Iterable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from labmatch.config.logging import get_logger
from labmatch.v1.infra.jobs.models import EnqueueOptions, JobPriority
from labmatch.v1.infra.jobs.payloads import RunMatchingJob, order_pair
from labmatch.v1.infra.jobs.queue import JobQueue
from labmatch.v1.matching.eligibility import EligibilityEngine

logger = get_logger(__name__)


class MatchingTriggers:
    """Enqueues pair evaluations with the canonical (low, high) ordering."""

    def __init__(
        self,
        queue: JobQueue,
        engine: EligibilityEngine,
        session_factory: async_sessionmaker[AsyncSession],
    ):
        self.queue = queue
        self.engine = engine
        self.session_factory = session_factory

    async def trigger_pair(
        self, first_id: str, second_id: str, priority: int = JobPriority.NORMAL
    ) -> str:
        """Enqueue one pair evaluation and return the job id."""
        if first_id == second_id:
            raise ValueError(f"Cannot match researcher {first_id} with itself")

        low, high = order_pair(first_id, second_id)
        job_id = await self.queue.enqueue(
            RunMatchingJob(researcher_a_id=low, researcher_b_id=high),
            EnqueueOptions(priority=priority),
        )
        logger.info("matching_pair_triggered", pair=f"{low}:{high}", job_id=job_id)
        return job_id

    async def trigger_pairs_for_new_entity(
        self, owner_id: str, target_ids: Iterable[str]
    ) -> int:
        """Enqueue one job per new selection made by ``owner_id``."""
        enqueued = 0
        seen: set[str] = set()

        for target_id in target_ids:
            if target_id == owner_id or target_id in seen:
                continue
            seen.add(target_id)

            low, high = order_pair(owner_id, target_id)
            await self.queue.enqueue(
                RunMatchingJob(researcher_a_id=low, researcher_b_id=high)
            )
            enqueued += 1

        logger.info("matching_pairs_triggered", owner_id=owner_id, enqueued=enqueued)
        return enqueued

    async def trigger_all_for_entity(self, entity_id: str) -> int:
        """Re-evaluate every eligible pair touching ``entity_id``."""
        async with self.session_factory() as session:
            pairs = await self.engine.compute(session, self.engine.options(entity_id))

        for pair in pairs:
            await self.queue.enqueue(
                RunMatchingJob(
                    researcher_a_id=pair.researcher_a_id,
                    researcher_b_id=pair.researcher_b_id,
                )
            )

        logger.info("matching_entity_refresh", entity_id=entity_id, enqueued=len(pairs))
        return len(pairs)

    async def trigger_scheduled_scan(self) -> int:
        """Enqueue every eligible pair at background priority."""
        async with self.session_factory() as session:
            pairs = await self.engine.compute(session, self.engine.options())

        background = EnqueueOptions(priority=JobPriority.BACKGROUND)
        for pair in pairs:
            await self.queue.enqueue(
                RunMatchingJob(
                    researcher_a_id=pair.researcher_a_id,
                    researcher_b_id=pair.researcher_b_id,
                ),
                background,
            )

        logger.info("matching_scan_triggered", enqueued=len(pairs))
        return len(pairs)

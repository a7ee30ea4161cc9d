"""
Job processor: dispatches each payload kind to the collaborator that does the work.

Collaborators (profile pipeline, pair evaluator, mailer, pool expander,
profile refresher) live outside this service. They are injected through
``WorkerDependencies``; anything left unconfigured falls back to a
placeholder that logs and returns.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol, assert_never

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from labmatch.config.logging import get_logger
from labmatch.v1.infra.jobs.models import QueuedJob
from labmatch.v1.infra.jobs.payloads import (
    ExpandMatchPoolJob,
    GenerateProfileJob,
    MonthlyRefreshJob,
    RunMatchingJob,
    SendEmailJob,
    order_pair,
)
from labmatch.v1.infra.jobs.queue import JobHandler
from labmatch.v1.matching.eligibility import EligibilityEngine, EligiblePair
from labmatch.v1.matching.triggers import MatchingTriggers

logger = get_logger(__name__)


class ProfilePipeline(Protocol):
    async def run(self, user_id: str, orcid: str, access_token: str | None) -> None:
        ...


class PairEvaluator(Protocol):
    async def evaluate(self, pair: EligiblePair) -> None:
        ...


class Mailer(Protocol):
    async def send(self, template_id: str, to: str, data: dict[str, Any]) -> None:
        ...


class PoolExpander(Protocol):
    async def expand(self, user_id: str) -> list[str]:
        """Add ``user_id`` to matching group selections, return affected owners."""
        ...


class ProfileRefresher(Protocol):
    async def refresh(self, user_id: str) -> None:
        ...


class PlaceholderCollaborator:
    """Stands in for any collaborator the host application has not wired."""

    def __init__(self, name: str):
        self.name = name

    def _skip(self, operation: str, **context: Any) -> None:
        logger.warning(
            "collaborator_not_configured",
            collaborator=self.name,
            operation=operation,
            **context,
        )

    async def run(self, user_id: str, orcid: str, access_token: str | None) -> None:
        self._skip("run", user_id=user_id)

    async def evaluate(self, pair: EligiblePair) -> None:
        self._skip("evaluate", pair=f"{pair.researcher_a_id}:{pair.researcher_b_id}")

    async def send(self, template_id: str, to: str, data: dict[str, Any]) -> None:
        self._skip("send", template_id=template_id)

    async def expand(self, user_id: str) -> list[str]:
        self._skip("expand", user_id=user_id)
        return []

    async def refresh(self, user_id: str) -> None:
        self._skip("refresh", user_id=user_id)


@dataclass
class WorkerDependencies:
    """Everything the job processor needs to handle every payload kind."""

    session_factory: async_sessionmaker[AsyncSession]
    eligibility: EligibilityEngine
    triggers: MatchingTriggers
    profile_pipeline: ProfilePipeline = field(
        default_factory=lambda: PlaceholderCollaborator("profile_pipeline")
    )
    evaluator: PairEvaluator = field(
        default_factory=lambda: PlaceholderCollaborator("evaluator")
    )
    mailer: Mailer = field(default_factory=lambda: PlaceholderCollaborator("mailer"))
    pool_expander: PoolExpander = field(
        default_factory=lambda: PlaceholderCollaborator("pool_expander")
    )
    profile_refresher: ProfileRefresher = field(
        default_factory=lambda: PlaceholderCollaborator("profile_refresher")
    )


COLLABORATOR_FIELDS = (
    "profile_pipeline",
    "evaluator",
    "mailer",
    "pool_expander",
    "profile_refresher",
)


async def handle_run_matching(payload: RunMatchingJob, deps: WorkerDependencies) -> None:
    """
    Evaluate one pair if it is still eligible.

    Eligibility is recomputed scoped to researcher A. A pair that is no
    longer eligible, or was already evaluated at the current profile
    versions, is skipped without raising so the job does not retry.
    """
    low, high = order_pair(payload.researcher_a_id, payload.researcher_b_id)
    log = logger.bind(pair=f"{low}:{high}")

    async with deps.session_factory() as session:
        pairs = await deps.eligibility.compute(session, deps.eligibility.options(low))

    pair = next((p for p in pairs if p.key == (low, high)), None)
    if pair is None:
        log.info("matching_pair_skipped", reason="not eligible or already evaluated")
        return

    await deps.evaluator.evaluate(pair)

    async with deps.session_factory() as session:
        await deps.eligibility.record_evaluation(session, pair)

    log.info(
        "matching_pair_evaluated",
        profile_version_a=pair.profile_version_a,
        profile_version_b=pair.profile_version_b,
    )


async def handle_expand_match_pool(
    payload: ExpandMatchPoolJob, deps: WorkerDependencies
) -> None:
    """Add the new user to group selections and trigger the new pairs."""
    affected = await deps.pool_expander.expand(payload.user_id)
    if not affected:
        logger.info("match_pool_unchanged", user_id=payload.user_id)
        return

    # Enqueue failures propagate so the job retries, dedup absorbs repeats
    for owner_id in affected:
        await deps.triggers.trigger_pairs_for_new_entity(owner_id, [payload.user_id])

    logger.info(
        "match_pool_expanded", user_id=payload.user_id, affected_owners=len(affected)
    )


def create_job_processor(deps: WorkerDependencies) -> JobHandler:
    """Build the handler passed to ``JobQueue.start``."""

    async def process(job: QueuedJob) -> None:
        payload = job.payload
        match payload:
            case GenerateProfileJob():
                await deps.profile_pipeline.run(
                    payload.user_id, payload.orcid, payload.access_token
                )
            case RunMatchingJob():
                await handle_run_matching(payload, deps)
            case SendEmailJob():
                await deps.mailer.send(payload.template_id, payload.to, payload.data)
            case MonthlyRefreshJob():
                await deps.profile_refresher.refresh(payload.user_id)
            case ExpandMatchPoolJob():
                await handle_expand_match_pool(payload, deps)
            case _:
                assert_never(payload)

    return process

"""
Eligible pair computation.

A pair (A, B) is eligible when either researcher selected the other and
the selection is mutual, or the selected side accepts incoming proposals.
Both researchers need a complete profile, and pairs already evaluated at
exactly the current profile versions are skipped.
"""

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum

from sqlalchemy import or_, select, tuple_
from sqlalchemy.ext.asyncio import AsyncSession

from labmatch.config.logging import get_logger
from labmatch.config.settings import Settings
from labmatch.v1.infra.jobs.payloads import order_pair
from labmatch.v1.matching.models import (
    EvaluationRecord,
    Researcher,
    SelectionEdge,
    SelectionSource,
)
from labmatch.v1.matching.sampler import MATCH_POOL_CAP, Edge, cap_edges

logger = get_logger(__name__)

# Bound on bind parameters per evaluation-record lookup
_EVALUATION_LOOKUP_CHUNK = 500


class Visibility(str, Enum):
    """How a pair's proposals appear to one side."""

    VISIBLE = "visible"
    PENDING_OTHER_INTEREST = "pending_other_interest"


@dataclass(frozen=True)
class ResearcherState:
    allow_incoming: bool
    profile_version: int | None

    @property
    def has_profile(self) -> bool:
        return self.profile_version is not None


@dataclass(frozen=True)
class EligiblePair:
    """Eligible pair in canonical order, ``researcher_a_id < researcher_b_id``."""

    researcher_a_id: str
    researcher_b_id: str
    visibility_a: Visibility
    visibility_b: Visibility
    profile_version_a: int
    profile_version_b: int

    @property
    def key(self) -> tuple[str, str]:
        return self.researcher_a_id, self.researcher_b_id

    @property
    def version_key(self) -> tuple[str, str, int, int]:
        return (
            self.researcher_a_id,
            self.researcher_b_id,
            self.profile_version_a,
            self.profile_version_b,
        )


@dataclass(frozen=True)
class EligibilityOptions:
    """
    Knobs for one eligibility run.

    ``for_entity_id`` restricts the output to pairs touching that entity.
    ``disable_cap`` bypasses the fan-out cap entirely.
    """

    for_entity_id: str | None = None
    cap: int = MATCH_POOL_CAP
    rotation_seed: str | None = None
    disable_cap: bool = False


def _visibility(
    selector_chose_target: bool,
    target_chose_selector: bool,
    selector_allows_incoming: bool,
    target_allows_incoming: bool,
) -> tuple[Visibility, Visibility] | None:
    """(selector side, target side) visibility, None when not eligible."""
    if selector_chose_target and target_chose_selector:
        return Visibility.VISIBLE, Visibility.VISIBLE
    if selector_chose_target and target_allows_incoming:
        return Visibility.VISIBLE, Visibility.PENDING_OTHER_INTEREST
    if target_chose_selector and selector_allows_incoming:
        return Visibility.PENDING_OTHER_INTEREST, Visibility.VISIBLE
    return None


def find_candidate_pairs(
    edges: Sequence[Edge],
    researchers: Mapping[str, ResearcherState],
    options: EligibilityOptions | None = None,
) -> list[EligiblePair]:
    """Cap, canonicalize and classify pairs, without the evaluation filter."""
    options = options or EligibilityOptions()

    retained = (
        list(edges)
        if options.disable_cap
        else cap_edges(edges, options.cap, options.rotation_seed)
    )
    directed = {(edge.owner_id, edge.target_id) for edge in retained}

    if options.for_entity_id is not None:
        entity_id = options.for_entity_id
        retained = [
            edge
            for edge in retained
            if edge.owner_id == entity_id or edge.target_id == entity_id
        ]

    candidates: dict[tuple[str, str], EligiblePair] = {}
    for edge in retained:
        selector_id, target_id = edge.owner_id, edge.target_id
        low, high = order_pair(selector_id, target_id)
        if (low, high) in candidates:
            continue

        selector = researchers.get(selector_id)
        target = researchers.get(target_id)
        if selector is None or target is None:
            continue
        if not (selector.has_profile and target.has_profile):
            continue

        sides = _visibility(
            (selector_id, target_id) in directed,
            (target_id, selector_id) in directed,
            selector.allow_incoming,
            target.allow_incoming,
        )
        if sides is None:
            continue

        selector_visibility, target_visibility = sides
        if selector_id == low:
            pair = EligiblePair(
                low,
                high,
                selector_visibility,
                target_visibility,
                selector.profile_version,
                target.profile_version,
            )
        else:
            pair = EligiblePair(
                low,
                high,
                target_visibility,
                selector_visibility,
                target.profile_version,
                selector.profile_version,
            )
        candidates[(low, high)] = pair

    return list(candidates.values())


def filter_already_evaluated(
    pairs: Iterable[EligiblePair],
    evaluated: set[tuple[str, str, int, int]],
) -> list[EligiblePair]:
    """Drop pairs evaluated at exactly their current versions."""
    return [pair for pair in pairs if pair.version_key not in evaluated]


def compute_eligible_pairs(
    edges: Sequence[Edge],
    researchers: Mapping[str, ResearcherState],
    evaluated: set[tuple[str, str, int, int]],
    options: EligibilityOptions | None = None,
) -> list[EligiblePair]:
    """In-memory eligibility over already loaded data."""
    candidates = find_candidate_pairs(edges, researchers, options)
    return filter_already_evaluated(candidates, evaluated)


class EligibilityEngine:
    """Runs the eligibility computation against the matching tables."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def options(
        self,
        for_entity_id: str | None = None,
        *,
        cap: int | None = None,
        rotation_seed: str | None = None,
        disable_cap: bool = False,
    ) -> EligibilityOptions:
        """Options defaulting to the configured cap and rotation seed."""
        return EligibilityOptions(
            for_entity_id=for_entity_id,
            cap=self.settings.matching_pool_cap if cap is None else cap,
            rotation_seed=rotation_seed or self.settings.matching_rotation_seed,
            disable_cap=disable_cap,
        )

    async def compute(
        self, session: AsyncSession, options: EligibilityOptions | None = None
    ) -> list[EligiblePair]:
        """
        Compute eligible pairs, optionally scoped to one entity.

        Storage errors propagate unchanged; no partial result is returned.
        """
        options = options or self.options()

        edges = await self._load_edges(session, options.for_entity_id)
        if not edges:
            return []

        involved = {edge.owner_id for edge in edges} | {edge.target_id for edge in edges}
        researchers = await self._load_researchers(session, involved)

        candidates = find_candidate_pairs(edges, researchers, options)
        if not candidates:
            return []

        evaluated = await self._load_evaluated(session, [pair.key for pair in candidates])
        pairs = filter_already_evaluated(candidates, evaluated)

        logger.debug(
            "eligible_pairs_computed",
            for_entity_id=options.for_entity_id,
            edges=len(edges),
            candidates=len(candidates),
            eligible=len(pairs),
        )
        return pairs

    async def record_evaluation(self, session: AsyncSession, pair: EligiblePair) -> None:
        """Remember that ``pair`` was evaluated at its current versions."""
        session.add(
            EvaluationRecord(
                researcher_a_id=pair.researcher_a_id,
                researcher_b_id=pair.researcher_b_id,
                profile_version_a=pair.profile_version_a,
                profile_version_b=pair.profile_version_b,
            )
        )
        await session.commit()

    async def _load_edges(
        self, session: AsyncSession, for_entity_id: str | None
    ) -> list[Edge]:
        query = select(
            SelectionEdge.owner_id, SelectionEdge.target_id, SelectionEdge.source
        )

        if for_entity_id is not None:
            # Whole edge sets of every owner touching the entity, so the
            # per-owner cap sees the same input as in an unscoped run
            touching_owners = select(SelectionEdge.owner_id).where(
                or_(
                    SelectionEdge.owner_id == for_entity_id,
                    SelectionEdge.target_id == for_entity_id,
                )
            )
            query = query.where(SelectionEdge.owner_id.in_(touching_owners))

        query = query.order_by(SelectionEdge.owner_id, SelectionEdge.target_id)
        result = await session.execute(query)
        return [
            Edge(owner_id=owner_id, target_id=target_id, source=SelectionSource(source))
            for owner_id, target_id, source in result.all()
        ]

    async def _load_researchers(
        self, session: AsyncSession, researcher_ids: set[str]
    ) -> dict[str, ResearcherState]:
        result = await session.execute(
            select(
                Researcher.id,
                Researcher.allow_incoming_proposals,
                Researcher.profile_version,
            ).where(Researcher.id.in_(sorted(researcher_ids)))
        )
        return {
            researcher_id: ResearcherState(allow_incoming, profile_version)
            for researcher_id, allow_incoming, profile_version in result.all()
        }

    async def _load_evaluated(
        self, session: AsyncSession, keys: list[tuple[str, str]]
    ) -> set[tuple[str, str, int, int]]:
        evaluated: set[tuple[str, str, int, int]] = set()

        for start in range(0, len(keys), _EVALUATION_LOOKUP_CHUNK):
            chunk = keys[start : start + _EVALUATION_LOOKUP_CHUNK]
            result = await session.execute(
                select(
                    EvaluationRecord.researcher_a_id,
                    EvaluationRecord.researcher_b_id,
                    EvaluationRecord.profile_version_a,
                    EvaluationRecord.profile_version_b,
                ).where(
                    tuple_(
                        EvaluationRecord.researcher_a_id,
                        EvaluationRecord.researcher_b_id,
                    ).in_(chunk)
                )
            )
            evaluated.update(tuple(row) for row in result.all())

        return evaluated

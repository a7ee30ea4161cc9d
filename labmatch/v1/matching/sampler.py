"""
Per-owner fan-out cap with deterministic, weekly rotating sampling.

Individual selections always survive the cap. Bulk selections (affiliation
and all-entities) share whatever room is left and are sampled with a PRNG
seeded from the owner id and a rotation seed, so a given owner and week
always produce the same subset while different weeks rotate through the pool.
"""

import hashlib
import random
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TypeVar

from labmatch.v1.matching.models import SelectionSource

MATCH_POOL_CAP = 200

T = TypeVar("T")


@dataclass(frozen=True)
class Edge:
    """Directed selection used by the eligibility computation."""

    owner_id: str
    target_id: str
    source: SelectionSource = SelectionSource.INDIVIDUAL


def current_rotation_seed(now: datetime | None = None) -> str:
    """Default rotation seed, the ISO week of ``now`` as ``YYYY-Www``."""
    year, week, _ = (now or datetime.now(UTC)).isocalendar()
    return f"{year}-W{week:02d}"


def _seed_to_int(seed: str) -> int:
    return int.from_bytes(hashlib.sha256(seed.encode("utf-8")).digest()[:8], "big")


def seeded_sample(items: Sequence[T], k: int, seed: str) -> list[T]:
    """
    Pick ``k`` items with a seeded partial Fisher-Yates shuffle.

    Only the first ``k`` swaps are performed. The input is never mutated.
    ``k <= 0`` yields an empty list and ``k >= len(items)`` returns every
    item in its original order.
    """
    if k <= 0:
        return []
    if k >= len(items):
        return list(items)

    rng = random.Random(_seed_to_int(seed))
    pool = list(items)
    for i in range(k):
        j = rng.randrange(i, len(pool))
        pool[i], pool[j] = pool[j], pool[i]
    return pool[:k]


def cap_edges_for_owner(
    edges: Sequence[Edge],
    cap: int,
    owner_id: str,
    rotation_seed: str | None = None,
) -> list[Edge]:
    """Apply the fan-out cap to one owner's edges."""
    individual = [edge for edge in edges if not edge.source.is_bulk]
    bulk = [edge for edge in edges if edge.source.is_bulk]

    room = cap - len(individual)
    if room <= 0:
        return individual
    if len(bulk) <= room:
        return list(edges)

    seed = owner_id + (rotation_seed or current_rotation_seed())
    return individual + seeded_sample(bulk, room, seed)


def cap_edges(
    edges: Sequence[Edge],
    cap: int = MATCH_POOL_CAP,
    rotation_seed: str | None = None,
) -> list[Edge]:
    """Group edges by owner and cap each owner independently."""
    rotation_seed = rotation_seed or current_rotation_seed()

    by_owner: dict[str, list[Edge]] = {}
    for edge in edges:
        by_owner.setdefault(edge.owner_id, []).append(edge)

    capped: list[Edge] = []
    for owner_id, owner_edges in by_owner.items():
        capped.extend(cap_edges_for_owner(owner_edges, cap, owner_id, rotation_seed))
    return capped

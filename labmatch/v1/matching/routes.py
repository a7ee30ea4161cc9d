"""
Matching trigger endpoints.
"""

from typing import Any

from fastapi import APIRouter, Depends, Request

from labmatch.v1.core.exceptions import create_success_response
from labmatch.v1.infra.jobs.schemas import MatchingTriggerResponse
from labmatch.v1.matching.triggers import MatchingTriggers

router = APIRouter(prefix="/matching", tags=["matching"])


def get_matching_triggers(request: Request) -> MatchingTriggers:
    """Triggers wired to the job queue at application startup."""
    return request.app.state.matching_triggers


@router.post("/scan", response_model=dict)
async def run_scheduled_scan(
    triggers: MatchingTriggers = Depends(get_matching_triggers),
) -> dict[str, Any]:
    """Enqueue every eligible pair at background priority."""

    enqueued = await triggers.trigger_scheduled_scan()
    return create_success_response(
        data=MatchingTriggerResponse(enqueued=enqueued).model_dump()
    )


@router.post("/entities/{entity_id}/refresh", response_model=dict)
async def refresh_entity(
    entity_id: str,
    triggers: MatchingTriggers = Depends(get_matching_triggers),
) -> dict[str, Any]:
    """Re-evaluate every eligible pair touching one researcher."""

    enqueued = await triggers.trigger_all_for_entity(entity_id)
    return create_success_response(
        data=MatchingTriggerResponse(enqueued=enqueued, entity_id=entity_id).model_dump()
    )

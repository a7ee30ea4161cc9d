"""
Job payload types and dedup fingerprints.

Every unit of background work carries one of the payload models below.
The ``type`` field is the discriminator: it selects the handler and the
deduplication rule that applies to the job.
"""

import hashlib
from typing import Annotated, Any, Literal, assert_never

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class _Payload(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class GenerateProfileJob(_Payload):
    """Run the profile ingestion pipeline for one user."""

    type: Literal["generate_profile"] = "generate_profile"
    user_id: str
    orcid: str
    access_token: str | None = None


class RunMatchingJob(_Payload):
    """Evaluate one researcher pair."""

    type: Literal["run_matching"] = "run_matching"
    researcher_a_id: str
    researcher_b_id: str


class SendEmailJob(_Payload):
    """Send one notification email."""

    type: Literal["send_email"] = "send_email"
    template_id: str
    to: str
    data: dict[str, Any] = Field(default_factory=dict)


class MonthlyRefreshJob(_Payload):
    """Check one user for new publications."""

    type: Literal["monthly_refresh"] = "monthly_refresh"
    user_id: str


class ExpandMatchPoolJob(_Payload):
    """Add a newly joined user to existing group selections."""

    type: Literal["expand_match_pool"] = "expand_match_pool"
    user_id: str


JobPayload = Annotated[
    GenerateProfileJob
    | RunMatchingJob
    | SendEmailJob
    | MonthlyRefreshJob
    | ExpandMatchPoolJob,
    Field(discriminator="type"),
]

_payload_adapter: TypeAdapter[JobPayload] = TypeAdapter(JobPayload)


def parse_payload(data: dict[str, Any]) -> JobPayload:
    """Validate a stored payload dict back into its payload model."""
    return _payload_adapter.validate_python(data)


def dump_payload(payload: JobPayload) -> dict[str, Any]:
    """Serialize a payload for JSON storage."""
    return payload.model_dump(mode="json")


def order_pair(first_id: str, second_id: str) -> tuple[str, str]:
    """Return the two ids as (low, high) under lexicographic order."""
    if first_id < second_id:
        return first_id, second_id
    return second_id, first_id


def _digest(*parts: str) -> str:
    return hashlib.sha256(":".join(parts).encode("utf-8")).hexdigest()


def compute_payload_hash(payload: JobPayload) -> str | None:
    """
    Compute the dedup fingerprint for a payload.

    Pair evaluations hash the sorted pair so both argument orders collapse
    into one job. One-off actions return None and are never deduplicated.
    """
    match payload:
        case RunMatchingJob(researcher_a_id=a_id, researcher_b_id=b_id):
            low, high = order_pair(a_id, b_id)
            return _digest(payload.type, low, high)
        case GenerateProfileJob(user_id=user_id) | ExpandMatchPoolJob(user_id=user_id):
            return _digest(payload.type, user_id)
        case SendEmailJob() | MonthlyRefreshJob():
            return None
        case _:
            assert_never(payload)

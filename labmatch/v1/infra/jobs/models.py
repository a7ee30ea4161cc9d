"""
Job system models: lifecycle enums, the backlog table, and the in-process job snapshot.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, IntEnum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, TIMESTAMP, CheckConstraint, Index, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from labmatch.infra.database import Base
from labmatch.v1.infra.jobs.payloads import JobPayload, parse_payload

DEFAULT_MAX_ATTEMPTS = 3


class JobStatus(str, Enum):
    """Job status enumeration."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    DEAD = "dead"


ACTIVE_STATUSES = (JobStatus.PENDING, JobStatus.PROCESSING)


class JobPriority(IntEnum):
    """Named priority tiers, higher values are serviced first."""

    BACKGROUND = -10
    NORMAL = 0
    INTERACTIVE = 10


@dataclass
class EnqueueOptions:
    """Per-enqueue overrides."""

    priority: int = JobPriority.NORMAL
    max_attempts: int | None = None


@dataclass
class QueuedJob:
    """Snapshot of a job as handed to handlers and returned by lookups."""

    id: str
    payload: JobPayload
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    priority: int = JobPriority.NORMAL
    payload_hash: str | None = None
    last_error: str | None = None
    retry_after: datetime | None = None
    enqueued_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def type(self) -> str:
        return self.payload.type

    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def is_ready(self, now: datetime) -> bool:
        """Whether backoff allows the job to be claimed at ``now``."""
        return self.retry_after is None or self.retry_after <= now


def error_message(exc: BaseException) -> str:
    """Message recorded as ``last_error``, never empty."""
    message = str(exc)
    return message if message else exc.__class__.__name__


class Job(Base):
    """
    Durable backlog row shared by every worker process.

    Rows are claimed with ``FOR UPDATE SKIP LOCKED`` so concurrent workers
    never pick up the same job.
    """

    __tablename__ = "jobs"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    type: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Payload discriminator"
    )
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, comment="Job-specific parameters"
    )
    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=JobStatus.PENDING.value,
        comment="Job status: pending|processing|completed|dead",
    )
    priority: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=JobPriority.NORMAL.value,
        comment="Higher is serviced first",
    )
    attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, comment="Number of claims made"
    )
    max_attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=DEFAULT_MAX_ATTEMPTS
    )
    payload_hash: Mapped[str | None] = mapped_column(
        String(64), nullable=True, comment="Dedup fingerprint, NULL never dedups"
    )
    last_error: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Last error message"
    )
    retry_after: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True, comment="Earliest time to claim"
    )
    locked_by: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Worker ID that claimed the job"
    )

    # Timestamps
    enqueued_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        default=lambda: datetime.now(UTC),
    )
    started_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'dead')",
            name="jobs_status_check",
        ),
        CheckConstraint("attempts <= max_attempts", name="jobs_attempts_check"),
        Index("ix_jobs_status_priority_enqueued_at", "status", "priority", "enqueued_at"),
        Index("ix_jobs_payload_hash_status", "payload_hash", "status"),
    )

    def is_active(self) -> bool:
        """Check if job is in an active state (pending, processing)."""
        return self.status in (JobStatus.PENDING.value, JobStatus.PROCESSING.value)

    def to_queued_job(self) -> QueuedJob:
        """Convert the row into the snapshot handed to handlers."""
        return QueuedJob(
            id=str(self.id),
            payload=parse_payload(self.payload),
            status=JobStatus(self.status),
            attempts=self.attempts,
            max_attempts=self.max_attempts,
            priority=self.priority,
            payload_hash=self.payload_hash,
            last_error=self.last_error,
            retry_after=self.retry_after,
            enqueued_at=self.enqueued_at,
            started_at=self.started_at,
            completed_at=self.completed_at,
        )

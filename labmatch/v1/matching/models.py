"""
Matching tables: researchers, their directed selections, and evaluation records.
"""

from datetime import UTC, datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import (
    TIMESTAMP,
    Boolean,
    CheckConstraint,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from labmatch.infra.database import Base


class SelectionSource(str, Enum):
    """How a selection edge was created."""

    INDIVIDUAL = "individual"
    AFFILIATION = "affiliation"
    ALL_ENTITIES = "all_entities"

    @property
    def is_bulk(self) -> bool:
        return self is not SelectionSource.INDIVIDUAL


class Researcher(Base):
    """Matching-relevant view of a researcher."""

    __tablename__ = "researchers"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    allow_incoming_proposals: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Accept pairings the researcher did not select",
    )
    profile_version: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        comment="Current profile version, NULL until the profile is complete",
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        default=lambda: datetime.now(UTC),
    )

    @property
    def has_profile(self) -> bool:
        return self.profile_version is not None


class SelectionEdge(Base):
    """Directed selection ``owner -> target``."""

    __tablename__ = "selection_edges"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    owner_id: Mapped[str] = mapped_column(Text, nullable=False)
    target_id: Mapped[str] = mapped_column(Text, nullable=False)
    source: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=SelectionSource.INDIVIDUAL.value,
        comment="individual|affiliation|all_entities",
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        default=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        UniqueConstraint("owner_id", "target_id", name="uq_selection_edges_owner_target"),
        CheckConstraint(
            "source IN ('individual', 'affiliation', 'all_entities')",
            name="selection_edges_source_check",
        ),
        CheckConstraint("owner_id <> target_id", name="selection_edges_no_self_check"),
        Index("ix_selection_edges_target_id", "target_id"),
    )


class EvaluationRecord(Base):
    """A pair evaluated at a specific pair of profile versions."""

    __tablename__ = "evaluation_records"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    researcher_a_id: Mapped[str] = mapped_column(Text, nullable=False)
    researcher_b_id: Mapped[str] = mapped_column(Text, nullable=False)
    profile_version_a: Mapped[int] = mapped_column(Integer, nullable=False)
    profile_version_b: Mapped[int] = mapped_column(Integer, nullable=False)
    evaluated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        default=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        Index(
            "ix_evaluation_records_pair_versions",
            "researcher_a_id",
            "researcher_b_id",
            "profile_version_a",
            "profile_version_b",
        ),
    )

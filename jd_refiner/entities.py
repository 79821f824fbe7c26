# jd_refiner/entities.py
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, declarative_base, mapped_column, relationship

from typing import TypeAlias
UUID: TypeAlias = str

Base = declarative_base()

# JSONB on Postgres, plain JSON (TEXT) on SQLite
JsonDocument = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SavedAnalysis(Base):
    __tablename__ = "saved_analysis"

    id: Mapped[UUID] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )

    user_id: Mapped[str] = mapped_column(String(255), nullable=False)

    title: Mapped[str] = mapped_column(
        String,
        nullable=False,
        server_default=text("''"),
    )

    # original intake answers; never rewritten after creation
    intake_data: Mapped[dict[str, object]] = mapped_column(JsonDocument, nullable=False, default=dict)
    # current derived analysis; replaced wholesale on each refinement
    analysis: Mapped[dict[str, object]] = mapped_column(JsonDocument, nullable=False, default=dict)

    is_finalized: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    finalized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # optimistic concurrency token, bumped by every accepted refinement
    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        server_default=text("1"),
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    refinements: Mapped[list["RefinementMessage"]] = relationship(
        back_populates="saved_analysis",
        order_by="RefinementMessage.sequence_number",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_saved_analysis_user_id", "user_id"),
        Index("ix_saved_analysis_user_created", "user_id", "created_at"),
    )


class RefinementMessage(Base):
    __tablename__ = "refinement_message"

    id: Mapped[UUID] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )

    analysis_id: Mapped[UUID] = mapped_column(
        String(36),
        ForeignKey("saved_analysis.id", ondelete="CASCADE"),
        nullable=False,
    )

    role: Mapped[str] = mapped_column(String(20), nullable=False)  # user | assistant
    content: Mapped[str] = mapped_column(Text, nullable=False)

    changed_sections: Mapped[list[str]] = mapped_column(JsonDocument, nullable=False, default=list)
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False)

    # point-in-time copy of the analysis document
    analysis_snapshot: Mapped[dict[str, object]] = mapped_column(JsonDocument, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    saved_analysis: Mapped[SavedAnalysis] = relationship(back_populates="refinements")

    __table_args__ = (
        UniqueConstraint("analysis_id", "sequence_number", name="uq_refinement_analysis_sequence"),
    )

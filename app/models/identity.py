import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Visibility(enum.Enum):
    approved = "approved"
    blurred = "blurred"
    anonymized = "anonymized"
    pending = "pending"
    removed = "removed"


class ReferenceType(enum.Enum):
    person = "person"
    link = "link"


class ReferenceRole(enum.Enum):
    heard_from = "heard_from"
    witness = "witness"
    source = "source"
    related = "related"


class ClaimStatus(enum.Enum):
    pending = "pending"
    approved = "approved"
    declined = "declined"


class MentionStatus(enum.Enum):
    pending = "pending"
    context = "context"
    ignored = "ignored"
    promoted = "promoted"


class MentionSource(enum.Enum):
    llm = "llm"
    user = "user"


class EventStatus(enum.Enum):
    published = "published"
    pending = "pending"
    private = "private"


# ---------------------------------------------------------------------------
# Contributors & People
# ---------------------------------------------------------------------------


class Contributor(Base):
    __tablename__ = "contributors"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    relation: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    trusted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    email: Mapped[str | None] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )


class Person(Base):
    __tablename__ = "people"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    canonical_name: Mapped[str] = mapped_column(String(255), nullable=False)
    visibility: Mapped[Visibility] = mapped_column(
        Enum(Visibility), nullable=False, default=Visibility.pending
    )
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("contributors.id")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )

    aliases: Mapped[list["PersonAlias"]] = relationship(
        back_populates="person", cascade="all, delete-orphan"
    )


class PersonAlias(Base):
    __tablename__ = "person_aliases"
    __table_args__ = (Index("ix_person_aliases_alias", "alias"),)

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    person_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("people.id", ondelete="CASCADE"), index=True
    )
    alias: Mapped[str] = mapped_column(String(255), nullable=False)
    kind: Mapped[str | None] = mapped_column(String(40))
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("contributors.id")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )

    person: Mapped[Person] = relationship(back_populates="aliases")


class PersonClaim(Base):
    __tablename__ = "person_claims"
    __table_args__ = (
        UniqueConstraint("person_id", "contributor_id", name="uq_person_claims_pair"),
        UniqueConstraint("contributor_id", name="uq_person_claims_contributor"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    person_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("people.id", ondelete="CASCADE"), index=True
    )
    contributor_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("contributors.id", ondelete="CASCADE")
    )
    status: Mapped[ClaimStatus] = mapped_column(
        Enum(ClaimStatus), nullable=False, default=ClaimStatus.pending
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    approved_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("contributors.id")
    )


# ---------------------------------------------------------------------------
# Notes
# ---------------------------------------------------------------------------


class Event(Base):
    __tablename__ = "timeline_events"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    year_end: Mapped[int | None] = mapped_column(Integer)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    preview: Mapped[str | None] = mapped_column(Text)
    full_entry: Mapped[str | None] = mapped_column(Text)
    why_included: Mapped[str | None] = mapped_column(Text)
    contributor_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("contributors.id"), index=True
    )
    status: Mapped[EventStatus] = mapped_column(
        Enum(EventStatus), nullable=False, default=EventStatus.pending
    )
    privacy_level: Mapped[str] = mapped_column(
        String(20), nullable=False, default="family"
    )
    timing_certainty: Mapped[str | None] = mapped_column(String(20))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )

    contributor: Mapped[Contributor | None] = relationship()
    references: Mapped[list["EventReference"]] = relationship(
        back_populates="event", cascade="all, delete-orphan"
    )


class EventReference(Base):
    __tablename__ = "event_references"
    __table_args__ = (
        Index("ix_event_references_event_id", "event_id"),
        Index("ix_event_references_person_id", "person_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    event_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("timeline_events.id", ondelete="CASCADE"),
        nullable=False,
    )
    type: Mapped[ReferenceType] = mapped_column(Enum(ReferenceType), nullable=False)
    person_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("people.id", ondelete="SET NULL")
    )
    url: Mapped[str | None] = mapped_column(String(2000))
    display_name: Mapped[str | None] = mapped_column(String(255))
    role: Mapped[ReferenceRole | None] = mapped_column(Enum(ReferenceRole))
    note: Mapped[str | None] = mapped_column(Text)
    relationship_to_subject: Mapped[str | None] = mapped_column(String(40))
    visibility: Mapped[Visibility] = mapped_column(
        Enum(Visibility), nullable=False, default=Visibility.pending
    )
    added_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("contributors.id")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )

    event: Mapped[Event] = relationship(back_populates="references")
    person: Mapped[Person | None] = relationship()


class Mention(Base):
    __tablename__ = "note_mentions"
    __table_args__ = (
        UniqueConstraint(
            "event_id",
            "normalized_text",
            "source",
            name="uq_note_mentions_event_norm_source",
        ),
        Index("ix_note_mentions_event_id", "event_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    event_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("timeline_events.id", ondelete="CASCADE"),
        nullable=False,
    )
    mention_text: Mapped[str] = mapped_column(String(255), nullable=False)
    normalized_text: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[MentionStatus] = mapped_column(
        Enum(MentionStatus), nullable=False, default=MentionStatus.pending
    )
    visibility: Mapped[Visibility] = mapped_column(
        Enum(Visibility), nullable=False, default=Visibility.pending
    )
    display_label: Mapped[str | None] = mapped_column(String(255))
    source: Mapped[MentionSource] = mapped_column(
        Enum(MentionSource), nullable=False, default=MentionSource.llm
    )
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("contributors.id", ondelete="SET NULL")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )


# ---------------------------------------------------------------------------
# Visibility preferences
# ---------------------------------------------------------------------------


class VisibilityPreference(Base):
    __tablename__ = "visibility_preferences"
    __table_args__ = (
        UniqueConstraint(
            "person_id", "contributor_id", name="uq_visibility_preferences_pair"
        ),
        # NULL contributor_id rows are distinct under the pair constraint.
        Index(
            "uq_visibility_preferences_person_default",
            "person_id",
            unique=True,
            postgresql_where=text("contributor_id IS NULL"),
            sqlite_where=text("contributor_id IS NULL"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    person_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("people.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    contributor_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("contributors.id", ondelete="CASCADE")
    )
    visibility: Mapped[Visibility] = mapped_column(Enum(Visibility), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

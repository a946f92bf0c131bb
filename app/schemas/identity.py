from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.models.identity import (
    EventStatus,
    MentionStatus,
    ReferenceRole,
    ReferenceType,
    Visibility,
)


# ---------------------------------------------------------------------------
# Records consumed by the resolution core
# ---------------------------------------------------------------------------


class ContributorRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    relation: str = ""
    trusted: bool = False


class PersonRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    canonical_name: str
    visibility: Visibility | None = None
    created_by: UUID | None = None
    aliases: list[str] = Field(default_factory=list)


class EventReferenceRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    event_id: UUID
    type: ReferenceType
    person_id: UUID | None = None
    url: str | None = None
    display_name: str | None = None
    role: ReferenceRole | None = None
    note: str | None = None
    relationship_to_subject: str | None = None
    visibility: Visibility | None = None
    added_by: UUID | None = None
    # Contributor who authored the note; keys the per-author preference.
    author_id: UUID | None = None
    person: PersonRecord | None = None


class VisibilityPreferenceRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    person_id: UUID
    contributor_id: UUID | None = None
    visibility: Visibility


class PersonPreferences(BaseModel):
    """Preference rows for one person.

    ``available`` is False when the rows could not be loaded; resolution must
    then fail toward privacy instead of treating the gap as "no opinion".
    """

    global_: Visibility | None = None
    by_contributor: dict[UUID, Visibility] = Field(default_factory=dict)
    available: bool = True

    def for_author(self, contributor_id: UUID | None) -> Visibility | None:
        if contributor_id is None:
            return None
        return self.by_contributor.get(contributor_id)


class MentionRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    event_id: UUID | None = None
    mention_text: str
    visibility: Visibility = Visibility.pending
    display_label: str | None = None
    status: MentionStatus = MentionStatus.pending


# ---------------------------------------------------------------------------
# Redacted references
# ---------------------------------------------------------------------------


class AuthorPayload(BaseModel):
    """Raw naming data kept server-side for masking; never serialised."""

    author_label: str
    aliases: list[str] = Field(default_factory=list)
    render_label: str
    identity_state: Visibility
    media_presentation: str


class RedactedReferenceRead(BaseModel):
    id: UUID
    type: ReferenceType
    url: str | None = None
    display_name: str | None = None
    role: ReferenceRole | None = None
    note: str | None = None
    visibility: Visibility
    identity_state: Visibility
    relationship_to_subject: str | None = None
    person_display_name: str | None = None
    media_presentation: str
    render_label: str


class RedactedReference(RedactedReferenceRead):
    author_payload: AuthorPayload | None = None


# ---------------------------------------------------------------------------
# Identity settings
# ---------------------------------------------------------------------------


class IdentityUpdate(BaseModel):
    # Loosely typed; IdentityService.update validates each field per scope.
    scope: Any = None
    visibility: Any = None
    reference_id: Any = None
    contributor_id: Any = None
    display_name: Any = None


class IdentityUpdateResult(BaseModel):
    success: bool = True
    person_id: UUID | None = None


class IdentityPerson(BaseModel):
    id: UUID
    name: str | None = None


class ContributorSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str | None = None
    relation: str | None = None


class AuthorPreferenceRead(BaseModel):
    contributor_id: UUID
    visibility: Visibility
    name: str | None = None
    relation: str | None = None


class IdentityEventRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    year: int
    year_end: int | None = None
    timing_certainty: str | None = None
    status: EventStatus | None = None
    privacy_level: str | None = None
    contributor_id: UUID | None = None
    contributor: ContributorSummary | None = None


class IdentityNoteRead(BaseModel):
    reference_id: UUID
    visibility_override: Visibility
    effective_visibility: Visibility
    base_visibility: Visibility
    relationship_to_subject: str | None = None
    role: ReferenceRole | None = None
    event: IdentityEventRead


class IdentitySettingsRead(BaseModel):
    person: IdentityPerson | None = None
    default_visibility: Visibility = Visibility.pending
    default_source: str = "unknown"
    contributor_name: str | None = None
    author_preferences: list[AuthorPreferenceRead] = Field(default_factory=list)
    notes: list[IdentityNoteRead] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Rendered notes
# ---------------------------------------------------------------------------


class RenderedEventRead(BaseModel):
    id: UUID
    title: str
    year: int
    year_end: int | None = None
    preview: str | None = None
    full_entry: str | None = None
    why_included: str | None = None
    contributor_id: UUID | None = None
    status: EventStatus | None = None
    privacy_level: str | None = None
    timing_certainty: str | None = None
    created_at: datetime | None = None
    references: list[RedactedReferenceRead] = Field(default_factory=list)

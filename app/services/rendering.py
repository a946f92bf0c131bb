"""Read path for the feed and single-note surfaces.

One batch of references, mentions and preferences is loaded per request, then
every event goes through the same redact, mask, strip sequence.
"""

import logging
from collections.abc import Sequence
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import NotFoundError, StorageError
from app.models.identity import Event
from app.observability import STORAGE_ERRORS
from app.schemas.identity import (
    EventReferenceRecord,
    MentionRecord,
    PersonPreferences,
    RenderedEventRead,
)
from app.services.masking import ContentMasker, MentionDetector
from app.services.preferences import PreferenceRepo, PreferenceStore
from app.services.references import (
    Resolver,
    legacy_rank_max_resolver,
    masking_fallbacks,
    redact_references,
    resolve_reference,
    strip_author_payload,
)
from app.services.repositories import (
    EventRepository,
    MentionRepository,
    ReferenceRepository,
)

logger = logging.getLogger(__name__)


def render_event(
    event: Event,
    refs: Sequence[EventReferenceRecord],
    mentions: Sequence[MentionRecord],
    preferences: dict[UUID, PersonPreferences],
    detector: MentionDetector | None = None,
    resolver: Resolver = resolve_reference,
) -> RenderedEventRead:
    redacted = redact_references(
        refs, preferences, include_author_payload=True, resolver=resolver
    )
    masker = ContentMasker(
        redacted, [*mentions, *masking_fallbacks(refs, redacted)], detector
    )
    return RenderedEventRead(
        id=event.id,
        title=event.title,
        year=event.year,
        year_end=event.year_end,
        preview=masker.mask(event.preview),
        full_entry=masker.mask(event.full_entry),
        why_included=masker.mask(event.why_included),
        contributor_id=event.contributor_id,
        status=event.status,
        privacy_level=event.privacy_level,
        timing_certainty=event.timing_certainty,
        created_at=event.created_at,
        references=strip_author_payload(redacted),
    )


class RenderService:
    def __init__(
        self,
        events: EventRepository,
        references: ReferenceRepository,
        mentions: MentionRepository,
        preferences: PreferenceRepo,
        detector: MentionDetector | None = None,
        legacy_rank_max: bool = False,
    ):
        self.events = events
        self.references = references
        self.mentions = mentions
        self.preferences = preferences
        self.detector = detector
        self.resolver = (
            legacy_rank_max_resolver if legacy_rank_max else resolve_reference
        )

    @classmethod
    def from_session(
        cls, db: Session, detector: MentionDetector | None = None
    ) -> "RenderService":
        return cls(
            EventRepository(db),
            ReferenceRepository(db),
            MentionRepository(db),
            PreferenceStore(db),
            detector=detector,
            legacy_rank_max=settings.legacy_rank_max_resolution,
        )

    def render_events(self, events: Sequence[Event]) -> list[RenderedEventRead]:
        if not events:
            return []
        event_ids = [event.id for event in events]
        try:
            refs_by_event = self.references.list_for_events(event_ids)
            mentions_by_event = self.mentions.list_for_events(event_ids)
        except SQLAlchemyError as exc:
            STORAGE_ERRORS.labels("load_render_inputs").inc()
            logger.exception("Failed to load references for %d events", len(events))
            raise StorageError("Failed to load notes") from exc

        person_ids = {
            ref.person_id
            for refs in refs_by_event.values()
            for ref in refs
            if ref.person_id
        }
        author_ids = {event.contributor_id for event in events}
        preferences = self.preferences.get_preferences_for_people(
            person_ids, author_ids
        )
        return [
            render_event(
                event,
                refs_by_event.get(event.id, []),
                mentions_by_event.get(event.id, []),
                preferences,
                detector=self.detector,
                resolver=self.resolver,
            )
            for event in events
        ]

    def list_events(self, limit: int, offset: int) -> list[RenderedEventRead]:
        try:
            events = self.events.list(limit, offset)
        except SQLAlchemyError as exc:
            STORAGE_ERRORS.labels("list_events").inc()
            logger.exception("Failed to list events")
            raise StorageError("Failed to load notes") from exc
        return self.render_events(events)

    def get_event(self, event_id) -> RenderedEventRead:
        event = self.events.get(event_id)
        if event is None:
            raise NotFoundError("Event not found")
        return self.render_events([event])[0]

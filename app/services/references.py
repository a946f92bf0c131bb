import logging
from collections.abc import Callable, Iterable
from uuid import UUID

from app.models.identity import ReferenceType, Visibility
from app.observability import REDACTION_FALLBACKS
from app.schemas.identity import (
    AuthorPayload,
    EventReferenceRecord,
    MentionRecord,
    PersonPreferences,
    RedactedReference,
    RedactedReferenceRead,
)
from app.services.visibility import (
    coerce_visibility,
    normalize_visibility,
    resolve_most_private,
    resolve_unavailable,
    resolve_visibility,
)

logger = logging.getLogger(__name__)

FALLBACK_LABEL = "someone"

RELATIONSHIP_DISPLAY = {
    "parent": "a parent",
    "child": "a child",
    "sibling": "a sibling",
    "cousin": "a cousin",
    "aunt_uncle": "an aunt or uncle",
    "niece_nephew": "a niece or nephew",
    "grandparent": "a grandparent",
    "grandchild": "a grandchild",
    "in_law": "an in-law",
    "spouse": "a spouse",
    "friend": "a friend",
    "neighbor": "a neighbor",
    "coworker": "a coworker",
    "classmate": "a classmate",
    "acquaintance": "an acquaintance",
    "other": FALLBACK_LABEL,
    "unknown": FALLBACK_LABEL,
}

Resolver = Callable[[EventReferenceRecord, PersonPreferences | None], Visibility]


def relationship_label(relationship: str | None) -> str | None:
    if not relationship:
        return None
    return RELATIONSHIP_DISPLAY.get(relationship.strip().lower())


def initials(name: str | None) -> str:
    parts = (name or "").split()
    if not parts:
        return FALLBACK_LABEL
    if len(parts) == 1:
        return f"{parts[0][0].upper()}."
    return f"{parts[0][0].upper()}.{parts[-1][0].upper()}."


def render_label(
    name: str | None,
    visibility: Visibility,
    relationship: str | None = None,
    include_relationship: bool = False,
) -> str:
    """Label a viewer may see for a person at ``visibility``."""
    phrase = relationship_label(relationship)
    if visibility is Visibility.approved:
        if not name:
            return phrase or FALLBACK_LABEL
        if include_relationship and phrase and phrase != FALLBACK_LABEL:
            return f"{name} ({phrase})"
        return name
    if visibility is Visibility.blurred:
        return initials(name)
    if visibility is Visibility.removed:
        return ""
    return phrase or FALLBACK_LABEL


def resolve_reference(
    ref: EventReferenceRecord, preferences: PersonPreferences | None
) -> Visibility:
    """Canonical precedence-chain resolution for one person reference."""
    person_base = ref.person.visibility if ref.person else None
    if preferences is not None and not preferences.available:
        return resolve_unavailable(ref.visibility, person_base)
    if preferences is None:
        preferences = PersonPreferences()
    return resolve_visibility(
        ref.visibility,
        preferences.for_author(ref.author_id),
        preferences.global_,
        person_base,
    )


def _person_names(ref: EventReferenceRecord) -> tuple[str | None, list[str]]:
    if ref.person is None:
        return ref.display_name, []
    canonical = ref.person.canonical_name
    aliases = [
        alias
        for alias in ref.person.aliases
        if alias and alias.strip() and alias.strip().lower() != canonical.lower()
    ]
    return canonical, aliases


def _redact_link(
    ref: EventReferenceRecord, include_author_payload: bool
) -> RedactedReference | None:
    visibility = normalize_visibility(ref.visibility)
    if visibility is Visibility.removed:
        return None
    label = ref.display_name or ""
    payload = None
    if include_author_payload:
        payload = AuthorPayload(
            author_label=label,
            render_label=label,
            identity_state=visibility,
            media_presentation="normal",
        )
    return RedactedReference(
        id=ref.id,
        type=ReferenceType.link,
        url=ref.url,
        display_name=ref.display_name,
        role=ref.role,
        note=ref.note,
        visibility=visibility,
        identity_state=visibility,
        media_presentation="normal",
        render_label=label,
        author_payload=payload,
    )


def _redact_person(
    ref: EventReferenceRecord,
    preferences: PersonPreferences | None,
    resolver: Resolver,
    include_author_payload: bool,
    include_relationship: bool,
) -> RedactedReference | None:
    effective = resolver(ref, preferences)
    if effective is Visibility.removed:
        return None
    name, aliases = _person_names(ref)
    label = render_label(
        name, effective, ref.relationship_to_subject, include_relationship
    )
    media = "blurred" if effective is Visibility.blurred else "normal"
    payload = None
    if include_author_payload:
        payload = AuthorPayload(
            author_label=name or FALLBACK_LABEL,
            aliases=aliases,
            render_label=label,
            identity_state=effective,
            media_presentation=media,
        )
    return RedactedReference(
        id=ref.id,
        type=ReferenceType.person,
        role=ref.role,
        note=ref.note,
        visibility=effective,
        identity_state=effective,
        relationship_to_subject=ref.relationship_to_subject,
        person_display_name=label,
        media_presentation=media,
        render_label=label,
        author_payload=payload,
    )


def redact_references(
    refs: Iterable[EventReferenceRecord],
    preferences: dict[UUID, PersonPreferences] | None = None,
    include_author_payload: bool = False,
    include_relationship: bool = False,
    resolver: Resolver = resolve_reference,
) -> list[RedactedReference]:
    """Project raw references into the list a viewer may receive.

    ``preferences`` is the request's single snapshot keyed by person id.
    Entries resolving to ``removed`` are dropped. When
    ``include_author_payload`` is set the raw names needed for masking ride
    along in ``author_payload``; callers must ``strip_author_payload`` before
    anything leaves the process.
    """
    preferences = preferences or {}
    redacted: list[RedactedReference] = []
    for ref in refs:
        try:
            if ref.type is ReferenceType.link:
                item = _redact_link(ref, include_author_payload)
            else:
                item = _redact_person(
                    ref,
                    preferences.get(ref.person_id) if ref.person_id else None,
                    resolver,
                    include_author_payload,
                    include_relationship,
                )
        except Exception:
            # Degrade to removed for this reference only.
            REDACTION_FALLBACKS.labels("error").inc()
            logger.exception("Failed to redact reference %s; dropping it", ref.id)
            continue
        if item is not None:
            redacted.append(item)
    return redacted


def strip_author_payload(
    refs: Iterable[RedactedReference],
) -> list[RedactedReferenceRead]:
    return [
        RedactedReferenceRead(**ref.model_dump(exclude={"author_payload"}))
        for ref in refs
    ]


def masking_fallbacks(
    refs: Iterable[EventReferenceRecord],
    redacted: Iterable[RedactedReference],
) -> list[MentionRecord]:
    """Mask terms for person references that did not survive redaction.

    Dropped references are absent from the masking candidates, so their raw
    names are masked through the mention path with the fallback label.
    """
    kept = {ref.id for ref in redacted}
    fallbacks: list[MentionRecord] = []
    for ref in refs:
        if ref.type is not ReferenceType.person or ref.id in kept:
            continue
        name, aliases = _person_names(ref)
        for text in [name, *aliases]:
            if text and text.strip():
                fallbacks.append(
                    MentionRecord(
                        event_id=ref.event_id,
                        mention_text=text.strip(),
                        visibility=Visibility.removed,
                        display_label=FALLBACK_LABEL,
                    )
                )
    return fallbacks


def legacy_rank_max_resolver(
    ref: EventReferenceRecord, preferences: PersonPreferences | None
) -> Visibility:
    """Adapter for the deprecated rank-max feed path."""
    person_base = ref.person.visibility if ref.person else None
    return resolve_most_private(
        coerce_visibility(ref.visibility), coerce_visibility(person_base)
    )

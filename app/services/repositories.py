import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Protocol
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.errors import StorageError
from app.models.identity import (
    ClaimStatus,
    Contributor,
    Event,
    EventReference,
    Mention,
    MentionStatus,
    Person,
    PersonAlias,
    PersonClaim,
    ReferenceType,
    Visibility,
)
from app.schemas.identity import (
    ContributorRecord,
    EventReferenceRecord,
    IdentityEventRead,
    MentionRecord,
    PersonRecord,
)
from app.services.common import apply_pagination, coerce_uuid

logger = logging.getLogger(__name__)


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def person_record(person: Person) -> PersonRecord:
    return PersonRecord(
        id=person.id,
        canonical_name=person.canonical_name,
        visibility=person.visibility,
        created_by=person.created_by,
        aliases=[alias.alias for alias in person.aliases],
    )


def reference_record(
    ref: EventReference, author_id: UUID | None
) -> EventReferenceRecord:
    return EventReferenceRecord(
        id=ref.id,
        event_id=ref.event_id,
        type=ref.type,
        person_id=ref.person_id,
        url=ref.url,
        display_name=ref.display_name,
        role=ref.role,
        note=ref.note,
        relationship_to_subject=ref.relationship_to_subject,
        visibility=ref.visibility,
        added_by=ref.added_by,
        author_id=author_id,
        person=person_record(ref.person) if ref.person is not None else None,
    )


# ---------------------------------------------------------------------------
# Interfaces
# ---------------------------------------------------------------------------


class PersonRepo(Protocol):
    def get(self, person_id) -> PersonRecord | None: ...

    def find_by_name(self, name: str) -> UUID | None: ...

    def create(
        self, canonical_name: str, visibility: Visibility, created_by
    ) -> UUID: ...

    def set_visibility(self, person_id, visibility: Visibility) -> None: ...

    def set_canonical_name(self, person_id, name: str) -> None: ...

    def add_alias(self, person_id, alias: str, created_by) -> None: ...


class ReferenceRepo(Protocol):
    def get_for_person(
        self, reference_id, person_id
    ) -> EventReferenceRecord | None: ...

    def list_for_person(
        self, person_id
    ) -> list[tuple[EventReferenceRecord, IdentityEventRead]]: ...

    def list_for_events(
        self, event_ids: Iterable
    ) -> dict[UUID, list[EventReferenceRecord]]: ...

    def set_override(self, reference_id, visibility: Visibility) -> None: ...


# ---------------------------------------------------------------------------
# SQLAlchemy implementations
# ---------------------------------------------------------------------------


class PersonRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, person_id) -> PersonRecord | None:
        person = self.db.get(
            Person, coerce_uuid(person_id), options=[selectinload(Person.aliases)]
        )
        return person_record(person) if person else None

    def find_by_name(self, name: str) -> UUID | None:
        """Case-insensitive match on canonical name or any alias."""
        pattern = _escape_like(name.strip())
        person_id = self.db.scalar(
            select(Person.id)
            .where(Person.canonical_name.ilike(pattern, escape="\\"))
            .order_by(Person.created_at)
            .limit(1)
        )
        if person_id:
            return person_id
        return self.db.scalar(
            select(PersonAlias.person_id)
            .where(PersonAlias.alias.ilike(pattern, escape="\\"))
            .order_by(PersonAlias.created_at)
            .limit(1)
        )

    def create(self, canonical_name: str, visibility: Visibility, created_by) -> UUID:
        person = Person(
            canonical_name=canonical_name,
            visibility=visibility,
            created_by=coerce_uuid(created_by),
        )
        self.db.add(person)
        self.db.flush()
        logger.info("Created person %s", person.id)
        return person.id

    def _require(self, person_id) -> Person:
        person = self.db.get(Person, coerce_uuid(person_id))
        if person is None:
            raise StorageError("Person disappeared during update")
        return person

    def set_visibility(self, person_id, visibility: Visibility) -> None:
        self._require(person_id).visibility = visibility
        self.db.flush()

    def set_canonical_name(self, person_id, name: str) -> None:
        self._require(person_id).canonical_name = name
        self.db.flush()

    def add_alias(self, person_id, alias: str, created_by) -> None:
        pid = coerce_uuid(person_id)
        exists = self.db.scalar(
            select(PersonAlias.id)
            .where(PersonAlias.person_id == pid)
            .where(func.lower(PersonAlias.alias) == alias.lower())
        )
        if exists:
            return
        self.db.add(
            PersonAlias(person_id=pid, alias=alias, created_by=coerce_uuid(created_by))
        )
        self.db.flush()


class ContributorRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, contributor_id) -> ContributorRecord | None:
        contributor = self.db.get(Contributor, coerce_uuid(contributor_id))
        return ContributorRecord.model_validate(contributor) if contributor else None

    def get_many(self, contributor_ids: Iterable) -> dict[UUID, ContributorRecord]:
        ids = {coerce_uuid(cid) for cid in contributor_ids if cid}
        if not ids:
            return {}
        rows = self.db.scalars(select(Contributor).where(Contributor.id.in_(ids))).all()
        return {row.id: ContributorRecord.model_validate(row) for row in rows}


class ClaimRepository:
    def __init__(self, db: Session):
        self.db = db

    def person_for_contributor(self, contributor_id) -> UUID | None:
        claims = self.db.scalars(
            select(PersonClaim).where(
                PersonClaim.contributor_id == coerce_uuid(contributor_id)
            )
        ).all()
        if not claims:
            return None
        approved = [c for c in claims if c.status == ClaimStatus.approved]
        return (approved or claims)[0].person_id

    def approve(self, person_id, contributor_id) -> None:
        """Create or approve the contributor's single claim."""
        pid = coerce_uuid(person_id)
        cid = coerce_uuid(contributor_id)
        now = datetime.now(timezone.utc)
        claim = self.db.scalar(
            select(PersonClaim).where(PersonClaim.contributor_id == cid)
        )
        if claim is None:
            claim = PersonClaim(person_id=pid, contributor_id=cid, created_at=now)
            self.db.add(claim)
        claim.person_id = pid
        claim.status = ClaimStatus.approved
        claim.approved_at = now
        claim.approved_by = cid
        try:
            self.db.flush()
        except IntegrityError as exc:
            raise StorageError("Failed to record identity claim") from exc


class ReferenceRepository:
    def __init__(self, db: Session):
        self.db = db

    def _person_reference(self, reference_id, person_id) -> EventReference | None:
        return self.db.scalar(
            select(EventReference)
            .where(EventReference.id == coerce_uuid(reference_id))
            .where(EventReference.person_id == coerce_uuid(person_id))
            .where(EventReference.type == ReferenceType.person)
            .options(
                selectinload(EventReference.event),
                selectinload(EventReference.person).selectinload(Person.aliases),
            )
        )

    def get_for_person(self, reference_id, person_id) -> EventReferenceRecord | None:
        ref = self._person_reference(reference_id, person_id)
        if ref is None:
            return None
        return reference_record(ref, ref.event.contributor_id if ref.event else None)

    def list_for_person(
        self, person_id
    ) -> list[tuple[EventReferenceRecord, IdentityEventRead]]:
        refs = self.db.scalars(
            select(EventReference)
            .where(EventReference.person_id == coerce_uuid(person_id))
            .where(EventReference.type == ReferenceType.person)
            .options(
                selectinload(EventReference.event).selectinload(Event.contributor),
                selectinload(EventReference.person).selectinload(Person.aliases),
            )
        ).all()
        return [
            (
                reference_record(ref, ref.event.contributor_id),
                IdentityEventRead.model_validate(ref.event),
            )
            for ref in refs
            if ref.event is not None
        ]

    def list_for_events(
        self, event_ids: Iterable
    ) -> dict[UUID, list[EventReferenceRecord]]:
        ids = {coerce_uuid(eid) for eid in event_ids if eid}
        if not ids:
            return {}
        refs = self.db.scalars(
            select(EventReference)
            .where(EventReference.event_id.in_(ids))
            .options(
                selectinload(EventReference.event),
                selectinload(EventReference.person).selectinload(Person.aliases),
            )
            .order_by(EventReference.created_at)
        ).all()
        grouped: dict[UUID, list[EventReferenceRecord]] = {eid: [] for eid in ids}
        for ref in refs:
            grouped[ref.event_id].append(
                reference_record(ref, ref.event.contributor_id if ref.event else None)
            )
        return grouped

    def set_override(self, reference_id, visibility: Visibility) -> None:
        ref = self.db.get(EventReference, coerce_uuid(reference_id))
        if ref is None:
            raise StorageError("Reference disappeared during update")
        ref.visibility = visibility
        self.db.flush()


class MentionRepository:
    def __init__(self, db: Session):
        self.db = db

    def list_for_events(self, event_ids: Iterable) -> dict[UUID, list[MentionRecord]]:
        ids = {coerce_uuid(eid) for eid in event_ids if eid}
        if not ids:
            return {}
        rows = self.db.scalars(
            select(Mention)
            .where(Mention.event_id.in_(ids))
            .where(Mention.status != MentionStatus.ignored)
        ).all()
        grouped: dict[UUID, list[MentionRecord]] = {eid: [] for eid in ids}
        for row in rows:
            grouped[row.event_id].append(MentionRecord.model_validate(row))
        return grouped


class EventRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, event_id) -> Event | None:
        return self.db.get(Event, coerce_uuid(event_id))

    def list(self, limit: int, offset: int) -> list[Event]:
        stmt = select(Event).order_by(Event.year.desc(), Event.title.asc())
        return self.db.scalars(apply_pagination(stmt, limit, offset)).all()


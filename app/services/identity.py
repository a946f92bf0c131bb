"""Identity settings: what a contributor sees about themselves and how they
change it.

Every write goes through one service call and one transaction. Note overrides
pass the invariant guard before anything is persisted.
"""

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.errors import (
    AuthorizationError,
    IdentityError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from app.models.identity import Visibility
from app.observability import STORAGE_ERRORS
from app.schemas.identity import (
    AuthorPreferenceRead,
    IdentityNoteRead,
    IdentityPerson,
    IdentitySettingsRead,
    IdentityUpdate,
    IdentityUpdateResult,
    PersonPreferences,
    PersonRecord,
)
from app.services.common import parse_uuid
from app.services.preferences import PreferenceRepo, PreferenceStore
from app.services.repositories import (
    ClaimRepository,
    ContributorRepository,
    PersonRepo,
    PersonRepository,
    ReferenceRepo,
    ReferenceRepository,
)
from app.services.visibility import (
    coerce_visibility,
    ensure_note_override_allowed,
    normalize_visibility,
    resolve_baseline,
    resolve_visibility,
)

logger = logging.getLogger(__name__)

SCOPES = ("note", "default", "author", "claim", "display_name")


class IdentityService:
    def __init__(
        self,
        db: Session,
        people: PersonRepo,
        contributors: ContributorRepository,
        claims: ClaimRepository,
        references: ReferenceRepo,
        preferences: PreferenceRepo,
    ):
        self.db = db
        self.people = people
        self.contributors = contributors
        self.claims = claims
        self.references = references
        self.preferences = preferences

    @classmethod
    def from_session(cls, db: Session) -> "IdentityService":
        return cls(
            db,
            people=PersonRepository(db),
            contributors=ContributorRepository(db),
            claims=ClaimRepository(db),
            references=ReferenceRepository(db),
            preferences=PreferenceStore(db),
        )

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get_settings(self, contributor_id) -> IdentitySettingsRead:
        if contributor_id is None:
            return IdentitySettingsRead()
        contributor = self.contributors.get(contributor_id)
        contributor_name = contributor.name if contributor else None
        person_id = self.claims.person_for_contributor(contributor_id)
        person = self.people.get(person_id) if person_id else None
        if person is None:
            return IdentitySettingsRead(contributor_name=contributor_name)

        prefs = self.preferences.get_preferences(person.id)
        return IdentitySettingsRead(
            person=IdentityPerson(id=person.id, name=person.canonical_name),
            default_visibility=normalize_visibility(
                prefs.global_ or person.visibility
            ),
            default_source="preference" if prefs.global_ else "person",
            author_preferences=self._author_preferences(prefs),
            notes=self._notes(person, prefs),
        )

    def _author_preferences(
        self, prefs: PersonPreferences
    ) -> list[AuthorPreferenceRead]:
        authors = self.contributors.get_many(prefs.by_contributor)
        items = []
        for cid, visibility in prefs.by_contributor.items():
            author = authors.get(cid)
            items.append(
                AuthorPreferenceRead(
                    contributor_id=cid,
                    visibility=visibility,
                    name=author.name if author else None,
                    relation=author.relation if author else None,
                )
            )
        items.sort(
            key=lambda item: ((item.name or "").lower(), str(item.contributor_id))
        )
        return items

    def _notes(
        self, person: PersonRecord, prefs: PersonPreferences
    ) -> list[IdentityNoteRead]:
        notes = []
        for ref, event in self.references.list_for_person(person.id):
            author_pref = prefs.for_author(ref.author_id)
            notes.append(
                IdentityNoteRead(
                    reference_id=ref.id,
                    visibility_override=normalize_visibility(ref.visibility),
                    effective_visibility=resolve_visibility(
                        ref.visibility, author_pref, prefs.global_, person.visibility
                    ),
                    base_visibility=resolve_baseline(
                        author_pref, prefs.global_, person.visibility
                    ),
                    relationship_to_subject=ref.relationship_to_subject,
                    role=ref.role,
                    event=event,
                )
            )
        notes.sort(key=lambda note: note.event.title)
        notes.sort(key=lambda note: note.event.year, reverse=True)
        return notes

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def update(self, contributor_id, payload: IdentityUpdate) -> IdentityUpdateResult:
        """Apply one identity change atomically."""
        scope = payload.scope.strip().lower() if isinstance(payload.scope, str) else ""
        if scope not in SCOPES:
            raise ValidationError("Invalid scope", details={"scope": payload.scope})
        handler = getattr(self, f"_update_{scope}")
        try:
            result = handler(contributor_id, payload)
            self.db.commit()
        except IdentityError:
            self.db.rollback()
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            STORAGE_ERRORS.labels(f"update_{scope}").inc()
            logger.exception("Identity update failed for scope %s", scope)
            raise StorageError("Failed to update identity settings") from exc
        logger.info(
            "Applied identity update %s for contributor %s", scope, contributor_id
        )
        return result

    def _require_person(self, contributor_id):
        person_id = self.claims.person_for_contributor(contributor_id)
        if person_id is None:
            raise AuthorizationError(
                "No identity claim found", status_code=400, code="no_identity_claim"
            )
        return person_id

    def _require_visibility(self, value) -> Visibility:
        visibility = coerce_visibility(value)
        if visibility is None:
            raise ValidationError(
                "Invalid visibility value", details={"visibility": value}
            )
        return visibility

    def _update_claim(self, contributor_id, payload: IdentityUpdate):
        contributor = self.contributors.get(contributor_id)
        name = (contributor.name if contributor else "").strip()
        if not name:
            raise ValidationError("Missing contributor name")

        existing = self.claims.person_for_contributor(contributor_id)
        if existing is not None:
            self.claims.approve(existing, contributor_id)
            self.people.set_visibility(existing, Visibility.approved)
            return IdentityUpdateResult(person_id=existing)

        person_id = self.people.find_by_name(name)
        if person_id is None:
            person_id = self.people.create(name, Visibility.approved, contributor_id)
        self.claims.approve(person_id, contributor_id)
        self.people.add_alias(person_id, name, contributor_id)
        return IdentityUpdateResult(person_id=person_id)

    def _update_display_name(self, contributor_id, payload: IdentityUpdate):
        name = payload.display_name
        name = name.strip() if isinstance(name, str) else ""
        if not name:
            raise ValidationError("Display name is required")
        person_id = self._require_person(contributor_id)
        self.people.set_canonical_name(person_id, name)
        return IdentityUpdateResult(person_id=person_id)

    def _update_note(self, contributor_id, payload: IdentityUpdate):
        visibility = self._require_visibility(payload.visibility)
        person_id = self._require_person(contributor_id)
        if not payload.reference_id:
            raise ValidationError("reference_id is required")
        reference_id = parse_uuid(payload.reference_id, "reference_id")
        ref = self.references.get_for_person(reference_id, person_id)
        if ref is None:
            raise NotFoundError("Reference not found")

        if visibility is not Visibility.pending:
            prefs = self.preferences.get_preferences(person_id)
            person_base = ref.person.visibility if ref.person else None
            baseline = resolve_baseline(
                prefs.for_author(ref.author_id), prefs.global_, person_base
            )
            ensure_note_override_allowed(visibility, baseline)

        self.references.set_override(ref.id, visibility)
        return IdentityUpdateResult(person_id=person_id)

    def _update_default(self, contributor_id, payload: IdentityUpdate):
        visibility = self._require_visibility(payload.visibility)
        person_id = self._require_person(contributor_id)
        if visibility is Visibility.pending:
            raise ValidationError("Default visibility cannot be pending")
        self.people.set_visibility(person_id, visibility)
        self.preferences.upsert_preference(person_id, None, visibility)
        return IdentityUpdateResult(person_id=person_id)

    def _update_author(self, contributor_id, payload: IdentityUpdate):
        visibility = self._require_visibility(payload.visibility)
        person_id = self._require_person(contributor_id)
        if not payload.contributor_id:
            raise ValidationError("contributor_id is required")
        author_id = parse_uuid(payload.contributor_id, "contributor_id")
        if self.contributors.get(author_id) is None:
            raise NotFoundError("Contributor not found")
        if visibility is Visibility.pending:
            self.preferences.delete_preference(person_id, author_id)
        else:
            self.preferences.upsert_preference(person_id, author_id, visibility)
        return IdentityUpdateResult(person_id=person_id)

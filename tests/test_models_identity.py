import pytest
from sqlalchemy.exc import IntegrityError

from app.models.identity import (
    ClaimStatus,
    Contributor,
    Event,
    EventReference,
    EventStatus,
    Person,
    PersonAlias,
    PersonClaim,
    ReferenceType,
    Visibility,
    VisibilityPreference,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_contributor(db_session, name="Sam"):
    contributor = Contributor(name=name)
    db_session.add(contributor)
    db_session.flush()
    return contributor


def _make_person(db_session, name="Pat Doe"):
    person = Person(canonical_name=name)
    db_session.add(person)
    db_session.flush()
    return person


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


class TestDefaults:
    def test_person_defaults_pending(self, db_session):
        person = _make_person(db_session)
        assert person.visibility is Visibility.pending
        assert person.created_at is not None

    def test_reference_and_event_defaults(self, db_session):
        author = _make_contributor(db_session)
        event = Event(year=1970, title="Wedding", contributor_id=author.id)
        db_session.add(event)
        db_session.flush()
        ref = EventReference(event_id=event.id, type=ReferenceType.link, url="x")
        db_session.add(ref)
        db_session.flush()
        assert event.status is EventStatus.pending
        assert event.privacy_level == "family"
        assert ref.visibility is Visibility.pending
        assert author.relation == ""
        assert author.trusted is False


# ---------------------------------------------------------------------------
# Constraints
# ---------------------------------------------------------------------------


class TestConstraints:
    def test_author_preference_pair_unique(self, db_session):
        person = _make_person(db_session)
        author = _make_contributor(db_session)
        for visibility in (Visibility.approved, Visibility.blurred):
            db_session.add(
                VisibilityPreference(
                    person_id=person.id,
                    contributor_id=author.id,
                    visibility=visibility,
                )
            )
        with pytest.raises(IntegrityError):
            db_session.flush()

    def test_single_global_preference_per_person(self, db_session):
        person = _make_person(db_session)
        for visibility in (Visibility.approved, Visibility.blurred):
            db_session.add(
                VisibilityPreference(person_id=person.id, visibility=visibility)
            )
        with pytest.raises(IntegrityError):
            db_session.flush()

    def test_one_claim_per_contributor(self, db_session):
        contributor = _make_contributor(db_session)
        first = _make_person(db_session, "First")
        second = _make_person(db_session, "Second")
        db_session.add(
            PersonClaim(
                person_id=first.id,
                contributor_id=contributor.id,
                status=ClaimStatus.approved,
            )
        )
        db_session.flush()
        db_session.add(
            PersonClaim(person_id=second.id, contributor_id=contributor.id)
        )
        with pytest.raises(IntegrityError):
            db_session.flush()

    def test_aliases_relationship(self, db_session):
        person = _make_person(db_session)
        person.aliases.append(PersonAlias(alias="Patty"))
        db_session.flush()
        assert [alias.alias for alias in person.aliases] == ["Patty"]
        assert person.aliases[0].person_id == person.id

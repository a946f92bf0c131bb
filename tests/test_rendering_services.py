import uuid

import pytest
from sqlalchemy import event as sa_event
from sqlalchemy.exc import OperationalError

from app.db import engine
from app.errors import NotFoundError, StorageError
from app.models.identity import (
    Contributor,
    Event,
    EventReference,
    Mention,
    MentionStatus,
    Person,
    PersonAlias,
    ReferenceType,
    Visibility,
)
from app.schemas.identity import PersonPreferences
from app.services.masking import CapitalizedNameDetector
from app.services.preferences import PreferenceStore
from app.services.rendering import RenderService
from app.services.repositories import (
    EventRepository,
    MentionRepository,
    ReferenceRepository,
)


def _make_contributor(db_session, name="Author"):
    contributor = Contributor(name=name, relation="sibling")
    db_session.add(contributor)
    db_session.flush()
    return contributor


def _make_person(db_session, name, visibility, aliases=()):
    person = Person(canonical_name=name, visibility=visibility)
    db_session.add(person)
    db_session.flush()
    for alias in aliases:
        db_session.add(PersonAlias(person_id=person.id, alias=alias))
    db_session.flush()
    return person


def _make_event(db_session, author, body, year=1990, title="Lake house"):
    event = Event(
        year=year,
        title=title,
        preview=body,
        full_entry=f"<p>{body}</p>",
        contributor_id=author.id,
    )
    db_session.add(event)
    db_session.flush()
    return event


def _reference(db_session, event, person, relationship=None, **kwargs):
    ref = EventReference(
        event_id=event.id,
        type=ReferenceType.person,
        person_id=person.id,
        relationship_to_subject=relationship,
        **kwargs,
    )
    db_session.add(ref)
    db_session.flush()
    return ref


def _mention(db_session, event, text, status=MentionStatus.context, label=None):
    db_session.add(
        Mention(
            event_id=event.id,
            mention_text=text,
            normalized_text=text.lower(),
            status=status,
            display_label=label,
        )
    )
    db_session.flush()


class _UnavailablePreferences:
    def get_preferences_for_people(self, person_ids, contributor_ids):
        return {pid: PersonPreferences(available=False) for pid in person_ids}


class _FailingReferences:
    def list_for_events(self, event_ids):
        raise OperationalError("SELECT", {}, Exception("db down"))


def _service(db_session, **overrides):
    parts = {
        "events": EventRepository(db_session),
        "references": ReferenceRepository(db_session),
        "mentions": MentionRepository(db_session),
        "preferences": PreferenceStore(db_session),
    }
    parts.update(overrides)
    return RenderService(**parts)


class TestRenderEvent:
    def test_redacts_and_masks(self, db_session):
        author = _make_contributor(db_session)
        john = _make_person(
            db_session, "John Smith", Visibility.anonymized, aliases=["Johnny"]
        )
        hidden = _make_person(db_session, "Eve Adams", Visibility.removed)
        event = _make_event(db_session, author, "Johnny and Eve Adams met Pete.")
        _reference(db_session, event, john, relationship="cousin")
        _reference(db_session, event, hidden)
        _mention(db_session, event, "Pete", label="a neighbor")
        db_session.commit()

        rendered = RenderService.from_session(db_session).get_event(event.id)

        assert rendered.preview == "a cousin and someone met a neighbor."
        assert rendered.full_entry == "<p>a cousin and someone met a neighbor.</p>"
        assert [ref.render_label for ref in rendered.references] == ["a cousin"]
        payload = rendered.model_dump_json()
        assert "author_payload" not in payload
        assert "John Smith" not in payload
        assert "Eve" not in payload

    def test_ignored_mentions_do_not_mask(self, db_session):
        author = _make_contributor(db_session)
        event = _make_event(db_session, author, "Pete came by.")
        _mention(db_session, event, "Pete", status=MentionStatus.ignored)
        db_session.commit()

        rendered = RenderService.from_session(db_session).get_event(event.id)

        assert rendered.preview == "Pete came by."

    def test_author_preference_scoped_per_note(self, db_session):
        author_c = _make_contributor(db_session, "C")
        author_d = _make_contributor(db_session, "D")
        person = _make_person(db_session, "John Smith", Visibility.blurred)
        by_c = _make_event(db_session, author_c, "John Smith visited.", title="C")
        by_d = _make_event(db_session, author_d, "John Smith visited.", title="D")
        _reference(db_session, by_c, person)
        _reference(db_session, by_d, person)
        PreferenceStore(db_session).upsert_preference(
            person.id, author_c.id, Visibility.approved
        )
        db_session.commit()

        rendered = RenderService.from_session(db_session).render_events([by_c, by_d])

        assert [item.preview for item in rendered] == [
            "John Smith visited.",
            "J.S. visited.",
        ]

    def test_unavailable_preferences_fail_closed(self, db_session):
        author = _make_contributor(db_session)
        person = _make_person(db_session, "John Smith", Visibility.approved)
        event = _make_event(db_session, author, "John Smith visited.")
        _reference(db_session, event, person)
        db_session.commit()

        service = _service(db_session, preferences=_UnavailablePreferences())
        rendered = service.get_event(event.id)

        assert rendered.preview == "someone visited."
        assert rendered.references[0].identity_state is Visibility.anonymized

    def test_legacy_rank_max_path(self, db_session):
        author = _make_contributor(db_session)
        person = _make_person(db_session, "John Smith", Visibility.blurred)
        event = _make_event(db_session, author, "John Smith visited.")
        _reference(db_session, event, person, visibility=Visibility.approved)
        PreferenceStore(db_session).upsert_preference(
            person.id, None, Visibility.approved
        )
        db_session.commit()

        service = _service(db_session, legacy_rank_max=True)
        with pytest.deprecated_call():
            rendered = service.get_event(event.id)

        assert rendered.preview == "J.S. visited."

    def test_detector_masks_partial_names(self, db_session):
        author = _make_contributor(db_session)
        person = _make_person(db_session, "John Smith", Visibility.anonymized)
        event = _make_event(db_session, author, "Later Smith called.")
        _reference(db_session, event, person, relationship="cousin")
        db_session.commit()

        service = _service(db_session, detector=CapitalizedNameDetector())
        rendered = service.get_event(event.id)

        assert rendered.preview == "Later a cousin called."

    def test_loading_failure_is_storage_error(self, db_session):
        author = _make_contributor(db_session)
        event = _make_event(db_session, author, "Body")
        db_session.commit()

        service = _service(db_session, references=_FailingReferences())
        with pytest.raises(StorageError) as exc:
            service.get_event(event.id)
        assert exc.value.status_code == 500

    def test_missing_event(self, db_session):
        with pytest.raises(NotFoundError):
            RenderService.from_session(db_session).get_event(uuid.uuid4())


class TestListEvents:
    def test_feed_order_and_paging(self, db_session):
        author = _make_contributor(db_session)
        _make_event(db_session, author, "one", year=1980, title="Old")
        _make_event(db_session, author, "two", year=2000, title="New")
        _make_event(db_session, author, "three", year=1990, title="Mid")
        db_session.commit()

        service = RenderService.from_session(db_session)

        assert [e.title for e in service.list_events(10, 0)] == ["New", "Mid", "Old"]
        assert [e.title for e in service.list_events(1, 1)] == ["Mid"]
        assert service.list_events(10, 5) == []

    def test_feed_query_count_does_not_grow_with_page_size(self, db_session):
        author = _make_contributor(db_session)
        store = PreferenceStore(db_session)
        for index in range(5):
            person = _make_person(
                db_session, f"Person {index}", Visibility.blurred, aliases=[f"P{index}"]
            )
            event = _make_event(
                db_session, author, f"Person {index} came", year=2000 - index
            )
            _reference(db_session, event, person, relationship="cousin")
            _mention(db_session, event, "Bob", label="a neighbor")
            store.upsert_preference(person.id, None, Visibility.anonymized)
            store.upsert_preference(person.id, author.id, Visibility.blurred)
        db_session.commit()
        service = RenderService.from_session(db_session)

        def count_statements(limit):
            db_session.expire_all()
            statements = []

            def record(conn, cursor, statement, parameters, context, executemany):
                statements.append(statement)

            sa_event.listen(engine, "before_cursor_execute", record)
            try:
                rendered = service.list_events(limit, 0)
            finally:
                sa_event.remove(engine, "before_cursor_execute", record)
            assert len(rendered) == limit
            return len(statements)

        assert count_statements(1) == count_statements(5)

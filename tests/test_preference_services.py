import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from app.errors import StorageError, ValidationError
from app.models.identity import Contributor, Person, Visibility, VisibilityPreference
from app.services.preferences import PreferenceStore


def _make_person(db_session, name="John Smith", visibility=Visibility.blurred):
    person = Person(canonical_name=name, visibility=visibility)
    db_session.add(person)
    db_session.flush()
    return person


def _make_contributor(db_session, name="Dana"):
    contributor = Contributor(name=name, relation="friend")
    db_session.add(contributor)
    db_session.flush()
    return contributor


def _rows(db_session, person):
    return db_session.scalars(
        select(VisibilityPreference).where(VisibilityPreference.person_id == person.id)
    ).all()


class TestPreferenceUpsert:
    def test_global_preference_upserts_single_row(self, db_session):
        person = _make_person(db_session)
        store = PreferenceStore(db_session)

        store.upsert_preference(person.id, None, Visibility.anonymized)
        store.upsert_preference(person.id, None, "approved")

        rows = _rows(db_session, person)
        assert len(rows) == 1
        assert store.get_preferences(person.id).global_ is Visibility.approved

    def test_author_preference_upserts_per_contributor(self, db_session):
        person = _make_person(db_session)
        author_a = _make_contributor(db_session, "A")
        author_b = _make_contributor(db_session, "B")
        store = PreferenceStore(db_session)

        store.upsert_preference(person.id, author_a.id, Visibility.approved)
        store.upsert_preference(person.id, author_a.id, Visibility.removed)
        store.upsert_preference(person.id, author_b.id, Visibility.blurred)

        prefs = store.get_preferences(person.id)
        assert prefs.global_ is None
        assert prefs.by_contributor == {
            author_a.id: Visibility.removed,
            author_b.id: Visibility.blurred,
        }
        assert len(_rows(db_session, person)) == 2

    @pytest.mark.parametrize("value", ["pending", "hidden", None])
    def test_rejects_pending_and_unknown(self, db_session, value):
        person = _make_person(db_session)
        with pytest.raises(ValidationError) as exc:
            PreferenceStore(db_session).upsert_preference(person.id, None, value)
        assert exc.value.status_code == 400


class TestPreferenceDelete:
    def test_delete_author_preference(self, db_session):
        person = _make_person(db_session)
        author = _make_contributor(db_session)
        store = PreferenceStore(db_session)
        store.upsert_preference(person.id, None, Visibility.blurred)
        store.upsert_preference(person.id, author.id, Visibility.approved)

        store.delete_preference(person.id, author.id)

        prefs = store.get_preferences(person.id)
        assert prefs.by_contributor == {}
        assert prefs.global_ is Visibility.blurred

    def test_delete_missing_row_is_noop(self, db_session):
        person = _make_person(db_session)
        author = _make_contributor(db_session)
        PreferenceStore(db_session).delete_preference(person.id, author.id)
        assert _rows(db_session, person) == []


class TestPreferenceBatch:
    def test_batch_returns_entry_per_person(self, db_session):
        first = _make_person(db_session, "First Person")
        second = _make_person(db_session, "Second Person")
        author = _make_contributor(db_session)
        other = _make_contributor(db_session, "Other")
        store = PreferenceStore(db_session)
        store.upsert_preference(first.id, None, Visibility.anonymized)
        store.upsert_preference(first.id, author.id, Visibility.approved)
        store.upsert_preference(first.id, other.id, Visibility.removed)

        snapshot = store.get_preferences_for_people(
            [first.id, second.id], [author.id]
        )

        assert set(snapshot) == {first.id, second.id}
        assert snapshot[first.id].global_ is Visibility.anonymized
        # Only the requested authors are loaded.
        assert snapshot[first.id].by_contributor == {author.id: Visibility.approved}
        assert snapshot[second.id].global_ is None
        assert snapshot[second.id].available is True

    def test_batch_empty(self, db_session):
        assert PreferenceStore(db_session).get_preferences_for_people([], []) == {}

    def test_batch_failure_marks_unavailable(self, db_session, monkeypatch):
        person = _make_person(db_session)
        store = PreferenceStore(db_session)

        def boom(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("db down"))

        monkeypatch.setattr(db_session, "scalars", boom)
        snapshot = store.get_preferences_for_people([person.id], [])
        assert snapshot[person.id].available is False

    def test_single_read_failure_raises(self, db_session, monkeypatch):
        person = _make_person(db_session)
        store = PreferenceStore(db_session)

        def boom(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("db down"))

        monkeypatch.setattr(db_session, "scalars", boom)
        with pytest.raises(StorageError) as exc:
            store.get_preferences(person.id)
        assert exc.value.status_code == 500

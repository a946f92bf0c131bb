import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Protocol
from uuid import UUID

from sqlalchemy import delete, or_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.errors import StorageError, ValidationError
from app.models.identity import Visibility, VisibilityPreference
from app.observability import REDACTION_FALLBACKS, STORAGE_ERRORS
from app.schemas.identity import PersonPreferences, VisibilityPreferenceRecord
from app.services.common import coerce_uuid
from app.services.visibility import coerce_visibility

logger = logging.getLogger(__name__)


class PreferenceRepo(Protocol):
    def get_preferences(self, person_id) -> PersonPreferences: ...

    def get_preferences_for_people(
        self, person_ids: Iterable, contributor_ids: Iterable
    ) -> dict[UUID, PersonPreferences]: ...

    def upsert_preference(self, person_id, contributor_id, visibility) -> None: ...

    def delete_preference(self, person_id, contributor_id) -> None: ...


def _group(rows: Iterable[VisibilityPreference]) -> dict[UUID, PersonPreferences]:
    grouped: dict[UUID, PersonPreferences] = {}
    for row in map(VisibilityPreferenceRecord.model_validate, rows):
        prefs = grouped.setdefault(row.person_id, PersonPreferences())
        if row.contributor_id is None:
            prefs.global_ = row.visibility
        else:
            prefs.by_contributor[row.contributor_id] = row.visibility
    return grouped


class PreferenceStore:
    """Visibility preference rows keyed by ``(person_id, contributor_id)``.

    ``contributor_id=None`` is the person's global default. Writes are atomic
    upserts on the unique key, so concurrent writers resolve last-write-wins.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_preferences(self, person_id) -> PersonPreferences:
        pid = coerce_uuid(person_id)
        try:
            rows = self.db.scalars(
                select(VisibilityPreference).where(
                    VisibilityPreference.person_id == pid
                ).execution_options(populate_existing=True)
            ).all()
        except SQLAlchemyError as exc:
            STORAGE_ERRORS.labels("read_preferences").inc()
            logger.exception("Failed to load preferences for person %s", pid)
            raise StorageError("Failed to load visibility preferences") from exc
        return _group(rows).get(pid, PersonPreferences())

    def get_preferences_for_people(
        self, person_ids: Iterable, contributor_ids: Iterable
    ) -> dict[UUID, PersonPreferences]:
        """One query for every person on a page.

        Only global rows and rows for the given authors are read. A failed read
        marks each person's preferences unavailable instead of raising, so
        rendering falls back to the more private outcome.
        """
        pids = {coerce_uuid(pid) for pid in person_ids if pid}
        cids = {coerce_uuid(cid) for cid in contributor_ids if cid}
        if not pids:
            return {}
        contributor_filter = VisibilityPreference.contributor_id.is_(None)
        if cids:
            contributor_filter = or_(
                contributor_filter, VisibilityPreference.contributor_id.in_(cids)
            )
        try:
            rows = self.db.scalars(
                select(VisibilityPreference)
                .where(VisibilityPreference.person_id.in_(pids))
                .where(contributor_filter)
                .execution_options(populate_existing=True)
            ).all()
        except SQLAlchemyError:
            REDACTION_FALLBACKS.labels("preferences_unavailable").inc()
            logger.exception(
                "Preference snapshot unavailable for %d people", len(pids)
            )
            return {pid: PersonPreferences(available=False) for pid in pids}
        grouped = _group(rows)
        return {pid: grouped.get(pid, PersonPreferences()) for pid in pids}

    def upsert_preference(self, person_id, contributor_id, visibility) -> None:
        value = coerce_visibility(visibility)
        if value is None or value is Visibility.pending:
            raise ValidationError(
                "Preference visibility must be approved, blurred, anonymized "
                "or removed"
            )
        pid = coerce_uuid(person_id)
        cid = coerce_uuid(contributor_id)
        now = datetime.now(timezone.utc)
        try:
            self._upsert(pid, cid, value, now)
        except SQLAlchemyError as exc:
            STORAGE_ERRORS.labels("upsert_preference").inc()
            logger.exception("Failed to upsert preference %s/%s", pid, cid)
            raise StorageError("Failed to update preference") from exc
        logger.info(
            "Upserted preference %s/%s -> %s", pid, cid or "global", value.value
        )

    def _upsert(self, pid: UUID, cid: UUID | None, value: Visibility, now) -> None:
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            insert = postgresql.insert
        elif dialect == "sqlite":
            insert = sqlite.insert
        else:
            self._select_then_write(pid, cid, value, now)
            return
        stmt = insert(VisibilityPreference).values(
            person_id=pid,
            contributor_id=cid,
            visibility=value,
            created_at=now,
            updated_at=now,
        )
        update = {"visibility": stmt.excluded.visibility, "updated_at": now}
        if cid is None:
            stmt = stmt.on_conflict_do_update(
                index_elements=["person_id"],
                index_where=VisibilityPreference.contributor_id.is_(None),
                set_=update,
            )
        else:
            stmt = stmt.on_conflict_do_update(
                index_elements=["person_id", "contributor_id"],
                set_=update,
            )
        self.db.flush()
        self.db.execute(stmt)

    def _select_then_write(self, pid, cid, value, now) -> None:
        row = self.db.scalar(
            select(VisibilityPreference)
            .where(VisibilityPreference.person_id == pid)
            .where(
                VisibilityPreference.contributor_id.is_(None)
                if cid is None
                else VisibilityPreference.contributor_id == cid
            )
        )
        if row is None:
            self.db.add(
                VisibilityPreference(
                    person_id=pid, contributor_id=cid, visibility=value
                )
            )
        else:
            row.visibility = value
            row.updated_at = now
        self.db.flush()

    def delete_preference(self, person_id, contributor_id) -> None:
        pid = coerce_uuid(person_id)
        cid = coerce_uuid(contributor_id)
        stmt = delete(VisibilityPreference).where(
            VisibilityPreference.person_id == pid
        )
        if cid is None:
            stmt = stmt.where(VisibilityPreference.contributor_id.is_(None))
        else:
            stmt = stmt.where(VisibilityPreference.contributor_id == cid)
        try:
            self.db.flush()
            self.db.execute(stmt)
        except SQLAlchemyError as exc:
            STORAGE_ERRORS.labels("delete_preference").inc()
            logger.exception("Failed to delete preference %s/%s", pid, cid)
            raise StorageError("Failed to update preference") from exc
        logger.info("Deleted preference %s/%s", pid, cid or "global")

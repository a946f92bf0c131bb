from collections.abc import Generator
from uuid import UUID

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from app.config import settings
from app.db import SessionLocal
from app.errors import AuthorizationError
from app.models.identity import Contributor
from app.services.common import coerce_uuid


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def require_contributor(request: Request, db: Session = Depends(get_db)) -> UUID:
    """Contributor id set by the fronting auth layer."""
    raw = request.headers.get(settings.contributor_header, "").strip()
    if not raw:
        raise AuthorizationError("Unauthorized")
    try:
        contributor_id = coerce_uuid(raw)
    except ValueError:
        raise AuthorizationError("Unauthorized")
    if db.get(Contributor, contributor_id) is None:
        raise AuthorizationError("Unauthorized")
    return contributor_id


__all__ = ["get_db", "require_contributor"]

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import get_db, require_contributor
from app.config import settings
from app.schemas.common import ListResponse
from app.schemas.identity import RenderedEventRead
from app.services.common import parse_uuid
from app.services.masking import CapitalizedNameDetector
from app.services.rendering import RenderService

router = APIRouter(
    prefix="/events", tags=["events"], dependencies=[Depends(require_contributor)]
)


def _render_service(db: Session) -> RenderService:
    detector = CapitalizedNameDetector() if settings.name_detection else None
    return RenderService.from_session(db, detector=detector)


@router.get("", response_model=ListResponse[RenderedEventRead])
def list_events(
    limit: int = Query(default=settings.feed_page_limit, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
) -> dict:
    items = _render_service(db).list_events(limit, offset)
    return {"items": items, "count": len(items), "limit": limit, "offset": offset}


@router.get("/{event_id}", response_model=RenderedEventRead)
def get_event(event_id: str, db: Session = Depends(get_db)) -> RenderedEventRead:
    return _render_service(db).get_event(parse_uuid(event_id, "event_id"))

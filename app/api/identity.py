from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_db, require_contributor
from app.schemas.identity import (
    IdentitySettingsRead,
    IdentityUpdate,
    IdentityUpdateResult,
)
from app.services.identity import IdentityService

router = APIRouter(prefix="/identity", tags=["identity"])


@router.get("", response_model=IdentitySettingsRead)
def get_identity_settings(
    contributor_id: UUID = Depends(require_contributor),
    db: Session = Depends(get_db),
) -> IdentitySettingsRead:
    return IdentityService.from_session(db).get_settings(contributor_id)


@router.post("", response_model=IdentityUpdateResult)
def update_identity_settings(
    payload: IdentityUpdate,
    contributor_id: UUID = Depends(require_contributor),
    db: Session = Depends(get_db),
) -> IdentityUpdateResult:
    return IdentityService.from_session(db).update(contributor_id, payload)

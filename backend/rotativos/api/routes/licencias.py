from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from rotativos.core.roles import ROLE_ADMIN
from rotativos.core.security import get_current_user, require_admin
from rotativos.db.session import get_db
from rotativos.models.user import User
from rotativos.schemas.licencias import LicenciaCreate, LicenciaOut
from rotativos.services import capacity, licenses

router = APIRouter(prefix="/api/v1/licencias", tags=["licencias"])


@router.get("", response_model=list[LicenciaOut])
def list_licenses(
    season_id: Optional[int] = None,
    user_id: Optional[int] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    season_id = capacity.resolve_season_id(db, season_id)
    if user.role != ROLE_ADMIN:
        user_id = user.id
    return licenses.list_licenses(db, season_id, user_id)


@router.post("", response_model=LicenciaOut)
def create_license(data: LicenciaCreate, admin=Depends(require_admin), db: Session = Depends(get_db)):
    season_id = capacity.resolve_season_id(db, data.season_id)
    return licenses.create_license(
        db, admin.id, data.user_id, season_id, data.start_date, data.end_date, data.description,
    )


@router.delete("/{license_id}")
def delete_license(license_id: int, admin=Depends(require_admin), db: Session = Depends(get_db)):
    licenses.delete_license(db, license_id, admin.id)
    return {"ok": True}

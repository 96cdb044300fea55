from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from rotativos.core.roles import ROLE_ADMIN
from rotativos.core.security import get_current_user, require_admin
from rotativos.db.session import get_db
from rotativos.models.event import Event
from rotativos.models.rotativo import Rotativo
from rotativos.models.user import User
from rotativos.schemas.solicitudes import (
    ObligatorioRequest,
    RechazoRequest,
    RotativoOut,
    SolicitudEnNombreRequest,
    SolicitudRequest,
)
from rotativos.services import capacity, eligibility, rotations

router = APIRouter(prefix="/api/v1/solicitudes", tags=["solicitudes"])


def _out(rot: Rotativo) -> dict:
    return RotativoOut.model_validate(rot).model_dump()


@router.post("/validar")
def validate(data: SolicitudRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    season_id = capacity.resolve_season_id(db, data.season_id)
    verdict = eligibility.evaluate(db, user.id, data.event_id, season_id)
    db.rollback()  # validar no persiste nada
    return verdict.to_dict()


@router.post("")
def create(data: SolicitudRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    season_id = capacity.resolve_season_id(db, data.season_id)
    result = rotations.create_rotation(db, user.id, data.event_id, season_id)
    return {
        "rotativo": _out(result.rotativo),
        "verdict": result.verdict.to_dict(),
        "posicion_espera": result.waiting_position,
    }


@router.get("")
def list_requests(
    estado: Optional[str] = None,
    season_id: Optional[int] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    season_id = capacity.resolve_season_id(db, season_id)
    q = db.query(Rotativo).join(Event, Event.id == Rotativo.event_id).filter(Event.season_id == season_id)
    # el admin ve todas; el integrante solo las suyas
    if user.role != ROLE_ADMIN:
        q = q.filter(Rotativo.user_id == user.id)
    if estado:
        q = q.filter(Rotativo.estado == estado.upper())
    rows = q.order_by(Event.date.asc(), Rotativo.id.asc()).all()
    return [_out(r) for r in rows]


@router.delete("/{rotativo_id}")
def cancel(rotativo_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    result = rotations.cancel_rotation(db, rotativo_id, user.id)
    return {
        "ok": True,
        "cancelacion_pendiente": result.cancellation_pending,
        "promoted_event_ids": result.promoted_event_ids,
    }


@router.post("/{rotativo_id}/aprobar")
def approve(rotativo_id: int, admin=Depends(require_admin), db: Session = Depends(get_db)):
    return _out(rotations.approve_rotation(db, rotativo_id, admin.id))


@router.post("/{rotativo_id}/rechazar")
def reject(
    rotativo_id: int,
    data: Optional[RechazoRequest] = None,
    admin=Depends(require_admin),
    db: Session = Depends(get_db),
):
    motivo = data.motivo if data else None
    return _out(rotations.reject_rotation(db, rotativo_id, admin.id, motivo))


@router.post("/{rotativo_id}/aprobar-cancelacion")
def approve_cancellation(rotativo_id: int, admin=Depends(require_admin), db: Session = Depends(get_db)):
    result = rotations.approve_cancellation(db, rotativo_id, admin.id)
    return {"ok": True, "promoted_event_ids": result.promoted_event_ids}


@router.delete("/{rotativo_id}/aprobar-cancelacion")
def reject_cancellation(rotativo_id: int, admin=Depends(require_admin), db: Session = Depends(get_db)):
    return _out(rotations.reject_cancellation(db, rotativo_id, admin.id))


@router.post("/asignar-obligatorio")
def assign_mandatory(data: ObligatorioRequest, admin=Depends(require_admin), db: Session = Depends(get_db)):
    season_id = capacity.resolve_season_id(db, data.season_id)
    rot = rotations.assign_mandatory(
        db, admin.id, data.user_id, data.event_id, season_id, motivo=data.motivo, force=data.force,
    )
    return _out(rot)


@router.post("/crear-en-nombre")
def create_on_behalf(data: SolicitudEnNombreRequest, admin=Depends(require_admin), db: Session = Depends(get_db)):
    season_id = capacity.resolve_season_id(db, data.season_id)
    rot = rotations.create_on_behalf(db, admin.id, data.user_id, data.event_id, season_id, motivo=data.motivo)
    return _out(rot)


@router.get("/candidatos")
def candidates(
    event_id: int,
    criterio: Optional[str] = None,
    season_id: Optional[int] = None,
    admin=Depends(require_admin),
    db: Session = Depends(get_db),
):
    season_id = capacity.resolve_season_id(db, season_id)
    out = rotations.mandatory_candidates(db, season_id, event_id, criterio)
    return {
        "event_id": out.event_id,
        "criterio": out.criterio,
        "promedio": out.promedio,
        "candidatos": [
            {"user_id": c.user_id, "name": c.name, "consumido": c.consumed, "max_efectivo": c.max_efectivo}
            for c in out.candidates
        ],
    }

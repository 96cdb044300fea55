from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from rotativos.core.security import get_current_user, require_admin
from rotativos.db.session import get_db
from rotativos.models.user import User
from rotativos.schemas.bloques import BloqueCancelRequest, BloqueRequest, BloqueVerdictOut
from rotativos.services import blocks, capacity

router = APIRouter(prefix="/api/v1/bloques", tags=["bloques"])


@router.post("/solicitar", response_model=BloqueVerdictOut)
def request_block(data: BloqueRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    season_id = capacity.resolve_season_id(db, data.season_id)
    v = blocks.request_block(db, user.id, data.titulo_id, season_id, validate_only=data.validate_only)
    return BloqueVerdictOut(
        block_id=v.block_id,
        estado=v.estado,
        requires_approval=v.requires_approval,
        reasons=v.reasons,
        events_to_request=v.events_to_request,
        unavailable=v.unavailable,
        created=v.created,
        waitlisted=v.waitlisted,
    )


@router.post("/{block_id}/aprobar")
def approve_block(block_id: int, admin=Depends(require_admin), db: Session = Depends(get_db)):
    block = blocks.approve_block(db, block_id, admin.id)
    return {"ok": True, "block_id": block.id, "estado": block.estado}


@router.post("/{block_id}/cancelar")
def cancel_block(
    block_id: int,
    data: Optional[BloqueCancelRequest] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    result = blocks.cancel_block(db, block_id, user.id, motivo=data.motivo if data else None)
    return {
        "ok": True,
        "cancelacion_pendiente": result.cancellation_pending,
        "rotativos_cancelados": result.cancelled_rotation_ids,
        "promoted_event_ids": result.promoted_event_ids,
    }


@router.post("/limpiar-fantasmas")
def sweep(season_id: Optional[int] = None, admin=Depends(require_admin), db: Session = Depends(get_db)):
    cancelled = blocks.sweep_ghost_blocks(db, season_id)
    return {"ok": True, "bloques_cancelados": cancelled}

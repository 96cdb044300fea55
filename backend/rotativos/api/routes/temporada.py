from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from rotativos.core.errors import ValidationError
from rotativos.core.security import get_current_user, require_admin
from rotativos.db.session import get_db
from rotativos.schemas.temporada import AjusteMaxRequest, BalanceOut, RecalcularMaxRequest
from rotativos.services import balance as ledger
from rotativos.services import capacity, waiting_list

router = APIRouter(prefix="/api/v1/temporada", tags=["temporada"])


@router.get("/resumen")
def season_summary(season_id: Optional[int] = None, user=Depends(get_current_user), db: Session = Depends(get_db)):
    season_id = capacity.resolve_season_id(db, season_id)
    s = capacity.season_summary(db, season_id)
    return {
        "season_id": s.season_id,
        "cupo_total": s.total_capacity,
        "consumidos": s.consumed,
        "restantes": s.remaining,
        "integrantes": s.members,
        "max_por_integrante": s.max_per_member,
    }


@router.post("/recalcular-max")
def recalculate_max(data: RecalcularMaxRequest, admin=Depends(require_admin), db: Session = Depends(get_db)):
    season_id = capacity.resolve_season_id(db, data.season_id)
    updated = ledger.recalculate_projected_max(db, season_id, data.scope, actor_id=admin.id)
    return {"ok": True, "actualizados": updated, "max_proyectado": capacity.projected_max(db, season_id)}


@router.post("/purgar-lista-espera")
def purge_waiting_list(season_id: Optional[int] = None, admin=Depends(require_admin), db: Session = Depends(get_db)):
    season_id = capacity.resolve_season_id(db, season_id)
    removed = waiting_list.purge_season(db, season_id, actor_id=admin.id)
    return {"ok": True, "eliminadas": removed}


@router.get("/integrantes/{user_id}/balance", response_model=BalanceOut)
def user_balance(
    user_id: int,
    season_id: Optional[int] = None,
    admin=Depends(require_admin),
    db: Session = Depends(get_db),
):
    season_id = capacity.resolve_season_id(db, season_id)
    bal = ledger.get_balance(db, user_id, season_id)
    db.commit()
    return ledger.snapshot(db, bal)


@router.put("/integrantes/{user_id}/max", response_model=BalanceOut)
def adjust_max(user_id: int, data: AjusteMaxRequest, admin=Depends(require_admin), db: Session = Depends(get_db)):
    season_id = capacity.resolve_season_id(db, data.season_id)
    if data.max_ajustado is None:
        bal = ledger.clear_manual_override(db, user_id, season_id, admin.id)
    else:
        if not data.justificacion:
            raise ValidationError("Falta la justificación del ajuste")
        bal = ledger.set_manual_override(db, user_id, season_id, data.max_ajustado, data.justificacion, admin.id)
    return ledger.snapshot(db, bal)


@router.post("/integrantes/{user_id}/recalcular", response_model=BalanceOut)
def recalculate_user(
    user_id: int,
    season_id: Optional[int] = None,
    admin=Depends(require_admin),
    db: Session = Depends(get_db),
):
    season_id = capacity.resolve_season_id(db, season_id)
    return ledger.snapshot(db, ledger.recalculate_balance(db, user_id, season_id))

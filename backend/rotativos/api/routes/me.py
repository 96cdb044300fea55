from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from rotativos.core.security import get_current_user
from rotativos.db.session import get_db
from rotativos.models.audit import Notification
from rotativos.models.user import User
from rotativos.services import balance as ledger
from rotativos.services import capacity, waiting_list

router = APIRouter(prefix="/api/v1", tags=["me"])


@router.get("/me")
def me(user: User = Depends(get_current_user)):
    return {
        "user_id": user.id,
        "email": user.email,
        "name": user.name,
        "alias": user.alias,
        "role": user.role,
    }


@router.get("/me/balance")
def my_balance(
    season_id: Optional[int] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    season_id = capacity.resolve_season_id(db, season_id)
    bal = ledger.get_balance(db, user.id, season_id)
    db.commit()
    out = ledger.snapshot(db, bal)
    alert = ledger.proximity_alert(db, user.id, season_id, adding=0)
    out["alerta"] = {"nivel": alert.level, "mensaje": alert.message}
    return out


@router.get("/me/lista-espera")
def my_waiting_list(
    season_id: Optional[int] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    season_id = capacity.resolve_season_id(db, season_id)
    return [
        {"event_id": e.event_id, "position": e.position, "created_at": e.created_at}
        for e in waiting_list.entries_for_user(db, user.id, season_id)
    ]


@router.get("/me/notificaciones")
def my_notifications(
    solo_no_leidas: bool = False,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    q = db.query(Notification).filter(Notification.user_id == user.id)
    if solo_no_leidas:
        q = q.filter(Notification.read == False)  # noqa: E712
    rows = q.order_by(Notification.created_at.desc()).limit(100).all()
    return [
        {
            "id": n.id,
            "type": n.type,
            "title": n.title,
            "message": n.message,
            "data": n.data,
            "read": n.read,
            "created_at": n.created_at,
        }
        for n in rows
    ]


@router.post("/me/notificaciones/leer-todas")
def mark_all_read(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    updated = (
        db.query(Notification)
        .filter(Notification.user_id == user.id, Notification.read == False)  # noqa: E712
        .update({Notification.read: True}, synchronize_session=False)
    )
    db.commit()
    return {"ok": True, "updated": updated}

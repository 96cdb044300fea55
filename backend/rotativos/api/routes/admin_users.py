from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from rotativos.core.roles import ALL_ROLES
from rotativos.core.security import require_admin
from rotativos.db.session import get_db
from rotativos.models.user import User

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])


@router.get("/users")
def list_users(admin=Depends(require_admin), db: Session = Depends(get_db)):
    users = db.query(User).order_by(User.id.asc()).all()
    return [
        {
            "user_id": u.id,
            "email": u.email,
            "name": u.name,
            "alias": u.alias,
            "role": u.role,
            "is_active": u.is_active,
            "fecha_ingreso": u.fecha_ingreso,
        }
        for u in users
    ]


@router.post("/users/{user_id}/role")
def set_role(user_id: int, payload: dict, admin=Depends(require_admin), db: Session = Depends(get_db)):
    role = (payload.get("role") or "").strip().upper()
    if role not in ALL_ROLES:
        raise HTTPException(status_code=400, detail=f"Rol inválido. Permitidos: {sorted(ALL_ROLES)}")

    u = db.query(User).filter_by(id=user_id).first()
    if not u:
        raise HTTPException(status_code=404, detail="Usuario no encontrado")

    u.role = role
    db.commit()
    return {"ok": True, "user_id": u.id, "role": u.role}


@router.post("/users/{user_id}/active")
def set_active(user_id: int, payload: dict, admin=Depends(require_admin), db: Session = Depends(get_db)):
    u = db.query(User).filter_by(id=user_id).first()
    if not u:
        raise HTTPException(status_code=404, detail="Usuario no encontrado")

    # cambia la cantidad de integrantes y con eso el máximo proyectado
    u.is_active = bool(payload.get("is_active", True))
    db.commit()
    return {"ok": True, "user_id": u.id, "is_active": u.is_active}

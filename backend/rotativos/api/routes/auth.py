from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from rotativos.core.roles import ROLE_INTEGRANTE
from rotativos.core.security import create_access_token, hash_password, verify_password
from rotativos.db.session import get_db
from rotativos.models.user import User
from rotativos.schemas.auth import LoginRequest, RegisterRequest

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


@router.post("/register")
def register(data: RegisterRequest, db: Session = Depends(get_db)):
    # ¿Ya existe ese email?
    if db.query(User).filter_by(email=data.email.lower().strip()).first():
        raise HTTPException(status_code=400, detail="El email ya está registrado")

    user = User(
        email=data.email.lower().strip(),
        password_hash=hash_password(data.password),
        name=data.name.strip(),
        alias=(data.alias or "").strip() or None,
        fecha_ingreso=data.fecha_ingreso,
        role=ROLE_INTEGRANTE,
    )
    db.add(user)
    db.commit()
    db.refresh(user)

    return {"ok": True, "user_id": user.id}


@router.post("/login")
def login(data: LoginRequest, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == data.email.lower().strip()).first()

    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="Credenciales inválidas")

    if not verify_password(data.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Credenciales inválidas")

    token = create_access_token(
        {
            "sub": str(user.id),
            "role": user.role,
        }
    )

    return {
        "access_token": token,
        "token_type": "bearer",
    }

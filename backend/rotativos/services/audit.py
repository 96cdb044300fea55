"""
Registro de auditoría y notificaciones in-app.

Ambos son efectos secundarios: se escriben después de confirmar la mutación
principal y un fallo acá se loguea y se descarta, nunca deshace la operación.
"""
import logging
from typing import Any, Dict, Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rotativos.core.roles import ROLE_ADMIN
from rotativos.models.audit import AuditLog, Notification
from rotativos.models.user import User

logger = logging.getLogger(__name__)

# Acciones
ROTATIVO_CREADO = "ROTATIVO_CREADO"
ROTATIVO_APROBADO = "ROTATIVO_APROBADO"
ROTATIVO_RECHAZADO = "ROTATIVO_RECHAZADO"
ROTATIVO_CANCELADO = "ROTATIVO_CANCELADO"
CANCELACION_SOLICITADA = "CANCELACION_SOLICITADA"
ROTACION_OBLIGATORIA_ASIGNADA = "ROTACION_OBLIGATORIA_ASIGNADA"
LISTA_ESPERA_AGREGADO = "LISTA_ESPERA_AGREGADO"
LISTA_ESPERA_PROMOVIDO = "LISTA_ESPERA_PROMOVIDO"
LISTA_ESPERA_PURGADA = "LISTA_ESPERA_PURGADA"
BLOQUE_SOLICITADO = "BLOQUE_SOLICITADO"
BLOQUE_APROBADO = "BLOQUE_APROBADO"
BLOQUE_CANCELADO = "BLOQUE_CANCELADO"
LICENCIA_CREADA = "LICENCIA_CREADA"
LICENCIA_ELIMINADA = "LICENCIA_ELIMINADA"
MAXIMO_AJUSTADO = "MAXIMO_AJUSTADO"
MAXIMO_RECALCULADO = "MAXIMO_RECALCULADO"
REGLA_MODIFICADA = "REGLA_MODIFICADA"


def record_audit(
    db: Session,
    action: str,
    entity_type: str,
    entity_id: Any,
    user_id: Optional[int],
    target_user_id: Optional[int] = None,
    details: Optional[Dict[str, Any]] = None,
) -> Optional[int]:
    try:
        entry = AuditLog(
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id),
            user_id=user_id,
            target_user_id=target_user_id,
            details=details or None,
        )
        db.add(entry)
        db.commit()
        logger.info(
            "audit action=%s entity=%s:%s user_id=%s target=%s",
            action, entity_type, entity_id, user_id, target_user_id,
        )
        return entry.id
    except SQLAlchemyError:
        logger.exception("No se pudo registrar auditoría action=%s entity=%s:%s", action, entity_type, entity_id)
        db.rollback()
        return None


def notify(
    db: Session,
    user_id: int,
    type: str,
    title: str,
    message: str,
    data: Optional[Dict[str, Any]] = None,
) -> None:
    try:
        db.add(Notification(user_id=user_id, type=type, title=title, message=message, data=data))
        db.commit()
    except SQLAlchemyError:
        logger.exception("No se pudo notificar user_id=%s type=%s", user_id, type)
        db.rollback()


def notify_admins(db: Session, type: str, title: str, message: str, data: Optional[Dict[str, Any]] = None) -> None:
    for admin_id in _admin_ids(db):
        notify(db, admin_id, type, title, message, data)


def _admin_ids(db: Session) -> Iterable[int]:
    rows = db.query(User.id).filter(User.role == ROLE_ADMIN, User.is_active == True).all()  # noqa: E712
    return [r[0] for r in rows]

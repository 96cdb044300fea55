"""
Licencias: suman al balance el promedio de cupos del período.

El crédito se guarda exacto (float) en la licencia y en el balance; solo se
redondea para mostrar. Borrar la licencia descuenta exactamente lo mismo.
"""
from __future__ import annotations

import logging
from datetime import date
from typing import List, Optional

from sqlalchemy.orm import Session

from rotativos.core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from rotativos.core.roles import ROLE_ADMIN
from rotativos.models.enums import RotativoEstado
from rotativos.models.event import Event
from rotativos.models.license import License
from rotativos.models.rotativo import Rotativo
from rotativos.models.user import User
from rotativos.services import audit, blocks, capacity
from rotativos.services import balance as ledger
from rotativos.services import state_machine, waiting_list
from rotativos.services.calendar import format_ddmm
from rotativos.services.eligibility import load_user
from rotativos.services.locking import slots_guard, with_slot_retry

logger = logging.getLogger(__name__)


def _require_admin(db: Session, admin_id: int) -> User:
    admin = db.get(User, admin_id)
    if admin is None or admin.role != ROLE_ADMIN:
        raise AuthorizationError("Solo administradores pueden registrar licencias")
    return admin


def list_licenses(db: Session, season_id: int, user_id: Optional[int] = None) -> List[License]:
    q = db.query(License).filter(License.season_id == season_id)
    if user_id is not None:
        q = q.filter(License.user_id == user_id)
    return q.order_by(License.start_date.desc()).all()


def create_license(
    db: Session,
    admin_id: int,
    user_id: int,
    season_id: int,
    start: date,
    end: date,
    description: Optional[str] = None,
) -> License:
    admin = _require_admin(db, admin_id)
    load_user(db, user_id)
    season = capacity.get_season(db, season_id)

    if start is None or end is None:
        raise ValidationError("Faltan campos requeridos: start_date, end_date")
    if start > end:
        raise ValidationError("La fecha de inicio debe ser anterior a la fecha de fin")
    if start < season.start_date or end > season.end_date:
        raise ValidationError("La licencia debe estar dentro de la temporada")

    overlapping = (
        db.query(License)
        .filter(
            License.user_id == user_id,
            License.season_id == season_id,
            License.start_date <= end,
            License.end_date >= start,
        )
        .first()
    )
    if overlapping is not None:
        raise ConflictError(
            "Ya existe una licencia que se superpone con estas fechas",
            {"license_id": overlapping.id},
        )

    credit = capacity.proportional_credit(db, season_id, start, end)

    affected = (
        db.query(Rotativo)
        .join(Event, Event.id == Rotativo.event_id)
        .filter(
            Rotativo.user_id == user_id,
            Rotativo.estado == RotativoEstado.APROBADO.value,
            Event.season_id == season_id,
            Event.date >= start,
            Event.date <= end,
        )
        .all()
    )
    rot_ids = [r.id for r in affected]
    removed_labels = [f"{r.event.title} ({format_ddmm(r.event.date)})" for r in affected]

    def _run():
        with slots_guard(db, [r.event_id for r in affected]) as events:
            promotions = []
            block_ids = set()
            for rot in db.query(Rotativo).filter(Rotativo.id.in_(rot_ids)).all():
                state_machine.apply_rotativo(rot, state_machine.CANCEL)
                ledger.revert_approval(db, rot)
                if rot.block_id is not None:
                    block_ids.add(rot.block_id)
                db.delete(rot)
            db.flush()
            for event_id in sorted(events):
                promotions.extend(waiting_list.promote_locked(db, events[event_id]))
            for block_id in block_ids:
                blocks.release_if_ghost(db, block_id)

            lic = License(
                user_id=user_id,
                season_id=season_id,
                start_date=start,
                end_date=end,
                description=description,
                rotativos_calculados=credit.amount,
                detalles_calculo={**credit.as_dict(), "rotativos_eliminados": removed_labels},
                created_by_id=admin_id,
            )
            db.add(lic)
            ledger.apply_license(db, user_id, season_id, credit.amount)
            db.flush()
            return lic, promotions

    lic, promotions = with_slot_retry(_run)
    waiting_list.announce(db, promotions)

    logger.info(
        "Licencia %s user_id=%s %s..%s credito=%.2f eliminados=%s",
        lic.id, user_id, start, end, credit.amount, len(removed_labels),
    )
    audit.record_audit(
        db, audit.LICENCIA_CREADA, "License", lic.id, admin_id,
        target_user_id=user_id,
        details={
            "desde": start.isoformat(),
            "hasta": end.isoformat(),
            "rotativos_calculados": credit.amount,
            "rotativos_eliminados": removed_labels,
        },
    )
    extra = f" Se eliminaron {len(removed_labels)} rotativo(s) de ese período." if removed_labels else ""
    audit.notify(
        db, user_id, "LICENCIA_REGISTRADA", "Licencia registrada",
        f"{admin.display_name} te registró una licencia del {format_ddmm(start)} al {format_ddmm(end)}. "
        f"Se sumaron {credit.amount:.2f} rotativos a tu balance.{extra}",
        {"license_id": lic.id},
    )
    return lic


def delete_license(db: Session, license_id: int, admin_id: int) -> None:
    _require_admin(db, admin_id)
    lic = db.get(License, license_id)
    if lic is None:
        raise NotFoundError("Licencia no encontrada", {"license_id": license_id})

    user_id, season_id, amount = lic.user_id, lic.season_id, lic.rotativos_calculados or 0.0
    ledger.apply_license(db, user_id, season_id, -amount)
    db.delete(lic)
    db.commit()

    logger.info("Licencia %s eliminada, se descuentan %.2f rotativos a user_id=%s", license_id, amount, user_id)
    audit.record_audit(
        db, audit.LICENCIA_ELIMINADA, "License", license_id, admin_id,
        target_user_id=user_id, details={"rotativos_descontados": amount},
    )

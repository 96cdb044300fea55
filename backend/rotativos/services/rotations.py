"""
Operaciones que cambian el estado de un rotativo.

Cada operación que toca cupo corre dentro de `slot_guard` del evento y se
reintenta ante StaleDataError. Auditoría y notificaciones se disparan después
del commit: si fallan no deshacen la operación.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional

from sqlalchemy.orm import Session

from rotativos.core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from rotativos.core.roles import ROLE_ADMIN
from rotativos.models.balance import UserSeasonBalance
from rotativos.models.block import Block
from rotativos.models.enums import BlockEstado, RotativoEstado, RotativoTipo
from rotativos.models.event import Event
from rotativos.models.rotativo import Rotativo
from rotativos.models.user import User
from rotativos.services import audit, blocks, capacity, state_machine
from rotativos.services import balance as ledger
from rotativos.services import waiting_list
from rotativos.services.calendar import days_until, format_ddmm, today_local
from rotativos.services.eligibility import LIVE_ESTADOS, Verdict, evaluate, load_event, load_user
from rotativos.services.locking import slot_guard, with_slot_retry
from rotativos.services.rule_config import get_rule

logger = logging.getLogger(__name__)


@dataclass
class CreateResult:
    rotativo: Rotativo
    verdict: Optional[Verdict] = None
    waiting_position: Optional[int] = None


@dataclass
class CancelResult:
    rotativo_id: int
    cancellation_pending: bool = False
    promoted_event_ids: List[int] = field(default_factory=list)


def _actor(db: Session, actor_id: int) -> User:
    actor = db.get(User, actor_id)
    if actor is None or not actor.is_active:
        raise AuthorizationError("Usuario no autorizado")
    return actor


def _require_admin(db: Session, actor_id: int) -> User:
    actor = _actor(db, actor_id)
    if actor.role != ROLE_ADMIN:
        raise AuthorizationError("Solo administradores pueden realizar esta acción")
    return actor


def _load_rotativo(db: Session, rotation_id: int) -> Rotativo:
    rot = db.get(Rotativo, rotation_id)
    if rot is None:
        raise NotFoundError("Rotativo no encontrado", {"rotativo_id": rotation_id})
    return rot


def _clear_terminal(db: Session, user_id: int, event_id: int) -> None:
    """Un RECHAZADO/CANCELADO viejo no impide volver a pedir (unique user+event)."""
    old = db.query(Rotativo).filter_by(user_id=user_id, event_id=event_id).first()
    if old is None:
        return
    if old.estado in LIVE_ESTADOS:
        raise ConflictError("Ya existe un rotativo para ese usuario en este evento", {"rotativo_id": old.id})
    db.delete(old)
    db.flush()


def _event_label(event: Event) -> str:
    return f"{event.title} ({format_ddmm(event.date)})"


# --- creación ---------------------------------------------------------------

def create_rotation(
    db: Session,
    user_id: int,
    event_id: int,
    season_id: int,
    actor_id: Optional[int] = None,
    today: Optional[date] = None,
) -> CreateResult:
    today = today or today_local()
    actor_id = actor_id or user_id
    if actor_id != user_id:
        _require_admin(db, actor_id)

    def _run() -> CreateResult:
        with slot_guard(db, event_id) as event:
            verdict = evaluate(db, user_id, event_id, season_id, today=today)
            if verdict.is_blocked:
                if verdict.days_until < 0:
                    raise ValidationError(verdict.blocking_reason, {"event_id": event_id})
                raise ConflictError(verdict.blocking_reason, {"event_id": event_id})
            _clear_terminal(db, user_id, event_id)

            if verdict.is_waitlisted:
                # en espera no ocupa cupo aunque tenga motivos
                estado = RotativoEstado.EN_ESPERA
            elif verdict.requires_approval:
                estado = RotativoEstado.PENDIENTE
            else:
                estado = RotativoEstado.APROBADO

            rot = Rotativo(
                user_id=user_id,
                event_id=event.id,
                estado=estado.value,
                tipo=RotativoTipo.VOLUNTARIO.value,
                motivo="; ".join(verdict.reasons) or None,
            )
            db.add(rot)
            db.flush()

            position = None
            if estado == RotativoEstado.EN_ESPERA:
                position = waiting_list.enqueue(db, user_id, event.id, season_id).position
            elif estado == RotativoEstado.APROBADO:
                ledger.record_approval(db, rot)
            return CreateResult(rotativo=rot, verdict=verdict, waiting_position=position)

    result = with_slot_retry(_run)
    rot = result.rotativo
    event = db.get(Event, event_id)
    logger.info("Rotativo %s creado user_id=%s event_id=%s estado=%s", rot.id, user_id, event_id, rot.estado)

    if rot.estado == RotativoEstado.EN_ESPERA.value:
        audit.record_audit(
            db, audit.LISTA_ESPERA_AGREGADO, "WaitingListEntry", event_id, user_id,
            details={"posicion": result.waiting_position, "rotativo_id": rot.id},
        )
    else:
        audit.record_audit(
            db, audit.ROTATIVO_CREADO, "Rotativo", rot.id, actor_id,
            target_user_id=user_id,
            details={"evento": event.title, "fecha": event.date.isoformat(), "estado": rot.estado, "motivos": result.verdict.reasons},
        )
    if rot.estado == RotativoEstado.PENDIENTE.value:
        user = db.get(User, user_id)
        audit.notify_admins(
            db, "SOLICITUD_PENDIENTE", "Solicitud pendiente",
            f"{user.display_name} pidió rotativo para {_event_label(event)}: {rot.motivo}",
            {"rotativo_id": rot.id, "event_id": event_id},
        )
    elif rot.estado == RotativoEstado.APROBADO.value:
        ledger.notify_threshold_crossing(db, user_id, season_id)
    return result


def _forced_create(
    db: Session,
    admin_id: int,
    user_id: int,
    event_id: int,
    season_id: int,
    tipo: RotativoTipo,
    motivo: Optional[str],
    today: date,
    max_days_ahead: Optional[int] = None,
) -> Rotativo:
    load_user(db, user_id)

    def _run() -> Rotativo:
        with slot_guard(db, event_id) as event:
            if event.season_id != season_id:
                raise ValidationError("El evento no pertenece a la temporada indicada", {"event_id": event_id})
            days = days_until(event.date, today)
            if days < 0:
                raise ValidationError("No se pueden asignar rotativos a eventos pasados", {"event_id": event_id})
            if max_days_ahead is not None and days > max_days_ahead:
                raise ValidationError(
                    f"La rotación obligatoria se asigna dentro de los {max_days_ahead} días previos al evento",
                    {"dias_hasta_evento": days},
                )
            _clear_terminal(db, user_id, event_id)
            # el máximo anual no aplica, el cupo del evento sí
            if capacity.free_slots(db, event) <= 0:
                raise ConflictError("No hay cupo disponible en este evento", {"event_id": event_id})

            rot = Rotativo(
                user_id=user_id,
                event_id=event.id,
                estado=RotativoEstado.APROBADO.value,
                tipo=tipo.value,
                motivo=motivo,
                aprobado_por_id=admin_id,
                asignado_por_id=admin_id,
            )
            db.add(rot)
            db.flush()
            ledger.record_approval(db, rot)
            waiting_list.remove(db, user_id, event_id)
            return rot

    return with_slot_retry(_run)


def create_on_behalf(
    db: Session,
    admin_id: int,
    user_id: int,
    event_id: int,
    season_id: int,
    motivo: Optional[str] = None,
    today: Optional[date] = None,
) -> Rotativo:
    admin = _require_admin(db, admin_id)
    rot = _forced_create(
        db, admin_id, user_id, event_id, season_id,
        RotativoTipo.VOLUNTARIO, motivo or f"Creado por {admin.display_name}",
        today or today_local(),
    )
    event = db.get(Event, event_id)
    audit.record_audit(
        db, audit.ROTATIVO_CREADO, "Rotativo", rot.id, admin_id,
        target_user_id=user_id,
        details={"evento": event.title, "fecha": event.date.isoformat(), "en_nombre_de": user_id},
    )
    audit.notify(
        db, user_id, "ROTATIVO_APROBADO", "Rotativo asignado",
        f"{admin.display_name} cargó un rotativo a tu nombre para {_event_label(event)}",
        {"rotativo_id": rot.id, "event_id": event_id},
    )
    ledger.notify_threshold_crossing(db, user_id, season_id)
    return rot


def assign_mandatory(
    db: Session,
    admin_id: int,
    user_id: int,
    event_id: int,
    season_id: int,
    motivo: Optional[str] = None,
    force: bool = False,
    today: Optional[date] = None,
) -> Rotativo:
    admin = _require_admin(db, admin_id)
    rule = get_rule(db, "ROTACION_OBLIGATORIA")
    window = None if force or not rule.enabled else rule.value.dias_antes

    rot = _forced_create(
        db, admin_id, user_id, event_id, season_id,
        RotativoTipo.OBLIGATORIO, motivo or "Rotación obligatoria asignada por administrador",
        today or today_local(), max_days_ahead=window,
    )
    event = db.get(Event, event_id)
    user = db.get(User, user_id)
    logger.info("Rotación obligatoria user_id=%s event_id=%s por admin_id=%s", user_id, event_id, admin_id)

    audit.record_audit(
        db, audit.ROTACION_OBLIGATORIA_ASIGNADA, "Rotativo", rot.id, admin_id,
        target_user_id=user_id,
        details={"evento": event.title, "fecha": event.date.isoformat(), "motivo": rot.motivo},
    )
    audit.notify(
        db, user_id, "ROTACION_OBLIGATORIA", "Rotación obligatoria",
        f"Se te asignó rotación obligatoria para {_event_label(event)}",
        {"rotativo_id": rot.id, "event_id": event_id},
    )
    audit.notify_admins(
        db, "ROTACION_OBLIGATORIA_ASIGNADA", "Rotación obligatoria asignada",
        f"{admin.display_name} asignó rotación obligatoria a {user.display_name} para {_event_label(event)}",
        {"rotativo_id": rot.id},
    )
    return rot


# --- decisiones del admin ------------------------------------------------------

def approve_rotation(db: Session, rotation_id: int, admin_id: int) -> Rotativo:
    _require_admin(db, admin_id)
    rot = _load_rotativo(db, rotation_id)
    event_id = rot.event_id

    def _run() -> Rotativo:
        with slot_guard(db, event_id):
            r = _load_rotativo(db, rotation_id)
            state_machine.apply_rotativo(r, state_machine.APPROVE)
            r.aprobado_por_id = admin_id
            ledger.record_approval(db, r)
            if r.block_id is not None:
                _maybe_close_block_request(db, r.block_id)
            return r

    rot = with_slot_retry(_run)
    event = db.get(Event, event_id)
    audit.record_audit(
        db, audit.ROTATIVO_APROBADO, "Rotativo", rot.id, admin_id,
        target_user_id=rot.user_id, details={"evento": event.title, "fecha": event.date.isoformat()},
    )
    audit.notify(
        db, rot.user_id, "ROTATIVO_APROBADO", "Rotativo aprobado",
        f"Tu rotativo para {_event_label(event)} fue aprobado",
        {"rotativo_id": rot.id},
    )
    ledger.notify_threshold_crossing(db, rot.user_id, event.season_id)
    return rot


def _maybe_close_block_request(db: Session, block_id: int) -> None:
    """Si ya no quedan rotativos pendientes en el bloque, el bloque queda aprobado."""
    block = db.get(Block, block_id)
    if block is None or block.estado != BlockEstado.SOLICITADO.value:
        return
    pending = (
        db.query(Rotativo)
        .filter(Rotativo.block_id == block_id, Rotativo.estado == RotativoEstado.PENDIENTE.value)
        .count()
    )
    if pending == 0:
        state_machine.apply_block(block, BlockEstado.APROBADO)
        ledger.mark_block_used(db, block.assigned_to_id, block.season_id)


def reject_rotation(db: Session, rotation_id: int, admin_id: int, motivo: Optional[str] = None) -> Rotativo:
    _require_admin(db, admin_id)
    rot = _load_rotativo(db, rotation_id)
    event_id = rot.event_id

    def _run():
        with slot_guard(db, event_id) as event:
            r = _load_rotativo(db, rotation_id)
            state_machine.apply_rotativo(r, state_machine.REJECT)
            r.rechazado_por_id = admin_id
            if motivo:
                r.motivo = motivo
            db.flush()
            promotions = waiting_list.promote_locked(db, event)
            blocks.release_if_ghost(db, r.block_id)
            return r, promotions

    rot, promotions = with_slot_retry(_run)
    waiting_list.announce(db, promotions)
    event = db.get(Event, event_id)
    audit.record_audit(
        db, audit.ROTATIVO_RECHAZADO, "Rotativo", rot.id, admin_id,
        target_user_id=rot.user_id, details={"evento": event.title, "motivo": motivo},
    )
    audit.notify(
        db, rot.user_id, "ROTATIVO_RECHAZADO", "Rotativo rechazado",
        f"Tu rotativo para {_event_label(event)} fue rechazado" + (f": {motivo}" if motivo else ""),
        {"rotativo_id": rot.id},
    )
    return rot


# --- cancelación ---------------------------------------------------------------

def cancel_rotation(
    db: Session,
    rotation_id: int,
    actor_id: int,
    today: Optional[date] = None,
) -> CancelResult:
    today = today or today_local()
    actor = _actor(db, actor_id)
    rot = _load_rotativo(db, rotation_id)
    is_admin = actor.role == ROLE_ADMIN
    if rot.user_id != actor_id and not is_admin:
        raise AuthorizationError("No tenés permiso para cancelar este rotativo")

    event_id, owner_id = rot.event_id, rot.user_id
    event = load_event(db, event_id)
    days = days_until(event.date, today)
    if days < 0:
        raise ValidationError("No se puede cancelar un rotativo de un evento pasado", {"rotativo_id": rotation_id})

    late = days <= 1 and not is_admin and rot.estado == RotativoEstado.APROBADO.value
    result = CancelResult(rotativo_id=rotation_id, cancellation_pending=late)

    def _run():
        with slot_guard(db, event_id) as ev:
            r = _load_rotativo(db, rotation_id)
            if late:
                state_machine.apply_rotativo(r, state_machine.REQUEST_CANCELLATION)
                return []
            credited = r.estado in (RotativoEstado.APROBADO.value, RotativoEstado.CANCELACION_PENDIENTE.value)
            waiting = r.estado == RotativoEstado.EN_ESPERA.value
            block_id = r.block_id
            if r.estado == RotativoEstado.CANCELACION_PENDIENTE.value and is_admin:
                state_machine.apply_rotativo(r, state_machine.CONFIRM_CANCELLATION)
            else:
                state_machine.apply_rotativo(r, state_machine.CANCEL)
            if credited:
                ledger.revert_approval(db, r)
            if waiting:
                waiting_list.remove(db, owner_id, event_id)
            db.delete(r)
            db.flush()
            promotions = waiting_list.promote_locked(db, ev)
            blocks.release_if_ghost(db, block_id)
            return promotions

    promotions = with_slot_retry(_run)
    waiting_list.announce(db, promotions)
    if promotions:
        result.promoted_event_ids = [event_id]

    if late:
        owner = db.get(User, owner_id)
        audit.record_audit(
            db, audit.CANCELACION_SOLICITADA, "Rotativo", rotation_id, actor_id,
            target_user_id=owner_id, details={"evento": event.title, "dias_hasta_evento": days},
        )
        audit.notify_admins(
            db, "CANCELACION_PENDIENTE", "Cancelación pendiente",
            f"{owner.display_name} pidió cancelar su rotativo de {_event_label(event)}",
            {"rotativo_id": rotation_id},
        )
    else:
        logger.info("Rotativo %s cancelado por user_id=%s", rotation_id, actor_id)
        audit.record_audit(
            db, audit.ROTATIVO_CANCELADO, "Rotativo", rotation_id, actor_id,
            target_user_id=owner_id,
            details={"evento": event.title, "fecha": event.date.isoformat(), "promovidos": len(promotions)},
        )
    return result


def approve_cancellation(db: Session, rotation_id: int, admin_id: int) -> CancelResult:
    _require_admin(db, admin_id)
    rot = _load_rotativo(db, rotation_id)
    event_id, owner_id = rot.event_id, rot.user_id

    def _run():
        with slot_guard(db, event_id) as ev:
            r = _load_rotativo(db, rotation_id)
            block_id = r.block_id
            state_machine.apply_rotativo(r, state_machine.CONFIRM_CANCELLATION)
            ledger.revert_approval(db, r)
            db.delete(r)
            db.flush()
            promotions = waiting_list.promote_locked(db, ev)
            blocks.release_if_ghost(db, block_id)
            return promotions

    promotions = with_slot_retry(_run)
    waiting_list.announce(db, promotions)
    event = db.get(Event, event_id)

    audit.record_audit(
        db, audit.ROTATIVO_CANCELADO, "Rotativo", rotation_id, admin_id,
        target_user_id=owner_id, details={"evento": event.title, "accion": "cancelacion_tardia_aprobada"},
    )
    audit.notify(
        db, owner_id, "CANCELACION_APROBADA", "Cancelación aprobada",
        f"Tu cancelación del rotativo de {_event_label(event)} fue aprobada",
        {"event_id": event_id},
    )
    return CancelResult(
        rotativo_id=rotation_id,
        promoted_event_ids=[event_id] if promotions else [],
    )


def reject_cancellation(db: Session, rotation_id: int, admin_id: int) -> Rotativo:
    _require_admin(db, admin_id)
    rot = _load_rotativo(db, rotation_id)
    state_machine.apply_rotativo(rot, state_machine.REVERT_CANCELLATION)
    db.commit()

    event = db.get(Event, rot.event_id)
    audit.record_audit(
        db, audit.ROTATIVO_APROBADO, "Rotativo", rot.id, admin_id,
        target_user_id=rot.user_id, details={"accion": "cancelacion_rechazada"},
    )
    audit.notify(
        db, rot.user_id, "CANCELACION_RECHAZADA", "Cancelación rechazada",
        f"Tu rotativo de {_event_label(event)} sigue vigente",
        {"rotativo_id": rot.id},
    )
    return rot


# --- candidatos -------------------------------------------------------------

@dataclass
class Candidate:
    user_id: int
    name: str
    consumed: float
    max_efectivo: int


@dataclass
class CandidateList:
    event_id: int
    criterio: str
    promedio: float
    candidates: List[Candidate]


def mandatory_candidates(
    db: Session,
    season_id: int,
    event_id: int,
    criterio: Optional[str] = None,
) -> CandidateList:
    """
    Integrantes para rotación obligatoria (MENOS_ROTATIVOS primero) o para
    cobertura externa (MAS_ROTATIVOS primero), sin los que ya están en el evento.
    """
    event = load_event(db, event_id)
    if criterio is None:
        criterio = get_rule(db, "ROTACION_OBLIGATORIA").value.criterio
    if criterio not in ("MENOS_ROTATIVOS", "MAS_ROTATIVOS"):
        raise ValidationError(f"Criterio desconocido: {criterio}")

    taken = {
        r.user_id
        for r in db.query(Rotativo).filter(Rotativo.event_id == event.id, Rotativo.estado.in_(LIVE_ESTADOS))
    }
    users = db.query(User).filter(User.is_active == True).order_by(User.id).all()  # noqa: E712
    balances = {
        b.user_id: b
        for b in db.query(UserSeasonBalance).filter(UserSeasonBalance.season_id == season_id)
    }
    projected = capacity.projected_max(db, season_id)

    rows: List[Candidate] = []
    for u in users:
        bal = balances.get(u.id)
        consumed = ledger.total_consumed(bal) if bal else 0.0
        max_ef = bal.max_ajustado_manual if bal is not None and bal.max_ajustado_manual is not None else projected
        rows.append(Candidate(user_id=u.id, name=u.display_name, consumed=consumed, max_efectivo=max_ef))

    promedio = round(sum(c.consumed for c in rows) / len(rows), 2) if rows else 0.0
    reverse = criterio == "MAS_ROTATIVOS"
    candidates = sorted(
        (c for c in rows if c.user_id not in taken),
        key=lambda c: ((-c.consumed if reverse else c.consumed), c.user_id),
    )
    return CandidateList(event_id=event.id, criterio=criterio, promedio=promedio, candidates=candidates)

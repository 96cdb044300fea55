"""
Bloques: rotativo en todos los eventos de un título.

Las restricciones del bloque son advertencias: si alguna se dispara el bloque
igual se crea, en SOLICITADO y con rotativos PENDIENTE, y el admin decide.
Solo se rechaza un título sin eventos o un bloque ya completo.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from rotativos.core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from rotativos.core.roles import ROLE_ADMIN
from rotativos.models.block import Block
from rotativos.models.enums import (
    ACTIVE_BLOCK_ESTADOS,
    ACTIVE_ESTADOS,
    BLOCK_LIVE_ESTADOS,
    BlockEstado,
    RotativoEstado,
    RotativoTipo,
)
from rotativos.models.event import Event
from rotativos.models.rotativo import Rotativo
from rotativos.models.titulo import Titulo
from rotativos.models.user import User
from rotativos.services import audit, capacity, state_machine
from rotativos.services import balance as ledger
from rotativos.services import waiting_list
from rotativos.services.calendar import days_until, format_ddmm, today_local
from rotativos.services.eligibility import load_user, user_live_count
from rotativos.services.locking import slots_guard, with_slot_retry
from rotativos.services.rule_config import get_rule

logger = logging.getLogger(__name__)

CANCELABLE_ESTADOS = (
    RotativoEstado.APROBADO.value,
    RotativoEstado.PENDIENTE.value,
    RotativoEstado.EN_ESPERA.value,
)


@dataclass
class BlockVerdict:
    user_id: int
    titulo_id: int
    reasons: List[str] = field(default_factory=list)
    events_to_request: List[int] = field(default_factory=list)
    unavailable: List[int] = field(default_factory=list)
    block_id: Optional[int] = None
    estado: Optional[str] = None
    created: List[int] = field(default_factory=list)
    waitlisted: List[int] = field(default_factory=list)

    @property
    def requires_approval(self) -> bool:
        return bool(self.reasons)

    @property
    def motivo(self) -> Optional[str]:
        return "; ".join(self.reasons) if self.reasons else None


@dataclass
class BlockCancelResult:
    block_id: int
    cancellation_pending: bool = False
    cancelled_rotation_ids: List[int] = field(default_factory=list)
    promoted_event_ids: List[int] = field(default_factory=list)


def _active_blocks(db: Session, user_id: int, season_id: int) -> List[Block]:
    return (
        db.query(Block)
        .filter(
            Block.assigned_to_id == user_id,
            Block.season_id == season_id,
            Block.estado.in_(ACTIVE_BLOCK_ESTADOS),
        )
        .all()
    )


def _live_rotation_count(db: Session, block_id: int) -> int:
    return (
        db.query(func.count(Rotativo.id))
        .filter(Rotativo.block_id == block_id, Rotativo.estado.in_(BLOCK_LIVE_ESTADOS))
        .scalar()
        or 0
    )


def _cancel_ghost(db: Session, block: Block) -> None:
    user_id = block.assigned_to_id
    state_machine.apply_block(block, BlockEstado.CANCELADO)
    block.assigned_to_id = None
    db.flush()
    if user_id is not None and not _active_blocks(db, user_id, block.season_id):
        ledger.clear_block_used(db, user_id, block.season_id)


def release_if_ghost(db: Session, block_id: Optional[int]) -> bool:
    """Cancela el bloque si se quedó sin rotativos vivos. Solo flush."""
    if block_id is None:
        return False
    block = db.get(Block, block_id)
    if block is None or block.estado not in ACTIVE_BLOCK_ESTADOS:
        return False
    if _live_rotation_count(db, block_id) > 0:
        return False
    _cancel_ghost(db, block)
    logger.info("Bloque %s cancelado: sin rotativos vivos", block_id)
    return True


def _assess(db: Session, user_id: int, titulo: Titulo, season_id: int, today: date) -> BlockVerdict:
    verdict = BlockVerdict(user_id=user_id, titulo_id=titulo.id)

    all_events = db.query(Event).filter(Event.titulo_id == titulo.id).order_by(Event.date, Event.id).all()
    if not all_events:
        raise ValidationError("Este título no tiene eventos programados", {"titulo_id": titulo.id})
    upcoming = [e for e in all_events if days_until(e.date, today) >= 0]

    held = {
        r.event_id
        for r in db.query(Rotativo).filter(
            Rotativo.user_id == user_id,
            Rotativo.event_id.in_([e.id for e in all_events]),
            Rotativo.estado.in_(BLOCK_LIVE_ESTADOS),
        )
    }
    to_request = [e for e in upcoming if e.id not in held]
    if not to_request:
        raise ConflictError("Ya tenés rotativo en todos los eventos de este título", {"titulo_id": titulo.id})
    verdict.events_to_request = [e.id for e in to_request]

    own_blocks = _active_blocks(db, user_id, season_id)
    own_here = [b for b in own_blocks if b.titulo_id == titulo.id]
    bal = ledger.get_balance(db, user_id, season_id)

    exclusive = get_rule(db, "BLOQUE_EXCLUSIVO")
    if exclusive.enabled:
        others = [b for b in own_blocks if b.titulo_id != titulo.id]
        limit = exclusive.value.max_por_persona
        if len(others) >= limit or (bal.bloque_usado and not own_here):
            verdict.reasons.append(f"Ya utilizaste tu bloque de esta temporada (máximo {limit} por año)")

    cupos = get_rule(db, "CUPO_DIARIO").value
    title_quota = titulo.cupo if titulo.cupo is not None else capacity.type_quota(titulo.type, cupos)
    holders = (
        db.query(func.count(func.distinct(Block.assigned_to_id)))
        .filter(
            Block.titulo_id == titulo.id,
            Block.estado.in_(ACTIVE_BLOCK_ESTADOS),
            Block.assigned_to_id.isnot(None),
            Block.assigned_to_id != user_id,
        )
        .scalar()
        or 0
    )
    if holders >= title_quota:
        verdict.reasons.append(f"Ya hay {holders} bloque(s) para este título (cupo {title_quota})")

    max_rule = get_rule(db, "MAX_PROYECTADO")
    if max_rule.enabled:
        max_ef = ledger.live_effective_max(db, bal)
        with_block = user_live_count(db, user_id, season_id) + (bal.rotativos_por_licencia or 0.0) + len(to_request)
        if with_block > max_ef:
            shown = int(with_block) if float(with_block).is_integer() else round(with_block, 1)
            verdict.reasons.append(f"El bloque excede tu máximo proyectado anual ({shown}/{max_ef})")

    full = [e for e in to_request if capacity.free_slots(db, e, cupos) <= 0]
    if full:
        verdict.unavailable = [e.id for e in full]
        verdict.reasons.append("Eventos sin cupo disponible: " + ", ".join(format_ddmm(e.date) for e in full))

    return verdict


def _load_titulo(db: Session, titulo_id: int, season_id: int) -> Titulo:
    titulo = db.get(Titulo, titulo_id)
    if titulo is None:
        raise NotFoundError("Título no encontrado", {"titulo_id": titulo_id})
    if titulo.season_id != season_id:
        raise ValidationError("El título no pertenece a la temporada indicada", {"titulo_id": titulo_id})
    return titulo


def request_block(
    db: Session,
    user_id: int,
    titulo_id: int,
    season_id: int,
    validate_only: bool = False,
    today: Optional[date] = None,
) -> BlockVerdict:
    today = today or today_local()
    load_user(db, user_id)
    titulo = _load_titulo(db, titulo_id, season_id)

    if validate_only:
        verdict = _assess(db, user_id, titulo, season_id, today)
        db.rollback()  # get_balance pudo crear la fila; validar no escribe
        return verdict

    def _run() -> BlockVerdict:
        preview = _assess(db, user_id, titulo, season_id, today)
        with slots_guard(db, preview.events_to_request):
            verdict = _assess(db, user_id, titulo, season_id, today)

            own = [b for b in _active_blocks(db, user_id, season_id) if b.titulo_id == titulo.id]
            if own:
                block = own[0]
                if verdict.reasons and block.estado == BlockEstado.APROBADO.value:
                    state_machine.apply_block(block, BlockEstado.SOLICITADO)
            else:
                block = Block(
                    season_id=season_id,
                    titulo_id=titulo.id,
                    name=titulo.name,
                    start_date=titulo.start_date,
                    end_date=titulo.end_date,
                    assigned_to_id=user_id,
                    estado=(BlockEstado.SOLICITADO if verdict.reasons else BlockEstado.APROBADO).value,
                )
                db.add(block)
                db.flush()

            unavailable = set(verdict.unavailable)
            for event_id in verdict.events_to_request:
                stale = db.query(Rotativo).filter_by(user_id=user_id, event_id=event_id).first()
                if stale is not None:
                    db.delete(stale)  # RECHAZADO / CANCELADO previo
                    db.flush()
                if event_id in unavailable:
                    estado = RotativoEstado.EN_ESPERA.value
                elif verdict.reasons:
                    estado = RotativoEstado.PENDIENTE.value
                else:
                    estado = RotativoEstado.APROBADO.value
                rot = Rotativo(
                    user_id=user_id,
                    event_id=event_id,
                    estado=estado,
                    tipo=RotativoTipo.VOLUNTARIO.value,
                    block_id=block.id,
                    motivo=verdict.motivo,
                )
                db.add(rot)
                db.flush()
                if estado == RotativoEstado.EN_ESPERA.value:
                    waiting_list.enqueue(db, user_id, event_id, season_id)
                    verdict.waitlisted.append(event_id)
                else:
                    if estado == RotativoEstado.APROBADO.value:
                        ledger.record_approval(db, rot)
                    verdict.created.append(event_id)

            if not verdict.reasons:
                ledger.mark_block_used(db, user_id, season_id)

            verdict.block_id = block.id
            verdict.estado = block.estado
        return verdict

    verdict = with_slot_retry(_run)

    logger.info(
        "Bloque %s user_id=%s titulo_id=%s estado=%s eventos=%s",
        verdict.block_id, user_id, titulo_id, verdict.estado, len(verdict.events_to_request),
    )
    audit.record_audit(
        db, audit.BLOQUE_SOLICITADO, "Block", verdict.block_id, user_id,
        details={
            "titulo": titulo.name,
            "estado": verdict.estado,
            "eventos": verdict.events_to_request,
            "en_espera": verdict.waitlisted,
            "motivos": verdict.reasons,
        },
    )
    if verdict.reasons:
        user = db.get(User, user_id)
        audit.notify_admins(
            db, "BLOQUE_PENDIENTE", "Bloque pendiente de aprobación",
            f"{user.display_name} solicitó el bloque de {titulo.name}: {verdict.motivo}",
            {"block_id": verdict.block_id, "user_id": user_id},
        )
    return verdict


def _require_admin(db: Session, actor_id: int) -> User:
    actor = db.get(User, actor_id)
    if actor is None or actor.role != ROLE_ADMIN:
        raise AuthorizationError("Solo administradores pueden realizar esta acción")
    return actor


def approve_block(db: Session, block_id: int, admin_id: int) -> Block:
    _require_admin(db, admin_id)
    block = db.get(Block, block_id)
    if block is None:
        raise NotFoundError("Bloque no encontrado", {"block_id": block_id})

    pending_ids = [
        r.event_id
        for r in db.query(Rotativo).filter(
            Rotativo.block_id == block_id, Rotativo.estado == RotativoEstado.PENDIENTE.value
        )
    ]

    def _run() -> int:
        with slots_guard(db, pending_ids):
            blk = db.get(Block, block_id)
            state_machine.apply_block(blk, BlockEstado.APROBADO)
            rows = db.query(Rotativo).filter(
                Rotativo.block_id == block_id, Rotativo.estado == RotativoEstado.PENDIENTE.value
            ).all()
            for rot in rows:
                state_machine.apply_rotativo(rot, state_machine.APPROVE)
                rot.aprobado_por_id = admin_id
                ledger.record_approval(db, rot)
            ledger.mark_block_used(db, blk.assigned_to_id, blk.season_id)
            return len(rows)

    approved = with_slot_retry(_run)
    block = db.get(Block, block_id)

    audit.record_audit(
        db, audit.BLOQUE_APROBADO, "Block", block_id, admin_id,
        target_user_id=block.assigned_to_id, details={"rotativos_aprobados": approved},
    )
    audit.notify(
        db, block.assigned_to_id, "BLOQUE_APROBADO", "Bloque aprobado",
        f"Tu bloque de {block.name} fue aprobado", {"block_id": block_id},
    )
    ledger.notify_threshold_crossing(db, block.assigned_to_id, block.season_id)
    return block


def cancel_block(
    db: Session,
    block_id: int,
    actor_id: int,
    motivo: Optional[str] = None,
    today: Optional[date] = None,
) -> BlockCancelResult:
    today = today or today_local()
    block = db.get(Block, block_id)
    if block is None:
        raise NotFoundError("Bloque no encontrado", {"block_id": block_id})
    actor = db.get(User, actor_id)
    if actor is None:
        raise AuthorizationError("Usuario no autorizado")
    is_admin = actor.role == ROLE_ADMIN
    if block.assigned_to_id != actor_id and not is_admin:
        raise AuthorizationError("No podés cancelar un bloque de otro integrante")
    if block.estado == BlockEstado.CANCELADO.value:
        raise ConflictError("El bloque ya está cancelado", {"block_id": block_id})

    rule = get_rule(db, "BLOQUE_EXCLUSIVO")
    started = block.estado in (BlockEstado.EN_CURSO.value, BlockEstado.COMPLETADO.value)
    if started and not is_admin and rule.enabled and not rule.value.permite_cancel:
        raise ValidationError("El bloque ya comenzó y no se puede cancelar")

    owner_id = block.assigned_to_id
    cancelable = [
        r for r in db.query(Rotativo).join(Event, Event.id == Rotativo.event_id).filter(
            Rotativo.block_id == block_id,
            Rotativo.estado.in_(CANCELABLE_ESTADOS),
            Event.date >= today,
        )
    ]
    if not cancelable:
        raise ValidationError("El bloque no tiene rotativos futuros para cancelar", {"block_id": block_id})

    near = any(days_until(r.event.date, today) <= 1 for r in cancelable)
    result = BlockCancelResult(block_id=block_id, cancellation_pending=near and not is_admin)
    event_ids = [r.event_id for r in cancelable]
    rot_ids = [r.id for r in cancelable]

    def _run() -> list:
        result.cancelled_rotation_ids = []
        with slots_guard(db, event_ids) as events:
            rows = db.query(Rotativo).filter(Rotativo.id.in_(rot_ids)).all()
            freed = set()
            for rot in rows:
                if result.cancellation_pending and rot.estado == RotativoEstado.APROBADO.value:
                    state_machine.apply_rotativo(rot, state_machine.REQUEST_CANCELLATION)
                    continue
                credited = rot.estado == RotativoEstado.APROBADO.value
                if rot.estado == RotativoEstado.EN_ESPERA.value:
                    waiting_list.remove(db, rot.user_id, rot.event_id)
                else:
                    freed.add(rot.event_id)
                state_machine.apply_rotativo(rot, state_machine.CANCEL)
                if credited:
                    ledger.revert_approval(db, rot)
                result.cancelled_rotation_ids.append(rot.id)
                db.delete(rot)
            db.flush()

            promotions = []
            for event_id in sorted(freed):
                promotions.extend(waiting_list.promote_locked(db, events[event_id]))

            blk = db.get(Block, block_id)
            if not result.cancellation_pending:
                state_machine.apply_block(blk, BlockEstado.CANCELADO)
                blk.assigned_to_id = None
                db.flush()
                if not _active_blocks(db, owner_id, blk.season_id):
                    ledger.clear_block_used(db, owner_id, blk.season_id)
            else:
                release_if_ghost(db, block_id)
            return promotions

    promotions = with_slot_retry(_run)
    result.promoted_event_ids = sorted({p.event_id for p in promotions})
    waiting_list.announce(db, promotions)

    if result.cancellation_pending:
        owner = db.get(User, owner_id)
        audit.record_audit(
            db, audit.CANCELACION_SOLICITADA, "Block", block_id, actor_id,
            target_user_id=owner_id, details={"motivo": motivo, "eventos": event_ids},
        )
        audit.notify_admins(
            db, "CANCELACION_PENDIENTE", "Cancelación de bloque pendiente",
            f"{owner.display_name} pidió cancelar su bloque {block.name} con eventos en menos de 24 horas",
            {"block_id": block_id},
        )
    else:
        audit.record_audit(
            db, audit.BLOQUE_CANCELADO, "Block", block_id, actor_id,
            target_user_id=owner_id,
            details={
                "motivo": motivo,
                "rotativos": result.cancelled_rotation_ids,
                "promovidos": result.promoted_event_ids,
            },
        )
        if actor_id != owner_id:
            audit.notify(
                db, owner_id, "BLOQUE_CANCELADO", "Bloque cancelado",
                f"Tu bloque de {block.name} fue cancelado", {"block_id": block_id, "motivo": motivo},
            )
    return result


def refresh_block_progress(db: Session, block: Block, today: date) -> None:
    """APROBADO -> EN_CURSO al llegar el primer evento, -> COMPLETADO al pasar el último."""
    if block.estado not in (BlockEstado.APROBADO.value, BlockEstado.EN_CURSO.value):
        return
    dates = [
        r.event.date for r in db.query(Rotativo).filter(
            Rotativo.block_id == block.id, Rotativo.estado.in_(ACTIVE_ESTADOS)
        )
    ]
    if not dates:
        return
    if max(dates) < today:
        state_machine.apply_block(block, BlockEstado.COMPLETADO)
    elif min(dates) <= today and block.estado == BlockEstado.APROBADO.value:
        state_machine.apply_block(block, BlockEstado.EN_CURSO)


def sweep_ghost_blocks(db: Session, season_id: Optional[int] = None, today: Optional[date] = None) -> List[int]:
    """Cancela bloques activos sin rotativos vivos. Idempotente."""
    today = today or today_local()
    q = db.query(Block).filter(Block.estado.in_(ACTIVE_BLOCK_ESTADOS))
    if season_id is not None:
        q = q.filter(Block.season_id == season_id)

    cancelled: List[tuple] = []
    for block in q.order_by(Block.id).all():
        if _live_rotation_count(db, block.id) == 0:
            user_id = block.assigned_to_id
            _cancel_ghost(db, block)
            cancelled.append((block.id, user_id))
        else:
            refresh_block_progress(db, block, today)
    db.commit()

    for block_id, user_id in cancelled:
        logger.info("Bloque fantasma %s cancelado (user_id=%s)", block_id, user_id)
        audit.record_audit(
            db, audit.BLOQUE_CANCELADO, "Block", block_id, None,
            target_user_id=user_id, details={"motivo": "bloque sin rotativos activos"},
        )
    return [block_id for block_id, _ in cancelled]

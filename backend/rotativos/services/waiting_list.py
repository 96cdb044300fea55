"""
Lista de espera FIFO por evento.

`position` empieza en 1 y se compacta al sacar una entrada. La promoción
corre bajo `locking.slot_guard`: leer la cabeza, promoverla y desencolar se
confirman juntos, así dos liberaciones concurrentes no promueven dos veces
al mismo integrante.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from rotativos.models.enums import ACTIVE_ESTADOS, RotativoEstado, RotativoTipo
from rotativos.models.event import Event
from rotativos.models.rotativo import Rotativo
from rotativos.models.waiting_list import WaitingListEntry
from rotativos.services import audit, capacity, state_machine
from rotativos.services import balance as ledger
from rotativos.services.locking import slot_guard, with_slot_retry

logger = logging.getLogger(__name__)


@dataclass
class Promotion:
    user_id: int
    event_id: int
    rotativo_id: int
    previous_position: int
    estado: str = RotativoEstado.APROBADO.value


def enqueue(db: Session, user_id: int, event_id: int, season_id: int) -> WaitingListEntry:
    existing = db.query(WaitingListEntry).filter_by(user_id=user_id, event_id=event_id).first()
    if existing is not None:
        return existing
    last = (
        db.query(func.max(WaitingListEntry.position))
        .filter(WaitingListEntry.event_id == event_id)
        .scalar()
    )
    entry = WaitingListEntry(user_id=user_id, event_id=event_id, season_id=season_id, position=(last or 0) + 1)
    db.add(entry)
    db.flush()
    return entry


def _drop(db: Session, entry: WaitingListEntry) -> None:
    event_id, position = entry.event_id, entry.position
    db.delete(entry)
    db.flush()
    (
        db.query(WaitingListEntry)
        .filter(WaitingListEntry.event_id == event_id, WaitingListEntry.position > position)
        .update({WaitingListEntry.position: WaitingListEntry.position - 1}, synchronize_session="fetch")
    )


def remove(db: Session, user_id: int, event_id: int) -> bool:
    entry = db.query(WaitingListEntry).filter_by(user_id=user_id, event_id=event_id).first()
    if entry is None:
        return False
    _drop(db, entry)
    return True


def position_of(db: Session, user_id: int, event_id: int) -> Optional[int]:
    entry = db.query(WaitingListEntry).filter_by(user_id=user_id, event_id=event_id).first()
    return entry.position if entry else None


def entries_for_event(db: Session, event_id: int) -> List[WaitingListEntry]:
    return (
        db.query(WaitingListEntry)
        .filter(WaitingListEntry.event_id == event_id)
        .order_by(WaitingListEntry.position.asc(), WaitingListEntry.id.asc())
        .all()
    )


def entries_for_user(db: Session, user_id: int, season_id: int) -> List[WaitingListEntry]:
    return (
        db.query(WaitingListEntry)
        .join(Event, Event.id == WaitingListEntry.event_id)
        .filter(WaitingListEntry.user_id == user_id, WaitingListEntry.season_id == season_id)
        .order_by(Event.date.asc())
        .all()
    )


def promote_locked(db: Session, event: Event) -> List[Promotion]:
    """Llamar solo dentro de slot_guard(event.id). No hace commit."""
    promoted: List[Promotion] = []
    free = capacity.free_slots(db, event)
    while free > 0:
        head = (
            db.query(WaitingListEntry)
            .filter(WaitingListEntry.event_id == event.id)
            .order_by(WaitingListEntry.position.asc(), WaitingListEntry.id.asc())
            .first()
        )
        if head is None:
            break

        rot = db.query(Rotativo).filter_by(user_id=head.user_id, event_id=event.id).first()
        if rot is not None and rot.estado in ACTIVE_ESTADOS:
            # ya tiene lugar por otra vía: solo se desencola
            _drop(db, head)
            continue

        if rot is None or rot.estado != RotativoEstado.EN_ESPERA.value:
            if rot is not None:
                db.delete(rot)  # fila terminal vieja
                db.flush()
            rot = Rotativo(
                user_id=head.user_id,
                event_id=event.id,
                estado=RotativoEstado.EN_ESPERA.value,
                tipo=RotativoTipo.VOLUNTARIO.value,
            )
            db.add(rot)
            db.flush()

        if rot.motivo:
            # el pedido original disparó reglas: ocupa el cupo pero decide el admin
            target = state_machine.apply_rotativo(rot, state_machine.PROMOTE_TO_REVIEW)
        else:
            target = state_machine.apply_rotativo(rot, state_machine.PROMOTE)
            ledger.record_approval(db, rot)
        promoted.append(Promotion(head.user_id, event.id, rot.id, head.position, target.value))
        _drop(db, head)
        free -= 1

    return promoted


def announce(db: Session, promotions: List[Promotion]) -> None:
    """Auditoría y aviso al integrante; después del commit."""
    for p in promotions:
        event = db.get(Event, p.event_id)
        title = event.title if event else str(p.event_id)
        logger.info("Promovido de lista de espera user_id=%s event_id=%s estado=%s", p.user_id, p.event_id, p.estado)
        audit.record_audit(
            db, audit.LISTA_ESPERA_PROMOVIDO, "WaitingListEntry", p.event_id, p.user_id,
            details={
                "posicion_anterior": p.previous_position, "rotativo_id": p.rotativo_id,
                "evento": title, "estado": p.estado,
            },
        )
        data = {"event_id": p.event_id, "rotativo_id": p.rotativo_id}
        if p.estado == RotativoEstado.PENDIENTE.value:
            rot = db.get(Rotativo, p.rotativo_id)
            audit.notify(
                db, p.user_id, "LISTA_ESPERA_CUPO", "Cupo disponible",
                f"Se liberó un cupo para {title}; tu rotativo queda pendiente de aprobación", data,
            )
            audit.notify_admins(
                db, "SOLICITUD_PENDIENTE", "Solicitud pendiente",
                f"Promovido de lista de espera para {title}: {rot.motivo if rot else ''}", data,
            )
        else:
            audit.notify(
                db, p.user_id, "LISTA_ESPERA_CUPO", "Cupo disponible",
                f"Se liberó un cupo para {title} y tu rotativo fue aprobado", data,
            )


def promote(db: Session, event_id: int) -> List[int]:
    """Promueve mientras haya cupo libre. Devuelve los user_id promovidos."""

    def _run() -> List[Promotion]:
        with slot_guard(db, event_id) as event:
            return promote_locked(db, event)

    promotions = with_slot_retry(_run)
    announce(db, promotions)
    return [p.user_id for p in promotions]


def purge_season(db: Session, season_id: int, actor_id: Optional[int] = None) -> int:
    """Fin de temporada: no hay arrastre de la lista de espera."""
    removed = db.query(WaitingListEntry).filter(WaitingListEntry.season_id == season_id).delete(
        synchronize_session=False
    )
    event_ids = select(Event.id).where(Event.season_id == season_id)
    db.query(Rotativo).filter(
        Rotativo.event_id.in_(event_ids),
        Rotativo.estado == RotativoEstado.EN_ESPERA.value,
    ).delete(synchronize_session=False)
    db.commit()

    logger.info("Lista de espera purgada season_id=%s entradas=%s", season_id, removed)
    audit.record_audit(
        db, audit.LISTA_ESPERA_PURGADA, "Season", season_id, actor_id,
        details={"entradas": removed},
    )
    return removed

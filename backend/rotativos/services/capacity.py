"""
Cálculo de cupos de la temporada.

Todo se calcula en vivo: títulos, eventos y plantel pueden cambiar entre
lecturas. `UserSeasonBalance.max_proyectado` es solo una copia que se repara
con `balance.recalculate_projected_max`.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from rotativos.core.errors import NotFoundError
from rotativos.models.enums import ACTIVE_ESTADOS, EventoType, RotativoEstado, TituloType
from rotativos.models.event import Event
from rotativos.models.rotativo import Rotativo
from rotativos.models.season import Season
from rotativos.models.titulo import Titulo
from rotativos.models.user import User
from rotativos.schemas.rules import CupoDiarioRule
from rotativos.services.rule_config import get_rule

logger = logging.getLogger(__name__)

# RECITAL comparte cupo con CONCIERTO, OTRO cae en BALLET
TYPE_BUCKET = {
    TituloType.OPERA.value: "OPERA",
    TituloType.BALLET.value: "BALLET",
    TituloType.CONCIERTO.value: "CONCIERTO",
    TituloType.RECITAL.value: "CONCIERTO",
    TituloType.OTRO.value: "BALLET",
}


def _cupos(db: Session) -> CupoDiarioRule:
    return get_rule(db, "CUPO_DIARIO").value


def type_quota(titulo_type: Optional[str], cupos: CupoDiarioRule) -> int:
    bucket = TYPE_BUCKET.get(titulo_type or "", "BALLET")
    return getattr(cupos, bucket)


def double_rehearsal_dates(db: Session, titulo_id: Optional[int]) -> set:
    """Días en los que el título tiene dos o más ensayos."""
    if titulo_id is None:
        return set()
    rows = (
        db.query(Event.date)
        .filter(Event.titulo_id == titulo_id, Event.evento_type == EventoType.ENSAYO.value)
        .group_by(Event.date)
        .having(func.count(Event.id) >= 2)
        .all()
    )
    return {r[0] for r in rows}


def rule_quota_for_event(
    event: Event,
    titulo: Optional[Titulo],
    cupos: CupoDiarioRule,
    is_double: bool = False,
) -> int:
    if titulo is not None and titulo.cupo is not None:
        return titulo.cupo
    if event.evento_type == EventoType.ENSAYO.value:
        if is_double and cupos.ENSAYO_DOBLE is not None:
            return cupos.ENSAYO_DOBLE
        if cupos.ENSAYO is not None:
            return cupos.ENSAYO
    return type_quota(titulo.type if titulo is not None else None, cupos)


def effective_quota(db: Session, event: Event, cupos: Optional[CupoDiarioRule] = None) -> int:
    if event.cupo_override is not None:
        return event.cupo_override
    cupos = cupos or _cupos(db)
    is_double = (
        event.evento_type == EventoType.ENSAYO.value
        and cupos.ENSAYO_DOBLE is not None
        and event.date in double_rehearsal_dates(db, event.titulo_id)
    )
    return rule_quota_for_event(event, event.titulo, cupos, is_double)


def active_rotation_count(db: Session, event_id: int) -> int:
    # CANCELACION_PENDIENTE sigue ocupando el lugar hasta que el admin decida
    return (
        db.query(func.count(Rotativo.id))
        .filter(Rotativo.event_id == event_id, Rotativo.estado.in_(ACTIVE_ESTADOS))
        .scalar()
        or 0
    )


def free_slots(db: Session, event: Event, cupos: Optional[CupoDiarioRule] = None) -> int:
    return effective_quota(db, event, cupos) - active_rotation_count(db, event.id)


def member_count(db: Session) -> int:
    # todos los usuarios activos cuentan, admins incluidos
    return db.query(func.count(User.id)).filter(User.is_active == True).scalar() or 0  # noqa: E712


def _season_titled_events(db: Session, season_id: int, start: Optional[date] = None, end: Optional[date] = None):
    q = (
        db.query(Event)
        .join(Titulo, Titulo.id == Event.titulo_id)
        .filter(Titulo.season_id == season_id)
    )
    if start is not None:
        q = q.filter(Event.date >= start)
    if end is not None:
        q = q.filter(Event.date <= end)
    return q.order_by(Event.date, Event.id).all()


def _quotas(db: Session, events: Iterable[Event], cupos: CupoDiarioRule) -> List[int]:
    doubles: Dict[int, set] = {}
    out = []
    for ev in events:
        if ev.cupo_override is not None:
            out.append(ev.cupo_override)
            continue
        is_double = False
        if ev.evento_type == EventoType.ENSAYO.value and cupos.ENSAYO_DOBLE is not None:
            if ev.titulo_id not in doubles:
                doubles[ev.titulo_id] = double_rehearsal_dates(db, ev.titulo_id)
            is_double = ev.date in doubles[ev.titulo_id]
        out.append(rule_quota_for_event(ev, ev.titulo, cupos, is_double))
    return out


def total_capacity(db: Session, season_id: int) -> int:
    events = _season_titled_events(db, season_id)
    return sum(_quotas(db, events, _cupos(db)))


def projected_max(db: Session, season_id: int) -> int:
    total = total_capacity(db, season_id)
    members = member_count(db)
    if members <= 0:
        return 1
    # redondeo "half up", no el redondeo bancario de round()
    return max(1, math.floor(total / members + 0.5))


def get_season(db: Session, season_id: int) -> Season:
    season = db.get(Season, season_id)
    if season is None:
        raise NotFoundError("Temporada no encontrada", {"season_id": season_id})
    return season


def get_active_season(db: Session) -> Season:
    season = db.query(Season).filter_by(is_active=True).order_by(Season.id.desc()).first()
    if season is None:
        raise NotFoundError("No hay temporada activa")
    return season


def approved_in_season(db: Session, season_id: int) -> int:
    return (
        db.query(func.count(Rotativo.id))
        .join(Event, Event.id == Rotativo.event_id)
        .filter(Event.season_id == season_id, Rotativo.estado == RotativoEstado.APROBADO.value)
        .scalar()
        or 0
    )


@dataclass
class SeasonSummary:
    season_id: int
    total_capacity: int
    consumed: int
    remaining: int
    members: int
    max_per_member: int


def season_summary(db: Session, season_id: int) -> SeasonSummary:
    get_season(db, season_id)
    total = total_capacity(db, season_id)
    consumed = approved_in_season(db, season_id)
    return SeasonSummary(
        season_id=season_id,
        total_capacity=total,
        consumed=consumed,
        remaining=max(0, total - consumed),
        members=member_count(db),
        max_per_member=projected_max(db, season_id),
    )


@dataclass
class UserSummary:
    user_id: int
    season_id: int
    max_assigned: int
    consumed: float
    remaining: float
    percent_used: float
    manual_override: bool = False


def user_summary(db: Session, user_id: int, season_id: int) -> UserSummary:
    from rotativos.services import balance as ledger

    bal = ledger.get_balance(db, user_id, season_id)
    max_assigned = ledger.live_effective_max(db, bal)
    consumed = ledger.total_consumed(bal)
    percent = round(consumed * 100.0 / max_assigned, 1) if max_assigned > 0 else 0.0
    return UserSummary(
        user_id=user_id,
        season_id=season_id,
        max_assigned=max_assigned,
        consumed=consumed,
        remaining=max(0.0, max_assigned - consumed),
        percent_used=percent,
        manual_override=bal.max_ajustado_manual is not None,
    )


@dataclass
class ProportionalCredit:
    amount: float
    total_quota: int
    members: int
    events: int
    detail: Dict[str, int] = field(default_factory=dict)  # "YYYY-MM-DD" -> cupo

    def as_dict(self) -> dict:
        return {
            "rotativos": self.amount,
            "cupos_en_rango": self.total_quota,
            "integrantes": self.members,
            "eventos": self.events,
            "detalle": self.detail,
        }


def proportional_credit(db: Session, season_id: int, start: date, end: date) -> ProportionalCredit:
    events = _season_titled_events(db, season_id, start, end)
    quotas = _quotas(db, events, _cupos(db))
    detail: Dict[str, int] = {}
    for ev, q in zip(events, quotas):
        k = ev.date.isoformat()
        detail[k] = detail.get(k, 0) + q
    total = sum(quotas)
    members = member_count(db)
    amount = total / members if members > 0 else 0.0
    logger.debug("Crédito proporcional season=%s %s..%s = %s/%s", season_id, start, end, total, members)
    return ProportionalCredit(amount=amount, total_quota=total, members=members, events=len(events), detail=detail)


def resolve_season_id(db: Session, season_id: Optional[int] = None) -> int:
    """La temporada se resuelve una vez en el borde (HTTP, scripts) y se pasa explícita."""
    if season_id is not None:
        return get_season(db, season_id).id
    return get_active_season(db).id

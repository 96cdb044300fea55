"""
Motor de elegibilidad.

`evaluate` nunca lanza por una regla: cada regla habilitada que se dispara
agrega un motivo legible y la solicitud pasa a revisión del admin. Solo los
problemas estructurales (evento o usuario inexistente, temporada equivocada)
lanzan excepción; fecha pasada y rotativo duplicado se informan como
`is_blocked` para que quien llama decida.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy import func
from sqlalchemy.orm import Session

from rotativos.core.errors import NotFoundError, ValidationError
from rotativos.models.enums import ACTIVE_ESTADOS, EventoType, RotativoEstado, RotativoTipo
from rotativos.models.event import Event
from rotativos.models.rotativo import Rotativo
from rotativos.models.user import User
from rotativos.services import balance as ledger
from rotativos.services import capacity
from rotativos.services.calendar import days_until, is_weekend, today_local, week_key
from rotativos.services.rule_config import LoadedRule, get_rule

logger = logging.getLogger(__name__)

LIVE_ESTADOS = ACTIVE_ESTADOS + (RotativoEstado.EN_ESPERA.value,)


@dataclass
class Verdict:
    user_id: int
    event_id: int
    season_id: int
    reasons: List[str] = field(default_factory=list)
    is_waitlisted: bool = False
    is_blocked: bool = False
    blocking_reason: Optional[str] = None
    quota: int = 0
    active_count: int = 0
    days_until: int = 0
    alert: Optional[ledger.ProximityAlert] = None
    evaluated_rules: List[str] = field(default_factory=list)

    @property
    def requires_approval(self) -> bool:
        return bool(self.reasons)

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "event_id": self.event_id,
            "requires_approval": self.requires_approval,
            "reasons": list(self.reasons),
            "is_waitlisted": self.is_waitlisted,
            "is_blocked": self.is_blocked,
            "blocking_reason": self.blocking_reason,
            "cupo": self.quota,
            "ocupados": self.active_count,
            "dias_anticipacion": self.days_until,
            "alerta": None if self.alert is None else {
                "nivel": self.alert.level,
                "mensaje": self.alert.message,
                "porcentaje": self.alert.percent_with_new,
            },
            "reglas_evaluadas": list(self.evaluated_rules),
        }


@dataclass
class _Context:
    db: Session
    user: User
    event: Event
    season_id: int
    today: date
    tipo: str
    in_block: bool
    live_count: int = 0
    bal: Optional[object] = None


def _fmt(n: float) -> str:
    return str(int(n)) if float(n).is_integer() else f"{n:.1f}"


def user_live_count(db: Session, user_id: int, season_id: int) -> int:
    """Rotativos del integrante que ocupan cupo en la temporada."""
    return (
        db.query(func.count(Rotativo.id))
        .join(Event, Event.id == Rotativo.event_id)
        .filter(
            Rotativo.user_id == user_id,
            Event.season_id == season_id,
            Rotativo.estado.in_(ACTIVE_ESTADOS),
        )
        .scalar()
        or 0
    )


def _user_rotations(db: Session, user_id: int, *criteria):
    return (
        db.query(Rotativo)
        .join(Event, Event.id == Rotativo.event_id)
        .filter(Rotativo.user_id == user_id, Rotativo.estado.in_(ACTIVE_ESTADOS), *criteria)
        .all()
    )


# --- reglas ----------------------------------------------------------------

def _season_share(ctx: _Context, rule: LoadedRule) -> Optional[str]:
    if ctx.tipo == RotativoTipo.OBLIGATORIO.value:
        return None
    share = ledger.live_effective_max(ctx.db, ctx.bal)
    if ctx.live_count >= share:
        return f"Superás tu parte del cupo de la temporada ({ctx.live_count}/{share})"
    return None


def _weekend(ctx: _Context, rule: LoadedRule) -> Optional[str]:
    if ctx.in_block or not is_weekend(ctx.event.date):
        return None
    max_por_mes = rule.value.max_por_mes
    d = ctx.event.date
    first = d.replace(day=1)
    nxt = first + relativedelta(months=1)
    rows = _user_rotations(
        ctx.db, ctx.user.id,
        Event.date >= first, Event.date < nxt, Event.id != ctx.event.id,
    )
    used = {week_key(r.event.date) for r in rows if is_weekend(r.event.date)}
    if week_key(d) in used:
        return None  # mismo fin de semana ya contado
    if len(used) >= max_por_mes:
        return f"Límite de fines de semana alcanzado ({len(used)}/{max_por_mes} este mes)"
    return None


def _annual_max(ctx: _Context, rule: LoadedRule) -> Optional[str]:
    if ctx.tipo == RotativoTipo.OBLIGATORIO.value:
        return None  # la rotación obligatoria puede exceder el máximo
    max_ef = ledger.live_effective_max(ctx.db, ctx.bal)
    with_new = ctx.live_count + (ctx.bal.rotativos_por_licencia or 0.0) + 1
    if with_new > max_ef:
        return f"Excede máximo proyectado anual ({_fmt(with_new)}/{max_ef})"
    return None


def _double_rehearsals(ctx: _Context, rule: LoadedRule) -> Optional[str]:
    ev = ctx.event
    if ev.evento_type != EventoType.ENSAYO.value or ev.titulo_id is None:
        return None
    doubles = capacity.double_rehearsal_dates(ctx.db, ev.titulo_id)
    if ev.date not in doubles:
        return None
    limit = rule.value.max_rotativos_por_titulo
    rows = _user_rotations(
        ctx.db, ctx.user.id,
        Event.titulo_id == ev.titulo_id,
        Event.evento_type == EventoType.ENSAYO.value,
        Event.date.in_(doubles),
    )
    if len(rows) >= limit:
        titulo = ev.titulo.name if ev.titulo else ev.title
        return f'Ya tenés {len(rows)} rotativo(s) en días con ensayos dobles de "{titulo}"'
    return None


def performance_cap(total: int, rule_value) -> int:
    if total <= rule_value.umbral_funciones:
        return rule_value.max_hasta
    return math.ceil(total * rule_value.porcentaje_sobre / 100)


def _performances_per_title(ctx: _Context, rule: LoadedRule) -> Optional[str]:
    ev = ctx.event
    if ev.evento_type != EventoType.FUNCION.value or ev.titulo_id is None:
        return None
    total = (
        ctx.db.query(func.count(Event.id))
        .filter(Event.titulo_id == ev.titulo_id, Event.evento_type == EventoType.FUNCION.value)
        .scalar()
        or 0
    )
    if total == 0:
        return None
    cap = performance_cap(total, rule.value)
    taken = len(_user_rotations(
        ctx.db, ctx.user.id,
        Event.titulo_id == ev.titulo_id,
        Event.evento_type == EventoType.FUNCION.value,
    ))
    if taken >= cap:
        titulo = ev.titulo.name if ev.titulo else ev.title
        return f'Ya tenés {taken} rotativo(s) en funciones de "{titulo}" (máx: {cap} de {total})'
    return None


def _request_deadline(ctx: _Context, rule: LoadedRule) -> Optional[str]:
    if days_until(ctx.event.date, ctx.today) == 0 and rule.value.mismo_dia == "PENDING_ADMIN":
        return "Solicitud del mismo día - requiere aprobación del administrador"
    return None


RULES: List[tuple] = [
    ("CUPO_TEMPORADA", _season_share),
    ("FINES_SEMANA_MAX", _weekend),
    ("MAX_PROYECTADO", _annual_max),
    ("ENSAYOS_DOBLES", _double_rehearsals),
    ("FUNCIONES_POR_TITULO", _performances_per_title),
    ("PLAZO_SOLICITUD", _request_deadline),
]


def load_event(db: Session, event_id: int) -> Event:
    event = db.get(Event, event_id)
    if event is None:
        raise NotFoundError("Evento no encontrado", {"event_id": event_id})
    return event


def load_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None or not user.is_active:
        raise NotFoundError("Usuario no encontrado", {"user_id": user_id})
    return user


def evaluate(
    db: Session,
    user_id: int,
    event_id: int,
    season_id: int,
    today: Optional[date] = None,
    tipo: str = RotativoTipo.VOLUNTARIO.value,
    in_block: bool = False,
) -> Verdict:
    today = today or today_local()
    user = load_user(db, user_id)
    event = load_event(db, event_id)
    if event.season_id != season_id:
        raise ValidationError(
            "El evento no pertenece a la temporada indicada",
            {"event_id": event_id, "season_id": season_id},
        )

    verdict = Verdict(user_id=user_id, event_id=event_id, season_id=season_id)
    verdict.days_until = days_until(event.date, today)

    if verdict.days_until < 0:
        verdict.is_blocked = True
        verdict.blocking_reason = "No se pueden solicitar rotativos para fechas pasadas"

    existing = (
        db.query(Rotativo)
        .filter(Rotativo.user_id == user_id, Rotativo.event_id == event_id, Rotativo.estado.in_(LIVE_ESTADOS))
        .first()
    )
    if existing is not None and not verdict.is_blocked:
        verdict.is_blocked = True
        verdict.blocking_reason = "Ya tenés un rotativo para este evento"

    verdict.quota = capacity.effective_quota(db, event)
    verdict.active_count = capacity.active_rotation_count(db, event_id)
    verdict.is_waitlisted = verdict.active_count >= verdict.quota

    ctx = _Context(
        db=db, user=user, event=event, season_id=season_id,
        today=today, tipo=tipo, in_block=in_block,
    )
    ctx.bal = ledger.get_balance(db, user_id, season_id)
    ctx.live_count = user_live_count(db, user_id, season_id)

    for key, check in RULES:
        rule = get_rule(db, key)
        if not rule.enabled:
            continue
        verdict.evaluated_rules.append(key)
        reason = check(ctx, rule)
        if reason:
            verdict.reasons.append(reason)

    verdict.alert = ledger.proximity_alert(db, user_id, season_id)
    logger.debug(
        "evaluate user_id=%s event_id=%s reasons=%s waitlisted=%s blocked=%s",
        user_id, event_id, verdict.reasons, verdict.is_waitlisted, verdict.is_blocked,
    )
    return verdict

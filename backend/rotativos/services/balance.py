"""
Contadores por (integrante, temporada).

Las funciones que mutan solo hacen flush: el commit lo hace quien las llama
(normalmente dentro de `locking.slot_guard`) para que contador y rotativo se
confirmen juntos.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from rotativos.core.errors import NotFoundError, ValidationError
from rotativos.models.balance import UserSeasonBalance
from rotativos.models.block import Block
from rotativos.models.enums import ACTIVE_BLOCK_ESTADOS, RotativoEstado, RotativoTipo
from rotativos.models.event import Event
from rotativos.models.rotativo import Rotativo
from rotativos.models.user import User
from rotativos.services import audit, capacity
from rotativos.services.calendar import is_weekend, month_key
from rotativos.services.rule_config import get_rule

logger = logging.getLogger(__name__)

ZERO_ONLY = "zero_only"
ALL = "all"


def get_balance(db: Session, user_id: int, season_id: int) -> UserSeasonBalance:
    bal = db.query(UserSeasonBalance).filter_by(user_id=user_id, season_id=season_id).first()
    if bal is not None:
        return bal

    if db.get(User, user_id) is None:
        raise NotFoundError("Usuario no encontrado", {"user_id": user_id})
    capacity.get_season(db, season_id)

    bal = UserSeasonBalance(
        user_id=user_id,
        season_id=season_id,
        rotativos_tomados=0,
        rotativos_obligatorios=0,
        rotativos_por_licencia=0.0,
        max_proyectado=capacity.projected_max(db, season_id),
        bloque_usado=False,
        fines_de_semana_mes={},
    )

    db.add(bal)
    db.flush()
    return bal


def effective_max(bal: UserSeasonBalance) -> int:
    if bal.max_ajustado_manual is not None:
        return bal.max_ajustado_manual
    return bal.max_proyectado


def live_effective_max(db: Session, bal: UserSeasonBalance) -> int:
    """Como effective_max pero sin confiar en max_proyectado guardado."""
    if bal.max_ajustado_manual is not None:
        return bal.max_ajustado_manual
    return capacity.projected_max(db, bal.season_id)


def total_consumed(bal: UserSeasonBalance) -> float:
    return (bal.rotativos_tomados or 0) + (bal.rotativos_obligatorios or 0) + (bal.rotativos_por_licencia or 0.0)


def _bump_weekend(bal: UserSeasonBalance, event: Event, delta: int) -> None:
    if not is_weekend(event.date):
        return
    key = month_key(event.date)
    current = bal.fines_de_semana_mes.get(key, 0) + delta
    if current > 0:
        bal.fines_de_semana_mes[key] = current
    else:
        bal.fines_de_semana_mes.pop(key, None)


def record_approval(db: Session, rotativo: Rotativo) -> UserSeasonBalance:
    event = rotativo.event or db.get(Event, rotativo.event_id)
    bal = get_balance(db, rotativo.user_id, event.season_id)
    if rotativo.tipo == RotativoTipo.OBLIGATORIO.value:
        bal.rotativos_obligatorios = (bal.rotativos_obligatorios or 0) + 1
    else:
        bal.rotativos_tomados = (bal.rotativos_tomados or 0) + 1
    _bump_weekend(bal, event, +1)
    db.flush()
    return bal


def revert_approval(db: Session, rotativo: Rotativo) -> UserSeasonBalance:
    event = rotativo.event or db.get(Event, rotativo.event_id)
    bal = get_balance(db, rotativo.user_id, event.season_id)
    if rotativo.tipo == RotativoTipo.OBLIGATORIO.value:
        bal.rotativos_obligatorios = max(0, (bal.rotativos_obligatorios or 0) - 1)
    else:
        bal.rotativos_tomados = max(0, (bal.rotativos_tomados or 0) - 1)
    _bump_weekend(bal, event, -1)
    db.flush()
    return bal


def apply_license(db: Session, user_id: int, season_id: int, amount: float) -> UserSeasonBalance:
    bal = get_balance(db, user_id, season_id)
    bal.rotativos_por_licencia = max(0.0, (bal.rotativos_por_licencia or 0.0) + amount)
    db.flush()
    return bal


def set_manual_override(
    db: Session,
    user_id: int,
    season_id: int,
    value: int,
    justification: str,
    adjusted_by: int,
) -> UserSeasonBalance:
    if value is None or value < 0:
        raise ValidationError("El máximo ajustado debe ser un entero no negativo")
    if not (justification or "").strip():
        raise ValidationError("Falta la justificación del ajuste")

    bal = get_balance(db, user_id, season_id)
    before = bal.max_ajustado_manual
    bal.max_ajustado_manual = value
    bal.justificacion_manual = justification.strip()
    bal.ajustado_por_id = adjusted_by
    db.commit()

    audit.record_audit(
        db, audit.MAXIMO_AJUSTADO, "UserSeasonBalance", bal.id, adjusted_by,
        target_user_id=user_id,
        details={"antes": before, "despues": value, "justificacion": bal.justificacion_manual},
    )
    return bal


def clear_manual_override(db: Session, user_id: int, season_id: int, adjusted_by: int) -> UserSeasonBalance:
    bal = get_balance(db, user_id, season_id)
    before = bal.max_ajustado_manual
    bal.max_ajustado_manual = None
    bal.justificacion_manual = None
    bal.ajustado_por_id = adjusted_by
    bal.max_proyectado = capacity.projected_max(db, season_id)
    db.commit()

    audit.record_audit(
        db, audit.MAXIMO_AJUSTADO, "UserSeasonBalance", bal.id, adjusted_by,
        target_user_id=user_id,
        details={"antes": before, "despues": None},
    )
    return bal


def mark_block_used(db: Session, user_id: int, season_id: int) -> None:
    bal = get_balance(db, user_id, season_id)
    bal.bloque_usado = True
    db.flush()


def clear_block_used(db: Session, user_id: int, season_id: int) -> None:
    bal = get_balance(db, user_id, season_id)
    bal.bloque_usado = False
    db.flush()


def recalculate_balance(db: Session, user_id: int, season_id: int) -> UserSeasonBalance:
    """Reconstruye los contadores desde los rotativos y bloques vivos."""
    rows = (
        db.query(Rotativo)
        .join(Event, Event.id == Rotativo.event_id)
        .filter(
            Rotativo.user_id == user_id,
            Event.season_id == season_id,
            Rotativo.estado.in_((RotativoEstado.APROBADO.value, RotativoEstado.CANCELACION_PENDIENTE.value)),
        )
        .all()
    )
    tomados = sum(1 for r in rows if r.tipo != RotativoTipo.OBLIGATORIO.value)
    obligatorios = sum(1 for r in rows if r.tipo == RotativoTipo.OBLIGATORIO.value)
    weekends: dict = {}
    for r in rows:
        if is_weekend(r.event.date):
            k = month_key(r.event.date)
            weekends[k] = weekends.get(k, 0) + 1

    has_block = (
        db.query(func.count(Block.id))
        .filter(
            Block.assigned_to_id == user_id,
            Block.season_id == season_id,
            Block.estado.in_(ACTIVE_BLOCK_ESTADOS),
        )
        .scalar()
        or 0
    ) > 0

    bal = get_balance(db, user_id, season_id)
    bal.rotativos_tomados = tomados
    bal.rotativos_obligatorios = obligatorios
    bal.fines_de_semana_mes = weekends
    bal.bloque_usado = has_block
    bal.max_proyectado = capacity.projected_max(db, season_id)
    db.commit()
    logger.info(
        "Balance recalculado user_id=%s season_id=%s tomados=%s obligatorios=%s",
        user_id, season_id, tomados, obligatorios,
    )
    return bal


def recalculate_projected_max(db: Session, season_id: int, scope: str = ZERO_ONLY, actor_id: Optional[int] = None) -> int:
    """
    Repara la copia `max_proyectado` de los balances de la temporada.

    scope="zero_only" solo toca filas en 0 (creadas sin cálculo);
    scope="all" alinea todas. Nunca toca filas con ajuste manual.
    Devuelve cuántas filas cambiaron: una segunda llamada devuelve 0.
    """
    if scope not in (ZERO_ONLY, ALL):
        raise ValidationError(f"scope inválido: {scope}", {"scope": scope})

    capacity.get_season(db, season_id)
    new_max = capacity.projected_max(db, season_id)

    q = db.query(UserSeasonBalance).filter(
        UserSeasonBalance.season_id == season_id,
        UserSeasonBalance.max_ajustado_manual.is_(None),
    )
    if scope == ZERO_ONLY:
        q = q.filter(UserSeasonBalance.max_proyectado == 0)

    updated = 0
    for bal in q.all():
        if bal.max_proyectado != new_max:
            bal.max_proyectado = new_max
            updated += 1
    db.commit()

    logger.info("max_proyectado=%s aplicado a %s balances (season_id=%s, scope=%s)", new_max, updated, season_id, scope)
    if updated:
        audit.record_audit(
            db, audit.MAXIMO_RECALCULADO, "Season", season_id, actor_id,
            details={"max_proyectado": new_max, "actualizados": updated, "scope": scope},
        )
    return updated


def new_member_max(db: Session, season_id: int, exclude_user_id: Optional[int] = None) -> int:
    """
    Promedio de lo consumido por el resto de los integrantes activos, redondeado.

    Quien todavía no tiene balance cuenta como 0. Nunca devuelve menos de 1.
    """
    q = db.query(User.id).filter(User.is_active == True)  # noqa: E712
    if exclude_user_id is not None:
        q = q.filter(User.id != exclude_user_id)
    ids = [row[0] for row in q.all()]
    if not ids:
        return capacity.projected_max(db, season_id)
    rows = (
        db.query(UserSeasonBalance)
        .filter(UserSeasonBalance.season_id == season_id, UserSeasonBalance.user_id.in_(ids))
        .all()
    )
    avg = sum(total_consumed(b) for b in rows) / len(ids)
    return max(1, int(math.floor(avg + 0.5)))


def new_member_suggestion(db: Session, user_id: int, season_id: int) -> Optional[int]:
    """
    INTEGRANTE_NUEVO es informativo: a quien ingresó con la temporada empezada
    le sugiere el promedio del grupo. Aplicarlo es decisión del admin
    (`set_manual_override`); mientras tanto rige el máximo proyectado.
    """
    user = db.get(User, user_id)
    season = capacity.get_season(db, season_id)
    if user is None or user.fecha_ingreso is None or user.fecha_ingreso <= season.start_date:
        return None
    rule = get_rule(db, "INTEGRANTE_NUEVO")
    if not rule.enabled or not rule.value.usar_promedio:
        return None
    return new_member_max(db, season_id, exclude_user_id=user_id)

NINGUNA = "NINGUNA"
CERCANIA = "CERCANIA"
LIMITE = "LIMITE"
EXCESO = "EXCESO"


@dataclass
class ProximityAlert:
    level: str
    umbral: int
    current: float
    with_new: float
    max_efectivo: int
    percent_current: float
    percent_with_new: float

    @property
    def message(self) -> str:
        if self.level == EXCESO:
            return f"Excedés el máximo proyectado ({self.percent_with_new:.1f}%)"
        if self.level == LIMITE:
            return f"Alcanzarás el {self.umbral}% del máximo ({self.percent_with_new:.1f}%)"
        if self.level == CERCANIA:
            return f"Ya estás en {self.percent_current:.1f}% del máximo"
        return f"Balance: {self.percent_current:.1f}% del máximo proyectado"


def proximity_alert(db: Session, user_id: int, season_id: int, adding: int = 1) -> ProximityAlert:
    rule = get_rule(db, "ALERTA_UMBRAL")
    umbral = rule.value.umbral
    bal = get_balance(db, user_id, season_id)
    max_ef = live_effective_max(db, bal)
    current = total_consumed(bal)
    with_new = current + adding

    pct_now = current * 100.0 / max_ef if max_ef > 0 else 100.0
    pct_new = with_new * 100.0 / max_ef if max_ef > 0 else 100.0

    level = NINGUNA
    if rule.enabled:
        if with_new > max_ef:
            level = EXCESO
        elif pct_new >= umbral:
            level = LIMITE
        elif pct_now >= umbral:
            level = CERCANIA

    return ProximityAlert(
        level=level,
        umbral=umbral,
        current=current,
        with_new=with_new,
        max_efectivo=max_ef,
        percent_current=round(pct_now, 1),
        percent_with_new=round(pct_new, 1),
    )


def notify_threshold_crossing(db: Session, user_id: int, season_id: int) -> Optional[str]:
    """Después de una aprobación: avisa si el último rotativo cruzó el umbral o el máximo."""
    alert = proximity_alert(db, user_id, season_id, adding=0)
    before = proximity_alert(db, user_id, season_id, adding=-1)
    if alert.level == before.level or alert.level not in (LIMITE, EXCESO):
        return None
    audit.notify(
        db, user_id, "ALERTA_CERCANIA",
        "Cerca del máximo anual" if alert.level == LIMITE else "Máximo anual superado",
        alert.message,
        {"nivel": alert.level, "porcentaje": alert.percent_with_new, "season_id": season_id},
    )
    return alert.level


def snapshot(db: Session, bal: UserSeasonBalance) -> dict:
    max_ef = live_effective_max(db, bal)
    consumed = total_consumed(bal)
    return {
        "user_id": bal.user_id,
        "season_id": bal.season_id,
        "rotativos_tomados": bal.rotativos_tomados,
        "rotativos_obligatorios": bal.rotativos_obligatorios,
        "rotativos_por_licencia": bal.rotativos_por_licencia,
        "max_proyectado": bal.max_proyectado,
        "max_ajustado_manual": bal.max_ajustado_manual,
        "max_efectivo": max_ef,
        "total_consumido": consumed,
        "porcentaje": round(consumed * 100.0 / max_ef, 1) if max_ef > 0 else 0.0,
        "bloque_usado": bal.bloque_usado,
        "fines_de_semana_mes": dict(bal.fines_de_semana_mes or {}),
        "max_sugerido_ingreso": new_member_suggestion(db, bal.user_id, bal.season_id),
    }

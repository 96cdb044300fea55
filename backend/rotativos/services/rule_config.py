"""
Lectura y mantenimiento de RuleConfig.

Las reglas se leen de la base en cada llamada (sin cache): un cambio hecho
desde el panel de admin aplica a la próxima evaluación.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from rotativos.core.errors import NotFoundError, RuleConfigError, ValidationError
from rotativos.models.rule_config import RuleConfig
from rotativos.schemas.rules import RULE_MODELS, ScalarRuleValue, rule_value_adapter
from rotativos.services import audit

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoadedRule:
    key: str
    enabled: bool
    priority: int
    category: str
    value: Any  # instancia tipada de schemas.rules
    description: Optional[str] = None


# key -> (valor, value_type, category, priority, description)
DEFAULT_RULES: Dict[str, tuple] = {
    "CUPO_DIARIO": (
        {"OPERA": 4, "CONCIERTO": 2, "BALLET": 4},
        "json", "cupo", 10,
        "Cupos por defecto según tipo de título. Ópera 4, Ballet 4, Concierto 2. "
        "Los ensayos usan el cupo del título salvo que se configure ENSAYO/ENSAYO_DOBLE.",
    ),
    "LISTA_ESPERA": (
        {"tipo": "FIFO", "vencimiento": None},
        "json", "cupo", 15,
        "Lista de espera FIFO, sin vencimiento (se purga al fin de temporada).",
    ),
    "ENSAYOS_DOBLES": (
        {"maxRotativosPorTitulo": 1},
        "json", "restriccion", 15,
        "En días con ensayo doble cada integrante puede pedir rotativo para un solo ensayo por título.",
    ),
    "FUNCIONES_POR_TITULO": (
        {"umbralFunciones": 3, "maxHasta": 1, "porcentajeSobre": 30},
        "json", "restriccion", 16,
        "Hasta 3 funciones: máximo 1 por integrante. Más de 3: hasta el 30% del total.",
    ),
    "BLOQUE_EXCLUSIVO": (
        {"maxPorPersona": 1, "permiteCancel": False},
        "json", "bloque", 20,
        "Un bloque exclusivo por persona por temporada.",
    ),
    "CUPO_TEMPORADA": (
        {},
        "json", "cupo", 25,
        "Controla que los rotativos activos del integrante no superen su parte del cupo total de la temporada.",
    ),
    "ROTACION_OBLIGATORIA": (
        {"diasAntes": 5, "criterio": "MENOS_ROTATIVOS"},
        "json", "rotacion", 30,
        "5 días antes se asigna rotación a quienes tienen menos rotativos.",
    ),
    "COBERTURA_EXTERNA": (
        {"criterio": "MAS_ROTATIVOS"},
        "json", "rotacion", 35,
        "Para cobertura por causas externas se prioriza a quienes más rotativos tomaron.",
    ),
    "MAX_PROYECTADO": (
        {"baseAnual": 50, "formula": "totalCupos / totalIntegrantes"},
        "json", "restriccion", 40,
        "Máximo proyectado anual por integrante: cupo total de la temporada ÷ integrantes.",
    ),
    "PRIMER_ULTIMO_TITULO": (
        {},
        "json", "restriccion", 40,
        "Si un integrante toma rotativo en el primer título del año no puede tomar en el último (control manual).",
    ),
    "FINES_SEMANA_MAX": (
        1,
        "number", "restriccion", 50,
        "Máximo de fines de semana por mes. Solo el sábado cuenta como el fin de semana.",
    ),
    "PLAZO_SOLICITUD": (
        {"mismoDia": "PENDING_ADMIN", "diaAnterior": "APPROVE"},
        "json", "restriccion", 60,
        "Las solicitudes del mismo día requieren aprobación del admin.",
    ),
    "LICENCIAS": (
        {"calculoPromedio": True},
        "json", "restriccion", 70,
        "Las licencias suman al contador el promedio de rotativos del período.",
    ),
    "INTEGRANTE_NUEVO": (
        {"usarPromedio": True, "adminOverride": True},
        "json", "restriccion", 80,
        "El máximo de un integrante nuevo es el promedio del grupo al ingreso.",
    ),
    "ALERTA_UMBRAL": (
        90,
        "number", "alerta", 200,
        "Umbral de alerta de cercanía al máximo (%).",
    ),
}


def _parse(key: str, raw: Any):
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            pass  # se valida como escalar string
    if isinstance(raw, dict):
        payload = {**raw, "key": key}
    elif issubclass(RULE_MODELS[key], ScalarRuleValue):
        payload = {"key": key, "value": raw}
    else:
        raise RuleConfigError(f"La regla {key} espera un objeto JSON", {"key": key})
    try:
        return rule_value_adapter.validate_python(payload)
    except PydanticValidationError as exc:
        raise RuleConfigError(
            f"Valor inválido para la regla {key}",
            {"key": key, "errors": exc.errors(include_url=False)},
        ) from exc


def _default(key: str) -> LoadedRule:
    value, _vt, category, priority, description = DEFAULT_RULES.get(key, ({}, "json", "restriccion", 100, None))
    return LoadedRule(
        key=key,
        enabled=True,
        priority=priority,
        category=category,
        value=_parse(key, value),
        description=description,
    )


def _loaded(row: RuleConfig) -> LoadedRule:
    return LoadedRule(
        key=row.key,
        enabled=bool(row.enabled),
        priority=row.priority,
        category=row.category,
        value=_parse(row.key, row.value),
        description=row.description,
    )


def get_rule(db: Session, key: str) -> LoadedRule:
    if key not in RULE_MODELS:
        raise NotFoundError(f"Regla desconocida: {key}")
    row = db.query(RuleConfig).filter_by(key=key).first()
    if row is None:
        return _default(key)
    return _loaded(row)


def list_rules(db: Session) -> List[LoadedRule]:
    rows = {r.key: r for r in db.query(RuleConfig).all()}
    out = []
    for key in RULE_MODELS:
        row = rows.get(key)
        out.append(_loaded(row) if row is not None else _default(key))
    out.sort(key=lambda r: (r.priority, r.key))
    return out


def _serialize(value: Any) -> tuple:
    if isinstance(value, dict):
        return json.dumps(value), "json"
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value), "number"
    return json.dumps(value), "string"


def update_rule(
    db: Session,
    key: str,
    actor_id: int,
    value: Any = None,
    enabled: Optional[bool] = None,
    priority: Optional[int] = None,
) -> LoadedRule:
    if key not in RULE_MODELS:
        raise NotFoundError(f"Regla desconocida: {key}")

    row = db.query(RuleConfig).filter_by(key=key).first()
    if row is None:
        default_value, value_type, category, default_priority, description = DEFAULT_RULES[key]
        stored, value_type = _serialize(default_value)
        row = RuleConfig(
            key=key,
            value=stored,
            value_type=value_type,
            category=category,
            priority=default_priority,
            description=description,
        )
        db.add(row)

    before = {"value": row.value, "enabled": row.enabled, "priority": row.priority}

    if value is not None:
        try:
            _parse(key, value)
        except RuleConfigError as exc:
            db.rollback()
            raise ValidationError(exc.message, exc.details) from exc
        row.value, row.value_type = _serialize(value)
    if enabled is not None:
        row.enabled = enabled
    if priority is not None:
        row.priority = priority

    db.commit()
    db.refresh(row)
    logger.info("Regla %s actualizada por user_id=%s", key, actor_id)

    audit.record_audit(
        db,
        audit.REGLA_MODIFICADA,
        "RuleConfig",
        key,
        actor_id,
        details={"antes": before, "despues": {"value": row.value, "enabled": row.enabled, "priority": row.priority}},
    )
    return _loaded(row)


def seed_default_rules(db: Session, overwrite: bool = False) -> int:
    """Crea las reglas que falten. Con overwrite=True resetea valor y metadatos."""
    created = 0
    for key, (value, _vt, category, priority, description) in DEFAULT_RULES.items():
        stored, value_type = _serialize(value)
        row = db.query(RuleConfig).filter_by(key=key).first()
        if row is None:
            db.add(
                RuleConfig(
                    key=key,
                    value=stored,
                    value_type=value_type,
                    category=category,
                    priority=priority,
                    description=description,
                )
            )
            created += 1
        elif overwrite:
            row.value = stored
            row.value_type = value_type
            row.category = category
            row.priority = priority
            row.description = description
            row.enabled = True
    db.commit()
    return created

"""
Esquema tipado de las reglas configurables.

Cada clave de RuleConfig tiene su propio modelo; el valor guardado (JSON o
escalar) se valida una sola vez al cargarlo y el motor recibe siempre una
instancia tipada. Acepta claves en snake_case o en camelCase (formato de los
valores sembrados originalmente).
"""
from __future__ import annotations

from typing import Annotated, ClassVar, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator
from pydantic.alias_generators import to_camel


class _RuleValue(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class ScalarRuleValue(_RuleValue):
    """Reglas cuyo valor guardado es un número suelto (ej: "1")."""

    scalar_field: ClassVar[str] = ""

    @model_validator(mode="before")
    @classmethod
    def _wrap_scalar(cls, data):
        if isinstance(data, dict):
            raw = data.get("value", None)
            if raw is not None and not isinstance(raw, dict):
                out = {k: v for k, v in data.items() if k != "value"}
                out[cls.scalar_field] = raw
                return out
        return data


class CupoDiarioRule(_RuleValue):
    key: Literal["CUPO_DIARIO"] = "CUPO_DIARIO"
    OPERA: int = Field(default=4, ge=0, alias="OPERA")
    CONCIERTO: int = Field(default=2, ge=0, alias="CONCIERTO")
    BALLET: int = Field(default=4, ge=0, alias="BALLET")
    # Si no se configuran, los ensayos usan el cupo del tipo de título
    ENSAYO: Optional[int] = Field(default=None, ge=0, alias="ENSAYO")
    ENSAYO_DOBLE: Optional[int] = Field(default=None, ge=0, alias="ENSAYO_DOBLE")


class CupoTemporadaRule(_RuleValue):
    key: Literal["CUPO_TEMPORADA"] = "CUPO_TEMPORADA"


class MaxProyectadoRule(_RuleValue):
    key: Literal["MAX_PROYECTADO"] = "MAX_PROYECTADO"
    base_anual: int = Field(default=50, ge=0)
    formula: str = "totalCupos / totalIntegrantes"


class FinesSemanaMaxRule(ScalarRuleValue):
    key: Literal["FINES_SEMANA_MAX"] = "FINES_SEMANA_MAX"
    scalar_field: ClassVar[str] = "max_por_mes"
    max_por_mes: int = Field(default=1, ge=0)


class BloqueExclusivoRule(_RuleValue):
    key: Literal["BLOQUE_EXCLUSIVO"] = "BLOQUE_EXCLUSIVO"
    max_por_persona: int = Field(default=1, ge=0)
    permite_cancel: bool = False


class ListaEsperaRule(_RuleValue):
    key: Literal["LISTA_ESPERA"] = "LISTA_ESPERA"
    tipo: Literal["FIFO"] = "FIFO"
    vencimiento: Optional[int] = None  # None: se purga al fin de temporada


class RotacionObligatoriaRule(_RuleValue):
    key: Literal["ROTACION_OBLIGATORIA"] = "ROTACION_OBLIGATORIA"
    dias_antes: int = Field(default=5, ge=0)
    criterio: Literal["MENOS_ROTATIVOS"] = "MENOS_ROTATIVOS"


class CoberturaExternaRule(_RuleValue):
    key: Literal["COBERTURA_EXTERNA"] = "COBERTURA_EXTERNA"
    criterio: Literal["MAS_ROTATIVOS"] = "MAS_ROTATIVOS"


class LicenciasRule(_RuleValue):
    key: Literal["LICENCIAS"] = "LICENCIAS"
    calculo_promedio: bool = True


class IntegranteNuevoRule(_RuleValue):
    key: Literal["INTEGRANTE_NUEVO"] = "INTEGRANTE_NUEVO"
    usar_promedio: bool = True
    admin_override: bool = True


class AlertaUmbralRule(ScalarRuleValue):
    key: Literal["ALERTA_UMBRAL"] = "ALERTA_UMBRAL"
    scalar_field: ClassVar[str] = "umbral"
    umbral: int = Field(default=90, ge=1, le=100)


class EnsayosDoblesRule(_RuleValue):
    key: Literal["ENSAYOS_DOBLES"] = "ENSAYOS_DOBLES"
    max_rotativos_por_titulo: int = Field(default=1, ge=0)


class FuncionesPorTituloRule(_RuleValue):
    key: Literal["FUNCIONES_POR_TITULO"] = "FUNCIONES_POR_TITULO"
    umbral_funciones: int = Field(default=3, ge=0)
    max_hasta: int = Field(default=1, ge=0)
    porcentaje_sobre: int = Field(default=30, ge=0, le=100)


class PlazoSolicitudRule(_RuleValue):
    key: Literal["PLAZO_SOLICITUD"] = "PLAZO_SOLICITUD"
    mismo_dia: Literal["PENDING_ADMIN", "APPROVE"] = "PENDING_ADMIN"
    dia_anterior: Literal["PENDING_ADMIN", "APPROVE"] = "APPROVE"


class PrimerUltimoTituloRule(_RuleValue):
    key: Literal["PRIMER_ULTIMO_TITULO"] = "PRIMER_ULTIMO_TITULO"


RuleValue = Annotated[
    Union[
        CupoDiarioRule,
        CupoTemporadaRule,
        MaxProyectadoRule,
        FinesSemanaMaxRule,
        BloqueExclusivoRule,
        ListaEsperaRule,
        RotacionObligatoriaRule,
        CoberturaExternaRule,
        LicenciasRule,
        IntegranteNuevoRule,
        AlertaUmbralRule,
        EnsayosDoblesRule,
        FuncionesPorTituloRule,
        PlazoSolicitudRule,
        PrimerUltimoTituloRule,
    ],
    Field(discriminator="key"),
]

rule_value_adapter: TypeAdapter[RuleValue] = TypeAdapter(RuleValue)

RULE_MODELS = {
    "CUPO_DIARIO": CupoDiarioRule,
    "CUPO_TEMPORADA": CupoTemporadaRule,
    "MAX_PROYECTADO": MaxProyectadoRule,
    "FINES_SEMANA_MAX": FinesSemanaMaxRule,
    "BLOQUE_EXCLUSIVO": BloqueExclusivoRule,
    "LISTA_ESPERA": ListaEsperaRule,
    "ROTACION_OBLIGATORIA": RotacionObligatoriaRule,
    "COBERTURA_EXTERNA": CoberturaExternaRule,
    "LICENCIAS": LicenciasRule,
    "INTEGRANTE_NUEVO": IntegranteNuevoRule,
    "ALERTA_UMBRAL": AlertaUmbralRule,
    "ENSAYOS_DOBLES": EnsayosDoblesRule,
    "FUNCIONES_POR_TITULO": FuncionesPorTituloRule,
    "PLAZO_SOLICITUD": PlazoSolicitudRule,
    "PRIMER_ULTIMO_TITULO": PrimerUltimoTituloRule,
}


class RuleConfigOut(BaseModel):
    key: str
    enabled: bool
    priority: int
    category: str
    description: Optional[str] = None
    value: dict


class RuleConfigUpdate(BaseModel):
    value: Optional[Union[dict, int, float, str]] = None
    enabled: Optional[bool] = None
    priority: Optional[int] = None

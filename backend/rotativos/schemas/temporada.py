from typing import Literal, Optional

from pydantic import BaseModel, Field


class RecalcularMaxRequest(BaseModel):
    season_id: Optional[int] = None
    scope: Literal["zero_only", "all"] = "zero_only"


class AjusteMaxRequest(BaseModel):
    max_ajustado: Optional[int] = Field(default=None, ge=0)  # None = quitar ajuste
    justificacion: Optional[str] = None
    season_id: Optional[int] = None


class BalanceOut(BaseModel):
    user_id: int
    season_id: int
    rotativos_tomados: int
    rotativos_obligatorios: int
    rotativos_por_licencia: float
    max_proyectado: int
    max_ajustado_manual: Optional[int] = None
    max_efectivo: int
    total_consumido: float
    porcentaje: float
    bloque_usado: bool
    fines_de_semana_mes: dict
    max_sugerido_ingreso: Optional[int] = None

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class LicenciaCreate(BaseModel):
    user_id: int
    start_date: date
    end_date: date
    description: Optional[str] = None
    season_id: Optional[int] = None


class LicenciaOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    season_id: int
    start_date: date
    end_date: date
    description: Optional[str] = None
    rotativos_calculados: float
    detalles_calculo: Optional[dict] = None
    created_at: datetime

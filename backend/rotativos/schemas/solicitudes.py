from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class SolicitudRequest(BaseModel):
    event_id: int
    season_id: Optional[int] = None


class SolicitudEnNombreRequest(BaseModel):
    event_id: int
    user_id: int
    season_id: Optional[int] = None
    motivo: Optional[str] = None


class ObligatorioRequest(SolicitudEnNombreRequest):
    force: bool = False


class RechazoRequest(BaseModel):
    motivo: Optional[str] = None


class RotativoOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    event_id: int
    estado: str
    tipo: str
    block_id: Optional[int] = None
    motivo: Optional[str] = None
    created_at: datetime


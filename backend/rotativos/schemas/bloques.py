from typing import Optional

from pydantic import BaseModel


class BloqueRequest(BaseModel):
    titulo_id: int
    season_id: Optional[int] = None
    validate_only: bool = False


class BloqueCancelRequest(BaseModel):
    motivo: Optional[str] = None


class BloqueVerdictOut(BaseModel):
    block_id: Optional[int] = None
    estado: Optional[str] = None
    requires_approval: bool
    reasons: list[str]
    events_to_request: list[int]
    unavailable: list[int]
    created: list[int]
    waitlisted: list[int]

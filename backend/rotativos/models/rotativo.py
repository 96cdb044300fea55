from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from rotativos.db.base import Base


class Rotativo(Base):
    __tablename__ = "rotativos"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)

    estado = Column(String, nullable=False, default="PENDIENTE")
    tipo = Column(String, nullable=False, default="VOLUNTARIO")

    block_id = Column(Integer, ForeignKey("blocks.id"), nullable=True, index=True)
    motivo = Column(String, nullable=True)

    aprobado_por_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    rechazado_por_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    asignado_por_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    event = relationship("Event")
    block = relationship("Block", back_populates="rotativos")

    __table_args__ = (
        UniqueConstraint("user_id", "event_id", name="uq_rotativo_user_event"),
        Index("ix_rotativo_event_estado", "event_id", "estado"),
    )

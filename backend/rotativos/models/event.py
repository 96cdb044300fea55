from datetime import datetime

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, Integer, String, Time
from sqlalchemy.orm import relationship

from rotativos.db.base import Base


class Event(Base):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    season_id = Column(Integer, ForeignKey("seasons.id"), nullable=False, index=True)
    titulo_id = Column(Integer, ForeignKey("titulos.id"), nullable=True, index=True)

    title = Column(String, nullable=False)
    date = Column(Date, nullable=False)
    evento_type = Column(String, nullable=False, default="FUNCION")  # ENSAYO / FUNCION

    # si viene, gana siempre sobre el cupo derivado de reglas
    cupo_override = Column(Integer, nullable=True)

    start_time = Column(Time, nullable=True)
    end_time = Column(Time, nullable=True)

    # se incrementa en cada operación que toca el cupo (ver services/locking.py)
    version = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    titulo = relationship("Titulo", back_populates="events")

    __table_args__ = (
        Index("ix_event_season_date", "season_id", "date"),
    )
    __mapper_args__ = {"version_id_col": version}

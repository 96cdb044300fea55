from sqlalchemy import Column, Date, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from rotativos.db.base import Base


class Titulo(Base):
    __tablename__ = "titulos"

    id = Column(Integer, primary_key=True, index=True)
    season_id = Column(Integer, ForeignKey("seasons.id"), nullable=False, index=True)

    name = Column(String, nullable=False)
    type = Column(String, nullable=False, default="OPERA")  # OPERA/CONCIERTO/BALLET/RECITAL/OTRO
    cupo = Column(Integer, nullable=True)  # si es None se deriva de CUPO_DIARIO según el tipo

    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    color = Column(String, nullable=True)

    events = relationship("Event", back_populates="titulo", order_by="Event.date")

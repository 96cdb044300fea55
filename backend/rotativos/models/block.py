from sqlalchemy import Column, Date, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from rotativos.db.base import Base


class Block(Base):
    __tablename__ = "blocks"

    id = Column(Integer, primary_key=True, index=True)
    season_id = Column(Integer, ForeignKey("seasons.id"), nullable=False, index=True)
    titulo_id = Column(Integer, ForeignKey("titulos.id"), nullable=False, index=True)

    name = Column(String, nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)

    assigned_to_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    estado = Column(String, nullable=False, default="SOLICITADO")

    rotativos = relationship("Rotativo", back_populates="block")

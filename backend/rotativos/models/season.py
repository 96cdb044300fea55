from sqlalchemy import Boolean, Column, Date, Integer, String

from rotativos.db.base import Base


class Season(Base):
    __tablename__ = "seasons"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)

    # Una sola activa a la vez; se resuelve en el borde HTTP y se pasa explícita
    is_active = Column(Boolean, nullable=False, default=False, index=True)
    working_days = Column(Integer, nullable=False, default=250)

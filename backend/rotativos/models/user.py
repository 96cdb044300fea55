from datetime import datetime

from sqlalchemy import Boolean, Column, Date, DateTime, Integer, String

from rotativos.db.base import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=False)

    name = Column(String, nullable=False)
    alias = Column(String, nullable=True)

    role = Column(String, nullable=False, default="INTEGRANTE")
    is_active = Column(Boolean, nullable=False, default=True)

    # solo para integrantes que ingresan con la temporada ya empezada
    fecha_ingreso = Column(Date, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    @property
    def display_name(self) -> str:
        return self.alias or self.name

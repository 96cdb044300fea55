from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.ext.mutable import MutableDict

from rotativos.db.base import Base


class UserSeasonBalance(Base):
    __tablename__ = "user_season_balances"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    season_id = Column(Integer, ForeignKey("seasons.id"), nullable=False, index=True)

    rotativos_tomados = Column(Integer, nullable=False, default=0)
    rotativos_obligatorios = Column(Integer, nullable=False, default=0)
    rotativos_por_licencia = Column(Float, nullable=False, default=0.0)

    # cache desnormalizado; las decisiones usan siempre el cálculo en vivo
    max_proyectado = Column(Integer, nullable=False, default=0)
    max_ajustado_manual = Column(Integer, nullable=True)
    justificacion_manual = Column(String, nullable=True)
    ajustado_por_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    bloque_usado = Column(Boolean, nullable=False, default=False)
    fines_de_semana_mes = Column(MutableDict.as_mutable(JSON), nullable=False, default=dict)  # "YYYY-MM" -> n

    version = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (UniqueConstraint("user_id", "season_id", name="uq_balance_user_season"),)
    __mapper_args__ = {"version_id_col": version}

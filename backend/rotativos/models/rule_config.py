from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from rotativos.db.base import Base


class RuleConfig(Base):
    __tablename__ = "rule_configs"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String, unique=True, index=True, nullable=False)

    value = Column(Text, nullable=False)              # JSON serializado
    value_type = Column(String, nullable=False, default="json")  # json / number / string

    enabled = Column(Boolean, nullable=False, default=True)
    priority = Column(Integer, nullable=False, default=100)
    category = Column(String, nullable=False, default="restriccion")
    description = Column(Text, nullable=True)

    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

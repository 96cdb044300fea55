from rotativos.db.session import engine
from rotativos.db.base import Base

# IMPORTANTE: esto "registra" los modelos antes de crear tablas
import rotativos.models  # noqa: F401


def init_db(bind=None):
    Base.metadata.create_all(bind=bind or engine)

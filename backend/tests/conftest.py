"""
Fixtures compartidas: base SQLite en memoria y una pequeña fábrica de datos.

Todas las operaciones reciben `today=TODAY` para que los tests no dependan
del reloj.
"""
import os

# antes de importar rotativos: el engine global no debe tocar el archivo real
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import date, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from rotativos.core.roles import ROLE_ADMIN, ROLE_INTEGRANTE
from rotativos.db.base import Base
import rotativos.models  # noqa: F401
from rotativos.models.enums import RotativoEstado
from rotativos.models.event import Event
from rotativos.models.rotativo import Rotativo
from rotativos.models.season import Season
from rotativos.models.titulo import Titulo
from rotativos.models.user import User
from rotativos.services import balance as ledger

TODAY = date(2026, 3, 2)  # lunes


def weekdays(start: date, n: int):
    out = []
    d = start
    while len(out) < n:
        if d.weekday() < 5:
            out.append(d)
        d += timedelta(days=1)
    return out


class Factory:
    def __init__(self, db):
        self.db = db
        self._n = 0

    def user(self, name=None, role=ROLE_INTEGRANTE, **kw) -> User:
        self._n += 1
        name = name or f"Integrante {self._n}"
        u = User(
            email=kw.pop("email", f"user{self._n}@orquesta.test"),
            password_hash=kw.pop("password_hash", "x"),
            name=name,
            role=role,
            **kw,
        )
        self.db.add(u)
        self.db.commit()
        return u

    def season(self, start=date(2026, 1, 1), end=date(2026, 12, 31), is_active=True) -> Season:
        s = Season(name=f"Temporada {start.year}", start_date=start, end_date=end, is_active=is_active)
        self.db.add(s)
        self.db.commit()
        return s

    def titulo(self, season, name="Tosca", type="OPERA", cupo=None, start=None, end=None) -> Titulo:
        t = Titulo(
            season_id=season.id,
            name=name,
            type=type,
            cupo=cupo,
            start_date=start or season.start_date,
            end_date=end or season.end_date,
        )
        self.db.add(t)
        self.db.commit()
        return t

    def event(self, titulo, d, evento_type="FUNCION", cupo_override=None, season=None, title=None) -> Event:
        ev = Event(
            season_id=titulo.season_id if titulo is not None else season.id,
            titulo_id=titulo.id if titulo is not None else None,
            title=title or (titulo.name if titulo is not None else "Evento"),
            date=d,
            evento_type=evento_type,
            cupo_override=cupo_override,
        )
        self.db.add(ev)
        self.db.commit()
        return ev

    def events(self, titulo, dates, evento_type="ENSAYO", cupo_override=None):
        return [self.event(titulo, d, evento_type=evento_type, cupo_override=cupo_override) for d in dates]

    def rotativo(self, user, event, estado="APROBADO", tipo="VOLUNTARIO", block_id=None) -> Rotativo:
        r = Rotativo(user_id=user.id, event_id=event.id, estado=estado, tipo=tipo, block_id=block_id)
        self.db.add(r)
        self.db.flush()
        if estado in (RotativoEstado.APROBADO.value, RotativoEstado.CANCELACION_PENDIENTE.value):
            ledger.record_approval(self.db, r)
        self.db.commit()
        return r


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def factory(db):
    return Factory(db)


@pytest.fixture
def season(factory):
    return factory.season()


@pytest.fixture
def admin(factory):
    return factory.user("Directora", role=ROLE_ADMIN)


@pytest.fixture
def members(factory, admin):
    # 5 integrantes + admin = 6 usuarios activos
    return [factory.user() for _ in range(5)]


@pytest.fixture
def filler(factory, season):
    """Título con 60 ensayos (cupo 4) desde abril: cupo total 240, sin días dobles."""
    t = factory.titulo(season, name="Repertorio", type="OPERA")
    factory.events(t, weekdays(date(2026, 4, 1), 60))
    return t


@pytest.fixture
def tosca(factory, season, filler):
    return factory.titulo(season, name="Tosca", type="OPERA")

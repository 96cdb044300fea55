"""
Guarda de cupo por evento.

Toda operación que cuenta rotativos activos de un evento y después inserta o
libera uno corre dentro de `slot_guard`:

- lock en proceso por evento (RLock: la promoción puede anidarse), que se
  descarta cuando ningún hilo lo usa,
- SELECT ... FOR UPDATE sobre la fila del evento (Postgres; SQLite lo ignora),
- bump de `Event.version` al confirmar: si otra transacción tocó el evento
  entre la lectura y la escritura, SQLAlchemy lanza StaleDataError y la
  operación se reintenta con `with_slot_retry`.
"""
from __future__ import annotations

import logging
import threading
from contextlib import ExitStack, contextmanager
from datetime import datetime
from typing import Callable, Dict, Iterable, Iterator, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError as OrmStaleDataError

from rotativos.core.config import settings
from rotativos.core.errors import ConflictError, NotFoundError, StaleDataError
from rotativos.models.event import Event

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _EventLock:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.holders = 0


_registry_lock = threading.Lock()
_event_locks: Dict[int, _EventLock] = {}


@contextmanager
def _event_lock(event_id: int) -> Iterator[None]:
    """Lock en proceso por evento; se descarta cuando nadie lo usa ni lo espera."""
    with _registry_lock:
        entry = _event_locks.get(event_id)
        if entry is None:
            entry = _event_locks[event_id] = _EventLock()
        entry.holders += 1
    try:
        with entry.lock:
            yield
    finally:
        with _registry_lock:
            entry.holders -= 1
            if entry.holders == 0:
                del _event_locks[event_id]


@contextmanager
def slots_guard(db: Session, event_ids: Iterable[int]) -> Iterator[Dict[int, Event]]:
    ids = sorted(set(event_ids))  # orden fijo para no cruzar locks
    with ExitStack() as stack:
        for event_id in ids:
            stack.enter_context(_event_lock(event_id))

        events = (
            db.query(Event)
            .filter(Event.id.in_(ids))
            .populate_existing()
            .with_for_update()
            .all()
        )
        by_id = {e.id: e for e in events}
        missing = [i for i in ids if i not in by_id]
        if missing:
            db.rollback()
            raise NotFoundError("Evento no encontrado", {"event_ids": missing})

        try:
            yield by_id
            touched_at = datetime.utcnow()
            for ev in by_id.values():
                ev.updated_at = touched_at
            db.commit()
        except OrmStaleDataError as exc:
            db.rollback()
            logger.warning("Cupo modificado en paralelo para eventos %s", ids)
            raise StaleDataError("El cupo cambió mientras se procesaba la solicitud; reintentar") from exc
        except IntegrityError as exc:
            db.rollback()
            raise ConflictError("Ya existe un rotativo o entrada en espera para ese usuario y evento") from exc
        except BaseException:
            db.rollback()
            raise


@contextmanager
def slot_guard(db: Session, event_id: int) -> Iterator[Event]:
    with slots_guard(db, [event_id]) as events:
        yield events[event_id]


def with_slot_retry(fn: Callable[[], T], attempts: int | None = None) -> T:
    attempts = attempts or settings.SLOT_RETRY_ATTEMPTS
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except StaleDataError:
            if attempt >= attempts:
                raise
            logger.info("Reintentando operación de cupo (intento %s/%s)", attempt + 1, attempts)
    raise StaleDataError("Sin intentos disponibles")  # pragma: no cover

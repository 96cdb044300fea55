"""Tests de la guarda de cupo."""
import threading
from datetime import date
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm.exc import StaleDataError as OrmStaleDataError

from rotativos.core.errors import ConflictError, NotFoundError, StaleDataError
from rotativos.core.roles import ROLE_ADMIN
from rotativos.db.base import Base
from rotativos.models.event import Event
from rotativos.models.rotativo import Rotativo
from rotativos.services import capacity, locking, rotations, waiting_list

from conftest import TODAY, Factory


@pytest.fixture
def ensayo(factory, tosca):
    return factory.event(tosca, date(2026, 3, 10), evento_type="ENSAYO")


class TestSlotGuard:

    def test_commits_and_bumps_version(self, db, ensayo, members):
        version = ensayo.version
        with locking.slot_guard(db, ensayo.id) as ev:
            db.add(Rotativo(user_id=members[0].id, event_id=ev.id, estado="APROBADO"))
        db.expire_all()
        assert db.get(Event, ensayo.id).version == version + 1
        assert db.query(Rotativo).count() == 1

    def test_rolls_back_on_error(self, db, ensayo, members):
        with pytest.raises(RuntimeError):
            with locking.slot_guard(db, ensayo.id) as ev:
                db.add(Rotativo(user_id=members[0].id, event_id=ev.id, estado="APROBADO"))
                db.flush()
                raise RuntimeError("boom")
        assert db.query(Rotativo).count() == 0

    def test_duplicate_becomes_conflict(self, db, factory, ensayo, members):
        factory.rotativo(members[0], ensayo)
        with pytest.raises(ConflictError):
            with locking.slot_guard(db, ensayo.id) as ev:
                db.add(Rotativo(user_id=members[0].id, event_id=ev.id, estado="APROBADO"))
                db.flush()

    def test_orm_stale_becomes_retryable(self, db, ensayo):
        with pytest.raises(StaleDataError) as exc:
            with locking.slot_guard(db, ensayo.id):
                raise OrmStaleDataError("version mismatch")
        assert exc.value.retryable is True

    def test_missing_event(self, db, season):
        with pytest.raises(NotFoundError):
            with locking.slots_guard(db, [404]):
                pass


class TestRetry:

    def test_retries_until_success(self):
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise StaleDataError("otra vez")
            return "ok"

        assert locking.with_slot_retry(flaky, attempts=3) == "ok"
        assert len(calls) == 3

    def test_gives_up(self):
        calls = []

        def always():
            calls.append(1)
            raise StaleDataError("siempre")

        with pytest.raises(StaleDataError):
            locking.with_slot_retry(always, attempts=2)
        assert len(calls) == 2

    def test_other_errors_not_retried(self):
        calls = []

        def conflict():
            calls.append(1)
            raise ConflictError("duplicado")

        with pytest.raises(ConflictError):
            locking.with_slot_retry(conflict, attempts=5)
        assert len(calls) == 1


@pytest.fixture
def file_sessions(tmp_path):
    """Base SQLite en archivo: cada hilo abre su propia conexión."""
    eng = create_engine(
        f"sqlite:///{tmp_path / 'rotativos.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=eng)
    yield sessionmaker(autocommit=False, autoflush=False, bind=eng)
    eng.dispose()


@pytest.fixture
def last_slot(file_sessions):
    db = file_sessions()
    factory = Factory(db)
    season = factory.season()
    factory.user("Directora", role=ROLE_ADMIN)
    users = [factory.user() for _ in range(3)]
    t = factory.titulo(season, name="Aida")
    ev = factory.event(t, date(2026, 3, 10), evento_type="ENSAYO", cupo_override=1)
    ids = SimpleNamespace(season=season.id, event=ev.id, users=[u.id for u in users])
    db.close()
    return ids


def _race(sessions, *calls):
    barrier = threading.Barrier(len(calls))
    results = [None] * len(calls)
    errors = []

    def run(i, fn):
        db = sessions()
        try:
            barrier.wait()
            results[i] = fn(db)
        except Exception as exc:
            errors.append(exc)
        finally:
            db.close()

    threads = [threading.Thread(target=run, args=(i, fn)) for i, fn in enumerate(calls)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    assert errors == []
    return results


class TestConcurrentSessions:

    def test_two_requests_for_the_last_slot(self, file_sessions, last_slot):
        def request(user_id):
            def fn(db):
                res = rotations.create_rotation(db, user_id, last_slot.event, last_slot.season, today=TODAY)
                return res.rotativo.estado
            return fn

        results = _race(file_sessions, request(last_slot.users[0]), request(last_slot.users[1]))
        assert sorted(results) == ["APROBADO", "EN_ESPERA"]

        db = file_sessions()
        try:
            assert capacity.active_rotation_count(db, last_slot.event) == 1
            assert len(waiting_list.entries_for_event(db, last_slot.event)) == 1
        finally:
            db.close()
        assert locking._event_locks == {}

    def test_two_promotions_promote_once(self, file_sessions, last_slot):
        holder, first, second = last_slot.users
        db = file_sessions()
        factory = Factory(db)
        event = db.get(Event, last_slot.event)
        factory.rotativo(SimpleNamespace(id=holder), event)
        for user_id in (first, second):
            factory.rotativo(SimpleNamespace(id=user_id), event, estado="EN_ESPERA")
            waiting_list.enqueue(db, user_id, event.id, last_slot.season)
        event.cupo_override = 2
        db.commit()
        db.close()

        results = _race(
            file_sessions,
            lambda s: waiting_list.promote(s, last_slot.event),
            lambda s: waiting_list.promote(s, last_slot.event),
        )
        assert sorted(results, key=len) == [[], [first]]

        db = file_sessions()
        try:
            estados = {
                r.user_id: r.estado
                for r in db.query(Rotativo).filter_by(event_id=last_slot.event).all()
            }
            assert estados == {holder: "APROBADO", first: "APROBADO", second: "EN_ESPERA"}
            assert waiting_list.position_of(db, second, last_slot.event) == 1
        finally:
            db.close()
        assert locking._event_locks == {}

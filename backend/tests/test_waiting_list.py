"""Tests de la lista de espera."""
from datetime import date

import pytest

from rotativos.models.audit import AuditLog, Notification
from rotativos.models.rotativo import Rotativo
from rotativos.models.waiting_list import WaitingListEntry
from rotativos.services import balance as ledger
from rotativos.services import capacity, waiting_list


@pytest.fixture
def full_event(factory, tosca, members):
    ev = factory.event(tosca, date(2026, 3, 10), evento_type="ENSAYO", cupo_override=1)
    factory.rotativo(members[0], ev)
    return ev


class TestQueue:

    def test_positions_are_fifo(self, db, season, members, full_event):
        entries = [waiting_list.enqueue(db, m.id, full_event.id, season.id) for m in members[1:4]]
        db.commit()
        assert [e.position for e in entries] == [1, 2, 3]
        assert [e.user_id for e in waiting_list.entries_for_event(db, full_event.id)] == [m.id for m in members[1:4]]

    def test_enqueue_is_idempotent(self, db, season, members, full_event):
        first = waiting_list.enqueue(db, members[1].id, full_event.id, season.id)
        again = waiting_list.enqueue(db, members[1].id, full_event.id, season.id)
        assert first.id == again.id
        assert db.query(WaitingListEntry).count() == 1

    def test_remove_compacts(self, db, season, members, full_event):
        for m in members[1:4]:
            waiting_list.enqueue(db, m.id, full_event.id, season.id)
        assert waiting_list.remove(db, members[1].id, full_event.id) is True
        db.commit()
        assert waiting_list.position_of(db, members[2].id, full_event.id) == 1
        assert waiting_list.position_of(db, members[3].id, full_event.id) == 2
        assert waiting_list.remove(db, members[1].id, full_event.id) is False

    def test_entries_for_user(self, db, factory, season, members, tosca, full_event):
        other = factory.event(tosca, date(2026, 3, 9), evento_type="ENSAYO", cupo_override=0)
        waiting_list.enqueue(db, members[1].id, full_event.id, season.id)
        waiting_list.enqueue(db, members[1].id, other.id, season.id)
        db.commit()
        rows = waiting_list.entries_for_user(db, members[1].id, season.id)
        assert [r.event_id for r in rows] == [other.id, full_event.id]


class TestPromotion:

    def test_no_promotion_while_full(self, db, factory, season, members, full_event):
        factory.rotativo(members[1], full_event, estado="EN_ESPERA")
        waiting_list.enqueue(db, members[1].id, full_event.id, season.id)
        db.commit()
        assert waiting_list.promote(db, full_event.id) == []

    def test_promotes_head_when_slot_opens(self, db, factory, season, members, full_event):
        for m in members[1:3]:
            factory.rotativo(m, full_event, estado="EN_ESPERA")
            waiting_list.enqueue(db, m.id, full_event.id, season.id)
        full_event.cupo_override = 2
        db.commit()

        assert waiting_list.promote(db, full_event.id) == [members[1].id]
        db.expire_all()
        assert db.query(Rotativo).filter_by(user_id=members[1].id).one().estado == "APROBADO"
        assert waiting_list.position_of(db, members[2].id, full_event.id) == 1
        assert db.query(AuditLog).filter_by(action="LISTA_ESPERA_PROMOVIDO").count() == 1

    def test_promotes_as_many_as_free(self, db, factory, season, members, full_event):
        for m in members[1:4]:
            factory.rotativo(m, full_event, estado="EN_ESPERA")
            waiting_list.enqueue(db, m.id, full_event.id, season.id)
        full_event.cupo_override = 3
        db.commit()
        assert waiting_list.promote(db, full_event.id) == [members[1].id, members[2].id]

    def test_entry_without_row_gets_one(self, db, season, members, full_event):
        waiting_list.enqueue(db, members[1].id, full_event.id, season.id)
        full_event.cupo_override = 2
        db.commit()
        assert waiting_list.promote(db, full_event.id) == [members[1].id]
        assert db.query(Rotativo).filter_by(user_id=members[1].id, estado="APROBADO").count() == 1

    def test_member_already_holding_slot_is_dequeued(self, db, factory, season, members, full_event):
        waiting_list.enqueue(db, members[0].id, full_event.id, season.id)
        waiting_list.enqueue(db, members[1].id, full_event.id, season.id)
        full_event.cupo_override = 2
        db.commit()
        assert waiting_list.promote(db, full_event.id) == [members[1].id]
        assert waiting_list.entries_for_event(db, full_event.id) == []

    def test_flagged_request_waits_for_admin_after_promotion(self, db, factory, season, members, admin, full_event):
        rot = factory.rotativo(members[1], full_event, estado="EN_ESPERA")
        rot.motivo = "Solicitud del mismo día - requiere aprobación del administrador"
        waiting_list.enqueue(db, members[1].id, full_event.id, season.id)
        full_event.cupo_override = 2
        db.commit()

        assert waiting_list.promote(db, full_event.id) == [members[1].id]
        db.expire_all()
        assert db.get(Rotativo, rot.id).estado == "PENDIENTE"
        assert ledger.get_balance(db, members[1].id, season.id).rotativos_tomados == 0
        assert capacity.free_slots(db, full_event) == 0
        assert db.query(Notification).filter_by(user_id=admin.id, type="SOLICITUD_PENDIENTE").count() == 1


class TestPurge:

    def test_purge_season(self, db, factory, season, members, admin, full_event):
        for m in members[1:3]:
            factory.rotativo(m, full_event, estado="EN_ESPERA")
            waiting_list.enqueue(db, m.id, full_event.id, season.id)
        db.commit()

        assert waiting_list.purge_season(db, season.id, admin.id) == 2
        assert db.query(WaitingListEntry).count() == 0
        assert db.query(Rotativo).filter_by(estado="EN_ESPERA").count() == 0
        assert db.query(Rotativo).filter_by(estado="APROBADO").count() == 1
        assert db.query(AuditLog).filter_by(action="LISTA_ESPERA_PURGADA").count() == 1


class TestIdempotence:

    def test_promote_empty_queue_is_noop(self, db, factory, tosca):
        ev = factory.event(tosca, date(2026, 3, 11), evento_type="ENSAYO")
        assert waiting_list.promote(db, ev.id) == []
        assert waiting_list.promote(db, ev.id) == []
        assert db.query(Rotativo).filter_by(event_id=ev.id).count() == 0

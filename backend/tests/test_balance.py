"""Tests de los contadores por integrante y temporada."""
from datetime import date

import pytest

from rotativos.core.errors import ValidationError
from rotativos.models.audit import AuditLog, Notification
from rotativos.models.balance import UserSeasonBalance
from rotativos.services import balance as ledger
from rotativos.services import eligibility, rule_config

from conftest import TODAY


class TestGetBalance:

    def test_created_on_first_read(self, db, season, members, filler):
        bal = ledger.get_balance(db, members[0].id, season.id)
        assert bal.id is not None
        assert (bal.rotativos_tomados, bal.rotativos_obligatorios, bal.rotativos_por_licencia) == (0, 0, 0.0)
        assert bal.max_proyectado == 40
        assert ledger.get_balance(db, members[0].id, season.id).id == bal.id

    def test_new_member_gets_group_average_as_suggestion(self, db, factory, season, members, filler):
        for m in members[:3]:
            for ev in filler.events[:6]:
                factory.rotativo(m, ev)
        newcomer = factory.user("Nueva", fecha_ingreso=date(2026, 6, 1))
        bal = ledger.get_balance(db, newcomer.id, season.id)
        assert bal.max_ajustado_manual is None
        assert ledger.effective_max(bal) == 34  # 240 / 7
        # 18 consumidos entre 6 activos (admin incluido)
        assert ledger.snapshot(db, bal)["max_sugerido_ingreso"] == 3

    def test_new_member_with_idle_peers_keeps_projected_max(self, db, factory, season, members, filler):
        ledger.get_balance(db, members[0].id, season.id)
        newcomer = factory.user("Nueva", fecha_ingreso=date(2026, 2, 1))
        bal = ledger.get_balance(db, newcomer.id, season.id)
        db.commit()
        assert bal.max_ajustado_manual is None
        assert ledger.new_member_max(db, season.id, exclude_user_id=newcomer.id) == 1
        verdict = eligibility.evaluate(db, newcomer.id, filler.events[0].id, season.id, today=TODAY)
        assert verdict.reasons == []

    def test_new_member_rule_disabled(self, db, factory, season, admin, members, filler):
        rule_config.update_rule(db, "INTEGRANTE_NUEVO", admin.id, enabled=False)
        newcomer = factory.user("Nueva", fecha_ingreso=date(2026, 6, 1))
        bal = ledger.get_balance(db, newcomer.id, season.id)
        assert bal.max_ajustado_manual is None
        assert ledger.snapshot(db, bal)["max_sugerido_ingreso"] is None

    def test_founding_member_gets_no_suggestion(self, db, season, members, filler):
        bal = ledger.get_balance(db, members[0].id, season.id)
        assert ledger.new_member_suggestion(db, members[0].id, season.id) is None
        assert ledger.snapshot(db, bal)["max_sugerido_ingreso"] is None


class TestLedger:

    def test_voluntary_and_mandatory_counted_apart(self, db, factory, season, members, filler):
        factory.rotativo(members[0], filler.events[0])
        factory.rotativo(members[0], filler.events[1], tipo="OBLIGATORIO")
        bal = ledger.get_balance(db, members[0].id, season.id)
        assert (bal.rotativos_tomados, bal.rotativos_obligatorios) == (1, 1)
        assert ledger.total_consumed(bal) == 2

    def test_recalculate_repairs_counters(self, db, factory, season, members, filler, tosca):
        sat = factory.event(tosca, date(2026, 3, 7), evento_type="ENSAYO")
        factory.rotativo(members[0], sat)
        factory.rotativo(members[0], filler.events[0], estado="CANCELACION_PENDIENTE")
        factory.rotativo(members[0], filler.events[1], estado="PENDIENTE")
        bal = ledger.get_balance(db, members[0].id, season.id)
        bal.rotativos_tomados = 17
        bal.fines_de_semana_mes = {}
        db.commit()

        bal = ledger.recalculate_balance(db, members[0].id, season.id)
        assert bal.rotativos_tomados == 2
        assert bal.fines_de_semana_mes == {"2026-03": 1}
        assert bal.bloque_usado is False


class TestManualOverride:

    def test_set_and_clear(self, db, season, members, admin, filler):
        bal = ledger.set_manual_override(db, members[0].id, season.id, 55, "Compensa licencia 2025", admin.id)
        assert ledger.effective_max(bal) == 55
        assert ledger.live_effective_max(db, bal) == 55
        assert db.query(AuditLog).filter_by(action="MAXIMO_AJUSTADO").count() == 1

        bal = ledger.clear_manual_override(db, members[0].id, season.id, admin.id)
        assert bal.max_ajustado_manual is None
        assert ledger.effective_max(bal) == 40

    @pytest.mark.parametrize("value,why", [(-1, "x"), (10, "  ")])
    def test_invalid_override(self, db, season, members, admin, value, why):
        with pytest.raises(ValidationError):
            ledger.set_manual_override(db, members[0].id, season.id, value, why, admin.id)


class TestRecalculateProjectedMax:

    def test_zero_only_then_idempotent(self, db, season, members, admin, filler):
        for m in members[:3]:
            ledger.get_balance(db, m.id, season.id)
        db.query(UserSeasonBalance).filter_by(user_id=members[0].id).update({"max_proyectado": 0})
        db.commit()

        assert ledger.recalculate_projected_max(db, season.id, ledger.ZERO_ONLY, admin.id) == 1
        assert ledger.recalculate_projected_max(db, season.id, ledger.ZERO_ONLY, admin.id) == 0
        assert db.query(AuditLog).filter_by(action="MAXIMO_RECALCULADO").count() == 1

    def test_all_skips_manual_overrides(self, db, factory, season, members, admin, filler):
        ledger.get_balance(db, members[0].id, season.id)
        ledger.set_manual_override(db, members[1].id, season.id, 12, "Reducción horaria", admin.id)
        extra = factory.titulo(season, name="Giselle", type="BALLET")
        factory.event(extra, date(2026, 9, 1))
        factory.event(extra, date(2026, 9, 2))
        factory.event(extra, date(2026, 9, 3))  # 252 / 6 = 42

        assert ledger.recalculate_projected_max(db, season.id, ledger.ALL, admin.id) == 1
        db.expire_all()
        rows = {b.user_id: b for b in db.query(UserSeasonBalance).all()}
        assert rows[members[0].id].max_proyectado == 42
        assert rows[members[1].id].max_ajustado_manual == 12

    def test_bad_scope(self, db, season):
        with pytest.raises(ValidationError):
            ledger.recalculate_projected_max(db, season.id, "some")


class TestProximityAlert:

    @pytest.fixture
    def near(self, db, factory, season, members, admin, filler):
        ledger.set_manual_override(db, members[0].id, season.id, 10, "Tope reducido", admin.id)
        for ev in filler.events[:8]:
            factory.rotativo(members[0], ev)
        return members[0]

    def test_levels(self, db, season, near):
        assert ledger.proximity_alert(db, near.id, season.id).level == ledger.LIMITE  # 9/10
        assert ledger.proximity_alert(db, near.id, season.id, adding=3).level == ledger.EXCESO
        assert ledger.proximity_alert(db, near.id, season.id, adding=0).level == ledger.NINGUNA

    def test_message(self, db, season, near):
        alert = ledger.proximity_alert(db, near.id, season.id, adding=3)
        assert alert.message == "Excedés el máximo proyectado (110.0%)"

    def test_crossing_notifies_once(self, db, factory, season, near, filler):
        factory.rotativo(near, filler.events[8])
        assert ledger.notify_threshold_crossing(db, near.id, season.id) == ledger.LIMITE
        assert db.query(Notification).filter_by(user_id=near.id, type="ALERTA_CERCANIA").count() == 1
        factory.rotativo(near, filler.events[9])
        # 10/10 sigue en LIMITE
        assert ledger.notify_threshold_crossing(db, near.id, season.id) is None

    def test_snapshot(self, db, season, near):
        snap = ledger.snapshot(db, ledger.get_balance(db, near.id, season.id))
        assert snap["max_efectivo"] == 10
        assert snap["total_consumido"] == 8
        assert snap["porcentaje"] == 80.0

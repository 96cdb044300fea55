"""Tests de las tablas de transición."""
import pytest

from rotativos.core.errors import ConflictError, InvalidTransitionError
from rotativos.models.block import Block
from rotativos.models.enums import BlockEstado, RotativoEstado
from rotativos.models.rotativo import Rotativo
from rotativos.services import state_machine as sm


class TestRotativoTransitions:

    @pytest.mark.parametrize("start,action,end", [
        ("PENDIENTE", sm.APPROVE, "APROBADO"),
        ("PENDIENTE", sm.REJECT, "RECHAZADO"),
        ("EN_ESPERA", sm.PROMOTE, "APROBADO"),
        ("EN_ESPERA", sm.PROMOTE_TO_REVIEW, "PENDIENTE"),
        ("APROBADO", sm.REQUEST_CANCELLATION, "CANCELACION_PENDIENTE"),
        ("CANCELACION_PENDIENTE", sm.CONFIRM_CANCELLATION, "CANCELADO"),
        ("CANCELACION_PENDIENTE", sm.REVERT_CANCELLATION, "APROBADO"),
        ("APROBADO", sm.CANCEL, "CANCELADO"),
    ])
    def test_valid(self, start, action, end):
        rot = Rotativo(estado=start)
        assert sm.apply_rotativo(rot, action) == RotativoEstado(end)
        assert rot.estado == end

    @pytest.mark.parametrize("start,action", [
        ("CANCELACION_PENDIENTE", sm.PROMOTE),
        ("APROBADO", sm.PROMOTE),
        ("PENDIENTE", sm.PROMOTE_TO_REVIEW),
        ("RECHAZADO", sm.APPROVE),
        ("CANCELADO", sm.CANCEL),
        ("APROBADO", sm.APPROVE),
        ("PENDIENTE", sm.REQUEST_CANCELLATION),
    ])
    def test_invalid(self, start, action):
        rot = Rotativo(estado=start)
        with pytest.raises(InvalidTransitionError):
            sm.apply_rotativo(rot, action)
        assert rot.estado == start

    def test_invalid_transition_is_a_conflict(self):
        assert issubclass(InvalidTransitionError, ConflictError)

    def test_terminal_states_have_no_exits(self):
        assert sm.ROTATIVO_TRANSITIONS[RotativoEstado.RECHAZADO] == {}
        assert sm.ROTATIVO_TRANSITIONS[RotativoEstado.CANCELADO] == {}


class TestBlockTransitions:

    def test_lifecycle(self):
        b = Block(estado="SOLICITADO")
        for target in (BlockEstado.APROBADO, BlockEstado.EN_CURSO, BlockEstado.COMPLETADO, BlockEstado.CANCELADO):
            sm.apply_block(b, target)
        assert b.estado == "CANCELADO"

    def test_cancelled_is_terminal(self):
        b = Block(estado="CANCELADO")
        with pytest.raises(InvalidTransitionError):
            sm.apply_block(b, BlockEstado.APROBADO)

    def test_cannot_skip_approval(self):
        b = Block(estado="SOLICITADO")
        with pytest.raises(InvalidTransitionError):
            sm.apply_block(b, BlockEstado.EN_CURSO)

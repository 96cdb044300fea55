"""
Máquinas de estado de Rotativo y Block.

ROTATIVO (acción -> estado destino):

    PENDIENTE   --approve-->  APROBADO    PENDIENTE --reject--> RECHAZADO
    EN_ESPERA   --promote-->  APROBADO    EN_ESPERA --promote_to_review--> PENDIENTE
    APROBADO    --request_cancellation-->  CANCELACION_PENDIENTE
    CANCELACION_PENDIENTE --confirm_cancellation--> CANCELADO
    CANCELACION_PENDIENTE --revert_cancellation-->  APROBADO
    PENDIENTE, EN_ESPERA, APROBADO --cancel--> CANCELADO

RECHAZADO y CANCELADO son terminales. Solo EN_ESPERA puede ser promovido;
si el pedido original tenía motivos, la promoción lo deja PENDIENTE.

BLOCK:
    SOLICITADO ► APROBADO ► EN_CURSO ► COMPLETADO, cualquiera activo ► CANCELADO.
    APROBADO vuelve a SOLICITADO cuando se completa con eventos pendientes.
"""
import logging
from typing import Dict

from rotativos.core.errors import InvalidTransitionError
from rotativos.models.block import Block
from rotativos.models.enums import BlockEstado, RotativoEstado
from rotativos.models.rotativo import Rotativo

logger = logging.getLogger(__name__)

APPROVE = "approve"
REJECT = "reject"
PROMOTE = "promote"
PROMOTE_TO_REVIEW = "promote_to_review"
CANCEL = "cancel"
REQUEST_CANCELLATION = "request_cancellation"
CONFIRM_CANCELLATION = "confirm_cancellation"
REVERT_CANCELLATION = "revert_cancellation"

ROTATIVO_TRANSITIONS: Dict[RotativoEstado, Dict[str, RotativoEstado]] = {
    RotativoEstado.PENDIENTE: {
        APPROVE: RotativoEstado.APROBADO,
        REJECT: RotativoEstado.RECHAZADO,
        CANCEL: RotativoEstado.CANCELADO,
    },
    RotativoEstado.EN_ESPERA: {
        PROMOTE: RotativoEstado.APROBADO,
        PROMOTE_TO_REVIEW: RotativoEstado.PENDIENTE,
        CANCEL: RotativoEstado.CANCELADO,
    },
    RotativoEstado.APROBADO: {
        REQUEST_CANCELLATION: RotativoEstado.CANCELACION_PENDIENTE,
        CANCEL: RotativoEstado.CANCELADO,
    },
    RotativoEstado.CANCELACION_PENDIENTE: {
        CONFIRM_CANCELLATION: RotativoEstado.CANCELADO,
        REVERT_CANCELLATION: RotativoEstado.APROBADO,
    },
    RotativoEstado.RECHAZADO: {},
    RotativoEstado.CANCELADO: {},
}

BLOCK_TRANSITIONS: Dict[BlockEstado, set] = {
    BlockEstado.SOLICITADO: {BlockEstado.APROBADO, BlockEstado.CANCELADO},
    BlockEstado.APROBADO: {
        BlockEstado.SOLICITADO,
        BlockEstado.EN_CURSO,
        BlockEstado.COMPLETADO,
        BlockEstado.CANCELADO,
    },
    BlockEstado.EN_CURSO: {BlockEstado.COMPLETADO, BlockEstado.CANCELADO},
    BlockEstado.COMPLETADO: {BlockEstado.CANCELADO},
    BlockEstado.CANCELADO: set(),
}


def next_rotativo_estado(current: str, action: str) -> RotativoEstado:
    estado = RotativoEstado(current)
    target = ROTATIVO_TRANSITIONS[estado].get(action)
    if target is None:
        raise InvalidTransitionError(
            f"Transición inválida: no se puede '{action}' un rotativo {estado.value}",
            {"estado": estado.value, "accion": action},
        )
    return target


def apply_rotativo(rotativo: Rotativo, action: str) -> RotativoEstado:
    target = next_rotativo_estado(rotativo.estado, action)
    logger.debug("rotativo %s: %s -%s-> %s", rotativo.id, rotativo.estado, action, target.value)
    rotativo.estado = target.value
    return target


def apply_block(block: Block, target: BlockEstado) -> None:
    current = BlockEstado(block.estado)
    if current == target:
        return
    if target not in BLOCK_TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Transición inválida de bloque: {current.value} -> {target.value}",
            {"estado": current.value, "destino": target.value},
        )
    block.estado = target.value

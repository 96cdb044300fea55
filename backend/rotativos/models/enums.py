from enum import Enum


class TituloType(str, Enum):
    OPERA = "OPERA"
    CONCIERTO = "CONCIERTO"
    BALLET = "BALLET"
    RECITAL = "RECITAL"
    OTRO = "OTRO"


class EventoType(str, Enum):
    ENSAYO = "ENSAYO"
    FUNCION = "FUNCION"


class RotativoEstado(str, Enum):
    PENDIENTE = "PENDIENTE"
    APROBADO = "APROBADO"
    RECHAZADO = "RECHAZADO"
    CANCELADO = "CANCELADO"
    EN_ESPERA = "EN_ESPERA"
    CANCELACION_PENDIENTE = "CANCELACION_PENDIENTE"


class RotativoTipo(str, Enum):
    VOLUNTARIO = "VOLUNTARIO"
    OBLIGATORIO = "OBLIGATORIO"


class BlockEstado(str, Enum):
    SOLICITADO = "SOLICITADO"
    APROBADO = "APROBADO"
    EN_CURSO = "EN_CURSO"
    COMPLETADO = "COMPLETADO"
    CANCELADO = "CANCELADO"


# Ocupan cupo del evento
ACTIVE_ESTADOS = (
    RotativoEstado.APROBADO.value,
    RotativoEstado.PENDIENTE.value,
    RotativoEstado.CANCELACION_PENDIENTE.value,
)

# Mantienen vivo un bloque
BLOCK_LIVE_ESTADOS = ACTIVE_ESTADOS + (RotativoEstado.EN_ESPERA.value,)

ACTIVE_BLOCK_ESTADOS = (
    BlockEstado.SOLICITADO.value,
    BlockEstado.APROBADO.value,
    BlockEstado.EN_CURSO.value,
    BlockEstado.COMPLETADO.value,
)

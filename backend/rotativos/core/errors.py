"""
Taxonomía de errores del motor de rotativos.

Los servicios lanzan estas excepciones; la capa HTTP las traduce a
respuestas JSON con un único handler (ver main.py).

- ValidationError: dato faltante o mal formado. Nada se persiste.
- NotFoundError: evento, usuario, título... inexistente.
- ConflictError: rotativo duplicado, licencias superpuestas, transición inválida.
- AuthorizationError: el actor no puede operar sobre ese recurso.
- StaleDataError: otra operación modificó el cupo en paralelo. Reintentable.
- RuleConfigError: una regla guardada no cumple su esquema.
"""

from typing import Any, Dict, Optional


class RotativosError(Exception):
    status_code = 400
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"detail": self.message, "retryable": self.retryable}
        if self.details:
            out["details"] = self.details
        return out


class ValidationError(RotativosError):
    status_code = 400


class NotFoundError(RotativosError):
    status_code = 404


class ConflictError(RotativosError):
    status_code = 409


class InvalidTransitionError(ConflictError):
    pass


class AuthorizationError(RotativosError):
    status_code = 403


class StaleDataError(ConflictError):
    retryable = True


class RuleConfigError(RotativosError):
    status_code = 500

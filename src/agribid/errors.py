"""Errores de dominio.

Cada error lleva el status HTTP con el que se responde y campos extra que
se agregan al cuerpo ``error`` (p. ej. ``minimumBid``).
"""


class DomainError(Exception):
    status = 400

    def __init__(self, message, status=None, **extra):
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status
        self.extra = extra


class ValidationError(DomainError):
    status = 400


class AuthorizationError(DomainError):
    status = 403


class NotFoundError(DomainError):
    status = 404


class StateConflictError(DomainError):
    status = 409


class ConcurrencyConflict(DomainError):
    """Otro postor cambió currentBid entre la lectura y la escritura."""
    status = 409


class SignatureValidationError(DomainError):
    status = 401


class ExternalServiceError(DomainError):
    """Fallo de un servicio externo en el camino principal; reintentable."""
    status = 502

    def __init__(self, message, status=None, **extra):
        extra.setdefault("retryable", True)
        super().__init__(message, status=status, **extra)

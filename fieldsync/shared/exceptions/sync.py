"""
Excepciones del motor de sincronización.

Cada error lleva el tag (entity_type, operation, kind) para observabilidad,
independientemente de si termina reintentándose o no.
"""
from typing import Optional

from fieldsync.shared.constants.sync_constants import ErrorKind
from fieldsync.shared.exceptions.base import AppException


class SyncError(AppException):
    """Excepción base de errores de sync."""

    kind: ErrorKind = ErrorKind.TRANSIENT

    def __init__(
        self,
        message: str,
        *,
        entity_type: Optional[str] = None,
        operation: Optional[str] = None,
        status_code: int = 502,
    ):
        self.entity_type = entity_type
        self.operation = operation
        super().__init__(
            message=message,
            status_code=status_code,
            error_code=f"SYNC_{self.kind.value.upper()}_ERROR",
            details={"entity": entity_type, "operation": operation, "kind": self.kind.value},
        )

    def tag(self, entity_type: str, operation: str) -> "SyncError":
        """Completa los tags faltantes sin pisar los que ya vienen del origen."""
        self.entity_type = self.entity_type or entity_type
        self.operation = self.operation or operation
        self.details.update({"entity": self.entity_type, "operation": self.operation})
        return self


class TransientExternalError(SyncError):
    """Timeouts, 5xx, rate-limit. Se reintenta con backoff exponencial."""

    kind = ErrorKind.TRANSIENT

    def __init__(self, message: str, *, retry_after: Optional[float] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class CredentialError(SyncError):
    """Credencial expirada o inválida: un refresh y un reintento."""

    kind = ErrorKind.CREDENTIAL

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("status_code", 401)
        super().__init__(message, **kwargs)


class ValidationError(SyncError):
    """Request malformado o rechazo permanente (4xx). No se reintenta."""

    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("status_code", 400)
        super().__init__(message, **kwargs)


class StoreError(SyncError):
    """Error de escritura/lectura en la base relacional."""

    kind = ErrorKind.STORE

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("status_code", 503)
        super().__init__(message, **kwargs)


class NotifierError(SyncError):
    """Fallo del canal de notificación. Siempre se descarta."""

    kind = ErrorKind.NOTIFIER


class UnknownEntityTypeError(AppException):
    """Tipo de entidad no registrado."""

    def __init__(self, entity_type: str, registered: list[str]):
        super().__init__(
            message=f"Tipo de entidad '{entity_type}' no registrado",
            status_code=404,
            error_code="UNKNOWN_ENTITY_TYPE",
            details={"entity": entity_type, "registered": registered},
        )

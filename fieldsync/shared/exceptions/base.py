"""
Excepción raíz del servicio de sync.
"""
from typing import Any, Dict, Optional


class AppException(Exception):
    """
    Error con código HTTP y código de error estable.

    El handler global de FastAPI lo serializa con to_dict(); el CLI solo
    loguea message.
    """

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Cuerpo JSON de la respuesta de error."""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }

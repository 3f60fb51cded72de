"""
Excepcion base del motor de sincronizacion y de su API.

Toda excepcion propia hereda de AppException y sabe serializarse al
formato de error de la API: {"error", "message", "details"}.
"""
from typing import Any, Dict, Optional


class AppException(Exception):
    """
    Excepcion base de la aplicacion.

    El handler global de FastAPI la convierte en una respuesta con
    `status_code` y el cuerpo de `to_response()`.
    """

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Args:
            message: Mensaje legible para el operador
            status_code: Codigo HTTP de la respuesta
            error_code: Codigo estable que identifica el error (p.ej. SYNC_TIMEOUT)
            details: Contexto adicional (job_id, pagina, estado upstream...)
        """
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    @property
    def is_client_error(self) -> bool:
        """True para errores 4xx (el pedido es el problema, no el servidor)."""
        return 400 <= self.status_code < 500

    def to_response(self) -> Dict[str, Any]:
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(error_code={self.error_code}, status_code={self.status_code})>"

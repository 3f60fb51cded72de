"""
Excepciones del motor de sincronizacion.

Cada excepcion lleva un `kind` (ErrorKind) que el llamador revisa de forma
explicita para decidir si reintenta, aborta, salta el registro o aisla el chunk.
"""
from enum import Enum
from typing import Any, Dict, Optional

from app.shared.exceptions.base import AppException


class ErrorKind(str, Enum):
    """Clasificacion de errores del pipeline."""
    FATAL = "fatal"                # aborta la invocacion y marca el job como failed
    RETRYABLE = "retryable"        # la pagina falla, el batch continua
    RECORD_SKIP = "record_skip"    # se salta el registro y se cuenta
    CHUNK = "chunk"                # el chunk falla, los demas chunks siguen
    INVOCATION = "invocation"      # termina la invocacion, el job queda reanudable
    CONFLICT = "conflict"          # otra invocacion tiene el job


class SyncEngineException(AppException):
    """Excepcion base del motor de sincronizacion."""

    kind: ErrorKind = ErrorKind.RETRYABLE

    def __init__(
        self,
        message: str,
        status_code: int = 502,
        error_code: str = "SYNC_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            status_code=status_code,
            error_code=error_code,
            details=details,
        )

    @property
    def is_fatal(self) -> bool:
        return self.kind == ErrorKind.FATAL

    @property
    def is_retryable(self) -> bool:
        return self.kind == ErrorKind.RETRYABLE


class AuthError(SyncEngineException):
    """El marketplace rechazo la API key (401/403)."""

    kind = ErrorKind.FATAL

    def __init__(self, status_code_upstream: int, message: str = ""):
        super().__init__(
            message=message or f"El marketplace rechazo las credenciales (HTTP {status_code_upstream})",
            status_code=502,
            error_code="MARKETPLACE_AUTH_ERROR",
            details={"upstream_status": status_code_upstream},
        )
        self.upstream_status = status_code_upstream


class RateLimitError(SyncEngineException):
    """Se agotaron los reintentos ante HTTP 429."""

    kind = ErrorKind.RETRYABLE

    def __init__(self, page: int, attempts: int):
        super().__init__(
            message=f"Rate limit persistente en pagina {page} tras {attempts} intentos",
            status_code=503,
            error_code="MARKETPLACE_RATE_LIMITED",
            details={"page": page, "attempts": attempts},
        )


class TransientNetworkError(SyncEngineException):
    """Error de red o HTTP no fatal que persistio tras los reintentos."""

    kind = ErrorKind.RETRYABLE

    def __init__(self, message: str, upstream_status: Optional[int] = None):
        super().__init__(
            message=message,
            status_code=502,
            error_code="MARKETPLACE_UNAVAILABLE",
            details={"upstream_status": upstream_status} if upstream_status else None,
        )
        self.upstream_status = upstream_status


class DataShapeError(SyncEngineException):
    """La respuesta o un registro no tiene la forma esperada."""

    kind = ErrorKind.RECORD_SKIP

    def __init__(self, message: str):
        super().__init__(
            message=message,
            status_code=502,
            error_code="UNEXPECTED_DATA_SHAPE",
        )


class StorageWriteError(SyncEngineException):
    """Fallo el commit de un chunk en el store."""

    kind = ErrorKind.CHUNK

    def __init__(self, message: str, operations: int = 0):
        super().__init__(
            message=message,
            status_code=500,
            error_code="STORAGE_WRITE_ERROR",
            details={"operations": operations},
        )
        self.operations = operations


class SyncTimeoutError(SyncEngineException):
    """La invocacion supero su tiempo maximo. El job queda reanudable."""

    kind = ErrorKind.INVOCATION

    def __init__(self, job_id: str, timeout_s: float, next_page: int):
        super().__init__(
            message=f"La ejecucion del job {job_id} supero {timeout_s:.0f}s; reanudar desde pagina {next_page}",
            status_code=504,
            error_code="SYNC_TIMEOUT",
            details={"job_id": job_id, "timeout_s": timeout_s, "next_page": next_page},
        )
        self.next_page = next_page


class ConcurrentExecutionError(SyncEngineException):
    """Otra invocacion esta procesando el mismo job."""

    kind = ErrorKind.CONFLICT

    def __init__(self, job_id: str):
        super().__init__(
            message=f"El job {job_id} ya se esta ejecutando",
            status_code=409,
            error_code="JOB_ALREADY_RUNNING",
            details={"job_id": job_id},
        )


class SyncConfigError(SyncEngineException):
    """Configuracion del pipeline incompleta o invalida."""

    kind = ErrorKind.FATAL

    def __init__(self, message: str):
        super().__init__(
            message=message,
            status_code=500,
            error_code="SYNC_CONFIG_ERROR",
        )

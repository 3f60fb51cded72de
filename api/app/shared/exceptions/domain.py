"""
Excepciones relacionadas con la lógica de dominio.
"""
from typing import Any

from app.shared.exceptions.base import AppException


class DomainException(AppException):
    """Excepción base para errores de dominio."""

    def __init__(self, message: str, error_code: str = "DOMAIN_ERROR", details=None):
        super().__init__(
            message=message,
            status_code=400,
            error_code=error_code,
            details=details
        )


class EntityNotFoundException(DomainException):
    """Excepción cuando no se encuentra una entidad."""

    def __init__(self, entity_name: str, entity_id: Any):
        super().__init__(
            message=f"{entity_name} con ID {entity_id} no encontrado",
            error_code="ENTITY_NOT_FOUND",
            details={"entity": entity_name, "id": str(entity_id)}
        )
        self.status_code = 404


class ValidationException(DomainException):
    """Excepción para errores de validación."""

    def __init__(self, message: str, field: str = None):
        details = {"field": field} if field else None
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            details=details
        )


class SyncJobNotFoundException(DomainException):
    """Excepcion cuando no existe el job de sincronizacion solicitado."""

    def __init__(self, job_id: str):
        super().__init__(
            message=f"Job de sincronizacion '{job_id}' no encontrado",
            error_code="SYNC_JOB_NOT_FOUND",
            details={"job_id": job_id}
        )
        self.status_code = 404


class ExecutionLogNotFoundException(EntityNotFoundException):
    """Excepcion cuando no existe la entrada del log de ejecuciones."""

    def __init__(self, execution_id: str):
        super().__init__("Ejecucion", execution_id)


class InvalidJobStateException(DomainException):
    """Excepcion cuando el estado del job no permite la operacion pedida."""

    def __init__(self, job_id: str, status: str, operation: str):
        super().__init__(
            message=f"No se puede ejecutar '{operation}' sobre el job {job_id} en estado '{status}'",
            error_code="INVALID_JOB_STATE",
            details={"job_id": job_id, "status": status, "operation": operation}
        )
        self.status_code = 409

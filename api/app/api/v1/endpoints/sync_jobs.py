"""
Endpoints de control de jobs de sincronizacion con el marketplace.
Cada llamada a /jobs/execute procesa un batch acotado de paginas.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from app.api.v1.dependencies.use_case_deps import get_sync_job_use_cases
from app.application.dto.sync_dto import (
    BatchResultDTO,
    CleanupResultDTO,
    ExecuteBatchDTO,
    InitializeJobDTO,
    InitializeJobResponseDTO,
    JobListDTO,
    JobStatsDTO,
    JobStatusDTO,
    SyncJobDTO,
)
from app.application.use_cases.sync_job_use_cases import SyncJobUseCases
from app.core.config import settings
from app.shared.constants.sync_constants import JobStatus


router = APIRouter(prefix="/sync", tags=["Sync"])


@router.post(
    "/jobs/initialize",
    response_model=InitializeJobResponseDTO,
    status_code=status.HTTP_201_CREATED,
    summary="Crear un job de sincronizacion"
)
async def initialize_job(
    dto: InitializeJobDTO,
    use_cases: SyncJobUseCases = Depends(get_sync_job_use_cases)
) -> InitializeJobResponseDTO:
    """
    Crea un job: consulta el total de registros y calcula las paginas.

    Args:
        dto: Tipo de recurso, cuenta y tamanos de pagina/batch
        use_cases: Casos de uso (inyectado)

    Returns:
        InitializeJobResponseDTO con el total y la estimacion de fin
    """
    return await use_cases.initialize(dto)


@router.post(
    "/jobs/execute",
    response_model=BatchResultDTO,
    summary="Procesar un batch de paginas"
)
async def execute_batch(
    dto: ExecuteBatchDTO,
    use_cases: SyncJobUseCases = Depends(get_sync_job_use_cases)
) -> BatchResultDTO:
    """
    Procesa hasta `batch_size` paginas a partir de `page_start`
    (o de la pagina siguiente a la ultima procesada).

    Devuelve 409 si otra invocacion tiene el job tomado o si el job ya
    termino, y 504 si se agota el tiempo de la invocacion (el job queda
    reanudable).
    """
    return await use_cases.execute(dto)


@router.get(
    "/jobs/{job_id}/status",
    response_model=JobStatusDTO,
    summary="Progreso de un job"
)
async def get_job_status(
    job_id: str,
    use_cases: SyncJobUseCases = Depends(get_sync_job_use_cases)
) -> JobStatusDTO:
    """Estado y progreso de un job (solo lectura)."""
    return await use_cases.status(job_id)


@router.post(
    "/jobs/{job_id}/pause",
    response_model=SyncJobDTO,
    summary="Pausar un job"
)
async def pause_job(
    job_id: str,
    use_cases: SyncJobUseCases = Depends(get_sync_job_use_cases)
) -> SyncJobDTO:
    """
    Pausa un job. Se reanuda llamando de nuevo a /jobs/execute.
    """
    return await use_cases.pause(job_id)


@router.post(
    "/jobs/{job_id}/cancel",
    response_model=SyncJobDTO,
    summary="Cancelar un job"
)
async def cancel_job(
    job_id: str,
    use_cases: SyncJobUseCases = Depends(get_sync_job_use_cases)
) -> SyncJobDTO:
    """Cancela un job; no admite mas ejecuciones."""
    return await use_cases.cancel(job_id)


@router.get(
    "/jobs",
    response_model=JobListDTO,
    summary="Listar jobs"
)
async def list_jobs(
    status_filter: Optional[JobStatus] = Query(None, alias="status"),
    account_id: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    use_cases: SyncJobUseCases = Depends(get_sync_job_use_cases)
) -> JobListDTO:
    """Jobs mas recientes primero, filtrables por estado y cuenta."""
    return await use_cases.list_jobs(status=status_filter, account_id=account_id, limit=limit)


@router.get(
    "/jobs/active",
    response_model=JobListDTO,
    summary="Listar jobs activos"
)
async def list_active_jobs(
    limit: int = Query(50, ge=1, le=200),
    use_cases: SyncJobUseCases = Depends(get_sync_job_use_cases)
) -> JobListDTO:
    """Jobs en estado initialized, in_progress o paused."""
    return await use_cases.list_active_jobs(limit=limit)


@router.post(
    "/jobs/cleanup",
    response_model=CleanupResultDTO,
    summary="Borrar jobs terminados antiguos"
)
async def cleanup_jobs(
    days_old: int = Query(settings.SYNC_JOB_RETENTION_DAYS, ge=1, le=3650),
    use_cases: SyncJobUseCases = Depends(get_sync_job_use_cases)
) -> CleanupResultDTO:
    """Borra jobs completed/failed/cancelled con mas de `days_old` dias."""
    return await use_cases.cleanup_old_jobs(days_old)


@router.get(
    "/jobs/stats",
    response_model=JobStatsDTO,
    summary="Estadisticas de las ultimas 24 horas"
)
async def get_stats(
    use_cases: SyncJobUseCases = Depends(get_sync_job_use_cases)
) -> JobStatsDTO:
    """Jobs activos, completados, items procesados y tasa de error."""
    return await use_cases.job_stats()

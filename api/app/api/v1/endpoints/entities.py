"""
Endpoints de mantenimiento de las colecciones sincronizadas.
"""
from fastapi import APIRouter, Depends, Query

from app.api.v1.dependencies.use_case_deps import get_entity_maintenance_use_cases
from app.application.dto.entity_dto import (
    DeduplicateRequestDTO,
    DeduplicationResultDTO,
    EntityStatsDTO,
)
from app.application.use_cases.entity_maintenance_use_cases import EntityMaintenanceUseCases
from app.shared.constants.sync_constants import JobType


router = APIRouter(prefix="/sync/entities", tags=["Entities"])


@router.get(
    "/{job_type}/stats",
    response_model=EntityStatsDTO,
    summary="Estadisticas de una coleccion"
)
async def get_entity_stats(
    job_type: JobType,
    account_id: str = Query(..., min_length=1),
    use_cases: EntityMaintenanceUseCases = Depends(get_entity_maintenance_use_cases)
) -> EntityStatsDTO:
    """Totales, duplicados potenciales e identidades no confiables de una cuenta."""
    return await use_cases.entity_stats(job_type, account_id)


@router.post(
    "/deduplicate",
    response_model=DeduplicationResultDTO,
    summary="Eliminar documentos duplicados"
)
async def deduplicate(
    dto: DeduplicateRequestDTO,
    use_cases: EntityMaintenanceUseCases = Depends(get_entity_maintenance_use_cases)
) -> DeduplicationResultDTO:
    """
    Agrupa por identidad y conserva el documento actualizado mas recientemente.
    Con `dry_run=true` (por defecto) solo informa.
    """
    return await use_cases.remove_duplicates(dto.job_type, dto.account_id, dry_run=dto.dry_run)

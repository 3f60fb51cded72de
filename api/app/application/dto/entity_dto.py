"""
DTOs de mantenimiento de entidades sincronizadas.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from app.shared.constants.sync_constants import JobType


class EntityStatsDTO(BaseModel):
    """Resumen de una coleccion para una cuenta."""

    job_type: JobType
    account_id: str
    collection: str
    total_records: int
    unique_identities: int
    potential_duplicates: int = Field(..., description="Documentos sobrantes por identidad repetida")
    unreliable_identities: int = Field(..., description="Documentos identificados por huella de contenido")
    oldest_fetch: Optional[datetime] = None
    newest_fetch: Optional[datetime] = None
    first_fetched_last_24h: int = 0


class DeduplicateRequestDTO(BaseModel):
    """Parametros de la limpieza de duplicados."""

    job_type: JobType
    account_id: str = Field(..., min_length=1, max_length=255)
    dry_run: bool = Field(True, description="Solo informa, no borra")


class DuplicateGroupDTO(BaseModel):
    """Grupo de documentos con la misma identidad."""

    identity: str
    kept_id: str
    removed_ids: List[str]


class DeduplicationResultDTO(BaseModel):
    """Resultado de la limpieza de duplicados."""

    job_type: JobType
    account_id: str
    collection: str
    dry_run: bool
    scanned: int
    duplicate_groups: int
    duplicates_found: int
    deleted: int
    failed: int = 0
    groups: List[DuplicateGroupDTO] = Field(default_factory=list, description="Muestra de grupos (max 50)")

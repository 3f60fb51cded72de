"""
DTOs relacionados con jobs de sincronizacion.
Definen la estructura de datos de la superficie de control (initialize/execute/status).
"""
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from app.shared.constants.sync_constants import (
    DateFilter,
    JobStatus,
    JobType,
    StopReason,
    TriggerType,
)


class InitializeJobDTO(BaseModel):
    """
    DTO para crear un job de sincronizacion.

    `date_filter` solo aplica a ventas y se traduce a created_date_start /
    created_date_end al inicializar. Con `custom` se usan date_start y
    date_end (hoy si se omite).
    """

    job_type: JobType = Field(..., description="Recurso a sincronizar")
    account_id: str = Field(..., min_length=1, max_length=255, description="Cuenta del marketplace")
    page_size: Optional[int] = Field(None, ge=1, le=1000, description="Registros por pagina")
    batch_size: Optional[int] = Field(None, ge=1, le=500, description="Paginas por invocacion por defecto")
    created_by: Optional[str] = Field(None, max_length=255, description="Operador que crea el job")
    query_params: Dict[str, Any] = Field(
        default_factory=dict,
        description="Filtros extra enviados en cada pagina (p.ej. created_date_start)"
    )
    date_filter: DateFilter = Field(DateFilter.NONE, description="Ventana de fechas para ventas")
    date_start: Optional[date] = Field(None, description="Inicio de la ventana (solo con custom)")
    date_end: Optional[date] = Field(None, description="Fin de la ventana (solo con custom)")
    trigger_type: TriggerType = Field(TriggerType.MANUAL, description="Origen de la invocacion")
    trigger_source: Optional[str] = Field(None, max_length=255, description="Detalle del origen")

    @model_validator(mode="after")
    def check_date_filter(self) -> "InitializeJobDTO":
        if self.date_filter != DateFilter.NONE and self.job_type != JobType.SALES:
            raise ValueError("date_filter solo se admite para ventas")
        if self.date_filter == DateFilter.CUSTOM:
            if self.date_start is None:
                raise ValueError("date_filter custom requiere date_start")
            if self.date_end is not None and self.date_end < self.date_start:
                raise ValueError("date_end no puede ser anterior a date_start")
        elif self.date_start is not None or self.date_end is not None:
            raise ValueError("date_start/date_end solo se usan con date_filter custom")
        return self


class InitializeJobResponseDTO(BaseModel):
    """DTO de respuesta de la inicializacion."""

    job_id: str
    job_type: JobType
    account_id: str
    status: JobStatus
    total_records: int
    total_pages: int
    page_size: int
    batch_size: int
    estimated_completion: datetime = Field(..., description="Estimacion a 5 s por pagina")
    date_filter: DateFilter = DateFilter.NONE
    query_params: Dict[str, Any] = Field(default_factory=dict)
    resumed: bool = Field(False, description="Se devolvio un job activo equivalente en lugar de crear uno")
    execution_id: Optional[str] = None


class ExecuteBatchDTO(BaseModel):
    """DTO para ejecutar un batch de paginas."""

    job_id: str = Field(..., min_length=1, description="Job a ejecutar")
    batch_size: Optional[int] = Field(None, ge=1, le=500, description="Paginas a procesar en esta invocacion")
    page_start: Optional[int] = Field(None, ge=1, description="Pagina inicial (por defecto current_page + 1)")
    trigger_type: TriggerType = Field(TriggerType.MANUAL, description="manual o scheduled")
    trigger_source: Optional[str] = Field(None, max_length=255)


class RecordCountsDTO(BaseModel):
    """Contadores por registro."""

    new: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0


class BatchResultDTO(BaseModel):
    """Resultado de una invocacion de execute."""

    job_id: str
    status: JobStatus
    start_page: int
    end_page: int
    pages_processed: int = Field(..., description="Paginas completadas en esta invocacion")
    failed_pages: int = Field(..., description="Paginas fallidas en esta invocacion")
    records_processed: int
    counts: RecordCountsDTO
    is_complete: bool
    has_more: bool
    next_page: Optional[int] = None
    stopped_reason: Optional[StopReason] = None
    last_error: Optional[str] = None
    execution_id: Optional[str] = None
    duration_ms: int = 0


class SyncJobDTO(BaseModel):
    """Vista completa de un job."""

    id: str
    job_type: JobType
    account_id: str
    status: JobStatus
    total_records: int
    total_pages: int
    page_size: int
    batch_size: int
    current_page: int
    completed_pages: int
    failed_pages: int
    records_processed: int
    counts: RecordCountsDTO
    query_params: Dict[str, Any] = Field(default_factory=dict)
    date_filter: DateFilter = DateFilter.NONE
    created_by: Optional[str] = None
    last_error: Optional[str] = None
    started_at: Optional[datetime] = None
    last_processed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class JobStatusDTO(BaseModel):
    """Progreso de un job (solo lectura)."""

    job: SyncJobDTO
    progress_percentage: float
    remaining_pages: int
    is_complete: bool
    is_running: bool = Field(..., description="Hay una invocacion con el job tomado")
    failed_page_numbers: List[int] = Field(
        default_factory=list,
        description="Paginas cuyo ultimo intento fallo (candidatas a reintento con page_start)"
    )


class JobListDTO(BaseModel):
    """Listado de jobs."""

    items: List[SyncJobDTO]
    count: int


class CleanupResultDTO(BaseModel):
    """Resultado de la limpieza de jobs viejos."""

    deleted: int
    days_old: int
    cutoff: datetime


class JobStatsDTO(BaseModel):
    """Estadisticas de jobs y ejecuciones de las ultimas 24 horas."""

    active_jobs: int
    completed_last_24h: int
    items_processed_last_24h: int
    executions_last_24h: int
    error_rate: float = Field(..., description="Porcentaje de ejecuciones fallidas o vencidas")

"""
DTOs del log de ejecuciones.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from app.shared.constants.sync_constants import ExecutionStatus, TriggerType


class ExecutionLogDTO(BaseModel):
    """Entrada del log de ejecuciones."""

    execution_id: str
    job_ref: Optional[str] = None
    job_name: str
    account_id: Optional[str] = None
    trigger_type: TriggerType
    trigger_source: Optional[str] = None
    api_source: Optional[str] = None
    status: ExecutionStatus
    start_time: datetime
    end_time: Optional[datetime] = None
    duration_ms: Optional[int] = None
    total_pages: int = 0
    items_processed: int = 0
    total_reads: int = 0
    total_writes: int = 0
    message: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    error_details: Optional[Dict[str, Any]] = None
    environment: Optional[str] = None
    version: Optional[str] = None

    class Config:
        """Configuración de Pydantic."""
        from_attributes = True


class ExecutionLogQueryDTO(BaseModel):
    """Filtros para consultar el log de ejecuciones."""

    account_id: Optional[str] = None
    job_ref: Optional[str] = None
    status: Optional[ExecutionStatus] = None
    start: Optional[datetime] = Field(None, description="start_time >= start")
    end: Optional[datetime] = Field(None, description="start_time < end")
    limit: int = Field(50, ge=1, le=200)
    cursor: Optional[str] = Field(None, description="Cursor opaco devuelto por la pagina anterior")


class ExecutionLogPageDTO(BaseModel):
    """Pagina de resultados del log (mas recientes primero)."""

    items: List[ExecutionLogDTO]
    next_cursor: Optional[str] = None
    count: int

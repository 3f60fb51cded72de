"""
Entidad de dominio: SyncJob (job de sincronizacion paginada).
"""
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from app.shared.constants.sync_constants import (
    DateFilter,
    JobStatus,
    JobType,
    RUNNABLE_STATUSES,
    TERMINAL_STATUSES,
)


@dataclass
class RecordCounts:
    """Contadores por registro de un job o de un batch."""

    new: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0

    @property
    def total(self) -> int:
        return self.new + self.updated + self.skipped + self.errors

    def add(self, other: "RecordCounts") -> None:
        self.new += other.new
        self.updated += other.updated
        self.skipped += other.skipped
        self.errors += other.errors

    def as_dict(self) -> Dict[str, int]:
        return {
            "new": self.new,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": self.errors,
        }


@dataclass
class SyncJob:
    """
    Entidad de dominio que representa un job de sincronizacion.

    Un job recorre `total_pages` paginas del marketplace a lo largo de varias
    invocaciones de `execute`, cada una limitada a un batch de paginas.
    """

    id: str
    job_type: JobType
    account_id: str
    status: JobStatus = JobStatus.INITIALIZED
    total_records: int = 0
    total_pages: int = 0
    page_size: int = 100
    batch_size: int = 10
    current_page: int = 0
    completed_pages: int = 0
    failed_pages: int = 0
    records_processed: int = 0
    counts: RecordCounts = field(default_factory=RecordCounts)
    query_params: Dict[str, Any] = field(default_factory=dict)
    date_filter: DateFilter = DateFilter.NONE
    created_by: Optional[str] = None
    last_error: Optional[str] = None
    version: int = 0
    lock_owner: Optional[str] = None
    locked_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    last_processed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        """Validaciones después de la inicialización."""
        if self.page_size <= 0:
            raise ValueError("El tamano de pagina debe ser mayor que cero")
        if self.current_page > self.total_pages:
            raise ValueError("current_page no puede superar total_pages")

    @staticmethod
    def pages_for(total_records: int, page_size: int) -> int:
        """Numero de paginas necesarias para `total_records` registros."""
        if total_records <= 0:
            return 0
        return math.ceil(total_records / page_size)

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def can_execute(self) -> bool:
        return self.status in RUNNABLE_STATUSES

    def page_range(self, batch_size: int, page_start: Optional[int] = None) -> tuple[int, int]:
        """
        Calcula el rango de paginas de un batch.

        Args:
            batch_size: Maximo de paginas a procesar
            page_start: Pagina inicial explicita (por defecto current_page + 1)

        Returns:
            tuple[int, int]: (start_page, end_page). Si end_page < start_page
            no hay paginas que procesar.
        """
        start_page = page_start if page_start is not None else self.current_page + 1
        end_page = min(start_page + batch_size - 1, self.total_pages)
        return start_page, end_page

    def progress_percentage(self) -> float:
        """
        Porcentaje de paginas completadas.

        Returns:
            float: completed_pages / total_pages * 100, redondeado a 2 decimales
        """
        if self.total_pages == 0:
            return 100.0 if self.status == JobStatus.COMPLETED else 0.0
        return round(self.completed_pages / self.total_pages * 100, 2)

    def remaining_pages(self) -> int:
        return max(0, self.total_pages - self.completed_pages)

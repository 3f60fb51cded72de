"""
Constantes del motor de sincronizacion con el marketplace.
"""
from enum import Enum


class JobType(str, Enum):
    """Tipos de recurso que se pueden sincronizar."""
    PRODUCTS = "products"
    SALES = "sales"


class JobStatus(str, Enum):
    """Estados posibles de un job de sincronizacion."""
    INITIALIZED = "initialized"
    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ExecutionStatus(str, Enum):
    """Estados de una entrada del log de ejecuciones."""
    RUNNING = "running"
    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


class TriggerType(str, Enum):
    """Origen de una invocacion."""
    MANUAL = "manual"
    SCHEDULED = "scheduled"


class StopReason(str, Enum):
    """Motivo por el que un batch termino antes de su ultima pagina."""
    PAUSED = "paused"
    CANCELLED = "cancelled"


class PageStatus(str, Enum):
    """Resultado registrado de una pagina de un job."""
    COMPLETED = "completed"
    FAILED = "failed"


class DateFilter(str, Enum):
    """Ventanas de fecha para sincronizar ventas."""
    NONE = "none"
    SIX_MONTHS = "6_months"
    THREE_MONTHS = "3_months"
    ONE_MONTH = "1_month"
    CUSTOM = "custom"


# Estados desde los que `execute` puede reclamar el job
RUNNABLE_STATUSES = (JobStatus.INITIALIZED, JobStatus.IN_PROGRESS, JobStatus.PAUSED)

# Estados terminales: no admiten mas ejecuciones
TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)

# Estados considerados "activos" para listados y estadisticas
ACTIVE_STATUSES = (JobStatus.INITIALIZED, JobStatus.IN_PROGRESS, JobStatus.PAUSED)

# Tolerancia para comparar campos numericos (precios, stock)
NUMERIC_TOLERANCE = 0.01

# Nombre de la fuente que se guarda en cada documento
SOURCE_NAME = "takealot_api"

# Meses hacia atras de cada ventana relativa de ventas
DATE_FILTER_MONTHS = {
    DateFilter.SIX_MONTHS: 6,
    DateFilter.THREE_MONTHS: 3,
    DateFilter.ONE_MONTH: 1,
}

# Filtros de fecha que acepta /v2/sales (formato YYYY-MM-DD)
DATE_START_PARAM = "created_date_start"
DATE_END_PARAM = "created_date_end"

"""
Servicios de aplicacion.

Contiene las etapas del pipeline de sincronizacion que no pertenecen
a un caso de uso especifico.
"""
from app.application.services.identity_resolver import IdentityResolver, content_fingerprint
from app.application.services.merge_engine import (
    MergeEngine,
    MergePlan,
    PlannedWrite,
    WriteOutcome,
)
from app.application.services.batch_writer import BatchWriter, WriteSummary
from app.application.services.execution_logger import (
    ExecutionLogger,
    ExecutionMeta,
    ExecutionMetrics,
)

__all__ = [
    # Identidad
    "IdentityResolver",
    "content_fingerprint",
    # Merge y escritura
    "MergeEngine",
    "MergePlan",
    "PlannedWrite",
    "WriteOutcome",
    "BatchWriter",
    "WriteSummary",
    # Log de ejecuciones
    "ExecutionLogger",
    "ExecutionMeta",
    "ExecutionMetrics",
]

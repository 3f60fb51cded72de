"""
Data Transfer Objects (DTOs) para la capa de aplicacion.
"""
from .sync_dto import (
    InitializeJobDTO,
    InitializeJobResponseDTO,
    ExecuteBatchDTO,
    RecordCountsDTO,
    BatchResultDTO,
    SyncJobDTO,
    JobStatusDTO,
    JobListDTO,
    CleanupResultDTO,
    JobStatsDTO,
)
from .execution_log_dto import (
    ExecutionLogDTO,
    ExecutionLogQueryDTO,
    ExecutionLogPageDTO,
)
from .entity_dto import (
    EntityStatsDTO,
    DeduplicateRequestDTO,
    DuplicateGroupDTO,
    DeduplicationResultDTO,
)

__all__ = [
    "InitializeJobDTO",
    "InitializeJobResponseDTO",
    "ExecuteBatchDTO",
    "RecordCountsDTO",
    "BatchResultDTO",
    "SyncJobDTO",
    "JobStatusDTO",
    "JobListDTO",
    "CleanupResultDTO",
    "JobStatsDTO",
    "ExecutionLogDTO",
    "ExecutionLogQueryDTO",
    "ExecutionLogPageDTO",
    "EntityStatsDTO",
    "DeduplicateRequestDTO",
    "DuplicateGroupDTO",
    "DeduplicationResultDTO",
]

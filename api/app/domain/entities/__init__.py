"""
Entidades del dominio.
"""
from app.domain.entities.sync_job import RecordCounts, SyncJob
from app.domain.entities.marketplace_record import (
    IdentityKey,
    RawRecord,
    normalize_key_value
)

__all__ = [
    "RecordCounts",
    "SyncJob",
    "IdentityKey",
    "RawRecord",
    "normalize_key_value"
]

"""
Casos de uso de la aplicacion.
"""
from .sync_job_use_cases import SyncEngineConfig, SyncJobUseCases
from .entity_maintenance_use_cases import EntityMaintenanceUseCases

__all__ = ["SyncEngineConfig", "SyncJobUseCases", "EntityMaintenanceUseCases"]

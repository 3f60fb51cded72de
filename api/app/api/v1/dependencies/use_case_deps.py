"""
Dependencias para inyeccion de casos de uso.
"""
from functools import lru_cache

from fastapi import Depends
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.api.v1.dependencies.repository_deps import (
    get_document_store,
    get_proxy_pool,
    get_session_factory,
)
from app.application.services.execution_logger import ExecutionLogger
from app.application.use_cases.entity_maintenance_use_cases import EntityMaintenanceUseCases
from app.application.use_cases.sync_job_use_cases import SyncEngineConfig, SyncJobUseCases
from app.core.config import settings
from app.domain.repositories.document_store import IDocumentStore
from app.infrastructure.external.marketplace.marketplace_client import build_from_settings


@lru_cache(maxsize=1)
def get_engine_config() -> SyncEngineConfig:
    """
    Config del motor (layout de colecciones incluido), resuelta una vez.

    Raises:
        SyncConfigError: Si STORE_LAYOUT_VERSION no es valida
    """
    return SyncEngineConfig.from_settings(settings)


def get_execution_logger(
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> ExecutionLogger:
    """
    Dependencia para obtener el logger de ejecuciones.

    Returns:
        ExecutionLogger: Logger persistente de invocaciones
    """
    return ExecutionLogger(
        session_factory,
        environment=settings.ENVIRONMENT,
        version=settings.APP_VERSION,
    )


def _build_fetcher(account_id: str):
    return build_from_settings(account_id, settings, proxy_provider=get_proxy_pool())


def get_sync_job_use_cases(
    session_factory: async_sessionmaker = Depends(get_session_factory),
    store: IDocumentStore = Depends(get_document_store),
    execution_logger: ExecutionLogger = Depends(get_execution_logger),
) -> SyncJobUseCases:
    """
    Dependencia para obtener los casos de uso de jobs de sincronizacion.

    Args:
        session_factory: Fabrica de sesiones
        store: Store de documentos
        execution_logger: Logger de ejecuciones

    Returns:
        SyncJobUseCases: Controlador de jobs
    """
    return SyncJobUseCases(
        session_factory=session_factory,
        store=store,
        fetcher_factory=_build_fetcher,
        execution_logger=execution_logger,
        config=get_engine_config(),
    )


def get_entity_maintenance_use_cases(
    store: IDocumentStore = Depends(get_document_store),
) -> EntityMaintenanceUseCases:
    """Dependencia para obtener los casos de uso de mantenimiento de entidades."""
    return EntityMaintenanceUseCases(store, get_engine_config().collections)

"""
Dependencias para inyección de repositorios y colaboradores de infraestructura.
"""
from functools import lru_cache
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.config import parse_list_setting, settings
from app.domain.repositories.document_store import IDocumentStore
from app.infrastructure.database.session import AsyncSessionLocal
from app.infrastructure.external.marketplace.proxy_pool import StaticProxyPool, build_proxy_pool
from app.infrastructure.external.marketplace.resource_config import indexed_fields
from app.infrastructure.repositories.document_store_repository import SqlDocumentStore


def get_session_factory() -> async_sessionmaker:
    """
    Dependencia para obtener la fabrica de sesiones.

    El motor de sync abre sesiones cortas por operacion en vez de usar
    una sesion por request.
    """
    return AsyncSessionLocal


def get_document_store() -> IDocumentStore:
    """
    Dependencia para obtener el store de documentos.

    Returns:
        IDocumentStore: Store SQL con las claves de identidad indexadas
    """
    return SqlDocumentStore(
        AsyncSessionLocal,
        indexed_fields=indexed_fields(),
        max_batch_size=settings.STORE_MAX_BATCH_SIZE,
    )


@lru_cache(maxsize=1)
def get_proxy_pool() -> Optional[StaticProxyPool]:
    """
    Pool de proxies compartido entre requests (acumula estadisticas).

    Returns:
        Optional[StaticProxyPool]: None si PROXY_URLS esta vacio
    """
    return build_proxy_pool(parse_list_setting(settings.PROXY_URLS))

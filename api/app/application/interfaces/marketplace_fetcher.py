"""
Interfaz del fetcher paginado del marketplace.

Este contrato existe para:
- Que el controlador de jobs no dependa de requests directamente.
- Facilitar tests sin HTTP (fetchers fake con paginas en memoria).
"""

from __future__ import annotations

from typing import Any, Callable, Mapping, Optional, Protocol

from app.infrastructure.external.marketplace.resource_config import ResourceConfig
from app.infrastructure.external.marketplace.types import PageResponse, PaginationSummary


class MarketplaceFetcher(Protocol):
    """
    Descarga paginas de un recurso para una cuenta.

    Implementaciones:
    - MarketplaceClient (requests, sincrono).
    - Fake para tests.
    """

    def fetch_page(
        self,
        resource: ResourceConfig,
        page_number: int,
        page_size: int,
        query_params: Optional[Mapping[str, Any]] = None,
    ) -> PageResponse:
        """Descarga la pagina `page_number` (base 1)."""
        ...

    def probe_total(
        self,
        resource: ResourceConfig,
        query_params: Optional[Mapping[str, Any]] = None,
    ) -> PaginationSummary:
        """Lee el total de registros con una request minima."""
        ...

    def close(self) -> None:
        """Libera la conexion HTTP del fetcher."""
        ...


# Construye un fetcher para un account_id
FetcherFactory = Callable[[str], MarketplaceFetcher]

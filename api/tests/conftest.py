"""
Configuración de fixtures para pytest.
"""
import time
from typing import Any, AsyncGenerator, Callable, Mapping, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.application.services.execution_logger import ExecutionLogger
from app.application.use_cases.sync_job_use_cases import SyncEngineConfig, SyncJobUseCases
from app.infrastructure.database.session import Base, build_session_factory
from app.infrastructure.external.marketplace.resource_config import indexed_fields, resolve_collections
from app.infrastructure.external.marketplace.types import PageResponse, PaginationSummary
from app.infrastructure.repositories.document_store_repository import SqlDocumentStore


class FakeFetcher:
    """
    Fetcher en memoria.

    `pages` mapea numero de pagina -> lista de registros, o una excepcion que
    se lanza al pedir esa pagina.
    """

    def __init__(
        self,
        total_records: int,
        pages: Optional[Mapping[int, Any]] = None,
        probe_error: Optional[Exception] = None,
        delay_s: float = 0.0,
    ):
        self.total_records = total_records
        self.pages = dict(pages or {})
        self.probe_error = probe_error
        self.delay_s = delay_s
        self.calls: list[tuple[int, int, dict]] = []
        self.probe_calls: list[dict] = []
        self.closed = 0

    def probe_total(self, resource, query_params=None) -> PaginationSummary:
        self.probe_calls.append(dict(query_params or {}))
        if self.probe_error is not None:
            raise self.probe_error
        return PaginationSummary(total_records=self.total_records, page_size=1)

    def fetch_page(self, resource, page_number, page_size, query_params=None) -> PageResponse:
        self.calls.append((page_number, page_size, dict(query_params or {})))
        if self.delay_s:
            time.sleep(self.delay_s)
        item = self.pages.get(page_number, [])
        if isinstance(item, Exception):
            raise item
        return PageResponse(
            page_number=page_number,
            records=list(item),
            summary=PaginationSummary(total_records=self.total_records, page_size=page_size),
        )

    def close(self) -> None:
        self.closed += 1

    @property
    def fetched_pages(self) -> list[int]:
        return [page for page, _, _ in self.calls]


def make_products(start: int, count: int, **overrides: Any) -> list[dict]:
    """Productos con claves tsin_id/offer_id/sku consecutivas."""
    return [
        {
            "tsin_id": i,
            "offer_id": 50000 + i,
            "sku": f"SKU-{i}",
            "title": f"Producto {i}",
            "selling_price": 100.0,
            "quantity_available": 5,
            **overrides,
        }
        for i in range(start, start + count)
    ]


@pytest.fixture(scope="function")
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """
    Fabrica de sesiones sobre un SQLite en archivo (una base por test).
    En archivo y no en memoria para que varias sesiones vean los mismos datos.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield build_session_factory(engine)

    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Sesión de base de datos para tests de repositorios."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(session_factory) -> SqlDocumentStore:
    return SqlDocumentStore(session_factory, indexed_fields=indexed_fields(), max_batch_size=500)


@pytest.fixture
def execution_logger(session_factory) -> ExecutionLogger:
    return ExecutionLogger(session_factory, environment="test", version="test")


@pytest.fixture
def engine_config() -> SyncEngineConfig:
    return SyncEngineConfig(collections=resolve_collections("v2"))


@pytest.fixture
def fake_fetcher_cls():
    return FakeFetcher


@pytest.fixture
def product_factory():
    return make_products


@pytest.fixture
def build_use_cases(session_factory, store, execution_logger, engine_config) -> Callable[..., SyncJobUseCases]:
    """Construye el controlador de jobs con un fetcher fake."""

    def _build(fetcher, *, config: Optional[SyncEngineConfig] = None, clock=None, batch_writer=None):
        kwargs = {"clock": clock} if clock is not None else {}
        return SyncJobUseCases(
            session_factory=session_factory,
            store=store,
            fetcher_factory=lambda account_id: fetcher,
            execution_logger=execution_logger,
            config=config or engine_config,
            batch_writer=batch_writer,
            **kwargs,
        )

    return _build

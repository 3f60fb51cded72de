"""
Tests del contrato HTTP de los endpoints de sincronizacion.

Verifica:
- Rutas, codigos de estado y serializacion de los DTOs.
- Errores del motor y de dominio con el formato {"error","message","details"}.
- Validacion de parametros (422).
"""
from __future__ import annotations

from datetime import date, datetime, timezone
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from app.api.v1.dependencies.use_case_deps import (
    get_entity_maintenance_use_cases,
    get_execution_logger,
    get_sync_job_use_cases,
)
from app.application.dto.entity_dto import DeduplicationResultDTO
from app.application.dto.execution_log_dto import ExecutionLogPageDTO
from app.application.dto.sync_dto import (
    BatchResultDTO,
    CleanupResultDTO,
    InitializeJobResponseDTO,
    JobListDTO,
    JobStatsDTO,
    RecordCountsDTO,
)
from app.shared.constants.sync_constants import DateFilter, ExecutionStatus, JobStatus, JobType
from app.shared.exceptions.domain import InvalidJobStateException, SyncJobNotFoundException
from app.shared.exceptions.sync import AuthError, ConcurrentExecutionError, SyncTimeoutError

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _init_response() -> InitializeJobResponseDTO:
    return InitializeJobResponseDTO(
        job_id="job-1",
        job_type=JobType.PRODUCTS,
        account_id="seller-1",
        status=JobStatus.INITIALIZED,
        total_records=250,
        total_pages=3,
        page_size=100,
        batch_size=10,
        estimated_completion=NOW,
    )


def _batch_result() -> BatchResultDTO:
    return BatchResultDTO(
        job_id="job-1",
        status=JobStatus.COMPLETED,
        start_page=1,
        end_page=3,
        pages_processed=3,
        failed_pages=0,
        records_processed=250,
        counts=RecordCountsDTO(new=250),
        is_complete=True,
        has_more=False,
    )


@pytest.fixture
def mock_use_cases() -> AsyncMock:
    uc = AsyncMock()
    uc.initialize = AsyncMock(return_value=_init_response())
    uc.execute = AsyncMock(return_value=_batch_result())
    uc.list_jobs = AsyncMock(return_value=JobListDTO(items=[], count=0))
    uc.cleanup_old_jobs = AsyncMock(return_value=CleanupResultDTO(deleted=2, days_old=30, cutoff=NOW))
    uc.job_stats = AsyncMock(return_value=JobStatsDTO(
        active_jobs=2,
        completed_last_24h=5,
        items_processed_last_24h=1200,
        executions_last_24h=10,
        error_rate=10.0,
    ))
    return uc


@pytest.fixture
def mock_logger() -> AsyncMock:
    execution_logger = AsyncMock()
    execution_logger.query = AsyncMock(return_value=ExecutionLogPageDTO(items=[], count=0))
    execution_logger.get_execution = AsyncMock(return_value=None)
    return execution_logger


@pytest.fixture
def mock_maintenance() -> AsyncMock:
    maintenance = AsyncMock()
    maintenance.remove_duplicates = AsyncMock(return_value=DeduplicationResultDTO(
        job_type=JobType.SALES,
        account_id="seller-1",
        collection="marketplace_sales",
        dry_run=True,
        scanned=10,
        duplicate_groups=1,
        duplicates_found=1,
        deleted=0,
    ))
    return maintenance


@pytest.fixture
def app_with_mock(mock_use_cases: AsyncMock, mock_logger: AsyncMock, mock_maintenance: AsyncMock):
    """Crea la app FastAPI con los casos de uso mockeados via dependency_overrides."""
    from main import create_application
    app = create_application()
    app.dependency_overrides[get_sync_job_use_cases] = lambda: mock_use_cases
    app.dependency_overrides[get_execution_logger] = lambda: mock_logger
    app.dependency_overrides[get_entity_maintenance_use_cases] = lambda: mock_maintenance
    yield app
    app.dependency_overrides.clear()


async def _request(app, method: str, url: str, **kwargs):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        return await client.request(method, url, **kwargs)


# ============================================================================
# Jobs
# ============================================================================

@pytest.mark.asyncio
async def test_initialize_returns_201(app_with_mock, mock_use_cases: AsyncMock) -> None:
    """POST /jobs/initialize crea el job y devuelve paginas y estimacion."""
    response = await _request(
        app_with_mock,
        "POST",
        "/api/v1/sync/jobs/initialize",
        json={"job_type": "products", "account_id": "seller-1", "query_params": {"status": "buyable"}},
    )

    assert response.status_code == 201
    data = response.json()
    assert data["job_id"] == "job-1"
    assert data["total_pages"] == 3

    dto = mock_use_cases.initialize.call_args[0][0]
    assert dto.job_type == JobType.PRODUCTS
    assert dto.query_params == {"status": "buyable"}


@pytest.mark.asyncio
async def test_initialize_rejects_unknown_job_type(app_with_mock) -> None:
    response = await _request(
        app_with_mock, "POST", "/api/v1/sync/jobs/initialize", json={"job_type": "returns", "account_id": "s"}
    )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_initialize_rejects_date_filter_for_products(app_with_mock, mock_use_cases: AsyncMock) -> None:
    """El filtro de fecha solo aplica a ventas."""
    response = await _request(
        app_with_mock,
        "POST",
        "/api/v1/sync/jobs/initialize",
        json={"job_type": "products", "account_id": "seller-1", "date_filter": "3_months"},
    )

    assert response.status_code == 422
    mock_use_cases.initialize.assert_not_awaited()


@pytest.mark.asyncio
async def test_initialize_parses_custom_date_filter(app_with_mock, mock_use_cases: AsyncMock) -> None:
    response = await _request(
        app_with_mock,
        "POST",
        "/api/v1/sync/jobs/initialize",
        json={
            "job_type": "sales",
            "account_id": "seller-1",
            "date_filter": "custom",
            "date_start": "2026-01-01",
            "date_end": "2026-02-15",
        },
    )

    assert response.status_code == 201
    assert response.json()["resumed"] is False
    dto = mock_use_cases.initialize.call_args[0][0]
    assert dto.date_filter == DateFilter.CUSTOM
    assert dto.date_start == date(2026, 1, 1)
    assert dto.date_end == date(2026, 2, 15)


@pytest.mark.asyncio
async def test_execute_returns_batch_result(app_with_mock, mock_use_cases: AsyncMock) -> None:
    response = await _request(
        app_with_mock, "POST", "/api/v1/sync/jobs/execute", json={"job_id": "job-1", "batch_size": 5}
    )

    assert response.status_code == 200
    data = response.json()
    assert data["is_complete"] is True
    assert data["counts"]["new"] == 250
    assert mock_use_cases.execute.call_args[0][0].batch_size == 5


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error, status_code, error_code",
    [
        (SyncJobNotFoundException("job-1"), 404, "SYNC_JOB_NOT_FOUND"),
        (InvalidJobStateException("job-1", "completed", "execute"), 409, "INVALID_JOB_STATE"),
        (ConcurrentExecutionError("job-1"), 409, "JOB_ALREADY_RUNNING"),
        (AuthError(401), 502, "MARKETPLACE_AUTH_ERROR"),
        (SyncTimeoutError("job-1", 1800, 4), 504, "SYNC_TIMEOUT"),
    ],
)
async def test_execute_errors_use_error_envelope(
    app_with_mock, mock_use_cases: AsyncMock, error, status_code, error_code
) -> None:
    """Los errores del motor se devuelven con el formato estandar."""
    mock_use_cases.execute.side_effect = error

    response = await _request(app_with_mock, "POST", "/api/v1/sync/jobs/execute", json={"job_id": "job-1"})

    assert response.status_code == status_code
    body = response.json()
    assert body["error"] == error_code
    assert body["message"] == error.message
    assert "details" in body


@pytest.mark.asyncio
async def test_list_jobs_passes_filters(app_with_mock, mock_use_cases: AsyncMock) -> None:
    response = await _request(
        app_with_mock, "GET", "/api/v1/sync/jobs", params={"status": "paused", "account_id": "s", "limit": 5}
    )

    assert response.status_code == 200
    mock_use_cases.list_jobs.assert_awaited_once_with(status=JobStatus.PAUSED, account_id="s", limit=5)


@pytest.mark.asyncio
async def test_cleanup_validates_days_old(app_with_mock, mock_use_cases: AsyncMock) -> None:
    ok = await _request(app_with_mock, "POST", "/api/v1/sync/jobs/cleanup", params={"days_old": 30})
    invalid = await _request(app_with_mock, "POST", "/api/v1/sync/jobs/cleanup", params={"days_old": 0})

    assert ok.status_code == 200
    assert ok.json()["deleted"] == 2
    mock_use_cases.cleanup_old_jobs.assert_awaited_once_with(30)
    assert invalid.status_code == 422


@pytest.mark.asyncio
async def test_job_stats_route(app_with_mock, mock_use_cases: AsyncMock) -> None:
    """GET /jobs/stats devuelve las metricas de las ultimas 24 horas."""
    response = await _request(app_with_mock, "GET", "/api/v1/sync/jobs/stats")

    assert response.status_code == 200
    assert response.json()["error_rate"] == 10.0
    mock_use_cases.job_stats.assert_awaited_once()


# ============================================================================
# Ejecuciones y entidades
# ============================================================================

@pytest.mark.asyncio
async def test_list_executions_builds_query(app_with_mock, mock_logger: AsyncMock) -> None:
    response = await _request(
        app_with_mock,
        "GET",
        "/api/v1/sync/executions",
        params={"account_id": "s", "status": "timeout", "limit": 10, "cursor": "abc"},
    )

    assert response.status_code == 200
    filters = mock_logger.query.call_args[0][0]
    assert filters.account_id == "s"
    assert filters.status == ExecutionStatus.TIMEOUT
    assert filters.limit == 10
    assert filters.cursor == "abc"


@pytest.mark.asyncio
async def test_unknown_execution_returns_404(app_with_mock) -> None:
    response = await _request(app_with_mock, "GET", "/api/v1/sync/executions/no-existe")

    assert response.status_code == 404
    assert response.json()["error"] == "ENTITY_NOT_FOUND"


@pytest.mark.asyncio
async def test_deduplicate_defaults_to_dry_run(app_with_mock, mock_maintenance: AsyncMock) -> None:
    response = await _request(
        app_with_mock, "POST", "/api/v1/sync/entities/deduplicate", json={"job_type": "sales", "account_id": "seller-1"}
    )

    assert response.status_code == 200
    assert response.json()["duplicates_found"] == 1
    mock_maintenance.remove_duplicates.assert_awaited_once_with(JobType.SALES, "seller-1", dry_run=True)


# ============================================================================
# Errores no controlados y health
# ============================================================================

@pytest.mark.asyncio
async def test_unexpected_error_returns_500_envelope(app_with_mock, mock_use_cases: AsyncMock) -> None:
    """Un error fuera del motor se devuelve como 500 con el mismo formato de error."""
    mock_use_cases.status.side_effect = RuntimeError("conexion perdida {sin formato}")

    response = await _request(app_with_mock, "GET", "/api/v1/sync/jobs/job-1/status")

    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "INTERNAL_SERVER_ERROR"
    assert body["details"] == {"method": "GET", "path": "/api/v1/sync/jobs/job-1/status"}
    assert "conexion perdida" not in body["message"]


@pytest.mark.asyncio
async def test_health_reports_store_layout(app_with_mock) -> None:
    from app.core.config import settings

    response = await _request(app_with_mock, "GET", "/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["store_layout"] == settings.STORE_LAYOUT_VERSION
    assert set(data["collections"]) == {"products", "sales"}

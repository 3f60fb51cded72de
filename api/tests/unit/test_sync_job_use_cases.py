"""
Tests del controlador de jobs de sincronizacion.

Verifica, contra SQLite y un fetcher en memoria:
- initialize calcula paginas y estimacion.
- execute procesa batches, persiste progreso y completa el job.
- errores por pagina, AuthError, timeout, pausa/cancelacion y concurrencia.
"""
from __future__ import annotations

import asyncio
from datetime import date, timedelta

import pytest
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func, select

from app.application.dto.execution_log_dto import ExecutionLogQueryDTO
from app.application.dto.sync_dto import ExecuteBatchDTO, InitializeJobDTO
from app.application.services.batch_writer import BatchWriter
from app.domain.repositories.document_store import WriteOp, WriteOpType
from app.infrastructure.database.models import SyncJobPageModel
from app.infrastructure.repositories.sync_job_repository import SyncJobRepository
from app.shared.constants.sync_constants import (
    DateFilter,
    ExecutionStatus,
    JobStatus,
    JobType,
    StopReason,
    TriggerType,
)
from app.shared.exceptions.domain import (
    InvalidJobStateException,
    SyncJobNotFoundException,
    ValidationException,
)
from app.shared.exceptions.sync import (
    AuthError,
    ConcurrentExecutionError,
    DataShapeError,
    RateLimitError,
    StorageWriteError,
    SyncConfigError,
    SyncTimeoutError,
    TransientNetworkError,
)
from app.shared.utils.datetime_utils import DateTimeUtils


COLLECTION = "marketplace_products"


def _init_dto(**overrides) -> InitializeJobDTO:
    data = {"job_type": JobType.PRODUCTS, "account_id": "seller-1", "page_size": 100, "batch_size": 10}
    data.update(overrides)
    return InitializeJobDTO(**data)


def _three_pages(product_factory) -> dict:
    return {
        1: product_factory(1, 100),
        2: product_factory(101, 100),
        3: product_factory(201, 50),
    }


# ============================================================================
# initialize
# ============================================================================

@pytest.mark.asyncio
async def test_initialize_computes_pages_and_estimate(build_use_cases, fake_fetcher_cls) -> None:
    """Verifica que 250 registros con page_size 100 producen 3 paginas y 15 s estimados."""
    fetcher = fake_fetcher_cls(total_records=250)
    use_cases = build_use_cases(fetcher)

    before = DateTimeUtils.now_utc()
    result = await use_cases.initialize(_init_dto(query_params={"status": "buyable"}))

    assert result.total_records == 250
    assert result.total_pages == 3
    assert result.status == JobStatus.INITIALIZED
    assert result.estimated_completion >= before + timedelta(seconds=15)
    assert result.estimated_completion <= DateTimeUtils.now_utc() + timedelta(seconds=15)
    assert fetcher.probe_calls == [{"status": "buyable"}]

    status = await use_cases.status(result.job_id)
    assert status.job.current_page == 0
    assert status.job.query_params == {"status": "buyable"}
    assert status.progress_percentage == 0.0


@pytest.mark.asyncio
async def test_initialize_with_auth_error_creates_no_job(
    build_use_cases, fake_fetcher_cls, execution_logger
) -> None:
    """Verifica que un 401 en el probe se propaga y queda registrado como failure."""
    fetcher = fake_fetcher_cls(total_records=0, probe_error=AuthError(401))
    use_cases = build_use_cases(fetcher)

    with pytest.raises(AuthError):
        await use_cases.initialize(_init_dto())

    jobs = await use_cases.list_jobs()
    assert jobs.count == 0

    page = await execution_logger.query(ExecutionLogQueryDTO())
    assert page.items[0].status == ExecutionStatus.FAILURE
    assert page.items[0].error_details["error_code"] == "MARKETPLACE_AUTH_ERROR"


@pytest.mark.asyncio
async def test_initialize_resumes_active_job_with_same_params(build_use_cases, fake_fetcher_cls) -> None:
    """Verifica que un segundo initialize equivalente devuelve el job activo sin nuevo probe."""
    fetcher = fake_fetcher_cls(total_records=250)
    use_cases = build_use_cases(fetcher)

    first = await use_cases.initialize(_init_dto(query_params={"status": "buyable"}))
    second = await use_cases.initialize(_init_dto(query_params={"status": "buyable"}))

    assert second.resumed is True
    assert second.job_id == first.job_id
    assert second.total_pages == 3
    assert len(fetcher.probe_calls) == 1
    assert (await use_cases.list_jobs()).count == 1


@pytest.mark.asyncio
async def test_initialize_with_other_params_creates_new_job(build_use_cases, fake_fetcher_cls) -> None:
    """Verifica que otros filtros, otra cuenta o un job terminado no se reanudan."""
    use_cases = build_use_cases(fake_fetcher_cls(total_records=100))

    first = await use_cases.initialize(_init_dto(query_params={"status": "buyable"}))
    other_params = await use_cases.initialize(_init_dto(query_params={"status": "disabled"}))
    other_account = await use_cases.initialize(_init_dto(account_id="seller-2", query_params={"status": "buyable"}))
    await use_cases.cancel(first.job_id)
    after_cancel = await use_cases.initialize(_init_dto(query_params={"status": "buyable"}))

    assert other_params.resumed is False
    assert other_account.resumed is False
    assert after_cancel.resumed is False
    assert len({first.job_id, other_params.job_id, other_account.job_id, after_cancel.job_id}) == 4


@pytest.mark.asyncio
async def test_resumed_initialize_is_logged_as_success(
    build_use_cases, fake_fetcher_cls, execution_logger
) -> None:
    """Verifica que la reanudacion queda en el log de ejecuciones apuntando al job existente."""
    use_cases = build_use_cases(fake_fetcher_cls(total_records=100))
    job = await use_cases.initialize(_init_dto())

    resumed = await use_cases.initialize(_init_dto())

    entry = await execution_logger.get_execution(resumed.execution_id)
    assert entry.status == ExecutionStatus.SUCCESS
    assert entry.job_ref == job.job_id
    assert "reanudado" in entry.message


@pytest.mark.asyncio
async def test_initialize_sales_with_relative_date_filter(build_use_cases, fake_fetcher_cls) -> None:
    """Verifica que 3_months se traduce a created_date_start/created_date_end en probe y paginas."""
    fetcher = fake_fetcher_cls(total_records=10, pages={1: [{"order_id": 1, "order_item_id": 11}]})
    use_cases = build_use_cases(fetcher)
    today = DateTimeUtils.now_utc().date()
    expected = {
        "created_date_start": DateTimeUtils.months_ago(3, today).isoformat(),
        "created_date_end": today.isoformat(),
    }

    job = await use_cases.initialize(
        _init_dto(job_type=JobType.SALES, date_filter=DateFilter.THREE_MONTHS)
    )
    await use_cases.execute(ExecuteBatchDTO(job_id=job.job_id))

    assert job.date_filter == DateFilter.THREE_MONTHS
    assert job.query_params == expected
    assert fetcher.probe_calls == [expected]
    assert [params for _, _, params in fetcher.calls] == [expected]

    status = await use_cases.status(job.job_id)
    assert status.job.date_filter == DateFilter.THREE_MONTHS


@pytest.mark.asyncio
async def test_initialize_sales_with_custom_dates(build_use_cases, fake_fetcher_cls) -> None:
    """Verifica que custom usa date_start/date_end tal cual en formato YYYY-MM-DD."""
    fetcher = fake_fetcher_cls(total_records=0)
    use_cases = build_use_cases(fetcher)

    job = await use_cases.initialize(_init_dto(
        job_type=JobType.SALES,
        date_filter=DateFilter.CUSTOM,
        date_start=date(2026, 1, 15),
        date_end=date(2026, 3, 31),
        query_params={"created_date_start": "2020-01-01"},
    ))

    assert job.query_params == {"created_date_start": "2026-01-15", "created_date_end": "2026-03-31"}
    assert fetcher.probe_calls == [job.query_params]


@pytest.mark.parametrize(
    "overrides",
    [
        {"job_type": JobType.PRODUCTS, "date_filter": DateFilter.ONE_MONTH},
        {"job_type": JobType.SALES, "date_filter": DateFilter.CUSTOM},
        {"job_type": JobType.SALES, "date_filter": DateFilter.CUSTOM,
         "date_start": date(2026, 3, 1), "date_end": date(2026, 1, 1)},
        {"job_type": JobType.SALES, "date_start": date(2026, 3, 1)},
    ],
)
def test_invalid_date_filter_combinations_are_rejected(overrides) -> None:
    """Verifica que el filtro de fecha solo se admite para ventas y custom exige date_start."""
    with pytest.raises(PydanticValidationError):
        _init_dto(**overrides)


@pytest.mark.asyncio
async def test_fetcher_is_closed_after_initialize_and_execute(
    build_use_cases, fake_fetcher_cls, product_factory
) -> None:
    """Verifica que cada fetcher construido se cierra al terminar la invocacion, falle o no."""
    fetcher = fake_fetcher_cls(total_records=100, pages={1: AuthError(401)})
    use_cases = build_use_cases(fetcher)

    job = await use_cases.initialize(_init_dto())
    assert fetcher.closed == 1

    with pytest.raises(AuthError):
        await use_cases.execute(ExecuteBatchDTO(job_id=job.job_id))
    assert fetcher.closed == 2

    failing = fake_fetcher_cls(total_records=0, probe_error=AuthError(401))
    with pytest.raises(AuthError):
        await build_use_cases(failing).initialize(_init_dto(account_id="seller-2"))
    assert failing.closed == 1


# ============================================================================
# execute
# ============================================================================

@pytest.mark.asyncio
async def test_execute_full_sync_of_250_records(build_use_cases, fake_fetcher_cls, product_factory, store) -> None:
    """Verifica el escenario completo: 3 paginas, 250 altas y job completed."""
    fetcher = fake_fetcher_cls(total_records=250, pages=_three_pages(product_factory))
    use_cases = build_use_cases(fetcher)
    job = await use_cases.initialize(_init_dto())

    result = await use_cases.execute(ExecuteBatchDTO(job_id=job.job_id, batch_size=10))

    assert fetcher.fetched_pages == [1, 2, 3]
    assert result.start_page == 1
    assert result.end_page == 3
    assert result.pages_processed == 3
    assert result.failed_pages == 0
    assert result.records_processed == 250
    assert result.counts.new == 250
    assert result.is_complete is True
    assert result.has_more is False
    assert result.next_page is None

    status = await use_cases.status(job.job_id)
    assert status.job.status == JobStatus.COMPLETED
    assert status.job.current_page == 3
    assert status.job.completed_pages == 3
    assert status.progress_percentage == 100.0
    assert status.is_running is False
    assert await store.count(COLLECTION, account_id="seller-1") == 250


@pytest.mark.asyncio
async def test_execute_processes_bounded_batches_and_resumes(
    build_use_cases, fake_fetcher_cls, product_factory
) -> None:
    """Verifica que cada invocacion procesa como maximo batch_size paginas y retoma."""
    fetcher = fake_fetcher_cls(total_records=250, pages=_three_pages(product_factory))
    use_cases = build_use_cases(fetcher)
    job = await use_cases.initialize(_init_dto())

    first = await use_cases.execute(ExecuteBatchDTO(job_id=job.job_id, batch_size=2))
    assert (first.start_page, first.end_page) == (1, 2)
    assert first.has_more is True
    assert first.next_page == 3
    assert first.status == JobStatus.IN_PROGRESS

    second = await use_cases.execute(ExecuteBatchDTO(job_id=job.job_id, batch_size=2))
    assert (second.start_page, second.end_page) == (3, 3)
    assert second.is_complete is True
    assert fetcher.fetched_pages == [1, 2, 3]

    status = await use_cases.status(job.job_id)
    counts = status.job.counts
    assert counts.new + counts.updated + counts.skipped + counts.errors == status.job.records_processed == 250


@pytest.mark.asyncio
async def test_execute_forwards_query_params_on_every_page(
    build_use_cases, fake_fetcher_cls, product_factory
) -> None:
    """Verifica que los filtros del job viajan en cada pagina."""
    fetcher = fake_fetcher_cls(total_records=150, pages={1: product_factory(1, 100), 2: product_factory(101, 50)})
    use_cases = build_use_cases(fetcher)
    job = await use_cases.initialize(_init_dto(query_params={"created_date_start": "2026-01-01"}))

    await use_cases.execute(ExecuteBatchDTO(job_id=job.job_id))

    assert [params for _, _, params in fetcher.calls] == [{"created_date_start": "2026-01-01"}] * 2
    assert {size for _, size, _ in fetcher.calls} == {100}


@pytest.mark.asyncio
async def test_second_run_with_price_change_counts_one_update(
    build_use_cases, fake_fetcher_cls, product_factory, store
) -> None:
    """Verifica que un cambio de precio en una segunda corrida cuenta 1 updated y el resto skipped."""
    first_pages = _three_pages(product_factory)
    use_cases = build_use_cases(fake_fetcher_cls(total_records=250, pages=first_pages))
    job = await use_cases.initialize(_init_dto())
    await use_cases.execute(ExecuteBatchDTO(job_id=job.job_id))

    # Campo derivado calculado por otro proceso
    doc_id = "seller-1:tsin_id:7"
    stored = await store.get(COLLECTION, doc_id)
    await store.batch_write([WriteOp(WriteOpType.MERGE, COLLECTION, doc_id, {"totalSold": 42, "total_sold": 42})])

    second_pages = _three_pages(product_factory)
    second_pages[1] = [dict(r) for r in second_pages[1]]
    second_pages[1][6]["selling_price"] = 89.99
    second_pages[1][6]["totalSold"] = 0
    second_pages[1][6]["total_sold"] = 0
    use_cases = build_use_cases(fake_fetcher_cls(total_records=250, pages=second_pages))
    job2 = await use_cases.initialize(_init_dto())
    result = await use_cases.execute(ExecuteBatchDTO(job_id=job2.job_id))

    assert result.counts.new == 0
    assert result.counts.updated == 1
    assert result.counts.skipped == 249

    updated = await store.get(COLLECTION, doc_id)
    assert updated.data["selling_price"] == 89.99
    assert updated.data["totalSold"] == 42
    assert updated.data["total_sold"] == 42
    assert updated.data["firstFetchedAt"] == stored.data["firstFetchedAt"]
    assert "lastUpdatedAt" in updated.data


@pytest.mark.asyncio
async def test_rerun_with_identical_data_is_idempotent(
    build_use_cases, fake_fetcher_cls, product_factory, store
) -> None:
    """Verifica que repetir la misma sincronizacion no crea ni actualiza documentos."""
    pages = _three_pages(product_factory)
    for _ in range(2):
        use_cases = build_use_cases(fake_fetcher_cls(total_records=250, pages=pages))
        job = await use_cases.initialize(_init_dto())
        result = await use_cases.execute(ExecuteBatchDTO(job_id=job.job_id))

    assert result.counts.new == 0
    assert result.counts.updated == 0
    assert result.counts.skipped == 250
    assert await store.count(COLLECTION) == 250


@pytest.mark.asyncio
async def test_page_errors_are_counted_and_processing_continues(
    build_use_cases, fake_fetcher_cls, product_factory
) -> None:
    """Verifica que RateLimitError/TransientNetworkError/DataShapeError fallan solo su pagina."""
    pages = {
        1: RateLimitError(page=1, attempts=5),
        2: product_factory(101, 100),
        3: DataShapeError("sin array de registros"),
        4: TransientNetworkError("HTTP 503", upstream_status=503),
        5: product_factory(401, 10),
    }
    use_cases = build_use_cases(fake_fetcher_cls(total_records=410, pages=pages))
    job = await use_cases.initialize(_init_dto())

    result = await use_cases.execute(ExecuteBatchDTO(job_id=job.job_id))

    assert result.pages_processed == 2
    assert result.failed_pages == 3
    assert result.records_processed == 110
    assert result.is_complete is True
    assert "Pagina 4" in result.last_error

    status = await use_cases.status(job.job_id)
    assert status.job.completed_pages == 2
    assert status.job.failed_pages == 3
    assert status.job.current_page == 5
    assert status.job.last_error is not None
    assert status.progress_percentage == 40.0


@pytest.mark.asyncio
async def test_non_object_records_are_skipped(build_use_cases, fake_fetcher_cls, product_factory) -> None:
    """Verifica que los registros que no son objetos cuentan como skipped."""
    pages = {1: product_factory(1, 3) + ["basura", 42, None]}
    use_cases = build_use_cases(fake_fetcher_cls(total_records=6, pages=pages))
    job = await use_cases.initialize(_init_dto())

    result = await use_cases.execute(ExecuteBatchDTO(job_id=job.job_id))

    assert result.counts.new == 3
    assert result.counts.skipped == 3
    assert result.records_processed == 6


@pytest.mark.asyncio
async def test_failed_chunk_moves_records_to_errors(
    build_use_cases, fake_fetcher_cls, product_factory, store
) -> None:
    """Verifica que un chunk fallido cuenta sus registros como errores y los demas se escriben."""
    original = store.batch_write
    calls = {"n": 0}

    async def flaky_batch_write(ops):
        calls["n"] += 1
        if calls["n"] == 2:
            raise StorageWriteError("commit rechazado", operations=len(ops))
        return await original(ops)

    store.batch_write = flaky_batch_write
    use_cases = build_use_cases(
        fake_fetcher_cls(total_records=100, pages={1: product_factory(1, 100)}),
        batch_writer=BatchWriter(store, max_batch_size=40),
    )
    job = await use_cases.initialize(_init_dto())

    result = await use_cases.execute(ExecuteBatchDTO(job_id=job.job_id))

    assert result.counts.new == 60
    assert result.counts.errors == 40
    assert result.pages_processed == 1
    assert "commit rechazado" in result.last_error
    assert await store.count(COLLECTION) == 60


@pytest.mark.asyncio
async def test_auth_error_marks_job_failed_and_propagates(
    build_use_cases, fake_fetcher_cls, product_factory, execution_logger
) -> None:
    """Verifica que un 401 en una pagina aborta la invocacion y deja el job failed."""
    pages = {1: product_factory(1, 100), 2: AuthError(401), 3: product_factory(201, 50)}
    fetcher = fake_fetcher_cls(total_records=250, pages=pages)
    use_cases = build_use_cases(fetcher)
    job = await use_cases.initialize(_init_dto())

    with pytest.raises(AuthError):
        await use_cases.execute(ExecuteBatchDTO(job_id=job.job_id))

    assert fetcher.fetched_pages == [1, 2]
    status = await use_cases.status(job.job_id)
    assert status.job.status == JobStatus.FAILED
    assert status.job.completed_pages == 1
    assert status.is_running is False

    logs = await execution_logger.query(ExecutionLogQueryDTO(job_ref=job.job_id))
    assert logs.items[0].status == ExecutionStatus.FAILURE

    with pytest.raises(InvalidJobStateException):
        await use_cases.execute(ExecuteBatchDTO(job_id=job.job_id))


@pytest.mark.asyncio
async def test_timeout_keeps_finished_pages_and_job_resumable(
    build_use_cases, fake_fetcher_cls, product_factory, execution_logger
) -> None:
    """Verifica que al agotar el tiempo se conservan las paginas hechas y el job se reanuda."""
    ticks = iter([0.0, 0.0, 10.0, 2000.0])

    def clock() -> float:
        return next(ticks, 2000.0)

    fetcher = fake_fetcher_cls(total_records=250, pages=_three_pages(product_factory))
    use_cases = build_use_cases(fetcher, clock=clock)
    job = await use_cases.initialize(_init_dto())

    with pytest.raises(SyncTimeoutError) as exc_info:
        await use_cases.execute(ExecuteBatchDTO(job_id=job.job_id, trigger_type=TriggerType.MANUAL))

    assert exc_info.value.next_page == 3
    assert fetcher.fetched_pages == [1, 2]

    status = await use_cases.status(job.job_id)
    assert status.job.status == JobStatus.IN_PROGRESS
    assert status.job.current_page == 2
    assert status.is_running is False

    logs = await execution_logger.query(ExecutionLogQueryDTO(job_ref=job.job_id, status=ExecutionStatus.TIMEOUT))
    assert logs.count == 1

    resumed = build_use_cases(fetcher)
    result = await resumed.execute(ExecuteBatchDTO(job_id=job.job_id))
    assert result.start_page == 3
    assert result.is_complete is True
    assert fetcher.fetched_pages == [1, 2, 3]


@pytest.mark.asyncio
async def test_scheduled_trigger_uses_shorter_timeout(
    build_use_cases, fake_fetcher_cls, product_factory
) -> None:
    """Verifica que una invocacion scheduled corta a los 900 s y una manual no."""
    ticks = iter([0.0, 1000.0])

    def clock() -> float:
        return next(ticks, 1000.0)

    use_cases = build_use_cases(
        fake_fetcher_cls(total_records=100, pages={1: product_factory(1, 100)}),
        clock=clock,
    )
    job = await use_cases.initialize(_init_dto())

    with pytest.raises(SyncTimeoutError):
        await use_cases.execute(ExecuteBatchDTO(job_id=job.job_id, trigger_type=TriggerType.SCHEDULED))


@pytest.mark.asyncio
async def test_explicit_page_start_replays_without_exceeding_total(
    build_use_cases, fake_fetcher_cls, product_factory
) -> None:
    """Verifica que re-ejecutar una pagina ya contada no la cuenta dos veces ni baja current_page."""
    fetcher = fake_fetcher_cls(total_records=250, pages=_three_pages(product_factory))
    use_cases = build_use_cases(fetcher)
    job = await use_cases.initialize(_init_dto())

    await use_cases.execute(ExecuteBatchDTO(job_id=job.job_id, batch_size=2))
    replay = await use_cases.execute(ExecuteBatchDTO(job_id=job.job_id, batch_size=1, page_start=1))

    assert (replay.start_page, replay.end_page) == (1, 1)
    assert replay.counts.skipped == 100

    status = await use_cases.status(job.job_id)
    assert status.job.current_page == 2
    assert status.job.completed_pages == 2
    assert status.job.completed_pages + status.job.failed_pages <= status.job.total_pages


@pytest.mark.asyncio
async def test_successful_retry_replaces_page_failure(
    build_use_cases, fake_fetcher_cls, product_factory
) -> None:
    """Verifica que reintentar con page_start una pagina fallida la pasa a completada."""
    pages = _three_pages(product_factory)
    pages[1] = RateLimitError(page=1, attempts=5)
    fetcher = fake_fetcher_cls(total_records=250, pages=pages)
    use_cases = build_use_cases(fetcher)
    job = await use_cases.initialize(_init_dto())

    await use_cases.execute(ExecuteBatchDTO(job_id=job.job_id, batch_size=2))
    status = await use_cases.status(job.job_id)
    assert status.job.failed_pages == 1
    assert status.failed_page_numbers == [1]

    fetcher.pages[1] = product_factory(1, 100)
    retry = await use_cases.execute(ExecuteBatchDTO(job_id=job.job_id, batch_size=1, page_start=1))
    assert retry.pages_processed == 1
    assert retry.has_more is True
    assert retry.next_page == 2

    await use_cases.execute(ExecuteBatchDTO(job_id=job.job_id))

    status = await use_cases.status(job.job_id)
    assert status.job.status == JobStatus.COMPLETED
    assert status.job.completed_pages == 3
    assert status.job.failed_pages == 0
    assert status.job.last_error is None
    assert status.failed_page_numbers == []
    assert status.progress_percentage == 100.0


@pytest.mark.asyncio
async def test_retry_that_fails_again_is_counted_once(
    build_use_cases, fake_fetcher_cls, product_factory
) -> None:
    """Verifica que una pagina que vuelve a fallar sigue contando como una sola fallida."""
    pages = _three_pages(product_factory)
    pages[2] = TransientNetworkError("HTTP 503", upstream_status=503)
    fetcher = fake_fetcher_cls(total_records=250, pages=pages)
    use_cases = build_use_cases(fetcher)
    job = await use_cases.initialize(_init_dto())

    await use_cases.execute(ExecuteBatchDTO(job_id=job.job_id, batch_size=2))
    await use_cases.execute(ExecuteBatchDTO(job_id=job.job_id, batch_size=1, page_start=2))

    status = await use_cases.status(job.job_id)
    assert status.job.completed_pages == 1
    assert status.job.failed_pages == 1
    assert status.failed_page_numbers == [2]
    assert "Pagina 2" in status.job.last_error


@pytest.mark.asyncio
async def test_fatal_engine_error_fails_job(
    build_use_cases, fake_fetcher_cls, product_factory, execution_logger
) -> None:
    """Verifica que cualquier error FATAL (no solo AuthError) aborta el batch y deja el job failed."""
    pages = {1: product_factory(1, 100), 2: SyncConfigError("API key revocada"), 3: product_factory(201, 50)}
    fetcher = fake_fetcher_cls(total_records=250, pages=pages)
    use_cases = build_use_cases(fetcher)
    job = await use_cases.initialize(_init_dto())

    with pytest.raises(SyncConfigError):
        await use_cases.execute(ExecuteBatchDTO(job_id=job.job_id))

    assert fetcher.fetched_pages == [1, 2]
    status = await use_cases.status(job.job_id)
    assert status.job.status == JobStatus.FAILED
    assert status.job.last_error == "API key revocada"
    assert status.job.failed_pages == 0

    logs = await execution_logger.query(ExecutionLogQueryDTO(job_ref=job.job_id))
    assert logs.items[0].status == ExecutionStatus.FAILURE
    assert logs.items[0].error_details["kind"] == "fatal"


@pytest.mark.asyncio
async def test_page_start_beyond_total_is_rejected(build_use_cases, fake_fetcher_cls) -> None:
    """Verifica que page_start mayor al total de paginas se rechaza."""
    use_cases = build_use_cases(fake_fetcher_cls(total_records=150))
    job = await use_cases.initialize(_init_dto())

    with pytest.raises(ValidationException):
        await use_cases.execute(ExecuteBatchDTO(job_id=job.job_id, page_start=5))


@pytest.mark.asyncio
async def test_empty_dataset_completes_immediately(build_use_cases, fake_fetcher_cls) -> None:
    """Verifica que un job sin registros se completa en la primera invocacion."""
    fetcher = fake_fetcher_cls(total_records=0)
    use_cases = build_use_cases(fetcher)
    job = await use_cases.initialize(_init_dto())

    result = await use_cases.execute(ExecuteBatchDTO(job_id=job.job_id))

    assert job.total_pages == 0
    assert fetcher.calls == []
    assert result.is_complete is True
    status = await use_cases.status(job.job_id)
    assert status.progress_percentage == 100.0


@pytest.mark.asyncio
async def test_execute_unknown_job_raises_not_found(build_use_cases, fake_fetcher_cls) -> None:
    """Verifica que ejecutar un job inexistente devuelve SyncJobNotFoundException."""
    use_cases = build_use_cases(fake_fetcher_cls(total_records=0))

    with pytest.raises(SyncJobNotFoundException):
        await use_cases.execute(ExecuteBatchDTO(job_id="no-existe"))


# ============================================================================
# Concurrencia
# ============================================================================

@pytest.mark.asyncio
async def test_execute_rejects_when_lease_is_held(
    build_use_cases, fake_fetcher_cls, product_factory, session_factory
) -> None:
    """Verifica que con el lease tomado por otra invocacion no se procesa nada."""
    fetcher = fake_fetcher_cls(total_records=250, pages=_three_pages(product_factory))
    use_cases = build_use_cases(fetcher)
    job = await use_cases.initialize(_init_dto())

    async with session_factory() as session:
        repo = SyncJobRepository(session)
        now = DateTimeUtils.now_utc()
        assert await repo.try_claim(
            job.job_id, expected_version=0, owner="otra", now=now, stale_before=now - timedelta(hours=1)
        )
        await session.commit()

    with pytest.raises(ConcurrentExecutionError):
        await use_cases.execute(ExecuteBatchDTO(job_id=job.job_id))

    assert fetcher.calls == []
    status = await use_cases.status(job.job_id)
    assert status.is_running is True


@pytest.mark.asyncio
async def test_stale_lease_is_taken_over(
    build_use_cases, fake_fetcher_cls, product_factory, session_factory
) -> None:
    """Verifica que un lease vencido (invocacion muerta) no bloquea el job."""
    fetcher = fake_fetcher_cls(total_records=250, pages=_three_pages(product_factory))
    use_cases = build_use_cases(fetcher)
    job = await use_cases.initialize(_init_dto())

    async with session_factory() as session:
        old = DateTimeUtils.now_utc() - timedelta(hours=5)
        await SyncJobRepository(session).try_claim(
            job.job_id, expected_version=0, owner="muerta", now=old, stale_before=old - timedelta(hours=1)
        )
        await session.commit()

    result = await use_cases.execute(ExecuteBatchDTO(job_id=job.job_id))
    assert result.is_complete is True


@pytest.mark.asyncio
async def test_concurrent_execute_only_one_wins(build_use_cases, fake_fetcher_cls, product_factory) -> None:
    """Verifica que dos execute simultaneos: uno procesa y el otro recibe ConcurrentExecutionError."""
    fetcher = fake_fetcher_cls(total_records=250, pages=_three_pages(product_factory), delay_s=0.2)
    use_cases = build_use_cases(fetcher)
    job = await use_cases.initialize(_init_dto())

    results = await asyncio.gather(
        use_cases.execute(ExecuteBatchDTO(job_id=job.job_id)),
        use_cases.execute(ExecuteBatchDTO(job_id=job.job_id)),
        return_exceptions=True,
    )

    errors = [r for r in results if isinstance(r, Exception)]
    successes = [r for r in results if not isinstance(r, Exception)]
    assert len(errors) == 1
    assert isinstance(errors[0], ConcurrentExecutionError)
    assert len(successes) == 1
    assert successes[0].is_complete is True
    assert fetcher.fetched_pages == [1, 2, 3]


# ============================================================================
# Pausa, cancelacion y consultas
# ============================================================================

@pytest.mark.asyncio
async def test_pause_stops_before_next_page_and_execute_resumes(
    build_use_cases, fake_fetcher_cls, product_factory
) -> None:
    """Verifica que una pausa se observa antes de la siguiente pagina y execute reanuda."""
    fetcher = fake_fetcher_cls(total_records=250, pages=_three_pages(product_factory))
    use_cases = build_use_cases(fetcher)
    job = await use_cases.initialize(_init_dto())

    original_fetch = fetcher.fetch_page
    paused = {"done": False}

    def fetch_and_request_pause(resource, page_number, page_size, query_params=None):
        response = original_fetch(resource, page_number, page_size, query_params)
        if page_number == 1 and not paused["done"]:
            paused["done"] = True
            future = asyncio.run_coroutine_threadsafe(use_cases.pause(job.job_id), loop)
            future.result(timeout=10)
        return response

    loop = asyncio.get_running_loop()
    fetcher.fetch_page = fetch_and_request_pause

    result = await use_cases.execute(ExecuteBatchDTO(job_id=job.job_id))

    assert result.stopped_reason == StopReason.PAUSED
    assert result.pages_processed == 1
    assert result.status == JobStatus.PAUSED
    assert result.has_more is True
    assert result.next_page == 2

    resumed = await use_cases.execute(ExecuteBatchDTO(job_id=job.job_id))
    assert resumed.start_page == 2
    assert resumed.is_complete is True
    assert fetcher.fetched_pages == [1, 2, 3]


@pytest.mark.asyncio
async def test_cancel_is_terminal(build_use_cases, fake_fetcher_cls) -> None:
    """Verifica que un job cancelado no admite mas ejecuciones ni pausas."""
    use_cases = build_use_cases(fake_fetcher_cls(total_records=100))
    job = await use_cases.initialize(_init_dto())

    cancelled = await use_cases.cancel(job.job_id)
    assert cancelled.status == JobStatus.CANCELLED
    assert cancelled.completed_at is not None

    with pytest.raises(InvalidJobStateException):
        await use_cases.execute(ExecuteBatchDTO(job_id=job.job_id))
    with pytest.raises(InvalidJobStateException):
        await use_cases.pause(job.job_id)


@pytest.mark.asyncio
async def test_list_jobs_and_active_jobs(build_use_cases, fake_fetcher_cls) -> None:
    """Verifica los listados por estado, cuenta y activos."""
    use_cases = build_use_cases(fake_fetcher_cls(total_records=100))
    first = await use_cases.initialize(_init_dto())
    second = await use_cases.initialize(_init_dto(account_id="seller-2"))
    await use_cases.cancel(first.job_id)

    active = await use_cases.list_active_jobs()
    assert [j.id for j in active.items] == [second.job_id]

    cancelled = await use_cases.list_jobs(status=JobStatus.CANCELLED)
    assert [j.id for j in cancelled.items] == [first.job_id]

    by_account = await use_cases.list_jobs(account_id="seller-2")
    assert by_account.count == 1


@pytest.mark.asyncio
async def test_cleanup_old_jobs_only_deletes_finished(
    build_use_cases, fake_fetcher_cls, session_factory
) -> None:
    """Verifica que la limpieza borra solo jobs terminados mas viejos que el corte, con sus paginas."""
    use_cases = build_use_cases(fake_fetcher_cls(total_records=250))
    old_done = await use_cases.initialize(_init_dto(account_id="seller-1"))
    await use_cases.execute(ExecuteBatchDTO(job_id=old_done.job_id, batch_size=1))
    recent_done = await use_cases.initialize(_init_dto(account_id="seller-2"))
    old_active = await use_cases.initialize(_init_dto(account_id="seller-3"))

    long_ago = DateTimeUtils.now_utc() - timedelta(days=30)
    async with session_factory() as session:
        repo = SyncJobRepository(session)
        await repo.transition(
            old_done.job_id, to_status=JobStatus.CANCELLED, allowed_from=[JobStatus.IN_PROGRESS], now=long_ago
        )
        await repo.transition(
            recent_done.job_id,
            to_status=JobStatus.CANCELLED,
            allowed_from=[JobStatus.INITIALIZED],
            now=DateTimeUtils.now_utc(),
        )
        await session.commit()

    result = await use_cases.cleanup_old_jobs(days_old=7)

    assert result.deleted == 1
    remaining = {j.id for j in (await use_cases.list_jobs()).items}
    assert remaining == {recent_done.job_id, old_active.job_id}

    async with session_factory() as session:
        pages = await session.execute(select(func.count()).select_from(SyncJobPageModel))
        assert pages.scalar_one() == 0

    with pytest.raises(ValidationException):
        await use_cases.cleanup_old_jobs(days_old=0)


@pytest.mark.asyncio
async def test_job_stats_last_24h(build_use_cases, fake_fetcher_cls, product_factory) -> None:
    """Verifica jobs activos, completados, items y tasa de error de las ultimas 24 horas."""
    ok_fetcher = fake_fetcher_cls(total_records=100, pages={1: product_factory(1, 100)})
    use_cases = build_use_cases(ok_fetcher)
    done = await use_cases.initialize(_init_dto())
    await use_cases.execute(ExecuteBatchDTO(job_id=done.job_id))
    await use_cases.initialize(_init_dto())

    failing = build_use_cases(fake_fetcher_cls(total_records=100, pages={1: AuthError(403)}))
    broken = await failing.initialize(_init_dto(account_id="seller-2"))
    with pytest.raises(AuthError):
        await failing.execute(ExecuteBatchDTO(job_id=broken.job_id))

    stats = await use_cases.job_stats()

    assert stats.active_jobs == 1
    assert stats.completed_last_24h == 1
    assert stats.items_processed_last_24h == 100
    # 3 initialize + 2 execute sellados; 1 fallido
    assert stats.executions_last_24h == 5
    assert stats.error_rate == 20.0

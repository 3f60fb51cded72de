"""
Casos de uso del controlador de jobs de sincronizacion.

Orquesta, por invocacion, un batch acotado de paginas:
Fetcher -> Resolver -> Merge -> Writer, y persiste el progreso de forma
atomica para que el job se pueda reanudar en la siguiente invocacion.
"""
from __future__ import annotations

import asyncio
import time
import uuid
from contextlib import closing
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Dict, Mapping, Optional

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.application.dto.sync_dto import (
    BatchResultDTO,
    CleanupResultDTO,
    ExecuteBatchDTO,
    InitializeJobDTO,
    InitializeJobResponseDTO,
    JobListDTO,
    JobStatsDTO,
    JobStatusDTO,
    RecordCountsDTO,
    SyncJobDTO,
)
from app.application.interfaces.marketplace_fetcher import FetcherFactory, MarketplaceFetcher
from app.application.services.batch_writer import BatchWriter
from app.application.services.execution_logger import ExecutionLogger, ExecutionMeta, ExecutionMetrics
from app.application.services.merge_engine import MergeEngine, WriteOutcome
from app.domain.entities.sync_job import RecordCounts, SyncJob
from app.domain.repositories.document_store import IDocumentStore
from app.infrastructure.external.marketplace.resource_config import (
    ResourceConfig,
    get_resource_config,
    resolve_collections,
)
from app.infrastructure.repositories.execution_log_repository import ExecutionLogRepository
from app.infrastructure.repositories.sync_job_repository import SyncJobRepository
from app.shared.constants.sync_constants import (
    ACTIVE_STATUSES,
    DATE_END_PARAM,
    DATE_FILTER_MONTHS,
    DATE_START_PARAM,
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
    ConcurrentExecutionError,
    ErrorKind,
    SyncEngineException,
    SyncTimeoutError,
)
from app.shared.utils.datetime_utils import DateTimeUtils


@dataclass(frozen=True)
class SyncEngineConfig:
    """Parametros del motor, resueltos una sola vez al construirlo."""

    collections: Mapping[JobType, str]
    default_page_size: int = 100
    default_batch_size: int = 10
    manual_timeout_s: float = 1800
    scheduled_timeout_s: float = 900
    seconds_per_page_estimate: int = 5
    max_batch_size: int = 500
    environment: str = "production"
    version: str = "1.0.0"

    @classmethod
    def from_settings(cls, settings: Any) -> "SyncEngineConfig":
        """
        Construye la config desde Settings.

        Raises:
            SyncConfigError: Si STORE_LAYOUT_VERSION no es conocida
        """
        return cls(
            collections=resolve_collections(settings.STORE_LAYOUT_VERSION),
            default_page_size=settings.SYNC_DEFAULT_PAGE_SIZE,
            default_batch_size=settings.SYNC_DEFAULT_BATCH_SIZE,
            manual_timeout_s=settings.SYNC_MANUAL_TIMEOUT_S,
            scheduled_timeout_s=settings.SYNC_SCHEDULED_TIMEOUT_S,
            seconds_per_page_estimate=settings.SYNC_SECONDS_PER_PAGE_ESTIMATE,
            max_batch_size=settings.STORE_MAX_BATCH_SIZE,
            environment=settings.ENVIRONMENT,
            version=settings.APP_VERSION,
        )

    def timeout_for(self, trigger_type: TriggerType) -> float:
        if trigger_type == TriggerType.SCHEDULED:
            return self.scheduled_timeout_s
        return self.manual_timeout_s

    @property
    def lease_ttl_s(self) -> float:
        """Un lease mas viejo que esto se considera abandonado."""
        return 2 * self.manual_timeout_s


@dataclass
class PageOutcome:
    """Resultado de procesar una pagina."""

    ok: bool
    counts: RecordCounts = field(default_factory=RecordCounts)
    records: int = 0
    writes: int = 0
    error: Optional[str] = None


def to_job_dto(job: SyncJob) -> SyncJobDTO:
    return SyncJobDTO(
        id=job.id,
        job_type=job.job_type,
        account_id=job.account_id,
        status=job.status,
        total_records=job.total_records,
        total_pages=job.total_pages,
        page_size=job.page_size,
        batch_size=job.batch_size,
        current_page=job.current_page,
        completed_pages=job.completed_pages,
        failed_pages=job.failed_pages,
        records_processed=job.records_processed,
        counts=RecordCountsDTO(**job.counts.as_dict()),
        query_params=job.query_params,
        date_filter=job.date_filter,
        created_by=job.created_by,
        last_error=job.last_error,
        started_at=job.started_at,
        last_processed_at=job.last_processed_at,
        completed_at=job.completed_at,
        created_at=job.created_at,
        updated_at=job.updated_at,
    )


class SyncJobUseCases:
    """
    Casos de uso de jobs de sincronizacion.

    Cada metodo abre sus propias sesiones cortas: el estado compartido (job y
    documentos) solo se modifica con UPDATEs atomicos o merges de campos, asi
    que no se mantiene una transaccion abierta durante las llamadas HTTP.
    """

    def __init__(
        self,
        *,
        session_factory: async_sessionmaker,
        store: IDocumentStore,
        fetcher_factory: FetcherFactory,
        execution_logger: ExecutionLogger,
        config: SyncEngineConfig,
        merge_engine: Optional[MergeEngine] = None,
        batch_writer: Optional[BatchWriter] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._session_factory = session_factory
        self._store = store
        self._fetcher_factory = fetcher_factory
        self._execution_logger = execution_logger
        self._config = config
        self._merge_engine = merge_engine or MergeEngine(store)
        self._batch_writer = batch_writer or BatchWriter(store, config.max_batch_size)
        self._clock = clock

    # ------------------------------------------------------------------
    # initialize
    # ------------------------------------------------------------------

    async def initialize(self, dto: InitializeJobDTO) -> InitializeJobResponseDTO:
        """
        Crea un job: lee el total con un probe y calcula las paginas.

        Si ya hay un job no terminado de la misma cuenta, tipo y filtros se
        devuelve ese job (`resumed=True`) sin volver a consultar el total.

        Args:
            dto: Tipo de recurso, cuenta, tamanos y filtro de fecha

        Returns:
            InitializeJobResponseDTO: Job creado (o reanudado) con estimacion de fin

        Raises:
            AuthError: Credenciales rechazadas por el marketplace
            SyncEngineException: El probe fallo tras los reintentos
        """
        resource = get_resource_config(dto.job_type)
        page_size = dto.page_size or self._config.default_page_size
        batch_size = dto.batch_size or self._config.default_batch_size
        query_params = self._resolve_query_params(dto)

        execution_id = await self._execution_logger.start_execution(ExecutionMeta(
            job_name=f"{dto.job_type.value}_sync_initialize",
            trigger_type=dto.trigger_type,
            trigger_source=dto.trigger_source,
            account_id=dto.account_id,
            api_source=resource.api_source,
            details={
                "page_size": page_size,
                "batch_size": batch_size,
                "date_filter": dto.date_filter.value,
            },
        ))

        existing = await self._find_resumable(dto, query_params)
        if existing is not None:
            await self._execution_logger.update_execution(execution_id, job_ref=existing.id)
            await self._execution_logger.complete_execution(
                execution_id,
                ExecutionStatus.SUCCESS,
                ExecutionMetrics(
                    total_pages=existing.total_pages,
                    message=(
                        f"Job {existing.id} reanudado ({existing.status.value}, "
                        f"pagina {existing.current_page} de {existing.total_pages})"
                    ),
                ),
            )
            logger.info(
                f"Job {existing.id} ({existing.job_type.value}, cuenta {existing.account_id}) "
                f"ya estaba activo; se reanuda desde la pagina {existing.current_page + 1}"
            )
            return self._init_response(existing, execution_id, resumed=True)

        try:
            with closing(self._fetcher_factory(dto.account_id)) as fetcher:
                summary = await asyncio.to_thread(fetcher.probe_total, resource, query_params)
        except SyncEngineException as e:
            await self._execution_logger.complete_execution(
                execution_id,
                ExecutionStatus.FAILURE,
                ExecutionMetrics(
                    message=f"No se pudo inicializar el job: {e.message}",
                    error_details={"error_code": e.error_code, "kind": e.kind.value, "message": e.message},
                ),
            )
            raise

        total_records = summary.total_records or 0
        now = DateTimeUtils.now_utc()
        job = SyncJob(
            id=str(uuid.uuid4()),
            job_type=dto.job_type,
            account_id=dto.account_id,
            status=JobStatus.INITIALIZED,
            total_records=total_records,
            total_pages=SyncJob.pages_for(total_records, page_size),
            page_size=page_size,
            batch_size=batch_size,
            query_params=query_params,
            date_filter=dto.date_filter,
            created_by=dto.created_by,
            created_at=now,
            updated_at=now,
        )

        async with self._session_factory() as session:
            job = await SyncJobRepository(session).create(job)
            await session.commit()

        await self._execution_logger.update_execution(execution_id, job_ref=job.id, total_pages=job.total_pages)
        await self._execution_logger.complete_execution(
            execution_id,
            ExecutionStatus.SUCCESS,
            ExecutionMetrics(
                total_reads=1,
                total_pages=job.total_pages,
                message=f"Job {job.id} inicializado: {total_records} registros en {job.total_pages} paginas",
            ),
        )

        logger.info(
            f"Job {job.id} ({job.job_type.value}, cuenta {job.account_id}) inicializado: "
            f"{total_records} registros, {job.total_pages} paginas de {page_size}"
        )
        return self._init_response(job, execution_id)

    @staticmethod
    def _resolve_query_params(dto: InitializeJobDTO) -> Dict[str, Any]:
        """
        Agrega created_date_start/created_date_end (YYYY-MM-DD) segun el
        filtro de fecha. Los valores calculados pisan a los de query_params.
        """
        params = dict(dto.query_params)
        if dto.date_filter == DateFilter.NONE:
            return params

        today = DateTimeUtils.now_utc().date()
        if dto.date_filter == DateFilter.CUSTOM:
            start, end = dto.date_start, dto.date_end or today
        else:
            start, end = DateTimeUtils.months_ago(DATE_FILTER_MONTHS[dto.date_filter], today), today
        params[DATE_START_PARAM] = start.isoformat()
        params[DATE_END_PARAM] = end.isoformat()
        return params

    async def _find_resumable(
        self,
        dto: InitializeJobDTO,
        query_params: Mapping[str, Any],
    ) -> Optional[SyncJob]:
        """
        Job activo equivalente al pedido, el mas reciente si hay varios.

        Con ventanas relativas (6/3/1 meses) las fechas calculadas no entran
        en la comparacion: cambian de un dia a otro para el mismo pedido.
        """
        async with self._session_factory() as session:
            candidates = await SyncJobRepository(session).find_active(
                account_id=dto.account_id,
                job_type=dto.job_type,
                date_filter=dto.date_filter,
            )

        ignored = set()
        if dto.date_filter in DATE_FILTER_MONTHS:
            ignored = {DATE_START_PARAM, DATE_END_PARAM}

        def comparable(params: Mapping[str, Any]) -> Dict[str, Any]:
            return {key: value for key, value in params.items() if key not in ignored}

        wanted = comparable(query_params)
        for job in candidates:
            if comparable(job.query_params) == wanted:
                return job
        return None

    def _init_response(
        self,
        job: SyncJob,
        execution_id: Optional[str],
        resumed: bool = False,
    ) -> InitializeJobResponseDTO:
        remaining = job.remaining_pages() if resumed else job.total_pages
        estimated = DateTimeUtils.now_utc() + timedelta(
            seconds=remaining * self._config.seconds_per_page_estimate
        )
        return InitializeJobResponseDTO(
            job_id=job.id,
            job_type=job.job_type,
            account_id=job.account_id,
            status=job.status,
            total_records=job.total_records,
            total_pages=job.total_pages,
            page_size=job.page_size,
            batch_size=job.batch_size,
            estimated_completion=estimated,
            date_filter=job.date_filter,
            query_params=job.query_params,
            resumed=resumed,
            execution_id=execution_id,
        )

    # ------------------------------------------------------------------
    # execute
    # ------------------------------------------------------------------

    async def execute(self, dto: ExecuteBatchDTO) -> BatchResultDTO:
        """
        Procesa un batch de paginas de un job.

        Args:
            dto: Job, tamano del batch, pagina inicial opcional y origen

        Returns:
            BatchResultDTO: Resumen del batch

        Raises:
            SyncJobNotFoundException: El job no existe
            InvalidJobStateException: El job esta completed/failed/cancelled
            ConcurrentExecutionError: Otra invocacion tiene el job tomado
            SyncEngineException: Error FATAL, p.ej. credenciales rechazadas
                (el job queda failed)
            SyncTimeoutError: Se agoto el tiempo de la invocacion (el job
                queda in_progress y se puede reanudar)
        """
        started = self._clock()
        job = await self._get_job(dto.job_id)
        if job.is_terminal():
            raise InvalidJobStateException(job.id, job.status.value, "execute")
        if dto.page_start is not None and job.total_pages > 0 and dto.page_start > job.total_pages:
            raise ValidationException(
                f"page_start ({dto.page_start}) supera el total de paginas ({job.total_pages})",
                field="page_start",
            )

        owner = str(uuid.uuid4())
        job = await self._claim(job, owner)

        resource = get_resource_config(job.job_type)
        collection = self._config.collections[job.job_type]
        batch_size = dto.batch_size or job.batch_size
        start_page, end_page = job.page_range(batch_size, dto.page_start)
        timeout_s = self._config.timeout_for(dto.trigger_type)
        deadline = started + timeout_s

        execution_id = await self._execution_logger.start_execution(ExecutionMeta(
            job_name=f"{job.job_type.value}_sync",
            trigger_type=dto.trigger_type,
            trigger_source=dto.trigger_source,
            job_ref=job.id,
            account_id=job.account_id,
            api_source=resource.api_source,
            total_pages=job.total_pages,
            details={"start_page": start_page, "end_page": end_page, "collection": collection},
        ))
        logger.info(
            f"Job {job.id}: procesando paginas {start_page}-{end_page} de {job.total_pages} "
            f"({dto.trigger_type.value})"
        )

        counts = RecordCounts()
        pages_ok = 0
        pages_failed = 0
        records = 0
        writes = 0
        stopped: Optional[StopReason] = None
        last_error: Optional[str] = None
        next_page = start_page
        fetcher: Optional[MarketplaceFetcher] = None

        try:
            fetcher = self._fetcher_factory(job.account_id)

            for page in range(start_page, end_page + 1):
                if self._clock() >= deadline:
                    raise SyncTimeoutError(job.id, timeout_s, page)

                stopped = await self._stop_requested(job.id)
                if stopped is not None:
                    logger.info(f"Job {job.id}: {stopped.value} antes de la pagina {page}")
                    break

                outcome = await self._process_page(job, fetcher, resource, collection, page)
                await self._commit_page(job.id, page, outcome)

                next_page = page + 1
                counts.add(outcome.counts)
                records += outcome.records
                writes += outcome.writes
                if outcome.ok:
                    pages_ok += 1
                else:
                    pages_failed += 1
                if outcome.error:
                    last_error = outcome.error

                await self._execution_logger.update_execution(
                    execution_id,
                    items_processed=records,
                    total_reads=pages_ok + pages_failed,
                    total_writes=writes,
                    details={"last_page": page, "counts": counts.as_dict()},
                )

            if stopped is None and end_page >= job.total_pages:
                async with self._session_factory() as session:
                    await SyncJobRepository(session).mark_completed(job.id, DateTimeUtils.now_utc())
                    await session.commit()

        except SyncEngineException as e:
            metrics = self._metrics(records, pages_ok + pages_failed, writes, counts, e)
            if e.kind == ErrorKind.INVOCATION:
                await self._execution_logger.complete_execution(execution_id, ExecutionStatus.TIMEOUT, metrics)
                logger.warning(f"Job {job.id}: {e.message}")
            elif e.kind == ErrorKind.FATAL:
                await self._fail_job(job.id, e.message)
                await self._execution_logger.complete_execution(execution_id, ExecutionStatus.FAILURE, metrics)
                logger.error(f"Job {job.id} marcado como failed: {e.message}")
            else:
                await self._execution_logger.complete_execution(execution_id, ExecutionStatus.FAILURE, metrics)
                logger.error(f"Job {job.id}: error del motor en el batch ({e.kind.value}): {e.message}")
            raise
        except Exception as e:
            await self._execution_logger.complete_execution(
                execution_id,
                ExecutionStatus.FAILURE,
                self._metrics(records, pages_ok + pages_failed, writes, counts, e),
            )
            logger.error(f"Job {job.id}: error inesperado en el batch: {e}")
            raise
        finally:
            if fetcher is not None:
                fetcher.close()
            await self._release(job.id, owner)

        final = await self._get_job(job.id)
        status = ExecutionStatus.CANCELLED if stopped == StopReason.CANCELLED else ExecutionStatus.SUCCESS
        await self._execution_logger.complete_execution(
            execution_id,
            status,
            ExecutionMetrics(
                items_processed=records,
                total_reads=pages_ok + pages_failed,
                total_writes=writes,
                message=(
                    f"Paginas {start_page}-{min(next_page - 1, end_page)}: {pages_ok} ok, "
                    f"{pages_failed} fallidas, {records} registros"
                ),
                details={"counts": counts.as_dict(), "stopped_reason": stopped.value if stopped else None},
            ),
        )

        is_complete = final.status == JobStatus.COMPLETED
        has_more = final.can_execute() and next_page <= final.total_pages
        if is_complete:
            logger.success(f"Job {final.id} completado ({final.records_processed} registros)")

        return BatchResultDTO(
            job_id=final.id,
            status=final.status,
            start_page=start_page,
            end_page=end_page,
            pages_processed=pages_ok,
            failed_pages=pages_failed,
            records_processed=records,
            counts=RecordCountsDTO(**counts.as_dict()),
            is_complete=is_complete,
            has_more=has_more,
            next_page=next_page if has_more else None,
            stopped_reason=stopped,
            last_error=last_error,
            execution_id=execution_id,
            duration_ms=int((self._clock() - started) * 1000),
        )

    async def _claim(self, job: SyncJob, owner: str) -> SyncJob:
        """
        Toma el job para esta invocacion.

        Si el guard falla se relee el job: terminal -> estado invalido; con
        lease vigente -> ConcurrentExecutionError. Si solo cambio la version
        (p.ej. una pausa) se reintenta una vez con la version nueva.
        """
        for _ in range(2):
            now = DateTimeUtils.now_utc()
            stale_before = now - timedelta(seconds=self._config.lease_ttl_s)
            async with self._session_factory() as session:
                claimed = await SyncJobRepository(session).try_claim(
                    job.id,
                    expected_version=job.version,
                    owner=owner,
                    now=now,
                    stale_before=stale_before,
                )
                await session.commit()
            if claimed:
                return await self._get_job(job.id)

            job = await self._get_job(job.id)
            if job.is_terminal():
                raise InvalidJobStateException(job.id, job.status.value, "execute")
            if self._lease_is_live(job):
                break

        logger.warning(f"Job {job.id}: otra invocacion lo tiene tomado")
        raise ConcurrentExecutionError(job.id)

    async def _process_page(
        self,
        job: SyncJob,
        fetcher: MarketplaceFetcher,
        resource: ResourceConfig,
        collection: str,
        page: int,
    ) -> PageOutcome:
        """
        Fetch -> merge -> write de una pagina.

        Los errores FATAL (credenciales, configuracion) se propagan; cualquier
        otro error del motor o del store marca la pagina como fallida.
        """
        try:
            response = await asyncio.to_thread(
                fetcher.fetch_page, resource, page, job.page_size, job.query_params
            )
            plan = await self._merge_engine.plan_page(
                response.records,
                resource=resource,
                collection=collection,
                account_id=job.account_id,
            )
            summary = await self._batch_writer.write(plan.writes)
        except SyncEngineException as e:
            if e.kind == ErrorKind.FATAL:
                raise
            logger.warning(f"Job {job.id}: pagina {page} fallida ({e.kind.value}): {e.message}")
            return PageOutcome(ok=False, error=f"Pagina {page}: {e.message}")
        except SQLAlchemyError as e:
            logger.warning(f"Job {job.id}: pagina {page} fallida por error del store: {e}")
            return PageOutcome(ok=False, error=f"Pagina {page}: error del store")

        counts = RecordCounts(**plan.counts.as_dict())
        # Los registros de chunks fallidos pasan de new/updated a errors
        for planned in summary.failed:
            if planned.outcome == WriteOutcome.NEW:
                counts.new -= 1
            else:
                counts.updated -= 1
            counts.errors += 1

        error = None
        if summary.last_error:
            error = f"Pagina {page}: {summary.errors} escrituras fallidas ({summary.last_error})"
        return PageOutcome(
            ok=True,
            counts=counts,
            records=plan.records,
            writes=summary.written,
            error=error,
        )

    async def _commit_page(self, job_id: str, page: int, outcome: PageOutcome) -> None:
        async with self._session_factory() as session:
            await SyncJobRepository(session).apply_page_result(
                job_id,
                page=page,
                page_ok=outcome.ok,
                counts=outcome.counts,
                records=outcome.records,
                now=DateTimeUtils.now_utc(),
                last_error=outcome.error,
            )
            await session.commit()

    async def _stop_requested(self, job_id: str) -> Optional[StopReason]:
        async with self._session_factory() as session:
            status = await SyncJobRepository(session).get_status(job_id)
        if status == JobStatus.PAUSED:
            return StopReason.PAUSED
        if status == JobStatus.CANCELLED:
            return StopReason.CANCELLED
        return None

    async def _fail_job(self, job_id: str, error: str) -> None:
        async with self._session_factory() as session:
            await SyncJobRepository(session).mark_failed(job_id, error, DateTimeUtils.now_utc())
            await session.commit()

    async def _release(self, job_id: str, owner: str) -> None:
        async with self._session_factory() as session:
            await SyncJobRepository(session).release(job_id, owner)
            await session.commit()

    def _lease_is_live(self, job: SyncJob) -> bool:
        if job.lock_owner is None or job.locked_at is None:
            return False
        stale_before = DateTimeUtils.now_utc() - timedelta(seconds=self._config.lease_ttl_s)
        return job.locked_at >= stale_before

    @staticmethod
    def _metrics(
        records: int,
        reads: int,
        writes: int,
        counts: RecordCounts,
        error: Exception,
    ) -> ExecutionMetrics:
        error_details: Dict[str, Any] = {"type": type(error).__name__, "message": str(error)}
        if isinstance(error, SyncEngineException):
            error_details.update({"error_code": error.error_code, "kind": error.kind.value})
            if isinstance(error, SyncTimeoutError):
                error_details["next_page"] = error.next_page
        return ExecutionMetrics(
            items_processed=records,
            total_reads=reads,
            total_writes=writes,
            message=str(error),
            details={"counts": counts.as_dict()},
            error_details=error_details,
        )

    # ------------------------------------------------------------------
    # consultas y control
    # ------------------------------------------------------------------

    async def status(self, job_id: str) -> JobStatusDTO:
        """Progreso de un job (solo lectura)."""
        job = await self._get_job(job_id)
        async with self._session_factory() as session:
            failed_pages = await SyncJobRepository(session).failed_page_numbers(job_id)
        return JobStatusDTO(
            job=to_job_dto(job),
            progress_percentage=job.progress_percentage(),
            remaining_pages=job.remaining_pages(),
            is_complete=job.status == JobStatus.COMPLETED,
            is_running=self._lease_is_live(job),
            failed_page_numbers=failed_pages,
        )

    async def pause(self, job_id: str) -> SyncJobDTO:
        """
        Pausa un job. Una invocacion en curso se detiene antes de su
        siguiente pagina; `execute` sobre un job pausado lo reanuda.
        """
        return await self._transition(
            job_id,
            to_status=JobStatus.PAUSED,
            allowed_from=(JobStatus.INITIALIZED, JobStatus.IN_PROGRESS),
            operation="pause",
        )

    async def cancel(self, job_id: str) -> SyncJobDTO:
        """Cancela un job (estado terminal)."""
        return await self._transition(
            job_id,
            to_status=JobStatus.CANCELLED,
            allowed_from=ACTIVE_STATUSES,
            operation="cancel",
        )

    async def _transition(self, job_id, *, to_status, allowed_from, operation) -> SyncJobDTO:
        async with self._session_factory() as session:
            changed = await SyncJobRepository(session).transition(
                job_id,
                to_status=to_status,
                allowed_from=allowed_from,
                now=DateTimeUtils.now_utc(),
            )
            await session.commit()

        job = await self._get_job(job_id)
        if not changed:
            raise InvalidJobStateException(job_id, job.status.value, operation)
        logger.info(f"Job {job_id} -> {to_status.value}")
        return to_job_dto(job)

    async def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        account_id: Optional[str] = None,
        limit: int = 50,
    ) -> JobListDTO:
        async with self._session_factory() as session:
            jobs = await SyncJobRepository(session).list(
                statuses=[status] if status else None,
                account_id=account_id,
                limit=limit,
            )
        return JobListDTO(items=[to_job_dto(job) for job in jobs], count=len(jobs))

    async def list_active_jobs(self, limit: int = 50) -> JobListDTO:
        async with self._session_factory() as session:
            jobs = await SyncJobRepository(session).list(statuses=ACTIVE_STATUSES, limit=limit)
        return JobListDTO(items=[to_job_dto(job) for job in jobs], count=len(jobs))

    async def cleanup_old_jobs(self, days_old: int = 7) -> CleanupResultDTO:
        """
        Borra jobs terminados hace mas de `days_old` dias.

        Returns:
            CleanupResultDTO: Cantidad borrada y fecha de corte
        """
        if days_old < 1:
            raise ValidationException("days_old debe ser al menos 1", field="days_old")

        cutoff = DateTimeUtils.now_utc() - timedelta(days=days_old)
        async with self._session_factory() as session:
            deleted = await SyncJobRepository(session).delete_finished_before(cutoff)
            await session.commit()

        logger.info(f"Limpieza de jobs: {deleted} borrados (anteriores a {cutoff.isoformat()})")
        return CleanupResultDTO(deleted=deleted, days_old=days_old, cutoff=cutoff)

    async def job_stats(self) -> JobStatsDTO:
        """Jobs activos y metricas de ejecucion de las ultimas 24 horas."""
        since = DateTimeUtils.hours_ago(24)
        async with self._session_factory() as session:
            jobs = SyncJobRepository(session)
            logs = ExecutionLogRepository(session)
            active = await jobs.count_active()
            completed = await jobs.count_completed_since(since)
            items = await logs.sum_items_since(since)
            sealed = await logs.count_since(
                since,
                [
                    ExecutionStatus.SUCCESS,
                    ExecutionStatus.FAILURE,
                    ExecutionStatus.TIMEOUT,
                    ExecutionStatus.CANCELLED,
                ],
            )
            failed = await logs.count_since(since, [ExecutionStatus.FAILURE, ExecutionStatus.TIMEOUT])

        error_rate = round(failed / sealed * 100, 2) if sealed else 0.0
        return JobStatsDTO(
            active_jobs=active,
            completed_last_24h=completed,
            items_processed_last_24h=items,
            executions_last_24h=sealed,
            error_rate=error_rate,
        )

    async def _get_job(self, job_id: str) -> SyncJob:
        async with self._session_factory() as session:
            job = await SyncJobRepository(session).get(job_id)
        if job is None:
            raise SyncJobNotFoundException(job_id)
        return job

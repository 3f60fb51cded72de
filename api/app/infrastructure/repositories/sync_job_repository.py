"""
Repositorio de jobs de sincronizacion.

Todas las modificaciones de un job existente son UPDATE atomicos con guardas
en el WHERE; nunca se sobreescribe el registro completo. El resultado de
cada pagina vive en sync_job_pages y los contadores de paginas del job se
recalculan desde ahi.
"""
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import case, delete, func, insert, null, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.entities.sync_job import RecordCounts, SyncJob
from app.infrastructure.database.models import SyncJobModel, SyncJobPageModel
from app.shared.constants.sync_constants import (
    ACTIVE_STATUSES,
    DateFilter,
    JobStatus,
    JobType,
    PageStatus,
    RUNNABLE_STATUSES,
    TERMINAL_STATUSES,
)
from app.shared.utils.datetime_utils import DateTimeUtils


class SyncJobRepository:
    """
    Gestiona las tablas sync_jobs y sync_job_pages.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, job: SyncJob) -> SyncJob:
        """
        Inserta un job nuevo.

        Args:
            job: Entidad con id asignado

        Returns:
            SyncJob: Job tal como quedo persistido
        """
        model = SyncJobModel(
            id=job.id,
            job_type=job.job_type,
            account_id=job.account_id,
            status=job.status,
            total_records=job.total_records,
            total_pages=job.total_pages,
            page_size=job.page_size,
            batch_size=job.batch_size,
            current_page=0,
            completed_pages=0,
            failed_pages=0,
            records_processed=0,
            new_count=0,
            updated_count=0,
            skipped_count=0,
            error_count=0,
            query_params=dict(job.query_params),
            date_filter=job.date_filter,
            created_by=job.created_by,
            version=0,
            created_at=job.created_at,
            updated_at=job.created_at,
        )
        self.db.add(model)
        await self.db.flush()
        return self._to_entity(model)

    async def get(self, job_id: str) -> Optional[SyncJob]:
        """Lee el job directamente de la base (sin cache de sesion)."""
        query = (
            select(SyncJobModel)
            .where(SyncJobModel.id == job_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def get_status(self, job_id: str) -> Optional[JobStatus]:
        result = await self.db.execute(select(SyncJobModel.status).where(SyncJobModel.id == job_id))
        return result.scalar_one_or_none()

    async def try_claim(
        self,
        job_id: str,
        *,
        expected_version: int,
        owner: str,
        now: datetime,
        stale_before: datetime,
    ) -> bool:
        """
        Toma el job para una invocacion (check-and-set atomico).

        Solo tiene exito si la version no cambio, el estado admite ejecucion y
        nadie tiene el lease (o el lease esta vencido).

        Returns:
            bool: True si esta invocacion gano el job
        """
        stmt = (
            update(SyncJobModel)
            .where(
                SyncJobModel.id == job_id,
                SyncJobModel.version == expected_version,
                SyncJobModel.status.in_(list(RUNNABLE_STATUSES)),
                or_(SyncJobModel.lock_owner.is_(None), SyncJobModel.locked_at < stale_before),
            )
            .values(
                status=JobStatus.IN_PROGRESS,
                lock_owner=owner,
                locked_at=now,
                version=SyncJobModel.version + 1,
                started_at=func.coalesce(SyncJobModel.started_at, now),
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def release(self, job_id: str, owner: str) -> None:
        stmt = (
            update(SyncJobModel)
            .where(SyncJobModel.id == job_id, SyncJobModel.lock_owner == owner)
            .values(lock_owner=None, locked_at=None)
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(stmt)

    async def apply_page_result(
        self,
        job_id: str,
        *,
        page: int,
        page_ok: bool,
        counts: RecordCounts,
        records: int,
        now: datetime,
        last_error: Optional[str] = None,
    ) -> None:
        """
        Registra el resultado de una pagina y actualiza el job.

        - La pagina guarda solo su ultimo resultado en sync_job_pages; un
          reintento exitoso reemplaza al fallo anterior.
        - completed_pages/failed_pages se recalculan desde esa tabla, por lo
          que nunca superan total_pages.
        - current_page solo avanza; los contadores de registros se suman.
        """
        previous = await self.db.execute(
            select(SyncJobPageModel.status).where(
                SyncJobPageModel.job_id == job_id,
                SyncJobPageModel.page == page,
            )
        )
        previous_status = previous.scalar_one_or_none()

        await self.db.execute(
            delete(SyncJobPageModel).where(
                SyncJobPageModel.job_id == job_id,
                SyncJobPageModel.page == page,
            )
        )
        await self.db.execute(
            insert(SyncJobPageModel).values(
                job_id=job_id,
                page=page,
                status=PageStatus.COMPLETED if page_ok else PageStatus.FAILED,
                records=records,
                error=last_error[:2000] if last_error else None,
                processed_at=now,
            )
        )

        completed = self._count_pages(job_id, PageStatus.COMPLETED)
        failed = self._count_pages(job_id, PageStatus.FAILED)
        values = {
            "current_page": case(
                (SyncJobModel.current_page < page, page),
                else_=SyncJobModel.current_page,
            ),
            "completed_pages": completed,
            "failed_pages": failed,
            "records_processed": SyncJobModel.records_processed + records,
            "new_count": SyncJobModel.new_count + counts.new,
            "updated_count": SyncJobModel.updated_count + counts.updated,
            "skipped_count": SyncJobModel.skipped_count + counts.skipped,
            "error_count": SyncJobModel.error_count + counts.errors,
            "last_processed_at": now,
            "updated_at": now,
        }
        if last_error:
            values["last_error"] = last_error[:2000]
        elif page_ok and previous_status == PageStatus.FAILED:
            # El error del job se limpia cuando ya no queda ninguna pagina fallida
            values["last_error"] = case((failed == 0, null()), else_=SyncJobModel.last_error)

        stmt = (
            update(SyncJobModel)
            .where(SyncJobModel.id == job_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(stmt)

    async def failed_page_numbers(self, job_id: str) -> List[int]:
        """Paginas cuyo ultimo intento fallo, en orden ascendente."""
        query = (
            select(SyncJobPageModel.page)
            .where(
                SyncJobPageModel.job_id == job_id,
                SyncJobPageModel.status == PageStatus.FAILED,
            )
            .order_by(SyncJobPageModel.page)
        )
        result = await self.db.execute(query)
        return [int(page) for page in result.scalars().all()]

    @staticmethod
    def _count_pages(job_id: str, status: PageStatus):
        return (
            select(func.count())
            .select_from(SyncJobPageModel)
            .where(SyncJobPageModel.job_id == job_id, SyncJobPageModel.status == status)
            .scalar_subquery()
        )

    async def mark_completed(self, job_id: str, now: datetime) -> bool:
        stmt = (
            update(SyncJobModel)
            .where(SyncJobModel.id == job_id, SyncJobModel.status == JobStatus.IN_PROGRESS)
            .values(
                status=JobStatus.COMPLETED,
                completed_at=now,
                updated_at=now,
                version=SyncJobModel.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def mark_failed(self, job_id: str, error: str, now: datetime) -> bool:
        stmt = (
            update(SyncJobModel)
            .where(SyncJobModel.id == job_id, SyncJobModel.status.notin_(list(TERMINAL_STATUSES)))
            .values(
                status=JobStatus.FAILED,
                last_error=error[:2000],
                completed_at=now,
                updated_at=now,
                version=SyncJobModel.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def transition(
        self,
        job_id: str,
        *,
        to_status: JobStatus,
        allowed_from: Sequence[JobStatus],
        now: datetime,
    ) -> bool:
        """
        Cambia el estado si el actual esta en `allowed_from` (pausa/cancelacion).

        Returns:
            bool: True si el cambio se aplico
        """
        values = {
            "status": to_status,
            "updated_at": now,
            "version": SyncJobModel.version + 1,
        }
        if to_status in TERMINAL_STATUSES:
            values["completed_at"] = now

        stmt = (
            update(SyncJobModel)
            .where(SyncJobModel.id == job_id, SyncJobModel.status.in_(list(allowed_from)))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def list(
        self,
        *,
        statuses: Optional[Sequence[JobStatus]] = None,
        account_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[SyncJob]:
        query = select(SyncJobModel)
        if statuses:
            query = query.where(SyncJobModel.status.in_(list(statuses)))
        if account_id is not None:
            query = query.where(SyncJobModel.account_id == account_id)
        query = query.order_by(SyncJobModel.created_at.desc(), SyncJobModel.id).limit(limit)

        result = await self.db.execute(query)
        return [self._to_entity(model) for model in result.scalars().all()]

    async def find_active(
        self,
        *,
        account_id: str,
        job_type: JobType,
        date_filter: DateFilter,
    ) -> List[SyncJob]:
        """
        Jobs no terminados de la misma cuenta, tipo y filtro de fecha.

        La comparacion de query_params la hace el llamador (columna JSON).
        """
        same_filter = SyncJobModel.date_filter == date_filter
        if date_filter == DateFilter.NONE:
            same_filter = or_(same_filter, SyncJobModel.date_filter.is_(None))
        query = (
            select(SyncJobModel)
            .where(
                SyncJobModel.account_id == account_id,
                SyncJobModel.job_type == job_type,
                SyncJobModel.status.in_(list(ACTIVE_STATUSES)),
                same_filter,
            )
            .order_by(SyncJobModel.created_at.desc(), SyncJobModel.id)
        )
        result = await self.db.execute(query)
        return [self._to_entity(model) for model in result.scalars().all()]

    async def delete_finished_before(self, cutoff: datetime) -> int:
        """
        Borra jobs terminados (completed/failed/cancelled) anteriores a `cutoff`
        junto con sus paginas.

        Returns:
            int: Numero de jobs borrados
        """
        finished_at = func.coalesce(SyncJobModel.completed_at, SyncJobModel.updated_at)
        finished = (
            select(SyncJobModel.id)
            .where(
                SyncJobModel.status.in_(list(TERMINAL_STATUSES)),
                finished_at < cutoff,
            )
        )
        await self.db.execute(
            delete(SyncJobPageModel)
            .where(SyncJobPageModel.job_id.in_(finished))
            .execution_options(synchronize_session=False)
        )
        stmt = (
            delete(SyncJobModel)
            .where(
                SyncJobModel.status.in_(list(TERMINAL_STATUSES)),
                finished_at < cutoff,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount or 0

    async def count_active(self) -> int:
        query = select(func.count()).select_from(SyncJobModel).where(
            SyncJobModel.status.in_(list(ACTIVE_STATUSES))
        )
        result = await self.db.execute(query)
        return int(result.scalar_one())

    async def count_completed_since(self, since: datetime) -> int:
        query = select(func.count()).select_from(SyncJobModel).where(
            SyncJobModel.status == JobStatus.COMPLETED,
            SyncJobModel.completed_at >= since,
        )
        result = await self.db.execute(query)
        return int(result.scalar_one())

    @staticmethod
    def _to_entity(model: SyncJobModel) -> SyncJob:
        return SyncJob(
            id=model.id,
            job_type=model.job_type,
            account_id=model.account_id,
            status=model.status,
            total_records=model.total_records,
            total_pages=model.total_pages,
            page_size=model.page_size,
            batch_size=model.batch_size,
            current_page=model.current_page,
            completed_pages=model.completed_pages,
            failed_pages=model.failed_pages,
            records_processed=model.records_processed,
            counts=RecordCounts(
                new=model.new_count,
                updated=model.updated_count,
                skipped=model.skipped_count,
                errors=model.error_count,
            ),
            query_params=dict(model.query_params or {}),
            date_filter=model.date_filter or DateFilter.NONE,
            created_by=model.created_by,
            last_error=model.last_error,
            version=model.version,
            lock_owner=model.lock_owner,
            locked_at=DateTimeUtils.ensure_utc(model.locked_at),
            started_at=DateTimeUtils.ensure_utc(model.started_at),
            last_processed_at=DateTimeUtils.ensure_utc(model.last_processed_at),
            completed_at=DateTimeUtils.ensure_utc(model.completed_at),
            created_at=DateTimeUtils.ensure_utc(model.created_at),
            updated_at=DateTimeUtils.ensure_utc(model.updated_at),
        )

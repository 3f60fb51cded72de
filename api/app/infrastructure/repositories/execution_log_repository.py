"""
Repositorio del log de ejecuciones.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.infrastructure.database.models import ExecutionLogModel
from app.shared.constants.sync_constants import ExecutionStatus


class ExecutionLogRepository:
    """
    Gestiona la tabla execution_logs.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, log: ExecutionLogModel) -> ExecutionLogModel:
        self.db.add(log)
        await self.db.flush()
        return log

    async def get(self, execution_id: str) -> Optional[ExecutionLogModel]:
        return await self.db.get(ExecutionLogModel, execution_id)

    async def merge_fields(self, execution_id: str, values: Dict[str, Any]) -> Optional[ExecutionLogModel]:
        """
        Actualiza los campos indicados de una entrada.
        `details` se mezcla con el contenido previo en vez de reemplazarse.
        """
        log = await self.get(execution_id)
        if log is None:
            return None

        for key, value in values.items():
            if key == "details" and value is not None:
                log.details = {**(log.details or {}), **value}
            else:
                setattr(log, key, value)

        await self.db.flush()
        return log

    async def query(
        self,
        *,
        account_id: Optional[str] = None,
        job_ref: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        after: Optional[Tuple[datetime, str]] = None,
        limit: int = 50,
    ) -> List[ExecutionLogModel]:
        """
        Consulta paginada por keyset (start_time DESC, execution_id DESC).

        Args:
            after: Ultima posicion (start_time, execution_id) de la pagina anterior
            limit: Maximo de filas a devolver
        """
        query = select(ExecutionLogModel)
        if account_id is not None:
            query = query.where(ExecutionLogModel.account_id == account_id)
        if job_ref is not None:
            query = query.where(ExecutionLogModel.job_ref == job_ref)
        if status is not None:
            query = query.where(ExecutionLogModel.status == status)
        if start is not None:
            query = query.where(ExecutionLogModel.start_time >= start)
        if end is not None:
            query = query.where(ExecutionLogModel.start_time < end)
        if after is not None:
            last_time, last_id = after
            query = query.where(
                or_(
                    ExecutionLogModel.start_time < last_time,
                    and_(
                        ExecutionLogModel.start_time == last_time,
                        ExecutionLogModel.execution_id < last_id,
                    ),
                )
            )

        query = query.order_by(
            ExecutionLogModel.start_time.desc(),
            ExecutionLogModel.execution_id.desc(),
        ).limit(limit)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def count_since(
        self,
        since: datetime,
        statuses: Optional[Sequence[ExecutionStatus]] = None,
    ) -> int:
        query = select(func.count()).select_from(ExecutionLogModel).where(
            ExecutionLogModel.start_time >= since
        )
        if statuses:
            query = query.where(ExecutionLogModel.status.in_(list(statuses)))
        result = await self.db.execute(query)
        return int(result.scalar_one())

    async def sum_items_since(self, since: datetime) -> int:
        query = select(func.coalesce(func.sum(ExecutionLogModel.items_processed), 0)).where(
            ExecutionLogModel.start_time >= since
        )
        result = await self.db.execute(query)
        return int(result.scalar_one())

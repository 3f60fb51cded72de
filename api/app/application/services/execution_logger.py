"""
Logger de ejecuciones: una entrada persistente por invocacion.

Es independiente del estado del job: aunque el registro del job quede
inconsistente, el historial de invocaciones se puede consultar. Los fallos al
actualizar o cerrar una entrada se reportan por log y no interrumpen la
sincronizacion.
"""
from __future__ import annotations

import base64
import binascii
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.application.dto.execution_log_dto import (
    ExecutionLogDTO,
    ExecutionLogPageDTO,
    ExecutionLogQueryDTO,
)
from app.infrastructure.database.models import ExecutionLogModel
from app.infrastructure.repositories.execution_log_repository import ExecutionLogRepository
from app.shared.constants.sync_constants import ExecutionStatus, TriggerType
from app.shared.exceptions.domain import ValidationException
from app.shared.utils.datetime_utils import DateTimeUtils


@dataclass(frozen=True)
class ExecutionMeta:
    """Metadatos con los que arranca una entrada del log."""

    job_name: str
    trigger_type: TriggerType = TriggerType.MANUAL
    trigger_source: Optional[str] = None
    job_ref: Optional[str] = None
    account_id: Optional[str] = None
    api_source: Optional[str] = None
    total_pages: int = 0
    message: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ExecutionMetrics:
    """Metricas finales de una invocacion."""

    items_processed: int = 0
    total_reads: int = 0
    total_writes: int = 0
    total_pages: Optional[int] = None
    message: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    error_details: Optional[Dict[str, Any]] = None


def encode_cursor(start_time: datetime, execution_id: str) -> str:
    """Cursor opaco a partir de la ultima fila devuelta."""
    raw = json.dumps({"t": DateTimeUtils.to_iso_string(start_time), "id": execution_id})
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii")


def decode_cursor(cursor: str) -> tuple[datetime, str]:
    """
    Decodifica un cursor generado por `encode_cursor`.

    Raises:
        ValidationException: Si el cursor no es valido
    """
    try:
        payload = json.loads(base64.urlsafe_b64decode(cursor.encode("ascii")).decode("utf-8"))
        start_time = DateTimeUtils.from_iso_string(payload["t"])
        execution_id = str(payload["id"])
    except (binascii.Error, UnicodeError, ValueError, KeyError, TypeError) as e:
        raise ValidationException("Cursor de paginacion invalido", field="cursor") from e
    if start_time is None:
        raise ValidationException("Cursor de paginacion invalido", field="cursor")
    return start_time, execution_id


class ExecutionLogger:
    """Registra inicio, progreso y cierre de cada invocacion."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        *,
        environment: str = "production",
        version: str = "1.0.0",
    ):
        self._session_factory = session_factory
        self._environment = environment
        self._version = version

    async def start_execution(self, meta: ExecutionMeta) -> Optional[str]:
        """
        Inserta una entrada en estado running.

        Returns:
            Optional[str]: execution_id (uuid4), o None si no se pudo registrar
        """
        execution_id = str(uuid.uuid4())
        now = DateTimeUtils.now_utc()
        try:
            async with self._session_factory() as session:
                repo = ExecutionLogRepository(session)
                await repo.create(ExecutionLogModel(
                    execution_id=execution_id,
                    job_ref=meta.job_ref,
                    job_name=meta.job_name,
                    account_id=meta.account_id,
                    trigger_type=meta.trigger_type,
                    trigger_source=meta.trigger_source,
                    api_source=meta.api_source,
                    status=ExecutionStatus.RUNNING,
                    start_time=now,
                    total_pages=meta.total_pages,
                    items_processed=0,
                    total_reads=0,
                    total_writes=0,
                    message=meta.message or f"{meta.job_name} iniciado",
                    details=dict(meta.details),
                    environment=self._environment,
                    version=self._version,
                ))
                await session.commit()
        except SQLAlchemyError as e:
            logger.warning(f"No se pudo registrar el inicio de {meta.job_name}: {e}")
            return None

        logger.debug(f"Ejecucion {execution_id} iniciada ({meta.job_name}, {meta.trigger_type.value})")
        return execution_id

    async def update_execution(self, execution_id: Optional[str], **fields: Any) -> bool:
        """
        Mezcla metricas parciales en la entrada.

        Returns:
            bool: False si la entrada no existe o no se pudo actualizar
        """
        if not execution_id:
            return False
        try:
            async with self._session_factory() as session:
                log = await ExecutionLogRepository(session).merge_fields(execution_id, fields)
                await session.commit()
                return log is not None
        except SQLAlchemyError as e:
            logger.warning(f"No se pudo actualizar la ejecucion {execution_id}: {e}")
            return False

    async def complete_execution(
        self,
        execution_id: Optional[str],
        status: ExecutionStatus,
        metrics: Optional[ExecutionMetrics] = None,
    ) -> Optional[ExecutionLogDTO]:
        """
        Sella la entrada: estado final, fin y duracion desde el inicio guardado.

        Returns:
            Optional[ExecutionLogDTO]: Entrada sellada, o None si no se pudo
        """
        if not execution_id:
            return None
        metrics = metrics or ExecutionMetrics()
        end_time = DateTimeUtils.now_utc()
        try:
            async with self._session_factory() as session:
                repo = ExecutionLogRepository(session)
                log = await repo.get(execution_id)
                if log is None:
                    logger.warning(f"Ejecucion {execution_id} no encontrada al cerrarla")
                    return None

                values: Dict[str, Any] = {
                    "status": status,
                    "end_time": end_time,
                    "duration_ms": DateTimeUtils.elapsed_ms(log.start_time, end_time),
                    "items_processed": metrics.items_processed,
                    "total_reads": metrics.total_reads,
                    "total_writes": metrics.total_writes,
                }
                if metrics.total_pages is not None:
                    values["total_pages"] = metrics.total_pages
                if metrics.message is not None:
                    values["message"] = metrics.message
                if metrics.details is not None:
                    values["details"] = metrics.details
                if metrics.error_details is not None:
                    values["error_details"] = metrics.error_details

                log = await repo.merge_fields(execution_id, values)
                await session.commit()
                dto = ExecutionLogDTO.model_validate(log)
        except SQLAlchemyError as e:
            logger.warning(f"No se pudo cerrar la ejecucion {execution_id}: {e}")
            return None

        logger.info(
            f"Ejecucion {execution_id} finalizada: {status.value} "
            f"({dto.items_processed} items, {dto.duration_ms} ms)"
        )
        return dto

    async def get_execution(self, execution_id: str) -> Optional[ExecutionLogDTO]:
        async with self._session_factory() as session:
            log = await ExecutionLogRepository(session).get(execution_id)
            return ExecutionLogDTO.model_validate(log) if log else None

    async def query(self, filters: ExecutionLogQueryDTO) -> ExecutionLogPageDTO:
        """
        Consulta por cuenta, rango de tiempo y estado, con cursor.

        Args:
            filters: Filtros y cursor de la pagina anterior

        Returns:
            ExecutionLogPageDTO: Entradas (mas recientes primero) y siguiente cursor
        """
        after = decode_cursor(filters.cursor) if filters.cursor else None
        async with self._session_factory() as session:
            rows = await ExecutionLogRepository(session).query(
                account_id=filters.account_id,
                job_ref=filters.job_ref,
                status=filters.status,
                start=DateTimeUtils.ensure_utc(filters.start),
                end=DateTimeUtils.ensure_utc(filters.end),
                after=after,
                limit=filters.limit + 1,
            )
            items = [ExecutionLogDTO.model_validate(row) for row in rows[:filters.limit]]

        next_cursor = None
        if len(rows) > filters.limit and items:
            last = items[-1]
            next_cursor = encode_cursor(last.start_time, last.execution_id)

        return ExecutionLogPageDTO(items=items, next_cursor=next_cursor, count=len(items))

"""
Endpoints de consulta del log de ejecuciones.
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.api.v1.dependencies.use_case_deps import get_execution_logger
from app.application.dto.execution_log_dto import (
    ExecutionLogDTO,
    ExecutionLogPageDTO,
    ExecutionLogQueryDTO,
)
from app.application.services.execution_logger import ExecutionLogger
from app.shared.constants.sync_constants import ExecutionStatus
from app.shared.exceptions.domain import ExecutionLogNotFoundException


router = APIRouter(prefix="/sync/executions", tags=["Executions"])


@router.get(
    "",
    response_model=ExecutionLogPageDTO,
    summary="Listar ejecuciones"
)
async def list_executions(
    account_id: Optional[str] = Query(None),
    job_ref: Optional[str] = Query(None, description="Id del job"),
    status_filter: Optional[ExecutionStatus] = Query(None, alias="status"),
    start: Optional[datetime] = Query(None, description="Desde (inclusive)"),
    end: Optional[datetime] = Query(None, description="Hasta (exclusivo)"),
    limit: int = Query(50, ge=1, le=200),
    cursor: Optional[str] = Query(None, description="next_cursor de la pagina anterior"),
    execution_logger: ExecutionLogger = Depends(get_execution_logger)
) -> ExecutionLogPageDTO:
    """
    Ejecuciones mas recientes primero.

    Para pedir la pagina siguiente se pasa el `next_cursor` devuelto.
    """
    filters = ExecutionLogQueryDTO(
        account_id=account_id,
        job_ref=job_ref,
        status=status_filter,
        start=start,
        end=end,
        limit=limit,
        cursor=cursor,
    )
    return await execution_logger.query(filters)


@router.get(
    "/{execution_id}",
    response_model=ExecutionLogDTO,
    summary="Obtener una ejecucion"
)
async def get_execution(
    execution_id: str,
    execution_logger: ExecutionLogger = Depends(get_execution_logger)
) -> ExecutionLogDTO:
    """Detalle de una entrada del log."""
    log = await execution_logger.get_execution(execution_id)
    if log is None:
        raise ExecutionLogNotFoundException(execution_id)
    return log

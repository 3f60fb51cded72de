"""
CLI: sincronizacion del marketplace hacia el store de documentos.

Uso recomendado:
  - Ejecutar como job (cron/systemd timer) con --trigger scheduled.
  - Cada iteracion es una invocacion de `execute` acotada por batch y tiempo,
    igual que las llamadas al endpoint /api/v1/sync/jobs/execute.

Variables de entorno requeridas:
  - MARKETPLACE_API_KEY (o MARKETPLACE_ACCOUNT_KEYS)
  - DATABASE_URL (o DATABASE_HOST/PORT/USER/PASSWORD/NAME)

Ejecución:
  python scripts/run_sync_job.py --job-type products --account-id seller-1
  python scripts/run_sync_job.py --job-id <uuid> --batch-size 20
  python scripts/run_sync_job.py --job-type sales --account-id seller-1 \
      --query created_date_start=2026-01-01 --trigger scheduled
  python scripts/run_sync_job.py --job-type sales --account-id seller-1 --date-filter 3_months
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import date
from pathlib import Path

from loguru import logger
from dotenv import load_dotenv

# Permite ejecutar este script desde cualquier cwd sin configurar PYTHONPATH.
# La carpeta "api" contiene el paquete raíz `app/`.
_API_ROOT = Path(__file__).resolve().parents[1]
if str(_API_ROOT) not in sys.path:
    sys.path.insert(0, str(_API_ROOT))

# Cargar variables desde .env si existe (api/.env o raiz del repo).
load_dotenv(_API_ROOT / ".env", override=False)
load_dotenv(_API_ROOT.parent / ".env", override=False)

from app.application.dto.sync_dto import ExecuteBatchDTO, InitializeJobDTO
from app.application.services.execution_logger import ExecutionLogger
from app.application.use_cases.sync_job_use_cases import SyncEngineConfig, SyncJobUseCases
from app.core.config import parse_list_setting, settings
from app.infrastructure.database.session import AsyncSessionLocal, close_db, init_db
from app.infrastructure.external.marketplace.marketplace_client import build_from_settings
from app.infrastructure.external.marketplace.proxy_pool import build_proxy_pool
from app.infrastructure.external.marketplace.resource_config import indexed_fields
from app.infrastructure.repositories.document_store_repository import SqlDocumentStore
from app.shared.constants.sync_constants import DateFilter, JobType, TriggerType
from app.shared.exceptions.base import AppException
from app.shared.exceptions.sync import ErrorKind, SyncEngineException, SyncTimeoutError


def _parse_query(values: list[str]) -> dict[str, str]:
    params: dict[str, str] = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise SystemExit(f"--query espera clave=valor, recibido: {item!r}")
        params[key.strip()] = value.strip()
    return params


def _build_use_cases() -> SyncJobUseCases:
    proxy_pool = build_proxy_pool(parse_list_setting(settings.PROXY_URLS))
    store = SqlDocumentStore(
        AsyncSessionLocal,
        indexed_fields=indexed_fields(),
        max_batch_size=settings.STORE_MAX_BATCH_SIZE,
    )
    return SyncJobUseCases(
        session_factory=AsyncSessionLocal,
        store=store,
        fetcher_factory=lambda account_id: build_from_settings(
            account_id, settings, proxy_provider=proxy_pool
        ),
        execution_logger=ExecutionLogger(
            AsyncSessionLocal,
            environment=settings.ENVIRONMENT,
            version=settings.APP_VERSION,
        ),
        config=SyncEngineConfig.from_settings(settings),
    )


async def run(args: argparse.Namespace) -> int:
    trigger = TriggerType(args.trigger)
    use_cases = _build_use_cases()

    job_id = args.job_id
    if job_id is None:
        created = await use_cases.initialize(InitializeJobDTO(
            job_type=JobType(args.job_type),
            account_id=args.account_id,
            page_size=args.page_size,
            batch_size=args.batch_size,
            created_by="cli",
            query_params=_parse_query(args.query),
            date_filter=DateFilter(args.date_filter),
            date_start=args.date_start,
            date_end=args.date_end,
            trigger_type=trigger,
            trigger_source="run_sync_job",
        ))
        job_id = created.job_id
        action = "reanudado" if created.resumed else "creado"
        logger.info(
            f"Job {job_id} {action}: {created.total_records} registros en {created.total_pages} paginas "
            f"(fin estimado {created.estimated_completion.isoformat()})"
        )

    for batch_number in range(1, args.max_batches + 1):
        try:
            result = await use_cases.execute(ExecuteBatchDTO(
                job_id=job_id,
                batch_size=args.batch_size,
                trigger_type=trigger,
                trigger_source="run_sync_job",
            ))
        except SyncTimeoutError as e:
            logger.warning(f"Batch {batch_number}: {e.message}; se reanuda desde la pagina {e.next_page}")
            continue

        logger.info(
            f"Batch {batch_number}: paginas {result.start_page}-{result.end_page}, "
            f"{result.pages_processed} ok / {result.failed_pages} fallidas, "
            f"new={result.counts.new} updated={result.counts.updated} "
            f"skipped={result.counts.skipped} errors={result.counts.errors}"
        )
        if result.is_complete:
            logger.success(f"Job {job_id} completado")
            return 0
        if not result.has_more:
            logger.info(f"Job {job_id} detenido ({result.status.value})")
            return 0

    logger.warning(f"Job {job_id}: se alcanzo --max-batches={args.max_batches} sin completar")
    return 0


async def _main(args: argparse.Namespace) -> int:
    await init_db()
    try:
        return await run(args)
    except SyncEngineException as e:
        logger.error(f"Sync abortado ({e.kind.value}): {e.message}")
        return 2 if e.kind == ErrorKind.CONFLICT else 1
    except AppException as e:
        logger.error(f"Sync abortado: {e.message}")
        return 1
    finally:
        await close_db()


def main() -> int:
    parser = argparse.ArgumentParser(description="Sincroniza un recurso del marketplace")
    parser.add_argument("--job-id", help="Reanuda un job existente en vez de crear uno nuevo")
    parser.add_argument("--job-type", choices=[t.value for t in JobType], help="Recurso a sincronizar")
    parser.add_argument("--account-id", help="Cuenta del marketplace")
    parser.add_argument("--page-size", type=int, default=None)
    parser.add_argument("--batch-size", type=int, default=None, help="Paginas por invocacion")
    parser.add_argument("--max-batches", type=int, default=1000)
    parser.add_argument(
        "--query",
        action="append",
        default=[],
        help="Filtro extra clave=valor enviado en cada pagina (repetible)",
    )
    parser.add_argument(
        "--date-filter",
        choices=[f.value for f in DateFilter],
        default=DateFilter.NONE.value,
        help="Ventana de fechas (solo sales); custom usa --date-start/--date-end",
    )
    parser.add_argument("--date-start", type=date.fromisoformat, default=None, help="YYYY-MM-DD")
    parser.add_argument("--date-end", type=date.fromisoformat, default=None, help="YYYY-MM-DD")
    parser.add_argument(
        "--trigger",
        choices=[t.value for t in TriggerType],
        default=TriggerType.MANUAL.value,
        help="scheduled usa el limite de tiempo corto",
    )
    args = parser.parse_args()

    if args.job_id is None and (not args.job_type or not args.account_id):
        parser.error("sin --job-id hay que indicar --job-type y --account-id")
    if args.date_filter != DateFilter.NONE.value and args.job_type != JobType.SALES.value:
        parser.error("--date-filter solo aplica a --job-type sales")
    if args.date_filter == DateFilter.CUSTOM.value and args.date_start is None:
        parser.error("--date-filter custom requiere --date-start")

    return asyncio.run(_main(args))


if __name__ == "__main__":
    raise SystemExit(main())

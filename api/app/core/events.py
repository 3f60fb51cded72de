"""
Manejadores de eventos de inicio y cierre de la aplicacion.
"""
from typing import Callable
from fastapi import FastAPI
from loguru import logger

from app.core.config import parse_list_setting, settings
from app.infrastructure.database.session import init_db, close_db
from app.infrastructure.external.marketplace.resource_config import resolve_collections


def startup_handler(app: FastAPI) -> Callable:
    """
    Manejador de eventos de inicio de la aplicacion.

    Args:
        app: Instancia de FastAPI

    Returns:
        Callable: Funcion asincrona de inicio
    """
    async def startup() -> None:
        """Inicializa recursos al inicio de la aplicacion."""
        try:
            logger.info(f"Iniciando {settings.APP_NAME} v{settings.APP_VERSION}")
            logger.info(f"Entorno: {settings.ENVIRONMENT}")

            # Validar configuracion critica (falla si el layout no existe)
            _validate_config()

            # Inicializar base de datos (crea tablas si no existen)
            await init_db()
            logger.info("Base de datos inicializada")

            # Configurar logging adicional
            logger.add(
                settings.LOG_FILE,
                rotation="500 MB",
                retention="10 days",
                level=settings.LOG_LEVEL
            )

            logger.success("Aplicacion iniciada correctamente")

            # Mostrar URLs disponibles
            _print_available_urls()

        except Exception as e:
            logger.error(f"Error durante startup: {e}")
            logger.exception("Detalle del error:")
            raise

    return startup


def _validate_config() -> None:
    """Valida que la configuracion critica este presente."""
    collections = resolve_collections(settings.STORE_LAYOUT_VERSION)
    logger.info(
        f"Layout del store {settings.STORE_LAYOUT_VERSION}: "
        + ", ".join(f"{job_type.value} -> {name}" for job_type, name in collections.items())
    )

    warnings = []

    if not settings.MARKETPLACE_API_KEY and not settings.MARKETPLACE_ACCOUNT_KEYS:
        warnings.append("MARKETPLACE_API_KEY no configurada - los jobs no podran inicializarse")

    if settings.STORE_MAX_BATCH_SIZE > 500:
        warnings.append(
            f"STORE_MAX_BATCH_SIZE={settings.STORE_MAX_BATCH_SIZE} supera el limite habitual de 500"
        )

    proxies = parse_list_setting(settings.PROXY_URLS)
    if proxies:
        logger.info(f"Pool de proxies: {len(proxies)} ({settings.PROXY_STRATEGY})")

    # Mostrar advertencias
    for warning in warnings:
        logger.warning(f"CONFIG: {warning}")


def _print_available_urls() -> None:
    """Imprime las URLs disponibles de la aplicacion."""
    # Determinar la URL base de acceso
    if settings.HOST == "0.0.0.0":
        access_host = "localhost"
    else:
        access_host = settings.HOST

    base_url = f"http://{access_host}:{settings.PORT}"

    logger.opt(colors=True).info("<bold><green>" + "=" * 80 + "</green></bold>")
    logger.opt(colors=True).info("<bold><green>URLS DISPONIBLES:</green></bold>")
    logger.opt(colors=True).info(f"<cyan>  Swagger UI:  {base_url}/docs</cyan>")
    logger.opt(colors=True).info(f"<cyan>  Sync jobs:   {base_url}/api/v1/sync/jobs</cyan>")
    logger.opt(colors=True).info(f"<cyan>  Ejecuciones: {base_url}/api/v1/sync/executions</cyan>")
    logger.opt(colors=True).info(f"<cyan>  Health:      {base_url}/health</cyan>")
    logger.opt(colors=True).info("<bold><green>" + "=" * 80 + "</green></bold>")


def shutdown_handler(app: FastAPI) -> Callable:
    """
    Manejador de eventos de cierre de la aplicacion.

    Args:
        app: Instancia de FastAPI

    Returns:
        Callable: Funcion asincrona de cierre
    """
    async def shutdown() -> None:
        """Libera recursos al cerrar la aplicacion."""
        logger.info("Cerrando aplicacion...")

        # Cerrar conexiones de base de datos
        await close_db()
        logger.info("Conexiones de base de datos cerradas")

        logger.success("Aplicacion cerrada correctamente")

    return shutdown

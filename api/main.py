"""
Punto de entrada de la API del sincronizador.
Arma la aplicacion FastAPI: middlewares, rutas de /api/v1, eventos y health.
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from app.core.config import settings, get_cors_origins
from app.core.events import startup_handler, shutdown_handler
from app.api.v1.router import api_router
from app.api.middlewares.error_handler import ErrorHandlerMiddleware
from app.infrastructure.external.marketplace.resource_config import resolve_collections
from app.shared.exceptions.base import AppException


def create_application() -> FastAPI:
    """
    Factory de la aplicacion.

    Returns:
        FastAPI: Aplicacion con CORS, manejo de errores y rutas registradas
    """
    application = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Motor de sincronizacion paginada del marketplace hacia el store de documentos",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=get_cors_origins(settings.CORS_ORIGINS),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.add_middleware(ErrorHandlerMiddleware)

    application.add_event_handler("startup", startup_handler(application))
    application.add_event_handler("shutdown", shutdown_handler(application))

    application.include_router(api_router, prefix="/api")

    @application.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException):
        # 4xx es un pedido invalido (job terminado, lease tomado); 5xx es del motor o upstream
        if exc.is_client_error:
            logger.warning(f"{request.method} {request.url.path} -> {exc.status_code} {exc.error_code}")
        else:
            logger.error(
                f"{request.method} {request.url.path} -> {exc.status_code} {exc.error_code}: "
                f"{exc.message}"
            )
        return JSONResponse(status_code=exc.status_code, content=exc.to_response())

    @application.get("/health", tags=["Health"])
    async def health_check():
        """Estado de la aplicacion y layout del store en uso."""
        collections = resolve_collections(settings.STORE_LAYOUT_VERSION)
        return {
            "status": "healthy",
            "app_name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "store_layout": settings.STORE_LAYOUT_VERSION,
            "collections": {job_type.value: name for job_type, name in collections.items()},
        }

    return application


app = create_application()


if __name__ == "__main__":
    import uvicorn

    # Las URLs disponibles las muestra el evento de startup
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )

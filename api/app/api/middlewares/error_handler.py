"""
Middleware para errores no controlados.

Las AppException las resuelve el exception handler registrado en main.py;
aca solo llega lo inesperado (bugs, errores de driver fuera del motor).
"""
from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from loguru import logger

from app.shared.exceptions.base import AppException


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Convierte excepciones no controladas en un 500 con el formato de error de la API."""

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as exc:
            # Argumentos posicionales: loguru no formatea las llaves del mensaje
            logger.opt(exception=exc).error(
                "Error no manejado en {} {}: {}", request.method, request.url.path, exc
            )
            error = AppException(
                message="Ha ocurrido un error interno del servidor",
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                error_code="INTERNAL_SERVER_ERROR",
                details={"method": request.method, "path": request.url.path},
            )
            return JSONResponse(status_code=error.status_code, content=error.to_response())

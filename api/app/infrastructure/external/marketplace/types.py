"""
Tipos y utilidades puras para leer respuestas paginadas del marketplace.

Se mantienen libres de I/O para poder testearlos fácilmente.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Sequence

from app.shared.exceptions.sync import DataShapeError

# Rutas (con puntos) donde la API informa el total de registros
TOTAL_COUNT_PATHS: tuple[str, ...] = (
    "page_summary.total",
    "total_results",
    "total",
    "total_count",
)

# Rutas donde la API informa el tamano de pagina aplicado
PAGE_SIZE_PATHS: tuple[str, ...] = (
    "page_summary.page_size",
    "page_size",
)


@dataclass(frozen=True)
class PaginationSummary:
    """Metadatos de paginacion de una respuesta."""

    total_records: Optional[int]
    page_size: Optional[int] = None


@dataclass(frozen=True)
class PageResponse:
    """Una pagina ya descargada y desempaquetada."""

    page_number: int
    records: list[Any]
    summary: PaginationSummary
    latency_ms: float = 0.0


def _dig(payload: Any, path: str) -> Any:
    current = payload
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def extract_pagination(payload: Any) -> PaginationSummary:
    """
    Lee total de registros y tamano de pagina desde la respuesta.

    Prueba cada ruta conocida en orden y usa la primera con un entero valido.
    """
    total = None
    for path in TOTAL_COUNT_PATHS:
        total = _as_int(_dig(payload, path))
        if total is not None:
            break

    page_size = None
    for path in PAGE_SIZE_PATHS:
        page_size = _as_int(_dig(payload, path))
        if page_size is not None:
            break

    return PaginationSummary(total_records=total, page_size=page_size)


def extract_records(payload: Any, list_fields: Sequence[str]) -> list[Any]:
    """
    Obtiene el array de registros de una respuesta.

    - Un body que ya es lista se devuelve tal cual.
    - Si no, se usa el primer campo de `list_fields` que contenga una lista.

    Raises:
        DataShapeError: Si no se encuentra ningun array de registros
    """
    if isinstance(payload, list):
        return payload
    if not isinstance(payload, dict):
        raise DataShapeError(
            f"Respuesta inesperada del marketplace: {type(payload).__name__}"
        )

    for name in list_fields:
        value = payload.get(name)
        if isinstance(value, list):
            return value

    raise DataShapeError(
        f"La respuesta no contiene ninguno de los campos {list(list_fields)}; "
        f"claves recibidas: {sorted(payload.keys())[:10]}"
    )

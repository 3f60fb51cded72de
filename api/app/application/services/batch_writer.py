"""
Escritura por chunks con aislamiento de fallos.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Sequence

from loguru import logger

from app.application.services.merge_engine import PlannedWrite
from app.domain.repositories.document_store import IDocumentStore
from app.shared.exceptions.sync import StorageWriteError


@dataclass
class WriteSummary:
    """Resultado de escribir las operaciones de una pagina."""

    written: int = 0
    errors: int = 0
    chunks: int = 0
    failed_chunks: int = 0
    failed: list[PlannedWrite] = field(default_factory=list)
    last_error: Optional[str] = None


class BatchWriter:
    """
    Divide las escrituras en chunks de como maximo `max_batch_size` y los
    commitea uno por uno. Si un chunk falla, todos sus registros cuentan como
    error y los chunks siguientes se intentan igual.
    """

    def __init__(self, store: IDocumentStore, max_batch_size: Optional[int] = None):
        limit = store.max_batch_size
        if max_batch_size is not None:
            limit = min(limit, max_batch_size)
        if limit <= 0:
            raise ValueError("El tamano maximo de batch debe ser mayor que cero")
        self._store = store
        self._chunk_size = limit

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    async def write(self, writes: Sequence[PlannedWrite]) -> WriteSummary:
        """
        Commitea las escrituras planificadas.

        Args:
            writes: Escrituras de una pagina, en orden

        Returns:
            WriteSummary: Totales de escritos y errores
        """
        summary = WriteSummary()

        for start in range(0, len(writes), self._chunk_size):
            chunk = list(writes[start:start + self._chunk_size])
            summary.chunks += 1
            try:
                results = await self._store.batch_write([w.op for w in chunk])
            except StorageWriteError as exc:
                # Fallo de chunk: se aisla y se sigue con el siguiente
                summary.failed_chunks += 1
                summary.errors += len(chunk)
                summary.failed.extend(chunk)
                summary.last_error = exc.message
                logger.warning(
                    f"Chunk {summary.chunks} ({len(chunk)} operaciones) no se pudo escribir: {exc.message}"
                )
                continue

            for planned, result in zip(chunk, results):
                if result.success:
                    summary.written += 1
                else:
                    summary.errors += 1
                    summary.failed.append(planned)
                    summary.last_error = result.error

        return summary

"""
Interfaz del store de documentos.
Define el contrato que debe cumplir cualquier implementación.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence


class WriteOpType(str, Enum):
    """Tipos de operacion de escritura."""
    SET = "set"        # reemplaza el documento completo (solo altas)
    MERGE = "merge"    # actualiza solo los campos indicados, crea si no existe
    DELETE = "delete"


@dataclass(frozen=True)
class WriteOp:
    """Operacion individual dentro de un batch."""

    op_type: WriteOpType
    collection: str
    document_id: str
    data: Dict[str, Any] = field(default_factory=dict)
    account_id: Optional[str] = None


@dataclass(frozen=True)
class WriteResult:
    """Resultado por operacion de un batch."""

    document_id: str
    success: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class StoredDocument:
    """Documento leido del store."""

    collection: str
    document_id: str
    data: Dict[str, Any]
    account_id: Optional[str] = None
    updated_at: Optional[datetime] = None


class IDocumentStore(ABC):
    """
    Interfaz del store de documentos.

    Las escrituras se agrupan en batches con un tope de operaciones por
    llamada; cada batch es atomico (todo o nada).
    """

    #: Maximo de operaciones aceptadas por `batch_write`
    max_batch_size: int = 500

    @abstractmethod
    async def query(
        self,
        collection: str,
        field_name: str,
        op: str,
        value: Any,
        account_id: Optional[str] = None,
    ) -> List[StoredDocument]:
        """
        Busca documentos por un campo indexado.

        Args:
            collection: Coleccion a consultar
            field_name: Campo indexado
            op: Operador ("==" o "in")
            value: Valor (o lista de valores para "in")
            account_id: Restringe la busqueda a una cuenta

        Returns:
            List[StoredDocument]: Documentos encontrados
        """
        pass

    @abstractmethod
    async def get(self, collection: str, document_id: str) -> Optional[StoredDocument]:
        """
        Obtiene un documento por su id.

        Returns:
            Optional[StoredDocument]: Documento o None
        """
        pass

    @abstractmethod
    async def batch_write(self, ops: Sequence[WriteOp]) -> List[WriteResult]:
        """
        Aplica un batch de operaciones de forma atomica.

        Args:
            ops: Operaciones (como maximo `max_batch_size`)

        Returns:
            List[WriteResult]: Un resultado por operacion, en el mismo orden

        Raises:
            ValueError: Si el batch supera `max_batch_size`
            StorageWriteError: Si el commit falla
        """
        pass

    @abstractmethod
    async def scan(
        self,
        collection: str,
        account_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[StoredDocument]:
        """
        Lista los documentos de una coleccion.

        Returns:
            List[StoredDocument]: Documentos ordenados por id
        """
        pass

    @abstractmethod
    async def count(self, collection: str, account_id: Optional[str] = None) -> int:
        """
        Cuenta los documentos de una coleccion.

        Returns:
            int: Numero de documentos
        """
        pass

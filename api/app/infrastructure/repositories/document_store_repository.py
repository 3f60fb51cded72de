"""
Store de documentos sobre SQLAlchemy.

Cada documento es una fila con su contenido JSON; los campos consultables
(claves de identidad) se replican en `store_document_keys` para que
`query(field, op, value)` funcione igual en PostgreSQL y SQLite.
"""
import json
from typing import Any, Collection, Iterable, List, Mapping, Optional, Sequence

from loguru import logger
from sqlalchemy import JSON, and_, cast, delete, func, insert, literal, select, update
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.domain.entities.marketplace_record import normalize_key_value
from app.domain.repositories.document_store import (
    IDocumentStore,
    StoredDocument,
    WriteOp,
    WriteOpType,
    WriteResult,
)
from app.infrastructure.database.models import DocumentKeyModel, DocumentModel
from app.shared.exceptions.sync import StorageWriteError
from app.shared.utils.datetime_utils import DateTimeUtils


SUPPORTED_OPERATORS = ("==", "in")


class SqlDocumentStore(IDocumentStore):
    """
    Implementación del store de documentos con SQLAlchemy async.

    Cada llamada abre su propia sesión corta: un `batch_write` es una
    transacción (todo o nada).

    Un MERGE se resuelve dentro del UPDATE sobre el valor commiteado: los
    campos que no vienen en el patch (p.ej. derivados) nunca se reescriben.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        *,
        indexed_fields: Collection[str],
        max_batch_size: int = 500,
    ):
        self._session_factory = session_factory
        self._indexed_fields = frozenset(indexed_fields)
        self.max_batch_size = max_batch_size

    async def query(
        self,
        collection: str,
        field_name: str,
        op: str,
        value: Any,
        account_id: Optional[str] = None,
    ) -> List[StoredDocument]:
        if op not in SUPPORTED_OPERATORS:
            raise ValueError(f"Operador no soportado: '{op}'")
        if field_name not in self._indexed_fields:
            raise ValueError(f"El campo '{field_name}' no esta indexado")

        raw_values: Iterable[Any] = value if op == "in" else [value]
        values = [v for v in (normalize_key_value(item) for item in raw_values) if v is not None]
        if not values:
            return []

        query = (
            select(DocumentModel)
            .join(
                DocumentKeyModel,
                and_(
                    DocumentKeyModel.collection == DocumentModel.collection,
                    DocumentKeyModel.document_id == DocumentModel.document_id,
                ),
            )
            .where(
                DocumentKeyModel.collection == collection,
                DocumentKeyModel.field == field_name,
                DocumentKeyModel.value.in_(values),
            )
            .order_by(DocumentModel.document_id)
        )
        if account_id is not None:
            query = query.where(DocumentModel.account_id == account_id)

        async with self._session_factory() as session:
            result = await session.execute(query)
            return [self._to_document(row) for row in result.scalars().all()]

    async def get(self, collection: str, document_id: str) -> Optional[StoredDocument]:
        async with self._session_factory() as session:
            model = await session.get(DocumentModel, (collection, document_id))
            return self._to_document(model) if model else None

    async def batch_write(self, ops: Sequence[WriteOp]) -> List[WriteResult]:
        if len(ops) > self.max_batch_size:
            raise ValueError(
                f"El batch tiene {len(ops)} operaciones; el maximo es {self.max_batch_size}"
            )
        if not ops:
            return []

        async with self._session_factory() as session:
            try:
                for op in ops:
                    await self._apply(session, op)
                    await session.flush()
                await session.commit()
            except (SQLAlchemyError, TypeError) as e:
                await session.rollback()
                logger.error(f"Fallo el commit de un batch de {len(ops)} operaciones: {e}")
                raise StorageWriteError(
                    f"No se pudo escribir el batch de {len(ops)} operaciones: {e}",
                    operations=len(ops),
                ) from e

        return [WriteResult(document_id=op.document_id, success=True) for op in ops]

    async def scan(
        self,
        collection: str,
        account_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[StoredDocument]:
        query = (
            select(DocumentModel)
            .where(DocumentModel.collection == collection)
            .order_by(DocumentModel.document_id)
        )
        if account_id is not None:
            query = query.where(DocumentModel.account_id == account_id)
        if limit is not None:
            query = query.limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(query)
            return [self._to_document(row) for row in result.scalars().all()]

    async def count(self, collection: str, account_id: Optional[str] = None) -> int:
        query = select(func.count()).select_from(DocumentModel).where(
            DocumentModel.collection == collection
        )
        if account_id is not None:
            query = query.where(DocumentModel.account_id == account_id)

        async with self._session_factory() as session:
            result = await session.execute(query)
            return int(result.scalar_one())

    async def _apply(self, session: AsyncSession, op: WriteOp) -> None:
        pk = (
            DocumentModel.collection == op.collection,
            DocumentModel.document_id == op.document_id,
        )

        if op.op_type == WriteOpType.DELETE:
            await session.execute(delete(DocumentModel).where(*pk))
            await self._clear_keys(session, op.collection, op.document_id)
            return

        exists = await self._lock_existing(session, op.collection, op.document_id)

        if not exists:
            await session.execute(
                insert(DocumentModel).values(
                    collection=op.collection,
                    document_id=op.document_id,
                    account_id=op.account_id,
                    data=dict(op.data),
                )
            )
            data = dict(op.data)
        else:
            values: dict[str, Any] = {}
            if op.op_type == WriteOpType.SET:
                values["data"] = dict(op.data)
            elif op.data:
                # Merge a nivel de campo dentro del UPDATE: los campos que no
                # vienen en el patch se leen del valor ya commiteado
                values["data"] = await self._merge_expression(session, op.data)
            if op.account_id is not None:
                values["account_id"] = op.account_id
            if values:
                await session.execute(update(DocumentModel).where(*pk).values(**values))
            result = await session.execute(select(DocumentModel.data).where(*pk))
            data = dict(result.scalar_one() or {})

        await self._clear_keys(session, op.collection, op.document_id)
        session.add_all(self._index_entries(op.collection, op.document_id, data))

    async def _lock_existing(self, session: AsyncSession, collection: str, document_id: str) -> bool:
        """Comprueba si el documento existe y bloquea su fila hasta el commit (PostgreSQL)."""
        result = await session.execute(
            select(DocumentModel.document_id)
            .where(
                DocumentModel.collection == collection,
                DocumentModel.document_id == document_id,
            )
            .with_for_update()
        )
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def _merge_expression(session: AsyncSession, patch: Mapping[str, Any]):
        """
        Expresion SQL que aplica `patch` sobre la columna data.

        PostgreSQL: `data::jsonb || patch`. SQLite: `json_set` campo a campo.
        Ambas son merges de primer nivel, igual que `{**data, **patch}`.
        """
        connection = await session.connection()
        if connection.dialect.name == "postgresql":
            merged = cast(DocumentModel.data, JSONB).op("||", return_type=JSONB)(
                literal(dict(patch), type_=JSONB)
            )
            return cast(merged, JSON)

        arguments: list[Any] = [DocumentModel.data]
        for key, value in patch.items():
            path = '$."' + str(key).replace('"', '\\"') + '"'
            arguments.extend([path, func.json(json.dumps(value))])
        return func.json_set(*arguments)

    async def _clear_keys(self, session: AsyncSession, collection: str, document_id: str) -> None:
        await session.execute(
            delete(DocumentKeyModel).where(
                DocumentKeyModel.collection == collection,
                DocumentKeyModel.document_id == document_id,
            )
        )

    def _index_entries(self, collection: str, document_id: str, data: dict) -> List[DocumentKeyModel]:
        entries = []
        for field_name in sorted(self._indexed_fields):
            value = normalize_key_value(data.get(field_name))
            if value is None:
                continue
            entries.append(
                DocumentKeyModel(
                    collection=collection,
                    document_id=document_id,
                    field=field_name,
                    value=value[:512],
                )
            )
        return entries

    @staticmethod
    def _to_document(model: DocumentModel) -> StoredDocument:
        return StoredDocument(
            collection=model.collection,
            document_id=model.document_id,
            data=dict(model.data or {}),
            account_id=model.account_id,
            updated_at=DateTimeUtils.ensure_utc(model.updated_at),
        )

"""
Casos de uso de mantenimiento de las colecciones sincronizadas:
estadisticas por cuenta y limpieza de duplicados.
"""
from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, List, Mapping, Optional

from loguru import logger

from app.application.dto.entity_dto import (
    DeduplicationResultDTO,
    DuplicateGroupDTO,
    EntityStatsDTO,
)
from app.application.services.identity_resolver import IdentityResolver
from app.application.services.merge_engine import IDENTITY_KEY_FIELD
from app.domain.entities.marketplace_record import RawRecord
from app.domain.repositories.document_store import IDocumentStore, StoredDocument, WriteOp, WriteOpType
from app.infrastructure.external.marketplace.resource_config import get_resource_config
from app.shared.constants.sync_constants import JobType
from app.shared.exceptions.sync import StorageWriteError
from app.shared.utils.datetime_utils import DateTimeUtils

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_MAX_GROUPS_IN_RESULT = 50


def _parse_ts(value) -> Optional[datetime]:
    if not value:
        return None
    return DateTimeUtils.from_iso_string(value)


class EntityMaintenanceUseCases:
    """Operaciones sobre los documentos ya sincronizados."""

    def __init__(self, store: IDocumentStore, collections: Mapping[JobType, str]):
        self._store = store
        self._collections = collections

    def identity_of(self, doc: StoredDocument, job_type: JobType) -> str:
        """
        Identidad resuelta de un documento almacenado.

        Se recalcula con las claves candidatas del recurso; si el documento
        no tiene ninguna se usa la clave guardada al insertarlo.
        """
        resource = get_resource_config(job_type)
        record = RawRecord.from_payload(doc.data, resource.identity_fields)
        candidates = IdentityResolver(resource.identity_fields).candidate_keys(record)
        if candidates:
            field_name, value = candidates[0]
            return f"{field_name}:{value}"
        return f"{IDENTITY_KEY_FIELD}:{doc.data.get(IDENTITY_KEY_FIELD) or doc.document_id}"

    async def entity_stats(self, job_type: JobType, account_id: str) -> EntityStatsDTO:
        """
        Estadisticas de la coleccion de `job_type` para una cuenta.

        Returns:
            EntityStatsDTO: Totales, duplicados potenciales y ventana de fetch
        """
        collection = self._collections[job_type]
        docs = await self._store.scan(collection, account_id=account_id)
        groups = self._group(docs, job_type)

        fetches = [ts for ts in (_parse_ts(d.data.get("fetchedAt")) for d in docs) if ts]
        since = DateTimeUtils.hours_ago(24)
        recent = sum(
            1 for d in docs
            if (_parse_ts(d.data.get("firstFetchedAt")) or _EPOCH) >= since
        )

        return EntityStatsDTO(
            job_type=job_type,
            account_id=account_id,
            collection=collection,
            total_records=len(docs),
            unique_identities=len(groups),
            potential_duplicates=sum(len(group) - 1 for group in groups.values()),
            unreliable_identities=sum(1 for d in docs if d.data.get("identityReliable") is False),
            oldest_fetch=min(fetches) if fetches else None,
            newest_fetch=max(fetches) if fetches else None,
            first_fetched_last_24h=recent,
        )

    async def remove_duplicates(
        self,
        job_type: JobType,
        account_id: str,
        dry_run: bool = True,
    ) -> DeduplicationResultDTO:
        """
        Agrupa documentos por identidad y borra todos menos el mas reciente.

        Args:
            job_type: Recurso a limpiar
            account_id: Cuenta
            dry_run: Si es True solo informa lo que se borraria

        Returns:
            DeduplicationResultDTO: Grupos encontrados y documentos borrados
        """
        collection = self._collections[job_type]
        docs = await self._store.scan(collection, account_id=account_id)
        groups = {key: items for key, items in self._group(docs, job_type).items() if len(items) > 1}

        result_groups: List[DuplicateGroupDTO] = []
        to_delete: List[str] = []
        for identity, items in sorted(groups.items()):
            ordered = sorted(items, key=self._freshness, reverse=True)
            removed = [doc.document_id for doc in ordered[1:]]
            to_delete.extend(removed)
            if len(result_groups) < _MAX_GROUPS_IN_RESULT:
                result_groups.append(DuplicateGroupDTO(
                    identity=identity,
                    kept_id=ordered[0].document_id,
                    removed_ids=removed,
                ))

        deleted = 0
        failed = 0
        if not dry_run and to_delete:
            chunk_size = self._store.max_batch_size
            for start in range(0, len(to_delete), chunk_size):
                chunk = to_delete[start:start + chunk_size]
                ops = [WriteOp(WriteOpType.DELETE, collection, doc_id, account_id=account_id) for doc_id in chunk]
                try:
                    results = await self._store.batch_write(ops)
                except StorageWriteError as e:
                    failed += len(chunk)
                    logger.warning(f"No se pudo borrar un chunk de {len(chunk)} duplicados: {e.message}")
                    continue
                deleted += sum(1 for r in results if r.success)
                failed += sum(1 for r in results if not r.success)

        if to_delete:
            action = "detectados" if dry_run else "borrados"
            logger.info(
                f"Duplicados en {collection} (cuenta {account_id}): {len(to_delete)} {action} "
                f"en {len(groups)} grupos"
            )

        return DeduplicationResultDTO(
            job_type=job_type,
            account_id=account_id,
            collection=collection,
            dry_run=dry_run,
            scanned=len(docs),
            duplicate_groups=len(groups),
            duplicates_found=len(to_delete),
            deleted=deleted,
            failed=failed,
            groups=result_groups,
        )

    def _group(self, docs: List[StoredDocument], job_type: JobType) -> Dict[str, List[StoredDocument]]:
        groups: Dict[str, List[StoredDocument]] = defaultdict(list)
        for doc in docs:
            groups[self.identity_of(doc, job_type)].append(doc)
        return groups

    @staticmethod
    def _freshness(doc: StoredDocument):
        stamps = [
            _parse_ts(doc.data.get("lastUpdatedAt")),
            _parse_ts(doc.data.get("fetchedAt")),
            _parse_ts(doc.data.get("firstFetchedAt")),
        ]
        latest = max((ts for ts in stamps if ts), default=_EPOCH)
        stored = DateTimeUtils.ensure_utc(doc.updated_at) or _EPOCH
        return latest, stored, doc.document_id

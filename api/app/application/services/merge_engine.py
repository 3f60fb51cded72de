"""
Motor de merge: decide alta vs actualizacion y arma el payload de escritura.

Reglas:
- Se busca un documento existente por CUALQUIER clave candidata del registro
  (no solo la canonica), para absorber cambios de clave entre corridas.
- Alta: todos los campos del proveedor salvo los derivados + metadatos
  (fetchedAt, firstFetchedAt).
- Existente: diff restringido a la allow-list; numeros iguales dentro de la
  tolerancia; valores entrantes None no se comparan. Si hay cambios se escriben
  solo esos campos + lastUpdatedAt y fetchedAt (merge a nivel de campo).
- Los campos derivados (deny-list) nunca se leen, comparan ni escriben.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Sequence

from loguru import logger

from app.application.services.identity_resolver import IdentityResolver
from app.domain.entities.marketplace_record import IdentityKey, RawRecord, normalize_key_value
from app.domain.entities.sync_job import RecordCounts
from app.domain.repositories.document_store import IDocumentStore, StoredDocument, WriteOp, WriteOpType
from app.infrastructure.external.marketplace.resource_config import ResourceConfig
from app.shared.constants.sync_constants import NUMERIC_TOLERANCE, SOURCE_NAME
from app.shared.exceptions.sync import DataShapeError
from app.shared.utils.datetime_utils import DateTimeUtils

IDENTITY_KEY_FIELD = "identityKey"


class WriteOutcome(str, Enum):
    """Como se cuenta un registro si su escritura tiene exito."""
    NEW = "new"
    UPDATED = "updated"


@dataclass(frozen=True)
class PlannedWrite:
    """Operacion de escritura asociada al registro que la origino."""

    op: WriteOp
    outcome: WriteOutcome
    identity: IdentityKey


@dataclass
class MergePlan:
    """Resultado del merge de una pagina."""

    writes: list[PlannedWrite] = field(default_factory=list)
    counts: RecordCounts = field(default_factory=RecordCounts)
    records: int = 0
    shape_errors: list[str] = field(default_factory=list)
    unreliable_keys: int = 0


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def values_differ(old: Any, new: Any, tolerance: float = NUMERIC_TOLERANCE) -> bool:
    """
    Compara un valor almacenado con el entrante.

    Numeros: distintos solo si difieren en mas de `tolerance`.
    Resto: desigualdad simple.
    """
    if _is_number(old) and _is_number(new):
        return abs(float(old) - float(new)) > tolerance
    return old != new


class MergeEngine:
    """Planifica las escrituras de una pagina de registros."""

    def __init__(
        self,
        store: IDocumentStore,
        *,
        tolerance: float = NUMERIC_TOLERANCE,
        clock: Callable[[], Any] = DateTimeUtils.now_utc,
    ):
        self._store = store
        self._tolerance = tolerance
        self._clock = clock

    def diff(self, existing: Mapping[str, Any], record: RawRecord, resource: ResourceConfig) -> dict[str, Any]:
        """
        Campos refrescables que cambiaron.

        Args:
            existing: Documento almacenado (o su vista pendiente)
            record: Registro entrante
            resource: Config del recurso (allow-list y deny-list)

        Returns:
            dict[str, Any]: Campos a escribir; vacio si no hay cambios
        """
        changes: dict[str, Any] = {}
        for name in sorted(resource.refreshable_fields):
            if not resource.is_refreshable(name) or name not in record:
                continue
            incoming = record.get(name)
            if incoming is None:
                continue
            if name not in existing or values_differ(existing.get(name), incoming, self._tolerance):
                changes[name] = incoming
        return changes

    def build_insert(
        self,
        record: RawRecord,
        identity: IdentityKey,
        *,
        account_id: str,
        resource: ResourceConfig,
        fetched_at: str,
    ) -> dict[str, Any]:
        """Payload completo de un documento nuevo (sin campos derivados)."""
        data = {
            name: value
            for name, value in record.as_dict().items()
            if not resource.is_derived(name)
        }
        data.update({
            "accountId": account_id,
            IDENTITY_KEY_FIELD: identity.value,
            "identityField": identity.field,
            "identityReliable": identity.reliable,
            "source": SOURCE_NAME,
            "fetchedAt": fetched_at,
            "firstFetchedAt": fetched_at,
        })
        return data

    async def plan_page(
        self,
        payloads: Sequence[Any],
        *,
        resource: ResourceConfig,
        collection: str,
        account_id: str,
    ) -> MergePlan:
        """
        Decide, registro a registro, si es alta, actualizacion u omision.

        Los registros que no son objetos cuentan como `skipped`. Dos registros
        de la misma pagina con la misma clave se resuelven contra la escritura
        pendiente, asi que nunca cuentan dos altas.
        """
        resolver = IdentityResolver(resource.identity_fields)
        plan = MergePlan(records=len(payloads))
        now = DateTimeUtils.to_iso_string(self._clock())

        parsed: list[tuple[RawRecord, IdentityKey]] = []
        for payload in payloads:
            try:
                record = RawRecord.from_payload(payload, resource.identity_fields)
            except DataShapeError as exc:
                plan.counts.skipped += 1
                plan.shape_errors.append(exc.message)
                continue
            identity = resolver.resolve(record)
            if not identity.reliable:
                plan.unreliable_keys += 1
            parsed.append((record, identity))

        if plan.shape_errors:
            logger.warning(
                f"{len(plan.shape_errors)} registros con forma invalida omitidos en {collection}"
            )

        existing = await self._prefetch(parsed, resource=resource, collection=collection, account_id=account_id)
        views: dict[str, Mapping[str, Any]] = {}
        pending_keys: dict[tuple[str, str], str] = {}

        for record, identity in parsed:
            document_id, current = self._match(identity, existing, views, pending_keys)

            if current is None:
                document_id = identity.document_id(account_id)
                data = self.build_insert(
                    record, identity, account_id=account_id, resource=resource, fetched_at=now
                )
                plan.writes.append(PlannedWrite(
                    op=WriteOp(WriteOpType.SET, collection, document_id, data, account_id),
                    outcome=WriteOutcome.NEW,
                    identity=identity,
                ))
                plan.counts.new += 1
                views[document_id] = data
                self._register_keys(identity, document_id, pending_keys)
                continue

            changes = self.diff(current, record, resource)
            if not changes:
                plan.counts.skipped += 1
                views[document_id] = current
                self._register_keys(identity, document_id, pending_keys)
                continue

            changes["lastUpdatedAt"] = now
            changes["fetchedAt"] = now
            plan.writes.append(PlannedWrite(
                op=WriteOp(WriteOpType.MERGE, collection, document_id, changes, account_id),
                outcome=WriteOutcome.UPDATED,
                identity=identity,
            ))
            plan.counts.updated += 1
            views[document_id] = {**current, **changes}
            self._register_keys(identity, document_id, pending_keys)

        return plan

    async def _prefetch(
        self,
        parsed: Sequence[tuple[RawRecord, IdentityKey]],
        *,
        resource: ResourceConfig,
        collection: str,
        account_id: str,
    ) -> dict[tuple[str, str], StoredDocument]:
        """Busca en el store, con una consulta por campo, todas las claves de la pagina."""
        wanted: dict[str, set[str]] = {name: set() for name in resource.identity_fields}
        wanted[IDENTITY_KEY_FIELD] = set()
        for _, identity in parsed:
            if identity.reliable:
                for name, value in identity.candidates:
                    wanted[name].add(value)
            else:
                wanted[IDENTITY_KEY_FIELD].add(identity.value)

        found: dict[tuple[str, str], StoredDocument] = {}
        for name, values in wanted.items():
            if not values:
                continue
            docs = await self._store.query(collection, name, "in", sorted(values), account_id=account_id)
            for doc in docs:
                value = normalize_key_value(doc.data.get(name))
                if value is not None:
                    found.setdefault((name, value), doc)
        return found

    @staticmethod
    def _lookup_keys(identity: IdentityKey) -> list[tuple[str, str]]:
        if identity.reliable:
            return list(identity.candidates)
        return [(IDENTITY_KEY_FIELD, identity.value)]

    def _match(
        self,
        identity: IdentityKey,
        existing: Mapping[tuple[str, str], StoredDocument],
        views: Mapping[str, Mapping[str, Any]],
        pending_keys: Mapping[tuple[str, str], str],
    ) -> tuple[Optional[str], Optional[Mapping[str, Any]]]:
        for key in self._lookup_keys(identity):
            document_id = pending_keys.get(key)
            if document_id is None and key in existing:
                document_id = existing[key].document_id
            if document_id is None:
                continue
            if document_id in views:
                return document_id, views[document_id]
            return document_id, existing[key].data
        return None, None

    def _register_keys(
        self,
        identity: IdentityKey,
        document_id: str,
        pending_keys: dict[tuple[str, str], str],
    ) -> None:
        for key in self._lookup_keys(identity):
            pending_keys.setdefault(key, document_id)

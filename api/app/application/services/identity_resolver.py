"""
Resolucion de la clave de identidad de cada registro del marketplace.

Orden de prioridad fijo por recurso (ver `resource_config`):
- productos: tsin_id -> offer_id -> sku
- ventas:    order_id -> sale_id

Si el registro no trae ninguna clave se usa una huella determinista del
contenido (sha256 del JSON canonico) marcada como no confiable: identifica
al registro en esta corrida, pero no sirve para re-emparejarlo si cambia.
"""
from __future__ import annotations

import hashlib
import json
from typing import Any, Mapping, Sequence

from app.domain.entities.marketplace_record import IdentityKey, RawRecord, normalize_key_value

FINGERPRINT_FIELD = "fingerprint"


def content_fingerprint(payload: Mapping[str, Any]) -> str:
    """
    Huella estable del contenido de un registro.

    El JSON se serializa con claves ordenadas y sin espacios, por lo que el
    resultado no depende del orden de los campos ni del proceso.
    """
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str, ensure_ascii=False)
    return "fp_" + hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:32]


class IdentityResolver:
    """Calcula claves de identidad segun un orden de prioridad."""

    def __init__(self, key_fields: Sequence[str]):
        if not key_fields:
            raise ValueError("Se necesita al menos un campo de identidad")
        self._key_fields = tuple(key_fields)

    @property
    def key_fields(self) -> tuple[str, ...]:
        return self._key_fields

    def candidate_keys(self, record: RawRecord) -> list[tuple[str, str]]:
        """
        Todas las claves presentes en el registro, en orden de prioridad.

        Returns:
            list[tuple[str, str]]: Pares (campo, valor normalizado)
        """
        candidates = []
        for name in self._key_fields:
            value = normalize_key_value(record.get(name))
            if value is not None:
                candidates.append((name, value))
        return candidates

    def resolve(self, record: RawRecord) -> IdentityKey:
        """
        Devuelve la clave canonica del registro.

        Args:
            record: Registro crudo

        Returns:
            IdentityKey: Primera clave presente, o la huella del contenido
            con `reliable=False` si no hay ninguna
        """
        candidates = tuple(self.candidate_keys(record))
        if candidates:
            key_field, key_value = candidates[0]
            return IdentityKey(field=key_field, value=key_value, reliable=True, candidates=candidates)

        return IdentityKey(
            field=FINGERPRINT_FIELD,
            value=content_fingerprint(record.as_dict()),
            reliable=False,
            candidates=(),
        )

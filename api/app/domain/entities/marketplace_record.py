"""
Registros crudos del marketplace y claves de identidad.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence

from app.shared.exceptions.sync import DataShapeError


def normalize_key_value(value: Any) -> Optional[str]:
    """
    Normaliza el valor de una clave de identidad a string.

    123, 123.0 y " 123 " producen "123". Valores vacios, booleanos o
    contenedores no sirven como clave y devuelven None.
    """
    if value is None or isinstance(value, (bool, dict, list)):
        return None
    if isinstance(value, float):
        if value != value:  # NaN
            return None
        if value.is_integer():
            return str(int(value))
        return repr(value)
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class RawRecord:
    """
    Registro tal como llega del marketplace.

    - known: campos candidatos a clave de identidad presentes en el registro
    - extra: todos los demas campos del proveedor, sin interpretar

    Los campos que el proveedor agregue en el futuro viajan en `extra` sin
    requerir cambios de esquema.
    """

    known: Mapping[str, Any]
    extra: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any, identity_fields: Sequence[str]) -> "RawRecord":
        """
        Separa un item de la respuesta en campos conocidos y passthrough.

        Raises:
            DataShapeError: Si el item no es un objeto JSON
        """
        if not isinstance(payload, Mapping):
            raise DataShapeError(
                f"Se esperaba un objeto por registro y llego {type(payload).__name__}"
            )
        known = {k: payload[k] for k in identity_fields if k in payload}
        extra = {k: v for k, v in payload.items() if k not in known}
        return cls(known=known, extra=extra)

    def get(self, name: str, default: Any = None) -> Any:
        if name in self.known:
            return self.known[name]
        return self.extra.get(name, default)

    def __contains__(self, name: str) -> bool:
        return name in self.known or name in self.extra

    def as_dict(self) -> dict[str, Any]:
        """Vista plana del registro (known + extra)."""
        return {**self.extra, **self.known}


@dataclass(frozen=True)
class IdentityKey:
    """
    Clave canonica de un registro.

    - field: campo que aporto la clave ("fingerprint" si no hubo ninguno)
    - value: valor normalizado a string
    - reliable: False cuando la clave es una huella del contenido
    - candidates: todas las claves presentes, en orden de prioridad
    """

    field: str
    value: str
    reliable: bool = True
    candidates: tuple[tuple[str, str], ...] = ()

    def document_id(self, account_id: str) -> str:
        """Id determinista del documento para una cuenta."""
        return f"{account_id}:{self.field}:{self.value}"

    def candidate_value(self, name: str) -> Optional[str]:
        for candidate_field, candidate_value in self.candidates:
            if candidate_field == name:
                return candidate_value
        return None

"""
Interfaz del proveedor de proxies de salida.

El cliente del marketplace la usa como selector opcional de egress por
request: si no hay proveedor, las llamadas salen directas.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Protocol


@dataclass(frozen=True)
class ProxyLease:
    """Proxy asignado a una request."""

    proxy_id: str
    address: str

    def as_requests_proxies(self) -> dict[str, str]:
        return {"http": self.address, "https": self.address}


class ProxyProvider(Protocol):
    """
    Selecciona proxies y recibe el resultado de cada uso.

    Implementaciones:
    - Pool estatico round-robin (PROXY_URLS).
    - Fake para tests.
    """

    def get_next_proxy(
        self,
        strategy: str,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> Optional[ProxyLease]:
        """Devuelve el proxy a usar, o None para salir directo."""
        ...

    def report_outcome(self, proxy_id: str, success: bool, latency_ms: float) -> None:
        """Registra el resultado de una request hecha con `proxy_id`."""
        ...

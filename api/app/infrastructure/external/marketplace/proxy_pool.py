"""
Pool estatico de proxies de salida (PROXY_URLS).

Implementa `ProxyProvider` con dos estrategias:
- round_robin: rota en orden
- least_failures: elige el proxy con menor tasa de fallos (empate -> menor latencia)

Es seguro para uso desde varios threads (el cliente corre en `asyncio.to_thread`).
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence

from loguru import logger

from app.application.interfaces.proxy_provider import ProxyLease


@dataclass
class ProxyStats:
    """Estadisticas acumuladas de un proxy."""

    successes: int = 0
    failures: int = 0
    total_latency_ms: float = 0.0

    @property
    def requests(self) -> int:
        return self.successes + self.failures

    @property
    def failure_rate(self) -> float:
        return self.failures / self.requests if self.requests else 0.0

    @property
    def avg_latency_ms(self) -> float:
        return self.total_latency_ms / self.requests if self.requests else 0.0


class StaticProxyPool:
    """Pool de proxies configurado por lista fija de URLs."""

    STRATEGIES = ("round_robin", "least_failures")

    def __init__(self, addresses: Sequence[str]) -> None:
        self._leases = [
            ProxyLease(proxy_id=f"proxy-{index}", address=address)
            for index, address in enumerate(addresses)
        ]
        self._stats: dict[str, ProxyStats] = {lease.proxy_id: ProxyStats() for lease in self._leases}
        self._cursor = 0
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._leases)

    def get_next_proxy(
        self,
        strategy: str,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> Optional[ProxyLease]:
        excluded = set((filters or {}).get("exclude", ()))
        candidates = [lease for lease in self._leases if lease.proxy_id not in excluded]
        if not candidates:
            return None

        with self._lock:
            if strategy == "least_failures":
                return min(
                    candidates,
                    key=lambda lease: (
                        self._stats[lease.proxy_id].failure_rate,
                        self._stats[lease.proxy_id].avg_latency_ms,
                    ),
                )
            if strategy != "round_robin":
                logger.warning(f"Estrategia de proxy desconocida '{strategy}', se usa round_robin")
            lease = candidates[self._cursor % len(candidates)]
            self._cursor += 1
            return lease

    def report_outcome(self, proxy_id: str, success: bool, latency_ms: float) -> None:
        with self._lock:
            stats = self._stats.get(proxy_id)
            if stats is None:
                logger.warning(f"Resultado reportado para proxy desconocido: {proxy_id}")
                return
            if success:
                stats.successes += 1
            else:
                stats.failures += 1
            stats.total_latency_ms += max(0.0, latency_ms)

    def stats(self) -> dict[str, ProxyStats]:
        with self._lock:
            return {
                proxy_id: ProxyStats(s.successes, s.failures, s.total_latency_ms)
                for proxy_id, s in self._stats.items()
            }


def build_proxy_pool(addresses: Sequence[str]) -> Optional[StaticProxyPool]:
    """Crea el pool si hay direcciones configuradas; si no, salida directa."""
    if not addresses:
        return None
    logger.info(f"Pool de proxies configurado con {len(addresses)} direcciones")
    return StaticProxyPool(addresses)

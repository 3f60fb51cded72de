"""
Cliente mínimo de la Seller API del marketplace (sin SDKs externos).

Requisitos cubiertos:
- requests
- paginación por page_number / page_size
- rate-limit/backoff (429, 5xx, errores de red) con reintentos acotados
- 401/403 como error fatal
- pausa fija entre páginas exitosas
- proxy de salida opcional por request
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import requests
from loguru import logger

from app.application.interfaces.proxy_provider import ProxyLease, ProxyProvider
from app.shared.exceptions.sync import (
    AuthError,
    DataShapeError,
    RateLimitError,
    SyncConfigError,
    TransientNetworkError,
)

from .resource_config import ResourceConfig
from .types import PageResponse, PaginationSummary, extract_pagination, extract_records


@dataclass(frozen=True)
class MarketplaceCredentials:
    api_key: str
    account_id: str


class MarketplaceClient:
    """
    Cliente HTTP del marketplace para un account.

    Importante:
    - Es síncrono: el controlador lo ejecuta en un thread (`asyncio.to_thread`).
    - No interpreta los registros: solo extrae el array y la paginación.
    """

    def __init__(
        self,
        credentials: MarketplaceCredentials,
        *,
        session: Optional[requests.Session] = None,
        base_url: str = "https://seller-api.takealot.com",
        timeout_s: int = 60,
        max_retries: int = 4,
        min_backoff_s: float = 1.0,
        max_backoff_s: float = 30.0,
        page_delay_s: float = 0.15,
        proxy_provider: Optional[ProxyProvider] = None,
        proxy_strategy: str = "round_robin",
    ) -> None:
        if not credentials.api_key:
            raise SyncConfigError(
                f"No hay API key del marketplace para la cuenta '{credentials.account_id}'"
            )
        self._creds = credentials
        self._base_url = base_url.rstrip("/")
        self._timeout_s = timeout_s
        self._max_retries = max_retries
        self._min_backoff_s = min_backoff_s
        self._max_backoff_s = max_backoff_s
        self._page_delay_s = page_delay_s
        self._proxy_provider = proxy_provider
        self._proxy_strategy = proxy_strategy
        self._owns_session = session is None
        self._session = session or requests.Session()
        self._last_success_at: Optional[float] = None

    @property
    def account_id(self) -> str:
        return self._creds.account_id

    def close(self) -> None:
        """Cierra la sesion HTTP si la creo este cliente (una inyectada es del llamador)."""
        if self._owns_session:
            self._session.close()

    def fetch_page(
        self,
        resource: ResourceConfig,
        page_number: int,
        page_size: int,
        query_params: Optional[Mapping[str, Any]] = None,
    ) -> PageResponse:
        """
        Descarga una página y extrae sus registros.

        Raises:
            AuthError: 401/403
            RateLimitError: 429 persistente tras los reintentos
            TransientNetworkError: red u otro HTTP no-2xx tras los reintentos
            DataShapeError: respuesta sin array de registros reconocible
        """
        self._throttle()

        params: dict[str, Any] = dict(query_params or {})
        params["page_number"] = page_number
        params["page_size"] = page_size

        started = time.monotonic()
        payload = self._request_json(f"{self._base_url}{resource.endpoint}", params=params, page=page_number)
        latency_ms = (time.monotonic() - started) * 1000
        self._last_success_at = time.monotonic()

        records = extract_records(payload, resource.list_fields)
        logger.debug(
            f"Pagina {page_number} de {resource.endpoint}: {len(records)} registros "
            f"({latency_ms:.0f} ms)"
        )
        return PageResponse(
            page_number=page_number,
            records=records,
            summary=extract_pagination(payload),
            latency_ms=latency_ms,
        )

    def probe_total(
        self,
        resource: ResourceConfig,
        query_params: Optional[Mapping[str, Any]] = None,
    ) -> PaginationSummary:
        """
        Pide una página mínima (page_size=1) para leer el total de registros.

        Raises:
            DataShapeError: Si la respuesta no informa el total
        """
        params: dict[str, Any] = dict(query_params or {})
        params["page_number"] = 1
        params["page_size"] = 1

        payload = self._request_json(f"{self._base_url}{resource.endpoint}", params=params, page=1)
        self._last_success_at = time.monotonic()

        summary = extract_pagination(payload)
        if summary.total_records is None:
            raise DataShapeError(
                f"{resource.endpoint} no informa el total de registros en la paginacion"
            )
        return summary

    def _throttle(self) -> None:
        """Respeta la pausa mínima entre páginas exitosas."""
        if self._last_success_at is None or self._page_delay_s <= 0:
            return
        elapsed = time.monotonic() - self._last_success_at
        if elapsed < self._page_delay_s:
            time.sleep(self._page_delay_s - elapsed)

    def _backoff_seconds(self, attempt: int, retry_after: Optional[str]) -> float:
        if retry_after:
            try:
                return min(self._max_backoff_s, float(retry_after))
            except ValueError:
                return self._min_backoff_s
        # Exponencial simple + jitter proporcional
        base = min(self._max_backoff_s, self._min_backoff_s * (2**attempt))
        return base + (0.15 * base)

    def _next_proxy(self) -> Optional[ProxyLease]:
        if self._proxy_provider is None:
            return None
        return self._proxy_provider.get_next_proxy(
            self._proxy_strategy, {"account_id": self._creds.account_id}
        )

    def _report_proxy(self, lease: Optional[ProxyLease], success: bool, started: float) -> None:
        if lease is None or self._proxy_provider is None:
            return
        latency_ms = (time.monotonic() - started) * 1000
        self._proxy_provider.report_outcome(lease.proxy_id, success, latency_ms)

    def _request_json(self, url: str, *, params: dict[str, Any], page: int) -> Any:
        """
        Request HTTP con backoff.

        Estrategia:
        - 429: respeta Retry-After si existe, si no exponencial con jitter simple.
        - 5xx / otros 4xx / errores de red: exponencial con jitter, con tope.
        - 401/403: error inmediato (API key inválida o sin permisos).
        """
        headers = {
            "Authorization": f"Key {self._creds.api_key}",
            "Accept": "application/json",
        }

        for attempt in range(self._max_retries + 1):
            lease = self._next_proxy()
            started = time.monotonic()
            try:
                resp = self._session.request(
                    method="GET",
                    url=url,
                    params=params,
                    headers=headers,
                    timeout=self._timeout_s,
                    proxies=lease.as_requests_proxies() if lease else None,
                )
            except requests.RequestException as e:
                self._report_proxy(lease, False, started)
                if attempt >= self._max_retries:
                    raise TransientNetworkError(
                        f"Error de red en pagina {page} tras {attempt + 1} intentos: {e}"
                    ) from e
                sleep_s = self._backoff_seconds(attempt, None)
                logger.warning(f"Error de red en pagina {page} ({e}); reintento en {sleep_s:.1f}s")
                time.sleep(sleep_s)
                continue

            ok = 200 <= resp.status_code < 300
            self._report_proxy(lease, ok, started)

            if ok:
                try:
                    return resp.json()
                except ValueError as e:
                    raise DataShapeError(f"La pagina {page} no devolvio JSON valido") from e

            # Errores no recuperables
            if resp.status_code in (401, 403):
                raise AuthError(resp.status_code)

            if resp.status_code == 429:
                if attempt >= self._max_retries:
                    raise RateLimitError(page=page, attempts=attempt + 1)
                sleep_s = self._backoff_seconds(attempt, resp.headers.get("Retry-After"))
                logger.warning(f"Rate limit (429) en pagina {page}; reintento {attempt + 1} en {sleep_s:.1f}s")
                time.sleep(sleep_s)
                continue

            # Resto de 4xx/5xx: recuperables con tope
            if attempt >= self._max_retries:
                raise TransientNetworkError(
                    f"Marketplace error {resp.status_code} en pagina {page} tras {attempt + 1} intentos: "
                    f"{resp.text[:300]}",
                    upstream_status=resp.status_code,
                )
            sleep_s = self._backoff_seconds(attempt, None)
            logger.warning(f"HTTP {resp.status_code} en pagina {page}; reintento en {sleep_s:.1f}s")
            time.sleep(sleep_s)

        # Solo se llega aqui con max_retries < 0
        raise TransientNetworkError(f"Sin intentos disponibles para la pagina {page}")


def build_from_settings(
    account_id: str,
    settings: Any,
    *,
    proxy_provider: Optional[ProxyProvider] = None,
    session: Optional[requests.Session] = None,
) -> MarketplaceClient:
    """
    Constructor “oficial” del cliente leyendo la configuración de la app.

    La API key se busca primero en MARKETPLACE_ACCOUNT_KEYS[account_id] y,
    si no existe, en MARKETPLACE_API_KEY.
    """
    api_key = settings.MARKETPLACE_ACCOUNT_KEYS.get(account_id) or settings.MARKETPLACE_API_KEY
    return MarketplaceClient(
        MarketplaceCredentials(api_key=api_key, account_id=account_id),
        session=session,
        base_url=settings.MARKETPLACE_BASE_URL,
        timeout_s=settings.MARKETPLACE_TIMEOUT_S,
        max_retries=settings.MARKETPLACE_MAX_RETRIES,
        min_backoff_s=settings.MARKETPLACE_MIN_BACKOFF_S,
        max_backoff_s=settings.MARKETPLACE_MAX_BACKOFF_S,
        page_delay_s=settings.MARKETPLACE_PAGE_DELAY_S,
        proxy_provider=proxy_provider,
        proxy_strategy=settings.PROXY_STRATEGY,
    )

"""
Configuracion por recurso del marketplace (productos y ventas).

Aqui se decide, para cada tipo de job:
- endpoint y campo con el array de registros
- orden de prioridad de las claves de identidad
- campos refrescables (allow-list): los unicos que el motor compara y escribe
- campos derivados (deny-list): calculados por otro proceso, nunca se tocan
- coleccion destino segun la version de layout del store

Este módulo no realiza I/O: solo define configuración.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping

from app.shared.constants.sync_constants import JobType
from app.shared.exceptions.sync import SyncConfigError

# Formas alternativas del array de registros cuando falta el campo principal
FALLBACK_LIST_FIELDS: tuple[str, ...] = ("items", "data", "results")


@dataclass(frozen=True)
class ResourceConfig:
    """
    Config de un recurso paginado del marketplace.

    NOTA sobre identidad:
    - `identity_fields` esta en orden de prioridad; el primero presente es la
      clave canonica. Todos los presentes se usan para buscar duplicados.
    """

    job_type: JobType
    endpoint: str
    list_field: str
    identity_fields: tuple[str, ...]
    refreshable_fields: frozenset[str]
    derived_fields: frozenset[str] = field(default_factory=frozenset)
    api_source: str = "takealot"

    @property
    def list_fields(self) -> tuple[str, ...]:
        return (self.list_field,) + FALLBACK_LIST_FIELDS

    def is_refreshable(self, name: str) -> bool:
        return name in self.refreshable_fields and name not in self.derived_fields

    def is_derived(self, name: str) -> bool:
        return name in self.derived_fields


# Metricas que calcula el proceso de analitica sobre cada producto
PRODUCT_DERIVED_FIELDS = frozenset({
    "qty_require",
    "quantity_required",
    "qtyRequire",
    "total_sold",
    "totalSold",
    "sold_30_days",
    "last_30_days_sold",
    "last30DaysSold",
    "returned_30_days",
    "last_30_days_return",
    "last30DaysReturn",
    "avg_selling_price",
    "avgSellingPrice",
    "return_rate",
    "returnRate",
    "days_since_last_order",
    "daysSinceLastOrder",
    "has_tsin_metrics",
    "has_legacy_metrics",
    "metrics_last_calculated",
    "calculation_method",
    "tsinCalculatedMetrics",
    "calculatedMetrics",
    "lastTsinCalculation",
})

PRODUCT_REFRESHABLE_FIELDS = frozenset({
    "tsin_id",
    "offer_id",
    "sku",
    "title",
    "product_title",
    "brand",
    "category",
    "subcategory",
    "description",
    "selling_price",
    "rrp",
    "recommended_retail_price",
    "cost_price",
    "quantity_available",
    "stock_at_takealot",
    "stock_at_takealot_total",
    "stock_on_way",
    "total_stock_on_way",
    "status",
    "is_active",
    "image_url",
    "image_url_1",
    "image_url_2",
    "image_url_3",
    "lead_time",
    "weight",
    "dimensions",
})

SALES_DERIVED_FIELDS = frozenset({
    "profit",
    "profit_margin",
    "calculatedMetrics",
    "metrics_last_calculated",
})

SALES_REFRESHABLE_FIELDS = frozenset({
    "order_id",
    "sale_id",
    "order_item_id",
    "tsin_id",
    "offer_id",
    "sku",
    "product_title",
    "selling_price",
    "quantity",
    "order_status",
    "sale_status",
    "total_fee",
    "commission",
    "shipping_fee",
    "order_date",
    "delivery_date",
    "tracking_number",
    "dc",
    "customer_dc",
})


RESOURCE_CONFIGS: dict[JobType, ResourceConfig] = {
    JobType.PRODUCTS: ResourceConfig(
        job_type=JobType.PRODUCTS,
        endpoint="/v2/offers",
        list_field="offers",
        identity_fields=("tsin_id", "offer_id", "sku"),
        refreshable_fields=PRODUCT_REFRESHABLE_FIELDS,
        derived_fields=PRODUCT_DERIVED_FIELDS,
    ),
    JobType.SALES: ResourceConfig(
        job_type=JobType.SALES,
        endpoint="/v2/sales",
        list_field="sales",
        identity_fields=("order_id", "sale_id"),
        refreshable_fields=SALES_REFRESHABLE_FIELDS,
        derived_fields=SALES_DERIVED_FIELDS,
    ),
}


# Layouts de colecciones del store. La version se fija por configuracion
# (STORE_LAYOUT_VERSION) y se resuelve una sola vez al arrancar.
STORE_LAYOUTS: dict[str, dict[JobType, str]] = {
    "v1": {
        JobType.PRODUCTS: "takealot_offers",
        JobType.SALES: "takealot_sales",
    },
    "v2": {
        JobType.PRODUCTS: "marketplace_products",
        JobType.SALES: "marketplace_sales",
    },
}


def resolve_collections(layout_version: str) -> Mapping[JobType, str]:
    """
    Devuelve las colecciones destino para una version de layout.

    Raises:
        SyncConfigError: Si la version no existe
    """
    layout = STORE_LAYOUTS.get(layout_version)
    if layout is None:
        raise SyncConfigError(
            f"STORE_LAYOUT_VERSION desconocida: '{layout_version}'. "
            f"Valores validos: {sorted(STORE_LAYOUTS)}"
        )
    return dict(layout)


def get_resource_config(job_type: JobType) -> ResourceConfig:
    """Retorna la configuración del recurso para el tipo de job."""
    return RESOURCE_CONFIGS[JobType(job_type)]


def indexed_fields() -> frozenset[str]:
    """Campos que el store debe indexar: todas las claves de identidad."""
    names: set[str] = {"identityKey"}
    for config in RESOURCE_CONFIGS.values():
        names.update(config.identity_fields)
    return frozenset(names)

"""
Configuracion central de la aplicacion.
Gestiona variables de entorno y configuraciones globales.
Soporta configuracion dinamica para desarrollo (ENVIRONMENT=development)
y produccion (ENVIRONMENT=production).
"""
import json
from typing import Dict, List
from pydantic_settings import BaseSettings
from pydantic import Field, computed_field


class Settings(BaseSettings):
    """
    Clase de configuracion de la aplicacion.
    Lee variables de entorno y proporciona valores por defecto.

    Grupos de configuracion:
    - Aplicacion y servidor
    - Base de datos (DATABASE_URL completa o por componentes)
    - Marketplace: API, reintentos y pausas entre paginas
    - Motor de sync: tamanos de pagina/batch y tiempos maximos por invocacion
    - Store: limite de operaciones por batch y version del layout de colecciones
    """

    # Configuracion de la aplicacion
    APP_NAME: str = Field(default="Sincronizador de Marketplace")
    APP_VERSION: str = Field(default="1.0.0")
    DEBUG: bool = Field(default=False)
    ENVIRONMENT: str = Field(default="production")

    # Configuracion del servidor
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8000)

    # Base de datos - Componentes separados
    DATABASE_HOST: str = Field(default="localhost")
    DATABASE_PORT: int = Field(default=5432)
    DATABASE_USER: str = Field(default="sync_user")
    DATABASE_PASSWORD: str = Field(default="sync_pass")
    DATABASE_NAME: str = Field(default="marketplace_sync")

    # Base de datos - URL completa (override de componentes si se proporciona)
    DATABASE_URL: str = Field(default="")
    DB_POOL_SIZE: int = Field(default=5)
    DB_MAX_OVERFLOW: int = Field(default=10)

    # CORS (acepta lista JSON o "*" para todos los origenes)
    CORS_ORIGINS: str = Field(default="*")

    # Marketplace
    MARKETPLACE_BASE_URL: str = Field(default="https://seller-api.takealot.com")
    MARKETPLACE_API_KEY: str = Field(default="")
    # JSON {"account_id": "api_key"}; tiene prioridad sobre MARKETPLACE_API_KEY
    MARKETPLACE_ACCOUNT_KEYS: Dict[str, str] = Field(default_factory=dict)
    MARKETPLACE_TIMEOUT_S: int = Field(default=60)
    MARKETPLACE_MAX_RETRIES: int = Field(default=4)
    MARKETPLACE_MIN_BACKOFF_S: float = Field(default=1.0)
    MARKETPLACE_MAX_BACKOFF_S: float = Field(default=30.0)
    MARKETPLACE_PAGE_DELAY_S: float = Field(default=0.15)

    # Motor de sincronizacion
    SYNC_DEFAULT_PAGE_SIZE: int = Field(default=100)
    SYNC_DEFAULT_BATCH_SIZE: int = Field(default=10)
    SYNC_MANUAL_TIMEOUT_S: int = Field(default=1800)  # 30 minutos
    SYNC_SCHEDULED_TIMEOUT_S: int = Field(default=900)  # 15 minutos
    SYNC_SECONDS_PER_PAGE_ESTIMATE: int = Field(default=5)
    SYNC_JOB_RETENTION_DAYS: int = Field(default=7)

    # Store de documentos
    STORE_MAX_BATCH_SIZE: int = Field(default=500)
    STORE_LAYOUT_VERSION: str = Field(default="v2")

    # Proxies de salida (opcional, lista separada por comas o JSON)
    PROXY_URLS: str = Field(default="")
    PROXY_STRATEGY: str = Field(default="round_robin")

    # Logging
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FILE: str = Field(default="logs/app.log")

    @computed_field
    @property
    def effective_database_url(self) -> str:
        """
        Retorna la URL de base de datos efectiva.
        Si DATABASE_URL esta definida, la usa directamente.
        Si no, construye la URL desde los componentes individuales.
        """
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://{self.DATABASE_USER}:{self.DATABASE_PASSWORD}"
            f"@{self.DATABASE_HOST}:{self.DATABASE_PORT}/{self.DATABASE_NAME}"
        )

    @computed_field
    @property
    def is_development(self) -> bool:
        """Indica si el entorno es de desarrollo."""
        return self.ENVIRONMENT.lower() == "development"

    class Config:
        """Configuracion de Pydantic."""
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignorar campos extra del .env


def parse_list_setting(raw: str) -> List[str]:
    """
    Parsea un setting de tipo lista.
    Acepta "*", una lista JSON o valores separados por comas.
    """
    if not raw:
        return []
    if raw == "*":
        return ["*"]
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        # Si no es JSON valido, retornar como lista simple
        return [item.strip() for item in raw.split(",") if item.strip()]


def get_cors_origins(cors_string: str) -> List[str]:
    """Parsea la configuracion de CORS."""
    return parse_list_setting(cors_string) or ["*"]


# Instancia global de configuracion
settings = Settings()

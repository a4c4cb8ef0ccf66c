"""
Configuración centralizada de la aplicación.

Este módulo maneja todas las variables de entorno y configuraciones
del conector IQR ↔ ShipStation usando Pydantic Settings para validación automática.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Configuración de la aplicación usando Pydantic Settings.

    Todas las configuraciones se cargan desde variables de entorno
    con valores por defecto apropiados para desarrollo.
    """

    # === CONFIGURACIÓN BÁSICA DE LA APP ===
    APP_NAME: str = "IQR-ShipStation Connector"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)

    # === CONFIGURACIÓN DEL SERVIDOR ===
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=3000)
    LOG_LEVEL: str = Field(default="INFO")
    ENABLE_DOCS: bool = Field(default=True)
    # Lista separada por comas
    ALLOWED_ORIGINS: str = Field(default="*")
    SLOW_REQUEST_THRESHOLD: float = Field(default=5.0)

    # === CONFIGURACIÓN DE IQ RESELLER ===
    IQR_API_KEY: str = Field(default="")
    IQR_AUTH_URL: str = Field(default="https://signin.iqreseller.com")
    IQR_API_BASE_URL: str = Field(default="https://api.iqreseller.com")
    # La sesión de IQR dura 60 minutos; se cachea al 90% de esa ventana
    IQR_SESSION_TTL_MINUTES: int = Field(default=60)
    IQR_SESSION_SAFETY_FACTOR: float = Field(default=0.9)
    IQR_PAGE_SIZE: int = Field(default=25)
    IQR_MAX_PAGE: int = Field(default=3000)
    IQR_MAX_EMPTY_PAGES: int = Field(default=50)
    IQR_SESSION_REFRESH_PAGES: int = Field(default=500)
    IQR_REQUEST_TIMEOUT: int = Field(default=30)

    # === CONFIGURACIÓN DE SHIPSTATION ===
    SHIPSTATION_API_KEY: str = Field(default="")
    SHIPSTATION_API_SECRET: str = Field(default="")
    SHIPSTATION_API_BASE_URL: str = Field(default="https://ssapi.shipstation.com")
    SHIPSTATION_WEBHOOK_SECRET: Optional[str] = Field(default=None)
    SHIPSTATION_STORE_NAME: str = Field(default="DPC - Agent Quickbooks")
    SHIPSTATION_REQUEST_TIMEOUT: int = Field(default=30)
    SHIPSTATION_DEFAULT_RETRY_AFTER: int = Field(default=60)

    # === CONFIGURACIÓN DE SINCRONIZACIÓN ===
    SYNC_ENABLED: bool = Field(default=False)
    SYNC_INTERVAL_MINUTES: int = Field(default=15)
    SYNC_BATCH_SIZE: int = Field(default=50)
    SYNC_CONCURRENCY: int = Field(default=5)
    SYNC_BATCH_DELAY_MS: int = Field(default=500)
    SYNC_MAX_RETRIES: int = Field(default=3)
    SYNC_DAYS_BACK: int = Field(default=1)
    # Lista separada por comas
    SYNC_ORDER_STATUSES: str = Field(default="Open,Partial")
    SYNC_AGENT_CHANNEL: Optional[str] = Field(default="DPC - Agent Quickbooks")
    ORDER_KEY_PREFIX: str = Field(default="IQR")
    DEFAULT_COUNTRY_CODE: str = Field(default="US")

    # === CONFIGURACIÓN DE RETRIES ===
    RETRY_INITIAL_DELAY_SECONDS: float = Field(default=1.0)
    RETRY_MAX_DELAY_SECONDS: float = Field(default=10.0)

    # === CONFIGURACIÓN DE ACTIVIDAD Y TRACKING ===
    ACTIVITY_MAX_RECORDS: int = Field(default=100)
    TRACKING_POLL_LOOKBACK_HOURS: int = Field(default=24)

    # === CONFIGURACIÓN DE HEALTH CHECKS ===
    HEALTH_CHECK_TIMEOUT: float = Field(default=10.0)

    # === CONFIGURACIÓN DE LOGGING ===
    LOG_FILE_PATH: Optional[str] = Field(default=None)
    LOG_MAX_SIZE_MB: int = Field(default=10)
    LOG_BACKUP_COUNT: int = Field(default=5)
    LOG_FORMAT: str = Field(default="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
        "extra": "allow",
    }

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Valida que el nivel de log sea válido."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL debe ser uno de: {valid_levels}")
        return v.upper()

    @field_validator("ENVIRONMENT")
    @classmethod
    def validate_environment(cls, v):
        """Valida que el entorno sea válido."""
        valid_envs = ["development", "staging", "production", "testing", "test"]
        if v.lower() not in valid_envs:
            raise ValueError(f"ENVIRONMENT debe ser uno de: {valid_envs}")
        return v.lower()

    @field_validator("PORT")
    @classmethod
    def validate_port(cls, v):
        """Valida que el puerto esté en rango válido."""
        if not 1 <= v <= 65535:
            raise ValueError("PORT debe estar entre 1 y 65535")
        return v

    @field_validator("SYNC_BATCH_SIZE")
    @classmethod
    def validate_batch_size(cls, v):
        """Valida el tamaño de lote (1-1000)."""
        if not 1 <= v <= 1000:
            raise ValueError("SYNC_BATCH_SIZE debe estar entre 1 y 1000")
        return v

    @field_validator("SYNC_MAX_RETRIES")
    @classmethod
    def validate_max_retries(cls, v):
        """Valida el número de reintentos (0-10)."""
        if not 0 <= v <= 10:
            raise ValueError("SYNC_MAX_RETRIES debe estar entre 0 y 10")
        return v

    @field_validator("SYNC_INTERVAL_MINUTES")
    @classmethod
    def validate_sync_interval(cls, v):
        """0 desactiva la sincronización programada."""
        if v < 0:
            raise ValueError("SYNC_INTERVAL_MINUTES no puede ser negativo")
        return v

    @field_validator("IQR_PAGE_SIZE", "IQR_MAX_EMPTY_PAGES", "IQR_SESSION_REFRESH_PAGES")
    @classmethod
    def validate_iqr_pagination(cls, v, info):
        if v < 1:
            raise ValueError(f"{info.field_name} debe ser al menos 1")
        return v

    @field_validator("IQR_MAX_PAGE")
    @classmethod
    def validate_iqr_max_page(cls, v):
        """La paginación de IQR empieza en la página 0."""
        if v < 0:
            raise ValueError("IQR_MAX_PAGE no puede ser negativo")
        return v

    @field_validator("SYNC_CONCURRENCY")
    @classmethod
    def validate_concurrency(cls, v):
        if v < 1:
            raise ValueError("SYNC_CONCURRENCY debe ser al menos 1")
        return v

    @field_validator("DEFAULT_COUNTRY_CODE")
    @classmethod
    def validate_default_country(cls, v):
        """El país por defecto debe ser un código ISO-2."""
        v = v.strip().upper()
        if len(v) != 2 or not v.isalpha():
            raise ValueError("DEFAULT_COUNTRY_CODE debe ser un código ISO de 2 letras")
        return v

    @field_validator("SYNC_AGENT_CHANNEL", "SHIPSTATION_WEBHOOK_SECRET", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        """Convierte strings vacíos en None."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def is_production(self) -> bool:
        """Verifica si está en entorno de producción."""
        return self.ENVIRONMENT == "production"

    @property
    def is_development(self) -> bool:
        """Verifica si está en entorno de desarrollo."""
        return self.ENVIRONMENT == "development"

    @property
    def sync_order_statuses(self) -> List[str]:
        """Parsea SYNC_ORDER_STATUSES como lista separada por comas."""
        return [status.strip() for status in self.SYNC_ORDER_STATUSES.split(",") if status.strip()]

    @property
    def iqr_session_lifetime_seconds(self) -> float:
        """Vida útil de la sesión IQR usada para el cache local."""
        return self.IQR_SESSION_TTL_MINUTES * 60 * self.IQR_SESSION_SAFETY_FACTOR

    @property
    def allowed_origins(self) -> List[str]:
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()] or ["*"]

    @property
    def sync_batch_delay_seconds(self) -> float:
        return self.SYNC_BATCH_DELAY_MS / 1000


@lru_cache()
def get_settings() -> Settings:
    """
    Obtiene instancia singleton de configuración.

    Usa LRU cache para evitar recrear la configuración
    múltiples veces durante la ejecución.

    Returns:
        Settings: Instancia de configuración
    """
    return Settings()


def reload_settings() -> Settings:
    """
    Recarga la configuración (útil para testing).

    Returns:
        Settings: Nueva instancia de configuración
    """
    get_settings.cache_clear()
    return get_settings()


def validate_required_settings(settings: Optional[Settings] = None) -> bool:
    """
    Valida que todas las configuraciones requeridas estén presentes.

    Returns:
        bool: True si todas las configuraciones están presentes

    Raises:
        ValueError: Si alguna configuración requerida falta
    """
    settings = settings or get_settings()

    required_fields = [
        "IQR_API_KEY",
        "SHIPSTATION_API_KEY",
        "SHIPSTATION_API_SECRET",
    ]

    missing_fields = []
    for field in required_fields:
        value = getattr(settings, field, None)
        if not value or (isinstance(value, str) and not value.strip()):
            missing_fields.append(field)

    if missing_fields:
        raise ValueError(f"Configuraciones requeridas faltantes: {missing_fields}")

    return True


def get_environment_info() -> dict:
    """
    Obtiene información del entorno actual (sin secretos).

    Returns:
        dict: Información del entorno
    """
    settings = get_settings()

    return {
        "app_name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "port": settings.PORT,
        "iqr_auth_url": settings.IQR_AUTH_URL,
        "iqr_api_base_url": settings.IQR_API_BASE_URL,
        "shipstation_api_base_url": settings.SHIPSTATION_API_BASE_URL,
        "shipstation_store_name": settings.SHIPSTATION_STORE_NAME,
        "sync": {
            "enabled": settings.SYNC_ENABLED,
            "interval_minutes": settings.SYNC_INTERVAL_MINUTES,
            "batch_size": settings.SYNC_BATCH_SIZE,
            "concurrency": settings.SYNC_CONCURRENCY,
            "max_retries": settings.SYNC_MAX_RETRIES,
            "statuses": settings.sync_order_statuses,
            "agent_channel": settings.SYNC_AGENT_CHANNEL,
        },
        "webhook_secret": "configured" if settings.SHIPSTATION_WEBHOOK_SECRET else "not configured",
    }

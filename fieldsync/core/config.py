"""
Configuracion central de la aplicacion.
Gestiona variables de entorno y configuraciones globales del motor de sync.
Soporta configuracion dinamica para desarrollo (ENVIRONMENT=development)
y produccion (ENVIRONMENT=production).
"""
from pydantic_settings import BaseSettings
from pydantic import Field, computed_field


class Settings(BaseSettings):
    """
    Clase de configuracion de la aplicacion.
    Lee variables de entorno y proporciona valores por defecto.

    Grupos de configuracion:
    - Aplicacion / servidor HTTP (trigger on-demand del sync)
    - Base de datos (pool unico por proceso)
    - Plataforma externa (API paginada de field-service)
    - Motor de sync (reintentos, backoff, solape de watermark, paralelismo)
    - Notificaciones (Slack webhook, best-effort)
    """

    # Configuracion de la aplicacion
    APP_NAME: str = Field(default="Field Service Sync")
    APP_VERSION: str = Field(default="1.0.0")
    DEBUG: bool = Field(default=False)
    ENVIRONMENT: str = Field(default="production")

    # Configuracion del servidor
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8000)

    # Base de datos - Componentes separados (recomendado para flexibilidad)
    DATABASE_HOST: str = Field(default="localhost")
    DATABASE_PORT: int = Field(default=5432)
    DATABASE_USER: str = Field(default="fieldsync_user")
    DATABASE_PASSWORD: str = Field(default="fieldsync_pass")
    DATABASE_NAME: str = Field(default="fieldsync_db")

    # Base de datos - URL completa (override de componentes si se proporciona)
    DATABASE_URL: str = Field(default="")
    DB_POOL_SIZE: int = Field(default=5)
    DB_MAX_OVERFLOW: int = Field(default=10)

    # Plataforma externa
    PLATFORM_API_BASE_URL: str = Field(default="https://api.servicetitan.io")
    PLATFORM_APP_KEY: str = Field(default="")
    PLATFORM_ACCESS_TOKEN: str = Field(default="")
    PLATFORM_TIMEOUT_S: float = Field(default=30.0)

    # Motor de sync
    SYNC_PAGE_DELAY_S: float = Field(default=0.2)
    SYNC_MAX_RETRIES: int = Field(default=5)
    SYNC_MIN_BACKOFF_S: float = Field(default=1.0)
    SYNC_MAX_BACKOFF_S: float = Field(default=60.0)
    SYNC_STORE_MAX_RETRIES: int = Field(default=3)
    # Ventana restada al watermark para tolerar clock skew y bordes de pagina.
    # El watermark es la hora de fin del run: un registro editado despues de leer
    # su pagina solo entra en el run siguiente si el solape cubre la duracion del run.
    SYNC_OVERLAP_S: int = Field(default=300)
    SYNC_MAX_PARALLEL_ENTITIES: int = Field(default=2)
    # Un run "in_progress" sin checkpoint (updated_at) hace mas que esto se considera
    # huerfano (proceso caido).
    SYNC_STALE_RUN_S: int = Field(default=7200)
    # Un run en pausa refresca updated_at con esta frecuencia para no parecer huerfano.
    SYNC_PAUSE_HEARTBEAT_S: int = Field(default=60)
    SYNC_DEFAULT_TENANT: str = Field(default="")

    # Notificaciones
    SLACK_WEBHOOK_URL: str = Field(default="")
    SLACK_CHANNEL: str = Field(default="#sync-alerts")
    NOTIFIER_TIMEOUT_S: float = Field(default=10.0)

    # Logging
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FILE: str = Field(default="logs/sync.log")

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

    class Config:
        """Configuracion de Pydantic."""
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignorar campos extra del .env


# Instancia global de configuracion
settings = Settings()

"""
Ciclo de vida de la aplicacion: arranque y cierre del motor de sync.
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from loguru import logger

from fieldsync.core.config import settings
from fieldsync.infrastructure.database.session import init_db, close_db
from fieldsync.infrastructure.external.platform_sync.orchestrator import build_from_settings


def configure_logging() -> None:
    """Agrega el sink de archivo rotativo."""
    logger.add(
        settings.LOG_FILE,
        rotation="500 MB",
        retention="10 days",
        level=settings.LOG_LEVEL
    )


async def startup(app: FastAPI) -> None:
    """Crea tablas y deja un orquestador por proceso en app.state."""
    try:
        logger.info(f"Iniciando {settings.APP_NAME} v{settings.APP_VERSION}")
        logger.info(f"Entorno: {settings.ENVIRONMENT}")

        configure_logging()
        _validate_config()

        # Crea schema raw, tablas crudas y sync_state si no existen
        await init_db()
        logger.info("Base de datos inicializada")

        # Un orquestador por proceso: engine y cliente httpx compartidos
        app.state.orchestrator = build_from_settings()
        logger.success("Aplicacion iniciada correctamente")

    except Exception as e:
        logger.error(f"Error durante startup: {e}")
        logger.exception("Detalle del error:")
        raise


async def shutdown(app: FastAPI) -> None:
    """Cierra el cliente HTTP de la plataforma y el pool de conexiones."""
    logger.info("Cerrando aplicacion...")

    orchestrator = getattr(app.state, "orchestrator", None)
    if orchestrator is not None:
        await orchestrator.aclose()
        logger.info("Cliente HTTP de la plataforma cerrado")

    await close_db()
    logger.info("Conexiones de base de datos cerradas")

    logger.success("Aplicacion cerrada correctamente")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Lifespan de FastAPI: startup antes de aceptar requests, shutdown al salir."""
    await startup(app)
    try:
        yield
    finally:
        await shutdown(app)


def _validate_config() -> None:
    """Valida que la configuracion critica este presente."""
    warnings = []

    if not settings.PLATFORM_ACCESS_TOKEN:
        warnings.append("PLATFORM_ACCESS_TOKEN no configurado - el sync fallara con error de credencial")
    if not settings.PLATFORM_APP_KEY:
        warnings.append("PLATFORM_APP_KEY no configurada")
    if not settings.SLACK_WEBHOOK_URL:
        warnings.append("SLACK_WEBHOOK_URL no configurado - no se enviaran notificaciones")

    for warning in warnings:
        logger.warning(f"CONFIG: {warning}")

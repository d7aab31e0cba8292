"""
Gestión del pool de conexiones y sesiones de base de datos.

El engine se crea una sola vez por proceso; cada operación del sync adquiere
una sesión del pool y la libera al terminar (acquire-per-operation).
"""
from typing import Optional
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    create_async_engine,
    async_sessionmaker
)
from sqlalchemy.orm import declarative_base

from fieldsync.core.config import settings


# Base para modelos de SQLAlchemy
Base = declarative_base()


def _create_engine_args() -> dict:
    """
    Construye los argumentos del engine segun el tipo de base de datos.
    PostgreSQL usa pool de conexiones, SQLite no lo soporta.
    """
    args = {
        "echo": settings.DEBUG,
        "future": True,
    }

    # Configuracion de pool solo para PostgreSQL
    if "postgresql" in settings.effective_database_url:
        args.update({
            "pool_size": settings.DB_POOL_SIZE,
            "max_overflow": settings.DB_MAX_OVERFLOW,
            "pool_pre_ping": True,  # Verifica conexion antes de usar
        })

    return args


_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None


def get_engine() -> AsyncEngine:
    """Retorna el engine del proceso, creándolo en el primer uso."""
    global _engine
    if _engine is None:
        _engine = create_async_engine(settings.effective_database_url, **_create_engine_args())
    return _engine


def get_session_factory() -> async_sessionmaker:
    """Session factory ligada al engine del proceso."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autocommit=False,
            autoflush=False
        )
    return _session_factory


async def init_db() -> None:
    """Inicializa la base de datos creando schema raw y todas las tablas."""
    # Importar modelos para que se registren en Base.metadata
    from fieldsync.infrastructure.database import models  # noqa: F401
    # Las tablas raw.st_<entidad> se registran al importar el registro de entidades
    from fieldsync.infrastructure.external.platform_sync import table_mappings  # noqa: F401

    engine = get_engine()
    async with engine.begin() as conn:
        if engine.dialect.name == "postgresql":
            await conn.exec_driver_sql(f'CREATE SCHEMA IF NOT EXISTS "{models.RAW_SCHEMA}"')
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Cierra las conexiones de la base de datos."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None

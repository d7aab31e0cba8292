"""
Configuracion de Alembic para migraciones de base de datos.

Este archivo configura Alembic para:
- Usar la URL de base de datos desde settings (config.py)
- Registrar sync_state y las tablas raw.st_<entidad> en la metadata
- Soportar PostgreSQL (asyncpg se reemplaza por psycopg para migraciones sync)
"""
import sys
from pathlib import Path
from logging.config import fileConfig

from sqlalchemy import engine_from_config
from sqlalchemy import pool

from alembic import context

# Agregar el directorio raiz al path para imports
ROOT_DIR = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT_DIR))

from fieldsync.core.config import settings
from fieldsync.infrastructure.database.session import Base
from fieldsync.infrastructure.database.models import SyncStateModel  # noqa: F401
from fieldsync.infrastructure.external.platform_sync import table_mappings  # noqa: F401
from fieldsync.shared.constants.sync_constants import RAW_SCHEMA

# Alembic Config object
config = context.config

# Reemplazar asyncpg por psycopg (psycopg3) para migraciones sincronas
db_url = settings.effective_database_url.replace("+asyncpg", "+psycopg")
config.set_main_option("sqlalchemy.url", db_url)
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """
    Ejecuta migraciones en modo 'offline'.

    Genera SQL sin conectarse a la base de datos.
    """
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        include_schemas=True,
        version_table_schema=RAW_SCHEMA,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """
    Conecta a la base de datos y ejecuta las migraciones directamente.
    """
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        # La tabla de versiones vive en raw: el schema tiene que existir antes
        connection.exec_driver_sql(f'CREATE SCHEMA IF NOT EXISTS "{RAW_SCHEMA}"')
        connection.commit()

        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            include_schemas=True,
            version_table_schema=RAW_SCHEMA,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()

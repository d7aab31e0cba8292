"""
INSERT con soporte ON CONFLICT según el dialecto del engine.

PostgreSQL es el destino real; SQLite se usa en tests. Ambos exponen
on_conflict_do_update / on_conflict_do_nothing con la misma firma.
"""
from sqlalchemy import Table
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


def dialect_insert(session: AsyncSession, table: Table):
    """Retorna un Insert del dialecto de la sesión."""
    name = session.bind.dialect.name
    if name == "postgresql":
        return postgresql.insert(table)
    if name == "sqlite":
        return sqlite.insert(table)
    raise NotImplementedError(f"Dialecto sin soporte de UPSERT: {name}")

"""
Upserter: merge idempotente de una página en raw.st_<entidad>.

Una página = un único INSERT ... ON CONFLICT (tenant_id, st_id) DO UPDATE,
ejecutado en una transacción propia. Re-aplicar la misma página deja el
mismo estado final (solo cambia fetched_at).
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from fieldsync.infrastructure.database.dialects import dialect_insert
from fieldsync.infrastructure.database.models import raw_table_for
from fieldsync.shared.exceptions.sync import StoreError
from fieldsync.shared.utils.datetime_utils import ensure_utc, utc_now

from .sync_config import EntityDescriptor
from .types import NormalizedRecord


class RawRecordRepository:
    def __init__(self, session_factory: async_sessionmaker) -> None:
        self._session_factory = session_factory

    async def upsert_page(
        self,
        descriptor: EntityDescriptor,
        records: Sequence[NormalizedRecord],
        *,
        fetched_at: Optional[datetime] = None,
    ) -> int:
        """
        UPSERT por (tenant_id, upsert_key). Resuelve conflictos con regla:
        - solo actualiza si excluded.modified_on >= target.modified_on
          (o si alguno de los dos es desconocido)

        Esto evita pisar con data vieja en reintentos o solapes de watermark.
        Retorna la cantidad de registros distintos aplicados.
        """
        if not records:
            return 0

        table = raw_table_for(descriptor)
        key = descriptor.upsert_key
        stamped = ensure_utc(fetched_at) if fetched_at else utc_now()
        columns = [c.name for c in table.columns]

        # Un mismo id dos veces en un INSERT ... ON CONFLICT falla en Postgres:
        # colapsamos por clave, gana la última aparición.
        by_key: dict[tuple[str, str], dict] = {}
        for record in records:
            row = {c: record.get(c) for c in columns}
            row["fetched_at"] = stamped
            by_key[(row["tenant_id"], row[key])] = row
        rows = list(by_key.values())

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    stmt = dialect_insert(session, table).values(rows)
                    excluded = stmt.excluded
                    stmt = stmt.on_conflict_do_update(
                        index_elements=["tenant_id", key],
                        set_={c: excluded[c] for c in descriptor.mutable_columns},
                        where=or_(
                            table.c.modified_on.is_(None),
                            excluded.modified_on.is_(None),
                            excluded.modified_on >= table.c.modified_on,
                        ),
                    )
                    await session.execute(stmt)
        except SQLAlchemyError as e:
            raise StoreError(
                f"UPSERT de {len(rows)} registros en {table.fullname} falló: {e}",
                entity_type=descriptor.name,
                operation="upsert",
            ) from e

        return len(rows)

    async def count_rows(self, descriptor: EntityDescriptor, tenant_id: str) -> int:
        """Filas distintas (tenant_id, st_id) de la entidad para el tenant."""
        table = raw_table_for(descriptor)
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(func.count()).select_from(table).where(table.c.tenant_id == str(tenant_id))
                )
                return int(result.scalar_one())
        except SQLAlchemyError as e:
            raise StoreError(
                f"No se pudo contar {table.fullname}: {e}",
                entity_type=descriptor.name,
                operation="count",
            ) from e

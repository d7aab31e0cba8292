"""
Sync State Tracker: lectura/escritura de raw.sync_state.

Transiciones:
- begin_run: idle/completed/failed -> in_progress (gate atómico, un run por entidad)
- record_progress: record_count acumulado tras cada página confirmada (heartbeat)
- complete_run: único camino que avanza los watermarks, y solo hacia adelante
- fail_run: deja status=failed sin tocar watermarks
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from loguru import logger
from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from fieldsync.infrastructure.database.dialects import dialect_insert
from fieldsync.infrastructure.database.models import SyncStateModel
from fieldsync.shared.constants.sync_constants import SyncMode, SyncStatus
from fieldsync.shared.exceptions.sync import StoreError
from fieldsync.shared.utils.datetime_utils import ensure_utc, ensure_utc_or_none, utc_now


@dataclass(frozen=True)
class SyncState:
    """
    Estado persistido por (tenant, entidad).

    watermark:
        el más reciente entre last_full_sync_at y last_incremental_sync_at;
        None significa que nunca hubo un run exitoso (=> full sync).
    """

    tenant_id: str
    entity_name: str
    last_full_sync_at: Optional[datetime] = None
    last_incremental_sync_at: Optional[datetime] = None
    record_count: int = 0
    status: SyncStatus = SyncStatus.IDLE
    last_run_started_at: Optional[datetime] = None
    last_run_completed_at: Optional[datetime] = None
    last_error: Optional[str] = None

    @property
    def watermark(self) -> Optional[datetime]:
        marks = [m for m in (self.last_full_sync_at, self.last_incremental_sync_at) if m is not None]
        return max(marks) if marks else None

    @classmethod
    def from_model(cls, row: SyncStateModel) -> "SyncState":
        return cls(
            tenant_id=row.tenant_id,
            entity_name=row.entity_name,
            last_full_sync_at=ensure_utc_or_none(row.last_full_sync_at),
            last_incremental_sync_at=ensure_utc_or_none(row.last_incremental_sync_at),
            record_count=row.record_count or 0,
            status=SyncStatus(row.status),
            last_run_started_at=ensure_utc_or_none(row.last_run_started_at),
            last_run_completed_at=ensure_utc_or_none(row.last_run_completed_at),
            last_error=row.last_error,
        )


class SyncStateRepository:
    def __init__(self, session_factory: async_sessionmaker, *, stale_after_s: int = 7200) -> None:
        self._session_factory = session_factory
        self._stale_after = timedelta(seconds=stale_after_s)

    async def read_state(self, tenant_id: str, entity_name: str) -> SyncState:
        """Estado actual; si nunca se sincronizó retorna un estado idle sin watermarks."""
        try:
            async with self._session_factory() as session:
                row = await session.get(SyncStateModel, (str(tenant_id), entity_name))
        except SQLAlchemyError as e:
            raise self._store_error(e, entity_name, "read_state") from e
        if row is None:
            return SyncState(tenant_id=str(tenant_id), entity_name=entity_name)
        return SyncState.from_model(row)

    async def list_states(self, tenant_id: str) -> list[SyncState]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(SyncStateModel)
                    .where(SyncStateModel.tenant_id == str(tenant_id))
                    .order_by(SyncStateModel.entity_name)
                )
                return [SyncState.from_model(r) for r in result.scalars().all()]
        except SQLAlchemyError as e:
            raise self._store_error(e, None, "list_states") from e

    async def begin_run(self, tenant_id: str, entity_name: str, *, now: Optional[datetime] = None) -> bool:
        """
        Marca el run como in_progress si no hay otro en curso.

        El UPDATE condicional es el gate: con dos llamadas concurrentes solo una
        afecta la fila. Un in_progress cuyo último checkpoint (updated_at) es
        más viejo que stale_after se considera huérfano (proceso caído) y puede
        tomarse; un run vivo refresca updated_at en cada página.

        Retorna True si el run quedó adquirido.
        """
        now = ensure_utc(now) if now else utc_now()
        stale_cutoff = now - self._stale_after
        tenant_id = str(tenant_id)

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    # La fila se crea en el primer intento de sync y no se borra nunca.
                    await session.execute(
                        dialect_insert(session, SyncStateModel.__table__)
                        .values(
                            tenant_id=tenant_id,
                            entity_name=entity_name,
                            record_count=0,
                            status=SyncStatus.IDLE.value,
                        )
                        .on_conflict_do_nothing(index_elements=["tenant_id", "entity_name"])
                    )
                    result = await session.execute(
                        update(SyncStateModel)
                        .where(
                            SyncStateModel.tenant_id == tenant_id,
                            SyncStateModel.entity_name == entity_name,
                            or_(
                                SyncStateModel.status != SyncStatus.IN_PROGRESS.value,
                                SyncStateModel.updated_at.is_(None),
                                SyncStateModel.updated_at < stale_cutoff,
                            ),
                        )
                        .values(
                            status=SyncStatus.IN_PROGRESS.value,
                            last_run_started_at=now,
                            last_error=None,
                            updated_at=now,
                        )
                        .execution_options(synchronize_session=False)
                    )
                    acquired = result.rowcount == 1
        except SQLAlchemyError as e:
            raise self._store_error(e, entity_name, "begin_run") from e

        if not acquired:
            logger.info(f"Run de '{entity_name}' (tenant {tenant_id}) ya está in_progress")
        return acquired

    async def record_progress(self, tenant_id: str, entity_name: str, record_count: int) -> None:
        """Checkpoint por página: solo record_count, nunca el watermark."""
        if record_count < 0:
            raise ValueError("record_count no puede ser negativo")
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await session.execute(
                        update(SyncStateModel)
                        .where(
                            SyncStateModel.tenant_id == str(tenant_id),
                            SyncStateModel.entity_name == entity_name,
                        )
                        .values(record_count=record_count, updated_at=utc_now())
                        .execution_options(synchronize_session=False)
                    )
        except SQLAlchemyError as e:
            raise self._store_error(e, entity_name, "record_progress") from e

    async def complete_run(
        self,
        tenant_id: str,
        entity_name: str,
        *,
        mode: SyncMode,
        record_count: int,
        completed_at: Optional[datetime] = None,
    ) -> SyncState:
        """
        Cierra el run exitoso y avanza el watermark del modo usado.

        Monotonicidad: si el watermark guardado es posterior a completed_at
        (reloj atrasado, run más viejo terminando tarde) se conserva el guardado.
        """
        if record_count < 0:
            raise ValueError("record_count no puede ser negativo")
        completed_at = ensure_utc(completed_at) if completed_at else utc_now()

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    row = await session.get(
                        SyncStateModel, (str(tenant_id), entity_name), with_for_update=True
                    )
                    if row is None:
                        row = SyncStateModel(tenant_id=str(tenant_id), entity_name=entity_name)
                        session.add(row)

                    column = "last_full_sync_at" if mode == SyncMode.FULL else "last_incremental_sync_at"
                    current = ensure_utc_or_none(getattr(row, column))
                    if current is not None and current > completed_at:
                        logger.warning(
                            f"Watermark {column} de '{entity_name}' ({current.isoformat()}) es posterior a "
                            f"{completed_at.isoformat()}; se conserva"
                        )
                    else:
                        setattr(row, column, completed_at)

                    row.record_count = record_count
                    row.status = SyncStatus.COMPLETED.value
                    row.last_run_completed_at = completed_at
                    row.last_error = None
                    row.updated_at = completed_at
                    await session.flush()
                    state = SyncState.from_model(row)
        except SQLAlchemyError as e:
            raise self._store_error(e, entity_name, "complete_run") from e
        return state

    async def fail_run(self, tenant_id: str, entity_name: str, error: str) -> None:
        """status=failed; los watermarks previos quedan intactos."""
        now = utc_now()
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await session.execute(
                        update(SyncStateModel)
                        .where(
                            SyncStateModel.tenant_id == str(tenant_id),
                            SyncStateModel.entity_name == entity_name,
                        )
                        .values(
                            status=SyncStatus.FAILED.value,
                            last_error=(error or "")[:2000],
                            last_run_completed_at=now,
                            updated_at=now,
                        )
                        .execution_options(synchronize_session=False)
                    )
        except SQLAlchemyError as e:
            raise self._store_error(e, entity_name, "fail_run") from e

    @staticmethod
    def _store_error(e: Exception, entity_name: Optional[str], operation: str) -> StoreError:
        return StoreError(f"sync_state {operation} falló: {e}", entity_type=entity_name, operation=operation)

"""
Loop de sincronización de una entidad.

Diseño (resumen):
- Lee el watermark (sync_state) y decide full vs incremental
- Pide página N, la UPSERTea, hace checkpoint de record_count, y recién
  entonces pide la página N+1 (nunca más de una página en memoria)
- Reintenta con backoff exponencial errores transitorios de fetch y de store
- Ante 401: un refresh de credencial y un reintento
- Al terminar la última página avanza el watermark del modo usado
- Pausa y cancelación (RunControl) se respetan entre páginas

Estrategia de idempotencia:
- UPSERT por (tenant_id, st_id) con guarda de modified_on.
- El filtro incremental resta un solape al watermark, por lo que re-lee el borde (seguro).
"""

from __future__ import annotations

import asyncio
import random
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional, TypeVar

from loguru import logger

from fieldsync.shared.constants.sync_constants import RunOutcome, SyncMode
from fieldsync.shared.exceptions.sync import (
    CredentialError,
    StoreError,
    SyncError,
    TransientExternalError,
)

from .platform_client import PlatformClient
from .raw_repository import RawRecordRepository
from .sync_config import EntityDescriptor
from .sync_state_repository import SyncState, SyncStateRepository
from .types import PlatformPage

T = TypeVar("T")


def error_logger(error: SyncError):
    """Logger con el tag (entity, operation, error_kind) del error."""
    return logger.bind(entity=error.entity_type, operation=error.operation, error_kind=error.kind.value)


@dataclass(frozen=True)
class EntityRunResult:
    entity: str
    mode: SyncMode
    status: RunOutcome
    records_fetched: int = 0
    pages: int = 0
    row_count: Optional[int] = None
    error: Optional[SyncError] = None


class RunControl:
    """
    Señales de una pasada: cancelar y pausar/reanudar.

    El loop las consulta solo entre páginas, así que una página en vuelo
    siempre se aplica completa.
    """

    def __init__(self) -> None:
        self._cancelled = asyncio.Event()
        self._running = asyncio.Event()
        self._running.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def paused(self) -> bool:
        return not self._running.is_set()

    def cancel(self) -> None:
        self._cancelled.set()
        # Un run pausado se despierta para poder salir
        self._running.set()

    def pause(self) -> None:
        if not self.cancelled:
            self._running.clear()

    def resume(self) -> None:
        self._running.set()

    async def wait_resumed(self) -> None:
        await self._running.wait()


class EntitySyncLoop:
    """
    START -> FETCH_PAGE -> (UPSERT -> CHECKPOINT -> has_more? -> FETCH_PAGE) | DONE | FAILED
    """

    def __init__(
        self,
        *,
        fetcher: PlatformClient,
        upserter: RawRecordRepository,
        tracker: SyncStateRepository,
        max_retries: int = 5,
        store_max_retries: int = 3,
        min_backoff_s: float = 1.0,
        max_backoff_s: float = 60.0,
        page_delay_s: float = 0.2,
        overlap_s: int = 300,
        pause_heartbeat_s: float = 60.0,
    ) -> None:
        self._fetcher = fetcher
        self._upserter = upserter
        self._tracker = tracker
        self._max_retries = max_retries
        self._store_max_retries = store_max_retries
        self._min_backoff_s = min_backoff_s
        self._max_backoff_s = max_backoff_s
        self._page_delay_s = page_delay_s
        self._overlap = timedelta(seconds=overlap_s)
        self._pause_heartbeat_s = pause_heartbeat_s

    @property
    def fetcher(self) -> PlatformClient:
        return self._fetcher

    @property
    def upserter(self) -> RawRecordRepository:
        return self._upserter

    def plan_run(self, state: SyncState, *, force_full: bool = False) -> tuple[SyncMode, Optional[datetime]]:
        """
        Sin watermark previo (o forzado) => full sync sin filtro.
        Con watermark => incremental desde watermark - solape.
        """
        watermark = state.watermark
        if force_full or watermark is None:
            return SyncMode.FULL, None
        return SyncMode.INCREMENTAL, watermark - self._overlap

    async def run(
        self,
        descriptor: EntityDescriptor,
        *,
        tenant_id: str,
        state: SyncState,
        force_full: bool = False,
        control: Optional[RunControl] = None,
    ) -> EntityRunResult:
        """
        Ejecuta el run completo de una entidad.

        records_fetched cuenta ids distintos vistos en el run (un id repetido
        entre páginas se cuenta una vez). En full sync el record_count final
        se concilia con las filas de la tabla raw del tenant.

        Los SyncError terminan el run como FAILED (sin perder las páginas ya
        confirmadas); el caller decide cómo registrar el fallo.
        """
        mode, modified_since = self.plan_run(state, force_full=force_full)
        since_txt = modified_since.isoformat() if modified_since else "-"
        logger.info(
            f"Sync {mode.value}: '{descriptor.name}' tenant={tenant_id} "
            f"-> raw.{descriptor.table_name} (modifiedOnOrAfter {since_txt})"
        )

        started = time.monotonic()
        cursor: Optional[str] = None
        seen: set[str] = set()
        pages = 0
        row_count: Optional[int] = None

        try:
            while True:
                # Señales solo entre páginas: nunca queda una página a medio aplicar.
                if control is not None:
                    await self._wait_while_paused(control, descriptor, tenant_id, len(seen))
                    if control.cancelled:
                        logger.warning(f"Sync de '{descriptor.name}' cancelado tras {pages} página(s)")
                        return EntityRunResult(
                            entity=descriptor.name, mode=mode, status=RunOutcome.CANCELLED,
                            records_fetched=len(seen), pages=pages,
                        )

                page = await self._fetch_with_retry(
                    descriptor, tenant_id=tenant_id, modified_since=modified_since, cursor=cursor
                )
                await self._with_store_retry(
                    lambda: self._upserter.upsert_page(descriptor, page.records),
                    descriptor, "upsert",
                )
                seen.update(str(r[descriptor.upsert_key]) for r in page.records)
                pages += 1
                await self._with_store_retry(
                    lambda: self._tracker.record_progress(tenant_id, descriptor.name, len(seen)),
                    descriptor, "checkpoint",
                )

                if not page.has_more:
                    break
                cursor = page.next_cursor
                if self._page_delay_s > 0:
                    await asyncio.sleep(self._page_delay_s)

            row_count = await self._with_store_retry(
                lambda: self._upserter.count_rows(descriptor, tenant_id),
                descriptor, "count",
            )
            # Full sync: la tabla es la verdad (incluye filas de runs anteriores)
            final_count = row_count if mode == SyncMode.FULL else len(seen)
            await self._with_store_retry(
                lambda: self._tracker.complete_run(
                    tenant_id, descriptor.name, mode=mode, record_count=final_count
                ),
                descriptor, "complete_run",
            )
        except SyncError as e:
            e.tag(descriptor.name, "run")
            error_logger(e).error(
                f"Sync de '{descriptor.name}' falló tras {pages} página(s) / {len(seen)} registros: {e.message}"
            )
            return EntityRunResult(
                entity=descriptor.name, mode=mode, status=RunOutcome.FAILED,
                records_fetched=len(seen), pages=pages, error=e,
            )

        elapsed_s = time.monotonic() - started
        if elapsed_s > self._overlap.total_seconds():
            logger.warning(
                f"Run de '{descriptor.name}' duró {elapsed_s:.0f}s, más que el solape de "
                f"{self._overlap.total_seconds():.0f}s: ediciones durante el run pueden quedar fuera del próximo incremental"
            )
        logger.success(
            f"Sync {mode.value} de '{descriptor.name}' completado: {len(seen)} registros en {pages} página(s), "
            f"{row_count} filas en raw"
        )
        return EntityRunResult(
            entity=descriptor.name, mode=mode, status=RunOutcome.COMPLETED,
            records_fetched=len(seen), pages=pages, row_count=row_count,
        )

    async def _wait_while_paused(
        self, control: RunControl, descriptor: EntityDescriptor, tenant_id: str, record_count: int
    ) -> None:
        """Bloquea mientras la pasada esté en pausa, refrescando updated_at como heartbeat."""
        if not control.paused:
            return
        logger.info(f"Sync de '{descriptor.name}' tenant={tenant_id} en pausa")
        while control.paused:
            try:
                await asyncio.wait_for(control.wait_resumed(), timeout=self._pause_heartbeat_s)
            except asyncio.TimeoutError:
                await self._with_store_retry(
                    lambda: self._tracker.record_progress(tenant_id, descriptor.name, record_count),
                    descriptor, "heartbeat",
                )
        logger.info(f"Sync de '{descriptor.name}' tenant={tenant_id} reanudado")

    def _backoff_s(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """Exponencial con jitter proporcional; Retry-After manda si viene."""
        if retry_after is not None:
            return min(self._max_backoff_s, retry_after)
        base = min(self._max_backoff_s, self._min_backoff_s * (2 ** (attempt - 1)))
        return base + random.uniform(0, 0.15 * base)

    async def _fetch_with_retry(
        self,
        descriptor: EntityDescriptor,
        *,
        tenant_id: str,
        modified_since: Optional[datetime],
        cursor: Optional[str],
    ) -> PlatformPage:
        attempt = 0
        refreshed = False
        while True:
            try:
                return await self._fetcher.fetch_page(
                    descriptor, tenant_id=tenant_id, modified_since=modified_since, cursor=cursor
                )
            except CredentialError as e:
                e.tag(descriptor.name, "fetch")
                if refreshed:
                    raise
                refreshed = True
                error_logger(e).warning(f"{e.message}. Refrescando credencial y reintentando una vez")
                await self._fetcher.credentials.refresh(tenant_id)
            except TransientExternalError as e:
                e.tag(descriptor.name, "fetch")
                attempt += 1
                if attempt > self._max_retries:
                    raise
                delay = self._backoff_s(attempt, e.retry_after)
                error_logger(e).warning(
                    f"{e.message}. Reintento {attempt}/{self._max_retries} en {delay:.2f}s (cursor={cursor})"
                )
                await asyncio.sleep(delay)

    async def _with_store_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        descriptor: EntityDescriptor,
        name: str,
    ) -> T:
        attempt = 0
        while True:
            try:
                return await operation()
            except StoreError as e:
                e.tag(descriptor.name, name)
                attempt += 1
                if attempt > self._store_max_retries:
                    raise
                delay = self._backoff_s(attempt)
                error_logger(e).warning(
                    f"{e.message}. Reintento {attempt}/{self._store_max_retries} en {delay:.2f}s"
                )
                await asyncio.sleep(delay)

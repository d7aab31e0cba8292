"""
Orquestador de una pasada de sync por tenant.

- Corre el loop de cada entidad registrada (o de un filtro explícito)
- Entidades en paralelo acotado (tablas disjuntas, sin orden requerido)
- Aísla fallos: una entidad caída no frena al resto
- Cancelar / pausar / reanudar se respeta entre entidades y entre páginas
- Al final envía un único resumen al notificador (best-effort)
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, Protocol

import httpx
from loguru import logger

from fieldsync.core.config import settings
from fieldsync.shared.constants.sync_constants import RunOutcome, SyncMode
from fieldsync.shared.exceptions.sync import StoreError, SyncError

from .sync_config import EntityDescriptor
from .sync_service import EntityRunResult, EntitySyncLoop, RunControl, error_logger
from .sync_state_repository import SyncStateRepository
from .table_mappings import resolve_entity_types


class Notifier(Protocol):
    async def send(self, text: str, channel: Optional[str] = None) -> bool:
        ...


@dataclass(frozen=True)
class EntitySyncSummary:
    entity: str
    records_fetched: int
    status: RunOutcome
    mode: Optional[SyncMode] = None
    error: Optional[str] = None
    row_count: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity": self.entity,
            "records_fetched": self.records_fetched,
            "status": self.status.value,
            "mode": self.mode.value if self.mode else None,
            "error": self.error,
            "row_count": self.row_count,
        }


def format_summary(
    tenant_id: str, summaries: list[EntitySyncSummary], elapsed_s: Optional[float] = None
) -> str:
    header = f"Sync tenant {tenant_id}"
    if elapsed_s is not None:
        header += f" ({elapsed_s:.1f}s)"
    lines = [header]
    for s in summaries:
        line = f"- {s.entity}: {s.records_fetched} registros ({s.status.value})"
        if s.row_count is not None:
            line += f", {s.row_count} filas en raw"
        if s.error:
            line += f" - {s.error[:200]}"
        lines.append(line)
    return "\n".join(lines)


class SyncOrchestrator:
    def __init__(
        self,
        *,
        loop: EntitySyncLoop,
        tracker: SyncStateRepository,
        notifier: Optional[Notifier] = None,
        max_parallel: int = 2,
        notify_channel: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._loop = loop
        self._tracker = tracker
        self._notifier = notifier
        self._max_parallel = max(1, max_parallel)
        self._notify_channel = notify_channel
        self._http_client = http_client
        # Pasadas en curso por tenant; puede haber más de una a la vez
        self._controls: dict[str, set[RunControl]] = {}

    @property
    def tracker(self) -> SyncStateRepository:
        return self._tracker

    async def run(
        self,
        tenant_id: str,
        entity_types: Optional[Iterable[str]] = None,
        *,
        full_sync: bool = False,
        notify: bool = True,
    ) -> list[EntitySyncSummary]:
        """
        Una pasada de sync para el tenant.

        Un tipo de entidad desconocido falla antes de tocar nada
        (UnknownEntityTypeError). Los errores por entidad quedan en el resumen.
        """
        tenant_id = str(tenant_id)
        descriptors = resolve_entity_types(entity_types)
        control = RunControl()
        self._controls.setdefault(tenant_id, set()).add(control)
        semaphore = asyncio.Semaphore(self._max_parallel)
        started = time.monotonic()

        logger.info(
            f"Pasada de sync tenant={tenant_id}: {[d.name for d in descriptors]} "
            f"(full_sync={full_sync}, paralelo={self._max_parallel})"
        )

        async def guarded(descriptor: EntityDescriptor) -> EntitySyncSummary:
            async with semaphore:
                return await self._run_entity(descriptor, tenant_id, full_sync, control)

        try:
            summaries = list(await asyncio.gather(*(guarded(d) for d in descriptors)))
        finally:
            controls = self._controls.get(tenant_id)
            if controls is not None:
                controls.discard(control)
                if not controls:
                    self._controls.pop(tenant_id, None)

        elapsed_s = time.monotonic() - started
        failed = [s.entity for s in summaries if s.status == RunOutcome.FAILED]
        if failed:
            logger.warning(f"Pasada tenant={tenant_id} terminó con fallos en: {failed} ({elapsed_s:.1f}s)")
        else:
            logger.success(f"Pasada tenant={tenant_id} terminada en {elapsed_s:.1f}s")

        if notify:
            await self._notify(tenant_id, summaries, elapsed_s)
        return summaries

    def cancel(self, tenant_id: str) -> bool:
        """Pide cancelar las pasadas en curso del tenant; se respeta entre páginas."""
        if not self._signal(tenant_id, RunControl.cancel):
            return False
        logger.warning(f"Cancelación solicitada para tenant={tenant_id}")
        return True

    def pause(self, tenant_id: str) -> bool:
        """Pausa las pasadas en curso del tenant antes de la próxima página o entidad."""
        if not self._signal(tenant_id, RunControl.pause):
            return False
        logger.info(f"Pausa solicitada para tenant={tenant_id}")
        return True

    def resume(self, tenant_id: str) -> bool:
        if not self._signal(tenant_id, RunControl.resume):
            return False
        logger.info(f"Reanudación solicitada para tenant={tenant_id}")
        return True

    def _signal(self, tenant_id: str, action: Callable[[RunControl], None]) -> bool:
        controls = self._controls.get(str(tenant_id))
        if not controls:
            return False
        for control in controls:
            action(control)
        return True

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()

    async def _run_entity(
        self,
        descriptor: EntityDescriptor,
        tenant_id: str,
        full_sync: bool,
        control: RunControl,
    ) -> EntitySyncSummary:
        name = descriptor.name

        # Entre entidades: una pausa frena antes de tomar el gate; cancelar no toca el estado
        await control.wait_resumed()
        if control.cancelled:
            return EntitySyncSummary(entity=name, records_fetched=0, status=RunOutcome.CANCELLED,
                                     error="cancelled")

        acquired = False
        try:
            # Gate de un único run por (tenant, entidad)
            if not await self._tracker.begin_run(tenant_id, name):
                return EntitySyncSummary(entity=name, records_fetched=0, status=RunOutcome.SKIPPED,
                                         error="already running")
            acquired = True

            state = await self._tracker.read_state(tenant_id, name)
            result: EntityRunResult = await self._loop.run(
                descriptor,
                tenant_id=tenant_id,
                state=state,
                force_full=full_sync,
                control=control,
            )
        except asyncio.CancelledError:
            # Task cancelada (cliente desconectado, shutdown, Ctrl-C): el run no queda in_progress
            if acquired:
                logger.bind(entity=name, operation="orchestrate").warning(f"Sync de '{name}' interrumpido")
                await asyncio.shield(self._safe_fail(tenant_id, name, "cancelled"))
            raise
        except SyncError as e:
            e.tag(name, "orchestrate")
            error_logger(e).error(f"Sync de '{name}' abortado: {e.message}")
            if acquired:
                await self._safe_fail(tenant_id, name, e.message)
            return EntitySyncSummary(entity=name, records_fetched=0, status=RunOutcome.FAILED, error=e.message)
        except Exception as e:
            logger.bind(entity=name, operation="orchestrate").exception(f"Error inesperado en sync de '{name}': {e}")
            if acquired:
                await self._safe_fail(tenant_id, name, str(e))
            return EntitySyncSummary(entity=name, records_fetched=0, status=RunOutcome.FAILED, error=str(e))

        error_text: Optional[str] = None
        if result.status == RunOutcome.FAILED:
            error_text = result.error.message if result.error else "failed"
            await self._safe_fail(tenant_id, name, error_text)
        elif result.status == RunOutcome.CANCELLED:
            error_text = "cancelled"
            await self._safe_fail(tenant_id, name, error_text)

        return EntitySyncSummary(
            entity=name,
            records_fetched=result.records_fetched,
            status=result.status,
            mode=result.mode,
            error=error_text,
            row_count=result.row_count,
        )

    async def _safe_fail(self, tenant_id: str, entity_name: str, error: str) -> None:
        try:
            await self._tracker.fail_run(tenant_id, entity_name, error)
        except StoreError as e:
            # El stale-run recovery de begin_run libera la fila más adelante.
            error_logger(e).error(f"No se pudo marcar '{entity_name}' como failed: {e.message}")

    async def _notify(
        self, tenant_id: str, summaries: list[EntitySyncSummary], elapsed_s: Optional[float] = None
    ) -> None:
        if self._notifier is None or not summaries:
            return
        try:
            await self._notifier.send(format_summary(tenant_id, summaries, elapsed_s), self._notify_channel)
        except Exception as e:
            logger.bind(operation="notify", error_kind="notifier").warning(f"Notificación descartada: {e}")


def build_from_settings(session_factory=None) -> SyncOrchestrator:
    """
    Arma el orquestador con un único engine y un único cliente httpx por proceso.
    """
    from fieldsync.infrastructure.database.session import get_session_factory
    from fieldsync.infrastructure.external.slack.slack_client import SlackNotifier

    from .credentials import StaticCredentialProvider
    from .platform_client import PlatformClient
    from .raw_repository import RawRecordRepository

    session_factory = session_factory or get_session_factory()
    http_client = httpx.AsyncClient(timeout=settings.PLATFORM_TIMEOUT_S)

    fetcher = PlatformClient(
        StaticCredentialProvider(settings.PLATFORM_ACCESS_TOKEN),
        client=http_client,
        base_url=settings.PLATFORM_API_BASE_URL,
        app_key=settings.PLATFORM_APP_KEY,
        timeout_s=settings.PLATFORM_TIMEOUT_S,
    )
    tracker = SyncStateRepository(session_factory, stale_after_s=settings.SYNC_STALE_RUN_S)
    loop = EntitySyncLoop(
        fetcher=fetcher,
        upserter=RawRecordRepository(session_factory),
        tracker=tracker,
        max_retries=settings.SYNC_MAX_RETRIES,
        store_max_retries=settings.SYNC_STORE_MAX_RETRIES,
        min_backoff_s=settings.SYNC_MIN_BACKOFF_S,
        max_backoff_s=settings.SYNC_MAX_BACKOFF_S,
        page_delay_s=settings.SYNC_PAGE_DELAY_S,
        overlap_s=settings.SYNC_OVERLAP_S,
        pause_heartbeat_s=settings.SYNC_PAUSE_HEARTBEAT_S,
    )
    return SyncOrchestrator(
        loop=loop,
        tracker=tracker,
        notifier=SlackNotifier(client=http_client),
        max_parallel=settings.SYNC_MAX_PARALLEL_ENTITIES,
        notify_channel=settings.SLACK_CHANNEL,
        http_client=http_client,
    )

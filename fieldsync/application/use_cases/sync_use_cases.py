"""
Casos de uso del sync on-demand (trigger HTTP / CLI).
"""
from typing import Optional

from loguru import logger

from fieldsync.application.dto.sync_dto import (
    EntitySyncResultDTO,
    SyncCancelResponseDTO,
    SyncPauseResponseDTO,
    SyncRunRequestDTO,
    SyncRunResponseDTO,
    SyncStateDTO,
    SyncStateListDTO,
)
from fieldsync.infrastructure.external.platform_sync.orchestrator import SyncOrchestrator
from fieldsync.infrastructure.external.platform_sync.raw_repository import RawRecordRepository
from fieldsync.infrastructure.external.platform_sync.table_mappings import (
    get_entity_descriptor,
    registered_entity_names,
)


class SyncUseCases:
    """
    Envuelve al orquestador para exponer resultados como DTOs.
    """

    def __init__(self, orchestrator: SyncOrchestrator, raw_repository: Optional[RawRecordRepository] = None):
        self.orchestrator = orchestrator
        self.raw_repository = raw_repository

    async def run_sync(self, tenant_id: str, dto: SyncRunRequestDTO) -> SyncRunResponseDTO:
        """
        Ejecuta una pasada de sync y retorna el resumen por entidad.

        Raises:
            UnknownEntityTypeError: si se pide un tipo no registrado
        """
        logger.info(f"Sync on-demand tenant={tenant_id} entidades={dto.entity_types or 'todas'}")
        summaries = await self.orchestrator.run(
            tenant_id,
            dto.entity_types,
            full_sync=dto.full_sync,
            notify=dto.notify,
        )
        return SyncRunResponseDTO(
            tenant_id=str(tenant_id),
            results=[EntitySyncResultDTO(**s.to_dict()) for s in summaries],
        )

    async def list_states(self, tenant_id: str) -> SyncStateListDTO:
        """Estado de sync de cada entidad del tenant (solo las que ya corrieron alguna vez)."""
        states = await self.orchestrator.tracker.list_states(tenant_id)
        registered = set(registered_entity_names())

        items = []
        for state in states:
            raw_rows = None
            if self.raw_repository is not None and state.entity_name in registered:
                raw_rows = await self.raw_repository.count_rows(
                    get_entity_descriptor(state.entity_name), tenant_id
                )
            items.append(SyncStateDTO(
                entity_name=state.entity_name,
                status=state.status.value,
                record_count=state.record_count,
                raw_row_count=raw_rows,
                last_full_sync_at=state.last_full_sync_at,
                last_incremental_sync_at=state.last_incremental_sync_at,
                last_run_started_at=state.last_run_started_at,
                last_run_completed_at=state.last_run_completed_at,
                last_error=state.last_error,
            ))
        return SyncStateListDTO(tenant_id=str(tenant_id), states=items)

    def cancel(self, tenant_id: str) -> SyncCancelResponseDTO:
        return SyncCancelResponseDTO(tenant_id=str(tenant_id), cancelled=self.orchestrator.cancel(tenant_id))

    def pause(self, tenant_id: str) -> SyncPauseResponseDTO:
        return SyncPauseResponseDTO(
            tenant_id=str(tenant_id), paused=True, signalled=self.orchestrator.pause(tenant_id)
        )

    def resume(self, tenant_id: str) -> SyncPauseResponseDTO:
        return SyncPauseResponseDTO(
            tenant_id=str(tenant_id), paused=False, signalled=self.orchestrator.resume(tenant_id)
        )

"""
Endpoints para sincronizacion de la plataforma de field-service.
Permite disparar una pasada on-demand por tenant, consultar su estado
y cancelar o pausar la pasada en curso.
"""
from typing import Optional

from fastapi import APIRouter, Depends, status

from fieldsync.application.dto.sync_dto import (
    SyncCancelResponseDTO,
    SyncPauseResponseDTO,
    SyncRunRequestDTO,
    SyncRunResponseDTO,
    SyncStateListDTO,
)
from fieldsync.application.use_cases.sync_use_cases import SyncUseCases
from fieldsync.api.v1.dependencies.use_case_deps import get_sync_use_cases


router = APIRouter(prefix="/sync", tags=["Sync"])


@router.post(
    "/{tenant_id}",
    response_model=SyncRunResponseDTO,
    status_code=status.HTTP_200_OK,
    summary="Sincronizar entidades de un tenant"
)
async def run_sync(
    tenant_id: str,
    dto: Optional[SyncRunRequestDTO] = None,
    use_cases: SyncUseCases = Depends(get_sync_use_cases)
) -> SyncRunResponseDTO:
    """
    Ejecuta una pasada de sync para el tenant.

    - Entidades ya in_progress se reportan como `skipped`
    - El fallo de una entidad no frena al resto (queda `failed` en el resumen)
    - Un tipo de entidad no registrado responde 404
    """
    return await use_cases.run_sync(tenant_id, dto or SyncRunRequestDTO())


@router.get(
    "/{tenant_id}/state",
    response_model=SyncStateListDTO,
    summary="Estado de sync por entidad"
)
async def get_sync_state(
    tenant_id: str,
    use_cases: SyncUseCases = Depends(get_sync_use_cases)
) -> SyncStateListDTO:
    return await use_cases.list_states(tenant_id)


@router.post(
    "/{tenant_id}/cancel",
    response_model=SyncCancelResponseDTO,
    summary="Cancelar la pasada en curso"
)
async def cancel_sync(
    tenant_id: str,
    use_cases: SyncUseCases = Depends(get_sync_use_cases)
) -> SyncCancelResponseDTO:
    """
    Señala la cancelación; cada entidad se detiene antes de pedir su próxima página.
    """
    return use_cases.cancel(tenant_id)


@router.post(
    "/{tenant_id}/pause",
    response_model=SyncPauseResponseDTO,
    summary="Pausar la pasada en curso"
)
async def pause_sync(
    tenant_id: str,
    use_cases: SyncUseCases = Depends(get_sync_use_cases)
) -> SyncPauseResponseDTO:
    """
    Las entidades en curso se frenan antes de su próxima página y las
    pendientes no arrancan hasta reanudar.
    """
    return use_cases.pause(tenant_id)


@router.post(
    "/{tenant_id}/resume",
    response_model=SyncPauseResponseDTO,
    summary="Reanudar la pasada pausada"
)
async def resume_sync(
    tenant_id: str,
    use_cases: SyncUseCases = Depends(get_sync_use_cases)
) -> SyncPauseResponseDTO:
    return use_cases.resume(tenant_id)

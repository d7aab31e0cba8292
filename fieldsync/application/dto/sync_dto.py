"""
DTOs del trigger on-demand de sync y de la consulta de estado.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class SyncRunRequestDTO(BaseModel):
    """
    Request para disparar una pasada de sync.

    - `entity_types` vacío u omitido => todas las entidades registradas.
    - `full_sync` ignora los watermarks en esta pasada.
    """
    entity_types: Optional[List[str]] = Field(
        None, description="Tipos de entidad a sincronizar (default: todos los registrados)"
    )
    full_sync: bool = Field(False, description="Si True, sincroniza todo sin filtro modifiedOnOrAfter")
    notify: bool = Field(True, description="Enviar resumen al canal de notificaciones")

    @field_validator("entity_types")
    @classmethod
    def strip_entity_types(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is None:
            return None
        cleaned = [name.strip() for name in v if name and name.strip()]
        return cleaned or None


class EntitySyncResultDTO(BaseModel):
    entity: str
    records_fetched: int
    status: str
    mode: Optional[str] = None
    error: Optional[str] = None
    row_count: Optional[int] = Field(default=None, description="Filas de la tabla raw del tenant al terminar")


class SyncRunResponseDTO(BaseModel):
    tenant_id: str
    results: List[EntitySyncResultDTO]


class SyncStateDTO(BaseModel):
    """Fila de raw.sync_state más el conteo actual de la tabla cruda."""

    entity_name: str
    status: str
    record_count: int
    raw_row_count: Optional[int] = None
    last_full_sync_at: Optional[datetime] = None
    last_incremental_sync_at: Optional[datetime] = None
    last_run_started_at: Optional[datetime] = None
    last_run_completed_at: Optional[datetime] = None
    last_error: Optional[str] = None


class SyncStateListDTO(BaseModel):
    tenant_id: str
    states: List[SyncStateDTO]


class SyncCancelResponseDTO(BaseModel):
    tenant_id: str
    cancelled: bool


class SyncPauseResponseDTO(BaseModel):
    tenant_id: str
    paused: bool = Field(..., description="Estado pedido: True para pausa, False para reanudación")
    signalled: bool = Field(..., description="False si no había una pasada en curso")

"""
Data Transfer Objects (DTOs) para la capa de aplicacion.
"""
from .sync_dto import (
    SyncRunRequestDTO,
    EntitySyncResultDTO,
    SyncRunResponseDTO,
    SyncStateDTO,
    SyncStateListDTO,
    SyncCancelResponseDTO,
    SyncPauseResponseDTO,
)

__all__ = [
    "SyncRunRequestDTO",
    "EntitySyncResultDTO",
    "SyncRunResponseDTO",
    "SyncStateDTO",
    "SyncStateListDTO",
    "SyncCancelResponseDTO",
    "SyncPauseResponseDTO",
]

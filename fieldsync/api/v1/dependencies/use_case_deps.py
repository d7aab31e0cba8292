"""
Dependencias para inyeccion de casos de uso.
"""
from fastapi import Request

from fieldsync.application.use_cases.sync_use_cases import SyncUseCases
from fieldsync.infrastructure.database.session import get_session_factory
from fieldsync.infrastructure.external.platform_sync.raw_repository import RawRecordRepository


async def get_sync_use_cases(request: Request) -> SyncUseCases:
    """
    Dependencia para obtener los casos de uso de sync.

    El orquestador se construye una sola vez en el startup (app.state).
    """
    return SyncUseCases(
        orchestrator=request.app.state.orchestrator,
        raw_repository=RawRecordRepository(get_session_factory()),
    )

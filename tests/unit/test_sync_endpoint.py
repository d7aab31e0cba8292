"""
Tests unitarios de los endpoints de sync.

Verifica el contrato HTTP:
- POST /sync/{tenant} acepta body opcional y retorna el resumen por entidad.
- Un tipo de entidad no registrado responde 404.
- GET /state, POST /cancel, /pause y /resume delegan en los casos de uso.
"""
from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient

from fieldsync.application.dto.sync_dto import (
    EntitySyncResultDTO,
    SyncCancelResponseDTO,
    SyncPauseResponseDTO,
    SyncRunRequestDTO,
    SyncRunResponseDTO,
    SyncStateDTO,
    SyncStateListDTO,
)
from fieldsync.application.use_cases.sync_use_cases import SyncUseCases
from fieldsync.api.v1.dependencies.use_case_deps import get_sync_use_cases
from fieldsync.infrastructure.external.platform_sync.orchestrator import EntitySyncSummary
from fieldsync.infrastructure.external.platform_sync.sync_state_repository import SyncState
from fieldsync.shared.constants.sync_constants import RunOutcome, SyncMode, SyncStatus
from fieldsync.shared.exceptions.sync import UnknownEntityTypeError


def _mock_run_response() -> SyncRunResponseDTO:
    return SyncRunResponseDTO(
        tenant_id="t1",
        results=[
            EntitySyncResultDTO(entity="customers", records_fetched=150, status="completed", mode="full"),
            EntitySyncResultDTO(entity="jobs", records_fetched=0, status="failed", mode="full", error="boom"),
        ],
    )


@pytest.fixture
def mock_use_cases() -> MagicMock:
    uc = MagicMock()
    uc.run_sync = AsyncMock(return_value=_mock_run_response())
    uc.list_states = AsyncMock(return_value=SyncStateListDTO(
        tenant_id="t1",
        states=[SyncStateDTO(entity_name="customers", status="completed", record_count=150, raw_row_count=150)],
    ))
    uc.cancel = MagicMock(return_value=SyncCancelResponseDTO(tenant_id="t1", cancelled=True))
    uc.pause = MagicMock(return_value=SyncPauseResponseDTO(tenant_id="t1", paused=True, signalled=True))
    uc.resume = MagicMock(return_value=SyncPauseResponseDTO(tenant_id="t1", paused=False, signalled=False))
    return uc


@pytest.fixture
def app_with_mock(mock_use_cases: MagicMock):
    """Crea la app FastAPI con el use case mockeado via dependency_overrides."""
    from main import create_application
    app = create_application()
    app.dependency_overrides[get_sync_use_cases] = lambda: mock_use_cases
    yield app
    app.dependency_overrides.clear()


async def _post(app, url, **kwargs):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        return await client.post(url, **kwargs)


@pytest.mark.asyncio
async def test_run_sync_returns_per_entity_summary(app_with_mock, mock_use_cases) -> None:
    response = await _post(app_with_mock, "/api/v1/sync/t1", json={"entity_types": ["customers", "jobs"]})

    assert response.status_code == 200
    data = response.json()
    assert data["tenant_id"] == "t1"
    assert data["results"][0] == {
        "entity": "customers", "records_fetched": 150, "status": "completed", "mode": "full", "error": None,
        "row_count": None,
    }
    tenant_id, dto = mock_use_cases.run_sync.call_args.args
    assert tenant_id == "t1"
    assert dto.entity_types == ["customers", "jobs"]
    assert dto.full_sync is False


@pytest.mark.asyncio
async def test_run_sync_without_body_means_all_entities(app_with_mock, mock_use_cases) -> None:
    response = await _post(app_with_mock, "/api/v1/sync/t1")

    assert response.status_code == 200
    _, dto = mock_use_cases.run_sync.call_args.args
    assert dto.entity_types is None
    assert dto.notify is True


@pytest.mark.asyncio
async def test_run_sync_unknown_entity_is_404(app_with_mock, mock_use_cases) -> None:
    mock_use_cases.run_sync.side_effect = UnknownEntityTypeError("trucks", ["customers", "jobs"])

    response = await _post(app_with_mock, "/api/v1/sync/t1", json={"entity_types": ["trucks"]})

    assert response.status_code == 404
    body = response.json()
    assert body["error"] == "UNKNOWN_ENTITY_TYPE"
    assert body["details"]["entity"] == "trucks"


@pytest.mark.asyncio
async def test_unexpected_error_is_generic_500(app_with_mock, mock_use_cases) -> None:
    mock_use_cases.run_sync.side_effect = RuntimeError("bug")

    response = await _post(app_with_mock, "/api/v1/sync/t1")

    assert response.status_code == 500
    assert response.json()["error"] == "INTERNAL_SERVER_ERROR"


@pytest.mark.asyncio
async def test_get_state(app_with_mock) -> None:
    transport = ASGITransport(app=app_with_mock)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/api/v1/sync/t1/state")

    assert response.status_code == 200
    assert response.json()["states"][0]["raw_row_count"] == 150


@pytest.mark.asyncio
async def test_cancel(app_with_mock, mock_use_cases) -> None:
    response = await _post(app_with_mock, "/api/v1/sync/t1/cancel")

    assert response.status_code == 200
    assert response.json() == {"tenant_id": "t1", "cancelled": True}
    mock_use_cases.cancel.assert_called_once_with("t1")


@pytest.mark.asyncio
async def test_pause_and_resume(app_with_mock, mock_use_cases) -> None:
    paused = await _post(app_with_mock, "/api/v1/sync/t1/pause")
    resumed = await _post(app_with_mock, "/api/v1/sync/t1/resume")

    assert paused.json() == {"tenant_id": "t1", "paused": True, "signalled": True}
    assert resumed.json() == {"tenant_id": "t1", "paused": False, "signalled": False}
    mock_use_cases.pause.assert_called_once_with("t1")
    mock_use_cases.resume.assert_called_once_with("t1")


@pytest.mark.asyncio
async def test_health(app_with_mock) -> None:
    transport = ASGITransport(app=app_with_mock)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert "customers" in body["entities"]


@pytest.mark.asyncio
async def test_use_cases_translate_summaries_and_states() -> None:
    orchestrator = MagicMock()
    orchestrator.run = AsyncMock(return_value=[
        EntitySyncSummary(entity="customers", records_fetched=3, status=RunOutcome.COMPLETED, mode=SyncMode.FULL, row_count=3),
        EntitySyncSummary(entity="jobs", records_fetched=0, status=RunOutcome.SKIPPED, error="already running"),
    ])
    orchestrator.tracker.list_states = AsyncMock(return_value=[
        SyncState(
            tenant_id="t1",
            entity_name="customers",
            record_count=3,
            status=SyncStatus.COMPLETED,
            last_full_sync_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
        ),
    ])
    raw_repository = MagicMock()
    raw_repository.count_rows = AsyncMock(return_value=3)

    use_cases = SyncUseCases(orchestrator, raw_repository)

    result = await use_cases.run_sync("t1", SyncRunRequestDTO(entity_types=[" customers ", ""], full_sync=True))
    orchestrator.run.assert_awaited_once_with("t1", ["customers"], full_sync=True, notify=True)
    assert [r.status for r in result.results] == ["completed", "skipped"]
    assert result.results[1].mode is None
    assert result.results[0].row_count == 3

    states = await use_cases.list_states("t1")
    assert states.states[0].raw_row_count == 3
    assert states.states[0].status == "completed"


def test_use_cases_forward_pause_and_resume() -> None:
    orchestrator = MagicMock()
    orchestrator.pause.return_value = True
    orchestrator.resume.return_value = False
    use_cases = SyncUseCases(orchestrator)

    assert use_cases.pause("t1") == SyncPauseResponseDTO(tenant_id="t1", paused=True, signalled=True)
    assert use_cases.resume("t1") == SyncPauseResponseDTO(tenant_id="t1", paused=False, signalled=False)

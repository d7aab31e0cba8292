"""
Tests del loop de una entidad: paginación, reintentos, checkpoint y cancelación.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from fieldsync.infrastructure.external.platform_sync.raw_repository import RawRecordRepository
from fieldsync.infrastructure.external.platform_sync.sync_service import EntitySyncLoop, RunControl
from fieldsync.infrastructure.external.platform_sync.sync_state_repository import SyncState, SyncStateRepository
from fieldsync.infrastructure.external.platform_sync.table_mappings import CUSTOMERS, map_record_to_row
from fieldsync.shared.constants.sync_constants import ErrorKind, RunOutcome, SyncMode
from fieldsync.shared.exceptions.sync import StoreError

TENANT = "t1"


def two_pages(make_customer, *, on_request=None):
    """Handler: página 1 con 100 customers (hasMore) y página 2 con 50."""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        page = request.url.params.get("page")
        calls.append(dict(request.url.params))
        if on_request is not None:
            response = on_request(page, len(calls))
            if response is not None:
                return response
        if page is None:
            return httpx.Response(200, json={"data": [make_customer(i) for i in range(1, 101)], "hasMore": True})
        return httpx.Response(200, json={"data": [make_customer(i) for i in range(101, 151)], "hasMore": False})

    return handler, calls


def build_loop(fetcher, session_factory, **kwargs):
    tracker = SyncStateRepository(session_factory)
    upserter = RawRecordRepository(session_factory)
    options = dict(max_retries=3, store_max_retries=2, min_backoff_s=0, max_backoff_s=0, page_delay_s=0)
    options.update(kwargs)
    return EntitySyncLoop(fetcher=fetcher, upserter=upserter, tracker=tracker, **options), tracker, upserter


async def test_full_sync_two_pages(session_factory, platform_client_factory, make_customer):
    """modifiedSince nulo, 100 + 50 registros: 150 filas, record_count 150, lastFullSyncAt seteado."""
    handler, calls = two_pages(make_customer)
    loop, tracker, upserter = build_loop(platform_client_factory(handler), session_factory)

    before = datetime.now(timezone.utc)
    await tracker.begin_run(TENANT, "customers")
    result = await loop.run(CUSTOMERS, tenant_id=TENANT, state=await tracker.read_state(TENANT, "customers"))

    assert result.status == RunOutcome.COMPLETED
    assert result.mode == SyncMode.FULL
    assert result.records_fetched == 150
    assert result.pages == 2
    assert "modifiedOnOrAfter" not in calls[0]
    assert calls[1]["page"] == "2"

    state = await tracker.read_state(TENANT, "customers")
    assert state.record_count == 150
    assert state.last_full_sync_at is not None and state.last_full_sync_at >= before.replace(microsecond=0)
    assert state.last_incremental_sync_at is None
    # Consistencia record_count vs filas distintas
    assert await upserter.count_rows(CUSTOMERS, TENANT) == state.record_count


async def test_transient_errors_within_retry_limit_complete_without_gaps(session_factory, platform_client_factory, make_customer):
    """Fallo transitorio en los intentos 1 y 2, éxito en el 3."""
    attempts = {"page2": 0}

    def flaky(page, _):
        if page == "2":
            attempts["page2"] += 1
            if attempts["page2"] <= 2:
                return httpx.Response(503, text="unavailable")
        return None

    handler, _ = two_pages(make_customer, on_request=flaky)
    loop, tracker, upserter = build_loop(platform_client_factory(handler), session_factory, max_retries=3)

    result = await loop.run(CUSTOMERS, tenant_id=TENANT, state=SyncState(TENANT, "customers"))

    assert result.status == RunOutcome.COMPLETED
    assert attempts["page2"] == 3
    assert result.records_fetched == 150
    assert await upserter.count_rows(CUSTOMERS, TENANT) == 150


async def test_exhausted_retries_fail_but_keep_committed_pages(session_factory, platform_client_factory, make_customer):
    def always_down(page, _):
        return httpx.Response(502, text="bad gateway") if page == "2" else None

    handler, calls = two_pages(make_customer, on_request=always_down)
    loop, tracker, upserter = build_loop(platform_client_factory(handler), session_factory, max_retries=2)

    await tracker.begin_run(TENANT, "customers")
    result = await loop.run(CUSTOMERS, tenant_id=TENANT, state=SyncState(TENANT, "customers"))

    assert result.status == RunOutcome.FAILED
    assert result.error.kind == ErrorKind.TRANSIENT
    assert result.error.entity_type == "customers"
    assert len(calls) == 1 + 3  # página 1 + intento inicial + 2 reintentos de la página 2
    assert await upserter.count_rows(CUSTOMERS, TENANT) == 100

    state = await tracker.read_state(TENANT, "customers")
    assert state.record_count == 100
    assert state.watermark is None


async def test_validation_error_fails_immediately(session_factory, platform_client_factory):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(400, text="invalid pageSize")

    loop, _, _ = build_loop(platform_client_factory(handler), session_factory)
    result = await loop.run(CUSTOMERS, tenant_id=TENANT, state=SyncState(TENANT, "customers"))

    assert result.status == RunOutcome.FAILED
    assert result.error.kind == ErrorKind.VALIDATION
    assert len(calls) == 1


async def test_credential_error_refreshes_once_and_retries(session_factory, platform_client_factory, make_customer):
    def expired_once(page, n):
        return httpx.Response(401, text="expired") if n == 1 else None

    handler, calls = two_pages(make_customer, on_request=expired_once)
    fetcher = platform_client_factory(handler)
    loop, _, _ = build_loop(fetcher, session_factory)

    refreshed = []
    original_refresh = fetcher.credentials.refresh

    async def spy_refresh(tenant_id):
        refreshed.append(tenant_id)
        return await original_refresh(tenant_id)

    fetcher.credentials.refresh = spy_refresh

    result = await loop.run(CUSTOMERS, tenant_id=TENANT, state=SyncState(TENANT, "customers"))

    assert result.status == RunOutcome.COMPLETED
    assert refreshed == [TENANT]
    assert len(calls) == 3


async def test_persistent_credential_error_fails_after_one_refresh(session_factory, platform_client_factory):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(401, text="expired")

    loop, _, _ = build_loop(platform_client_factory(handler), session_factory)
    result = await loop.run(CUSTOMERS, tenant_id=TENANT, state=SyncState(TENANT, "customers"))

    assert result.status == RunOutcome.FAILED
    assert result.error.kind == ErrorKind.CREDENTIAL
    assert len(calls) == 2


async def test_store_error_is_retried(session_factory, platform_client_factory, make_customer):
    handler, _ = two_pages(make_customer)
    loop, _, upserter = build_loop(platform_client_factory(handler), session_factory, store_max_retries=2)

    real_upsert = upserter.upsert_page
    failures = {"left": 1}

    async def flaky_upsert(descriptor, records, **kwargs):
        if failures["left"]:
            failures["left"] -= 1
            raise StoreError("conexión perdida", operation="upsert")
        return await real_upsert(descriptor, records, **kwargs)

    upserter.upsert_page = flaky_upsert

    result = await loop.run(CUSTOMERS, tenant_id=TENANT, state=SyncState(TENANT, "customers"))

    assert result.status == RunOutcome.COMPLETED
    assert await upserter.count_rows(CUSTOMERS, TENANT) == 150


async def test_store_error_exhausted_fails_run(session_factory, platform_client_factory, make_customer):
    handler, _ = two_pages(make_customer)
    loop, _, upserter = build_loop(platform_client_factory(handler), session_factory, store_max_retries=1)

    async def broken_upsert(descriptor, records, **kwargs):
        raise StoreError("disco lleno", operation="upsert")

    upserter.upsert_page = broken_upsert

    result = await loop.run(CUSTOMERS, tenant_id=TENANT, state=SyncState(TENANT, "customers"))

    assert result.status == RunOutcome.FAILED
    assert result.error.kind == ErrorKind.STORE
    assert result.error.entity_type == "customers"
    assert result.records_fetched == 0


async def test_incremental_run_uses_watermark_minus_overlap(session_factory, platform_client_factory, make_customer):
    watermark = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
    handler, calls = two_pages(make_customer)
    loop, tracker, _ = build_loop(platform_client_factory(handler), session_factory, overlap_s=300)

    state = SyncState(TENANT, "customers", last_full_sync_at=watermark)
    result = await loop.run(CUSTOMERS, tenant_id=TENANT, state=state)

    assert result.mode == SyncMode.INCREMENTAL
    assert calls[0]["modifiedOnOrAfter"] == "2025-06-01T11:55:00Z"

    stored = await tracker.read_state(TENANT, "customers")
    assert stored.last_incremental_sync_at is not None
    assert stored.last_full_sync_at is None  # complete_run solo toca el watermark del modo usado


def test_plan_run_prefers_latest_watermark_and_honours_force_full():
    loop = EntitySyncLoop(fetcher=None, upserter=None, tracker=None, overlap_s=60)
    full = datetime(2025, 1, 1, tzinfo=timezone.utc)
    incr = full + timedelta(days=3)

    mode, since = loop.plan_run(SyncState(TENANT, "jobs", last_full_sync_at=full, last_incremental_sync_at=incr))
    assert mode == SyncMode.INCREMENTAL
    assert since == incr - timedelta(seconds=60)

    mode, since = loop.plan_run(SyncState(TENANT, "jobs", last_full_sync_at=full), force_full=True)
    assert mode == SyncMode.FULL
    assert since is None


def test_backoff_is_exponential_capped_and_honours_retry_after():
    loop = EntitySyncLoop(fetcher=None, upserter=None, tracker=None, min_backoff_s=1.0, max_backoff_s=10.0)

    assert 1.0 <= loop._backoff_s(1) <= 1.15
    assert 4.0 <= loop._backoff_s(3) <= 4.6
    assert 10.0 <= loop._backoff_s(10) <= 11.5
    assert loop._backoff_s(1, retry_after=7) == 7
    assert loop._backoff_s(1, retry_after=120) == 10.0


async def test_cancel_between_pages(session_factory, platform_client_factory, make_customer):
    control = RunControl()

    def cancel_after_first(page, _):
        if page is None:
            control.cancel()
        return None

    handler, calls = two_pages(make_customer, on_request=cancel_after_first)
    loop, tracker, upserter = build_loop(platform_client_factory(handler), session_factory)

    result = await loop.run(
        CUSTOMERS, tenant_id=TENANT, state=SyncState(TENANT, "customers"), control=control
    )

    assert result.status == RunOutcome.CANCELLED
    assert len(calls) == 1
    # La página en vuelo se aplicó completa
    assert await upserter.count_rows(CUSTOMERS, TENANT) == 100
    assert (await tracker.read_state(TENANT, "customers")).watermark is None


async def test_repeated_ids_across_pages_count_once(session_factory, platform_client_factory, make_customer):
    """Página 1 con ids 1..100 y página 2 con ids 100..149: 149 filas y record_count 149."""
    def overlapping(page, _):
        if page == "2":
            return httpx.Response(
                200, json={"data": [make_customer(i) for i in range(100, 150)], "hasMore": False}
            )
        return None

    handler, _ = two_pages(make_customer, on_request=overlapping)
    loop, tracker, upserter = build_loop(platform_client_factory(handler), session_factory)

    await tracker.begin_run(TENANT, "customers")
    result = await loop.run(CUSTOMERS, tenant_id=TENANT, state=SyncState(TENANT, "customers"))

    assert result.status == RunOutcome.COMPLETED
    assert result.records_fetched == 149
    assert result.row_count == 149
    state = await tracker.read_state(TENANT, "customers")
    assert state.record_count == await upserter.count_rows(CUSTOMERS, TENANT) == 149


async def test_full_sync_record_count_matches_table_with_rows_from_earlier_runs(
    session_factory, platform_client_factory, make_customer
):
    handler, _ = two_pages(make_customer)
    loop, tracker, upserter = build_loop(platform_client_factory(handler), session_factory)
    # Fila de un run anterior que la plataforma ya no devuelve
    await upserter.upsert_page(CUSTOMERS, [map_record_to_row(make_customer(9999), descriptor=CUSTOMERS, tenant_id=TENANT)])

    result = await loop.run(CUSTOMERS, tenant_id=TENANT, state=SyncState(TENANT, "customers"))

    assert result.records_fetched == 150
    assert result.row_count == 151
    assert (await tracker.read_state(TENANT, "customers")).record_count == 151


async def test_pause_holds_between_pages_until_resume(session_factory, platform_client_factory, make_customer):
    control = RunControl()
    first_page_done = asyncio.Event()

    def pause_after_first(page, _):
        if page is None:
            control.pause()
            first_page_done.set()
        return None

    handler, calls = two_pages(make_customer, on_request=pause_after_first)
    loop, tracker, upserter = build_loop(
        platform_client_factory(handler), session_factory, pause_heartbeat_s=0.01
    )
    await tracker.begin_run(TENANT, "customers")

    task = asyncio.create_task(
        loop.run(CUSTOMERS, tenant_id=TENANT, state=SyncState(TENANT, "customers"), control=control)
    )
    await first_page_done.wait()
    await asyncio.sleep(0.1)

    assert not task.done()
    assert len(calls) == 1
    assert await upserter.count_rows(CUSTOMERS, TENANT) == 100

    control.resume()
    result = await task

    assert result.status == RunOutcome.COMPLETED
    assert result.records_fetched == 150
    assert len(calls) == 2


async def test_cancel_wakes_a_paused_run(session_factory, platform_client_factory, make_customer):
    control = RunControl()

    def pause_after_first(page, _):
        if page is None:
            control.pause()
        return None

    handler, calls = two_pages(make_customer, on_request=pause_after_first)
    loop, _, _ = build_loop(platform_client_factory(handler), session_factory)

    task = asyncio.create_task(
        loop.run(CUSTOMERS, tenant_id=TENANT, state=SyncState(TENANT, "customers"), control=control)
    )
    while not calls:
        await asyncio.sleep(0.01)
    control.cancel()
    result = await task

    assert result.status == RunOutcome.CANCELLED
    assert len(calls) == 1


async def test_run_longer_than_overlap_logs_warning(session_factory, platform_client_factory, make_customer):
    from loguru import logger

    handler, _ = two_pages(make_customer)
    loop, _, _ = build_loop(platform_client_factory(handler), session_factory, overlap_s=0)

    messages = []
    sink_id = logger.add(messages.append, level="WARNING")
    try:
        result = await loop.run(CUSTOMERS, tenant_id=TENANT, state=SyncState(TENANT, "customers"))
    finally:
        logger.remove(sink_id)

    assert result.status == RunOutcome.COMPLETED
    assert any("más que el solape" in str(m) for m in messages)

"""
Configuración de fixtures para pytest.
"""
import httpx
import pytest
from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from fieldsync.infrastructure.database.session import Base
from fieldsync.infrastructure.database import models  # noqa: F401
from fieldsync.infrastructure.external.platform_sync import table_mappings  # noqa: F401
from fieldsync.infrastructure.external.platform_sync.credentials import StaticCredentialProvider
from fieldsync.infrastructure.external.platform_sync.platform_client import PlatformClient
from fieldsync.shared.constants.sync_constants import RAW_SCHEMA


@pytest.fixture(scope="function")
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """
    Session factory sobre una base SQLite por test.

    SQLite no tiene schemas: el schema "raw" se traduce al default.
    Se usa archivo (no :memory:) para que cada sesión abra su propia conexión
    como en Postgres.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'sync.db'}", echo=False
    ).execution_options(schema_translate_map={RAW_SCHEMA: None})

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


def _customer_payload(i, modified: str = "2025-01-01T00:00:00Z", **extra) -> dict:
    payload = {"id": i, "name": f"Customer {i}", "type": "Residential", "active": True, "modifiedOn": modified}
    payload.update(extra)
    return payload


@pytest.fixture
def make_customer():
    """Payload de la plataforma para un customer: make_customer(id, modified=..., **extra)."""
    return _customer_payload


@pytest.fixture
async def platform_client_factory():
    """
    Arma PlatformClient sobre httpx.MockTransport.

    Uso: client = platform_client_factory(handler), con handler(request) -> httpx.Response
    """
    clients = []

    def factory(handler, token: str = "tok") -> PlatformClient:
        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        clients.append(http)
        return PlatformClient(
            StaticCredentialProvider(token),
            client=http,
            base_url="https://st.test",
            app_key="app-key",
        )

    yield factory

    for http in clients:
        await http.aclose()

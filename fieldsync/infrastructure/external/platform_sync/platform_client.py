"""
Page Fetcher: un round-trip a la API de la plataforma para una entidad.

Requisitos cubiertos:
- httpx (cliente async compartido por todo el proceso)
- paginación por cursor opaco (continueFrom) con fallback a número de página
- filtro incremental modifiedOnOrAfter
- clasificación tipada de errores (transient / credential / validation)

No reintenta: la política de reintentos vive en el loop de la entidad.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

import httpx
from loguru import logger

from fieldsync.shared.exceptions.sync import (
    CredentialError,
    TransientExternalError,
    ValidationError,
)
from fieldsync.shared.utils.datetime_utils import isoformat_z

from .credentials import CredentialProvider
from .sync_config import EntityDescriptor
from .table_mappings import map_record_to_row
from .types import PlatformPage


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def next_page_cursor(current: Optional[str], continue_from: Optional[str]) -> Optional[str]:
    """
    Cursor de la siguiente página.

    La plataforma devuelve continueFrom en endpoints de export; en endpoints
    paginados por número solo devuelve hasMore, así que derivamos page+1.
    """
    if continue_from:
        return str(continue_from)
    if current is None:
        return "2"
    if str(current).isdigit():
        return str(int(current) + 1)
    return None


class PlatformClient:
    """
    Cliente HTTP de la plataforma. Expone fetch_page(), que produce una PlatformPage
    con los registros ya normalizados por el registro de entidades.
    """

    def __init__(
        self,
        credentials: CredentialProvider,
        *,
        client: httpx.AsyncClient,
        base_url: str = "https://api.servicetitan.io",
        app_key: str = "",
        timeout_s: float = 30.0,
    ) -> None:
        self._credentials = credentials
        self._base_url = base_url.rstrip("/")
        self._app_key = app_key
        self._timeout_s = timeout_s
        self._client = client

    @property
    def credentials(self) -> CredentialProvider:
        return self._credentials

    async def fetch_page(
        self,
        descriptor: EntityDescriptor,
        *,
        tenant_id: str,
        modified_since: Optional[datetime] = None,
        cursor: Optional[str] = None,
    ) -> PlatformPage:
        """
        Trae una página de la entidad.

        - pageSize es fijo por entidad (nunca se auto-expande)
        - modified_since None => full sync sin filtro
        """
        url = f"{self._base_url}{descriptor.endpoint_for(tenant_id)}"
        params: dict[str, Any] = {"pageSize": descriptor.page_size}
        if modified_since is not None:
            params["modifiedOnOrAfter"] = isoformat_z(modified_since)
        if cursor:
            params["page"] = cursor

        payload = await self._request_json(url, params=params, tenant_id=tenant_id, entity=descriptor.name)

        data = payload.get("data") or []
        if not isinstance(data, list):
            raise ValidationError(
                f"Respuesta de '{descriptor.name}' con 'data' inválido: {type(data).__name__}",
                entity_type=descriptor.name,
                operation="fetch",
            )
        records = [
            map_record_to_row(item, descriptor=descriptor, tenant_id=tenant_id)
            for item in data
        ]

        has_more = bool(payload.get("hasMore"))
        if has_more and not records and not payload.get("continueFrom"):
            logger.warning(f"'{descriptor.name}' reporta hasMore con página vacía; se da por terminada")
            has_more = False
        next_cursor: Optional[str] = None
        if has_more:
            next_cursor = next_page_cursor(cursor, payload.get("continueFrom"))
            if next_cursor is None or next_cursor == cursor:
                # Pedir de nuevo el mismo cursor sería un loop infinito.
                raise ValidationError(
                    f"'{descriptor.name}' reporta hasMore sin un cursor que avance (cursor={cursor})",
                    entity_type=descriptor.name,
                    operation="fetch",
                )

        logger.debug(
            f"Página '{descriptor.name}' tenant={tenant_id} cursor={cursor}: "
            f"{len(records)} registros, has_more={has_more}"
        )
        return PlatformPage(records=records, has_more=has_more, next_cursor=next_cursor)

    async def _request_json(
        self, url: str, *, params: dict[str, Any], tenant_id: str, entity: str
    ) -> dict[str, Any]:
        """
        GET con clasificación de errores.

        Estrategia:
        - timeout / error de red / 429 / 5xx: TransientExternalError (429 respeta Retry-After)
        - 401: CredentialError
        - otros 4xx o cuerpo no-JSON: ValidationError (reintentar no sirve)
        """
        token = await self._credentials.get_token(tenant_id)
        headers = {
            "Authorization": f"Bearer {token}",
            "ST-App-Key": self._app_key,
            "Content-Type": "application/json",
        }
        tags = {"entity_type": entity, "operation": "fetch"}

        try:
            resp = await self._client.get(url, params=params, headers=headers, timeout=self._timeout_s)
        except httpx.TimeoutException as e:
            raise TransientExternalError(f"Timeout consultando {url}: {e}", **tags) from e
        except httpx.TransportError as e:
            raise TransientExternalError(f"Error de red consultando {url}: {e}", **tags) from e

        if 200 <= resp.status_code < 300:
            try:
                payload = resp.json()
            except ValueError as e:
                raise ValidationError(f"Respuesta no-JSON de {url}", **tags) from e
            if not isinstance(payload, dict):
                raise ValidationError(f"Respuesta inesperada de {url}: {type(payload).__name__}", **tags)
            return payload

        # Errores recuperables
        if resp.status_code == 429:
            raise TransientExternalError(
                f"Rate limit de la plataforma (429) en {url}",
                retry_after=_parse_retry_after(resp.headers.get("Retry-After")),
                **tags,
            )
        if 500 <= resp.status_code < 600:
            raise TransientExternalError(
                f"Plataforma error {resp.status_code}: {resp.text[:500]}", **tags
            )

        if resp.status_code == 401:
            raise CredentialError(f"Credencial rechazada (401) en {url}", **tags)

        # Errores no recuperables
        raise ValidationError(
            f"Request a la plataforma falló {resp.status_code}: {resp.text[:500]}", **tags
        )

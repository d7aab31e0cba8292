"""
Proveedor de credenciales de la plataforma.

El motor no gestiona el ciclo de vida del token: solo lo pide antes de cada
request y, ante un 401, pide un refresh una única vez.
"""

from __future__ import annotations

from typing import Protocol

from fieldsync.shared.exceptions.sync import CredentialError


class CredentialProvider(Protocol):
    async def get_token(self, tenant_id: str) -> str:
        ...

    async def refresh(self, tenant_id: str) -> str:
        ...


class StaticCredentialProvider:
    """
    Token fijo (PLATFORM_ACCESS_TOKEN). El refresh no puede obtener uno nuevo,
    así que retorna el mismo y deja que el reintento decida.
    """

    def __init__(self, token: str) -> None:
        self._token = token

    async def get_token(self, tenant_id: str) -> str:
        if not self._token:
            raise CredentialError("PLATFORM_ACCESS_TOKEN no configurado", operation="credentials")
        return self._token

    async def refresh(self, tenant_id: str) -> str:
        return await self.get_token(tenant_id)

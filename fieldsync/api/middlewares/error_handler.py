"""
Última red para errores no previstos en los endpoints de sync.
"""
from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from loguru import logger

from fieldsync.shared.exceptions.base import AppException


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Loguea con traceback y responde un 500 sin filtrar el detalle interno."""

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as exc:
            tenant_id = request.path_params.get("tenant_id")
            logger.bind(path=request.url.path, tenant_id=tenant_id).opt(exception=exc).error(
                "Error no manejado en {} (tenant={}): {}", request.url.path, tenant_id, exc
            )
            internal = AppException(
                message="Ha ocurrido un error interno del servidor",
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                error_code="INTERNAL_SERVER_ERROR",
            )
            return JSONResponse(status_code=internal.status_code, content=internal.to_dict())

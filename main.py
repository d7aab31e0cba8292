"""
Punto de entrada HTTP del motor de sync.

Expone el trigger on-demand por tenant (/api/v1/sync) y /health.
Las corridas programadas usan scripts/run_sync.py.
"""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from fieldsync.core.config import settings
from fieldsync.core.events import lifespan
from fieldsync.api.v1.router import api_router
from fieldsync.api.middlewares.error_handler import ErrorHandlerMiddleware
from fieldsync.infrastructure.external.platform_sync.table_mappings import registered_entity_names
from fieldsync.shared.exceptions.base import AppException


def create_application() -> FastAPI:
    """
    Arma la app: middleware de errores, eventos, routers y health.

    Returns:
        FastAPI: Instancia configurada de la aplicación
    """
    application = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Sincronización incremental de la plataforma de field-service hacia el schema raw",
        # Startup arma el orquestador (engine + cliente httpx por proceso)
        lifespan=lifespan,
    )

    application.add_middleware(ErrorHandlerMiddleware)

    application.include_router(api_router, prefix="/api")

    @application.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @application.get("/health", tags=["Health"])
    async def health_check():
        """Estado del servicio y entidades registradas."""
        return {
            "status": "healthy",
            "app_name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "entities": registered_entity_names(),
        }

    return application


app = create_application()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )

"""
FastAPI application factory and configuration.

Creates the application with CORS, routers, exception handlers and a lifespan
that builds the knowledge service on startup and drains jobs on shutdown.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from store_rag import __version__
from store_rag.api.dependencies import get_service_optional
from store_rag.api.endpoints import router as api_router
from store_rag.api.exceptions import setup_exception_handlers
from store_rag.api.models import SystemHealthResponse
from store_rag.config.settings import settings
from store_rag.service import KnowledgeService, build_knowledge_service
from store_rag.utils.logger import get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    A service passed to ``create_app`` is used as is; otherwise one is built
    from settings. A failed build leaves the API up and reporting unhealthy.
    """
    logger.info("Starting store knowledge API", environment=settings.environment)

    if app.state.service is None:
        try:
            app.state.service = build_knowledge_service(settings)
        except ValueError as e:
            logger.error("Failed to start knowledge service", error=str(e))

    try:
        yield
    finally:
        logger.info("Shutting down store knowledge API")
        if app.state.service is not None:
            await app.state.service.shutdown()
        logger.info("API shutdown completed")


def create_app(service: Optional[KnowledgeService] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        service: Pre-built knowledge service, mainly for tests

    Returns:
        FastAPI: Configured FastAPI application instance
    """
    app = FastAPI(
        title="Store Knowledge RAG API",
        description="Indexing, deletion and hybrid search over per-store commerce knowledge.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix=settings.api_prefix)
    setup_exception_handlers(app)
    setup_custom_routes(app)
    return app


def setup_custom_routes(app: FastAPI) -> None:
    """Set up routes outside the versioned prefix."""

    @app.get("/health", response_model=SystemHealthResponse)
    async def health_check(service: Optional[KnowledgeService] = Depends(get_service_optional)):
        if service is None:
            return SystemHealthResponse(
                status="unhealthy",
                components={"service": {"status": "unhealthy", "error": "not initialized"}}
            )

        health = await service.health_check()
        return SystemHealthResponse(
            status=health['status'],
            uptime=health['uptime_seconds'],
            components=health['components'],
            jobs=health['jobs'],
            locks=health['locks'],
        )


app = create_app()


def main() -> None:
    """Run the API with uvicorn."""
    import uvicorn

    uvicorn.run(
        "store_rag.api.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()

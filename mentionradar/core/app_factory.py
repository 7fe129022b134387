"""
Application Factory Pattern

Creates FastAPI app instances with configurable settings for different environments.
"""
import os
import sys
import logging
from typing import List, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from mentionradar.core.config import get_settings
from mentionradar.core.exceptions import MentionRadarError
from mentionradar.core.logging import setup_logging
from mentionradar.core.monitoring import get_metrics, init_error_tracking

logger = logging.getLogger(__name__)


class AppConfig:
    """Configuration for FastAPI application."""

    def __init__(
        self,
        environment: Optional[str] = None,
        title: str = "MentionRadar",
        description: str = "Multi-tenant mention monitoring: ingestion, lead scoring and webhook alerts",
        version: str = "1.0.0",
        enable_docs: Optional[bool] = None,
        cors_origins: Optional[List[str]] = None,
        configure_logging: bool = True,
    ):
        settings = get_settings()
        self.environment = (environment or settings.environment).lower()
        self.title = title
        self.description = description
        self.version = version

        self.enable_docs = enable_docs if enable_docs is not None else (self.environment != "production")
        self.docs_url = "/docs" if self.enable_docs else None
        self.redoc_url = "/redoc" if self.enable_docs else None

        self.cors_origins = cors_origins or self._get_default_cors_origins()
        self.configure_logging = configure_logging

    def _get_default_cors_origins(self) -> List[str]:
        cors_env = os.getenv("ALLOWED_ORIGINS") or os.getenv("CORS_ORIGINS", "")
        if cors_env:
            return [origin.strip() for origin in cors_env.split(",") if origin.strip()]
        if self.environment == "development":
            return ["*"]
        return [get_settings().dashboard_base_url]


def setup_middleware(app: FastAPI, config: AppConfig) -> None:
    allow_all = config.cors_origins == ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=not allow_all,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Accept", "Content-Type", "Authorization", "X-Tenant-ID"],
    )


def setup_routers(app: FastAPI) -> List[str]:
    from mentionradar.api import monitors, webhooks

    loaded = []
    for router in (monitors.router, webhooks.router):
        app.include_router(router)
        loaded.append(router.prefix)
        logger.info(f"Router '{router.prefix}' loaded")
    return loaded


def setup_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(MentionRadarError)
    async def pipeline_error_handler(request: Request, exc: MentionRadarError):
        logger.error(f"Unhandled pipeline error on {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"error": type(exc).__name__, "message": str(exc)})


def setup_health_endpoints(app: FastAPI, config: AppConfig, loaded_routers: List[str]) -> None:

    @app.get("/")
    async def root():
        return {
            "name": config.title,
            "version": config.version,
            "status": "operational",
            "environment": config.environment,
            "health_check": "/health",
        }

    @app.get("/health")
    async def health_check():
        settings = get_settings()
        return {
            "status": "healthy",
            "version": config.version,
            "python_version": "{}.{}.{}".format(
                sys.version_info.major, sys.version_info.minor, sys.version_info.micro
            ),
            "environment": config.environment,
            "routers": loaded_routers,
            "services": {
                "openai": "available" if settings.openai_api_key else "missing_key",
                "database": "sqlite" if settings.database_url.startswith("sqlite") else "configured",
                "redis": "configured" if settings.redis_url else "not_configured",
            },
        }

    @app.get("/metrics")
    async def metrics():
        registry = get_metrics()
        return Response(content=registry.export(), media_type=registry.content_type)


def create_app(config: Optional[AppConfig] = None) -> FastAPI:
    """
    Create FastAPI application with factory pattern.

    Args:
        config: Optional configuration object

    Returns:
        Configured FastAPI application
    """
    if config is None:
        config = AppConfig()

    if config.configure_logging:
        setup_logging()

    if config.environment != "test":
        init_error_tracking("api")

    logger.info(f"Creating FastAPI application ({config.environment})")

    app = FastAPI(
        title=config.title,
        description=config.description,
        version=config.version,
        docs_url=config.docs_url,
        redoc_url=config.redoc_url,
    )

    setup_middleware(app, config)
    loaded_routers = setup_routers(app)
    setup_exception_handlers(app)
    setup_health_endpoints(app, config, loaded_routers)

    logger.info(f"Application created with {len(loaded_routers)} routers")
    return app

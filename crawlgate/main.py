"""
crawlgate — bot & AI-scraper blocking middleware.
Demo application entry point: mounts the middleware in front of a FastAPI app.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from crawlgate.blocker import Blocker
from crawlgate.config import get_settings
from crawlgate.middleware.blocker import BotBlockerMiddleware

import structlog

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.dev.ConsoleRenderer() if get_settings().debug else structlog.processors.JSONRenderer(),
    ],
)

logger = structlog.get_logger()


def create_app(blocker: Blocker | None = None) -> FastAPI:
    blocker = blocker or Blocker()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "crawlgate_starting",
            api_url=blocker.settings.base_url,
            rules_version=blocker.rules.version,
            telemetry=blocker.telemetry.enabled,
        )
        await blocker.start()
        yield
        logger.info("crawlgate_shutting_down")
        await blocker.close()

    app = FastAPI(
        title="crawlgate",
        description="Blocks crawlers, AI scrapers and abusive clients before they reach your routes.",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if get_settings().debug else None,
        redoc_url="/redoc" if get_settings().debug else None,
        openapi_url="/openapi.json" if get_settings().debug else None,
    )
    app.state.blocker = blocker

    # Every request runs through the detection pipeline first
    app.add_middleware(BotBlockerMiddleware, blocker=blocker)

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "service": "crawlgate",
            "version": "0.1.0",
            "rules_version": blocker.rules.version,
        }

    return app


app = create_app()

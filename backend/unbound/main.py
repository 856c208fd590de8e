"""
FastAPI application entry point.

WHAT: Deal desk HTTP service (deals, proofs, pricing, agents, webhooks)
WHY: Agents and operators reach every engine operation over one versioned API
HOW: create_app() wires CORS, the tagged-error handlers and the v1 router;
     the lifespan creates tables and builds the shared services once
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.v1.router import API_PREFIX, api_router
from .core.config import settings
from .core.container import get_services
from .core.database import close_db, init_db
from .middleware.error_handler import register_exception_handlers
from .utils.logger import get_logger, setup_logging

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    WHAT: Create tables and the shared services on startup; dispose the engine on shutdown
    WHY: The first request should not pay for schema creation or service wiring
    HOW: Async context manager for FastAPI lifespan
    """
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    init_db()
    get_services()
    logger.info(
        f"Deals expire after {settings.DEAL_EXPIRY_HOURS}h idle; proofs default to a "
        f"{settings.PROOF_DEFAULT_DEADLINE_HOURS}h deadline and a {settings.CHALLENGE_WINDOW_HOURS}h challenge window"
    )

    yield

    logger.info("Shutting down application")
    close_db()


def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Priced deals between agents and human operators, with commit-reveal proofs of execution.",
        lifespan=lifespan,
    )
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins_list(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(application)
    application.include_router(api_router)
    return application


app = create_app()


@app.get("/")
async def root():
    """Service banner with the API entry points."""
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running",
        "api": API_PREFIX,
        "docs": "/docs",
        "platform_agent_id": settings.PLATFORM_AGENT_ID,
    }


def main():
    """Console entry point (`unbound`)."""
    import uvicorn

    uvicorn.run("unbound.main:app", host=settings.HOST, port=settings.PORT, reload=settings.DEBUG)


if __name__ == "__main__":
    main()

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from twelveimg.api.api import api_router
from twelveimg.core.config import configs
from twelveimg.core.exceptions import register_exception_handlers
from twelveimg.db.database import engine

logger = logging.getLogger(__name__)


def init_cors(app: FastAPI) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=configs.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Archive-Status", "Content-Length"],
    )


def init_routers(app: FastAPI) -> None:
    app.include_router(api_router, prefix="/api")

    @app.get("/", tags=["Root"])
    async def read_root():
        return {
            "message": f"Welcome to the {configs.APP_NAME}!",
            "docs_url": "/docs",
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}


def init_monitoring(app: FastAPI) -> None:
    Instrumentator().instrument(app).expose(app)


def init_log_filter() -> None:
    class EndpointFilter(logging.Filter):
        def filter(self, record: logging.LogRecord) -> bool:
            message = record.getMessage()
            return "GET /metrics" not in message and "/api/uploads/warm" not in message

    logging.getLogger("uvicorn.access").addFilter(EndpointFilter())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    """
    logger.info("Starting application lifespan...")
    if configs.STORAGE_TYPE == "local":
        Path(configs.MEDIA_ROOT).mkdir(parents=True, exist_ok=True)
        logger.info(f"Local storage root: {Path(configs.MEDIA_ROOT).resolve()}")
    if not configs.CRON_SECRET:
        logger.warning("CRON_SECRET is not set; every cron request will be rejected.")
    yield

    logger.info("Shutting down application lifespan...")
    await engine.dispose()
    logger.info("Database engine disposed.")


def create_app() -> FastAPI:
    app = FastAPI(
        title=configs.APP_NAME,
        description="Upload photo galleries directly to object storage and deliver them as ZIP archives.",
        version="1.0.0",
        lifespan=lifespan,
    )

    init_routers(app=app)
    register_exception_handlers(app)
    init_monitoring(app=app)
    init_log_filter()
    init_cors(app=app)
    return app

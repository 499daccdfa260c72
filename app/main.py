from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from contextlib import asynccontextmanager
import logging

import uvicorn

from app.core.config import settings
from app.api.healthcheck import router as system_router
from app.api.mt5 import router as mt5_router, error_response
from app.services.connection_manager import ConnectionManager
from fastapi.middleware.cors import CORSMiddleware

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # A manager may be injected (tests); otherwise build the MetaApi one
    manager = getattr(app.state, "connection_manager", None)
    if manager is None:
        if not settings.META_API_TOKEN:
            logger.error("META_API_TOKEN environment variable is not set")
            raise RuntimeError("META_API_TOKEN environment variable is not set")
        logger.info("Initializing MetaApi with token: %s...", settings.META_API_TOKEN[:10])
        manager = ConnectionManager.from_settings(settings)
        app.state.connection_manager = manager
    logger.info("Started connection manager")

    yield

    await manager.close()


_level_name = (settings.LOG_LEVEL or "INFO").upper().strip()
_valid = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
    "NOTSET": logging.NOTSET,
}
logging.basicConfig(
    level=_valid.get(_level_name, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
)
logging.getLogger(__name__).info(f"Logging initialized with level {_level_name}")


def create_app(connection_manager: ConnectionManager | None = None) -> FastAPI:
    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        root_path=settings.API_ROOT_PATH,
        lifespan=lifespan,
    )
    if connection_manager is not None:
        app.state.connection_manager = connection_manager

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        # Bodies are never logged: they carry passwords
        logger.info(
            "%s %s query=%s", request.method, request.url.path, dict(request.query_params)
        )
        return await call_next(request)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        details = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}"
            for err in exc.errors()
        )
        return error_response(400, "ValidationError", f"Invalid request: {details}")

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error("Unhandled error on %s %s: %r", request.method, request.url.path, exc)
        return error_response(500, "UnexpectedError", "Internal server error")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.BACKEND_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(system_router)
    app.include_router(mt5_router)
    return app


app = create_app()


def run() -> None:
    logger.info("MT5 Backend Service running on port %s", settings.PORT)
    logger.info("Health check available at: http://localhost:%s/health", settings.PORT)
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    run()

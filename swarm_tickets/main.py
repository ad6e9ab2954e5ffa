import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from swarm_tickets.api.api_keys import router as api_keys_router
from swarm_tickets.api.bug_reports import router as bug_reports_router
from swarm_tickets.api.comments import router as comments_router
from swarm_tickets.api.tickets import router as tickets_router
from swarm_tickets.core.config import Settings, get_settings
from swarm_tickets.core.errors import (
    DuplicateTicket,
    InvalidApiKey,
    RateLimitExceeded,
    StorageUnavailable,
    UnsupportedOperation,
)
from swarm_tickets.storage.base import StorageAdapter
from swarm_tickets.storage.factory import create_storage_adapter

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger("swarm-tickets")


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


def _error(request: Request, status_code: int, detail, headers=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": detail, "request_id": getattr(request.state, "request_id", None)},
        headers=headers,
    )


def create_app(storage: Optional[StorageAdapter] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the API around one storage adapter.

    When ``storage`` is given it is used as is and left open on shutdown;
    otherwise the adapter selected by ``settings`` is created at startup
    and closed on shutdown.
    """
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = None
        if app.state.storage is None:
            owned = create_storage_adapter(settings.storage_config())
            app.state.storage = owned
        logger.info(f"Starting {settings.PROJECT_NAME} with {app.state.storage.kind} storage")
        try:
            yield
        finally:
            if owned is not None:
                owned.close()
                app.state.storage = None

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Ticket tracking for swarm-driven bug fixing, over JSON, SQLite or Supabase storage.",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.storage = storage

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(InvalidApiKey)
    async def invalid_api_key_handler(request: Request, exc: InvalidApiKey):
        return _error(request, status.HTTP_401_UNAUTHORIZED, str(exc))

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        return _error(
            request,
            status.HTTP_429_TOO_MANY_REQUESTS,
            str(exc),
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(DuplicateTicket)
    async def duplicate_ticket_handler(request: Request, exc: DuplicateTicket):
        return _error(request, status.HTTP_409_CONFLICT, str(exc))

    @app.exception_handler(UnsupportedOperation)
    async def unsupported_operation_handler(request: Request, exc: UnsupportedOperation):
        return _error(request, status.HTTP_501_NOT_IMPLEMENTED, str(exc))

    @app.exception_handler(StorageUnavailable)
    async def storage_unavailable_handler(request: Request, exc: StorageUnavailable):
        logger.error(f"Storage unavailable: {exc}")
        return _error(request, status.HTTP_503_SERVICE_UNAVAILABLE, str(exc))

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return _error(request, status.HTTP_422_UNPROCESSABLE_ENTITY, jsonable_encoder(exc.errors()))

    @app.exception_handler(SQLAlchemyError)
    async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError):
        logger.error(f"Database operation failed: {exc}")
        return _error(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error: database operation failed")

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error")
        return _error(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error")

    @app.get("/health", tags=["system"])
    def health_check():
        active = app.state.storage
        if active is None:
            return {"status": "ok", "storage": None, "database": "error"}
        try:
            db_status = "ok" if active.ping() else "error"
        except Exception as exc:
            logger.warning(f"Health check failed: {exc}")
            db_status = "error"
        return {"status": "ok", "storage": active.kind, "database": db_status}

    app.include_router(tickets_router)
    app.include_router(comments_router)
    app.include_router(bug_reports_router)
    app.include_router(api_keys_router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)

"""FastAPI application factory.

Main entry point for the FE-1 prep Web API.
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from fe1prep.config.app_config import load_app_config
from fe1prep.core.errors import (
    AppError,
    ConflictError,
    NotFoundError,
    UpstreamFailureError,
    ValidationError,
)
from fe1prep.db.database import init_db
from fe1prep.web.routes import (
    health_router,
    lessons_router,
    progress_router,
    simulations_router,
)

logger = structlog.get_logger(__name__)

ERROR_STATUS_CODES: dict[type[AppError], int] = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ConflictError: status.HTTP_409_CONFLICT,
    ValidationError: 422,
    UpstreamFailureError: status.HTTP_502_BAD_GATEWAY,
}


def status_code_for(error: AppError) -> int:
    """HTTP status for an AppError (subclasses inherit their parent's code)."""
    for error_type, code in ERROR_STATUS_CODES.items():
        if isinstance(error, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render every AppError as {"error": kind, "message": ...}."""
    code = status_code_for(exc)
    log = logger.warning if code < 500 else logger.error
    log("request_failed", path=request.url.path, kind=exc.kind, message=exc.message)
    return JSONResponse(status_code=code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render request body/query validation failures like ValidationError."""
    message = "; ".join(
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
    )
    return await app_error_handler(request, ValidationError(message))


def create_app(db_path: Path | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        db_path: Database file (defaults to paths.db_path from the app config)

    Returns:
        Configured FastAPI app instance
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Initialize the database on startup."""
        path = db_path or load_app_config().db_path
        init_db(path)
        logger.info("api_startup", db_path=str(Path(path).absolute()))
        yield

    app = FastAPI(
        title="FE-1 Prep API",
        description="Progress tracking and exam simulations for FE-1 preparation",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS middleware for web clients
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    app.include_router(health_router)
    app.include_router(lessons_router)
    app.include_router(progress_router)
    app.include_router(simulations_router)

    return app


# Default app instance for uvicorn
app = create_app()

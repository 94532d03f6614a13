"""
FastAPI application for the memo routing core.

Routers translate HTTP to core operations; every core error type maps to one
status code in `ERROR_STATUS` and is rendered with its own hint body.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .locks import router as locks_router
from .memos import router as memos_router
from .rollback import router as rollback_router
from .schemas import HealthResponse
from .users import router as users_router
from ..core.config import VERSION, debug_enabled, validate_config
from ..core.dao import get_memo_count
from ..core.db import health_check, init_db
from ..core.errors import (
    AlreadyRolledBack,
    Conflict,
    Expired,
    InvalidState,
    InvalidTransition,
    Locked,
    MemoRoutingError,
    NotFound,
    PartialFailure,
    Unauthorized,
    ValidationFailed,
)

from util.logging import logger

# Subclasses must precede their base classes
ERROR_STATUS = [
    (Locked, 423),
    (Expired, 409),
    (Conflict, 409),
    (InvalidTransition, 409),
    (InvalidState, 409),
    (ValidationFailed, 400),
    (AlreadyRolledBack, 400),
    (NotFound, 404),
    (Unauthorized, 403),
    (PartialFailure, 500),
]


def status_for(exc: MemoRoutingError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI):
    issues = validate_config()
    for issue in issues:
        logger.warning(f"Configuration issue: {issue}")
    init_db()
    yield


# Initialize the FastAPI application
app = FastAPI(
    title="Memo Routing API",
    version=VERSION,
    description="Institutional memo routing with edit locks, review workflow and rollback ledger",
    docs_url="/docs" if debug_enabled() else None,
    redoc_url="/redoc" if debug_enabled() else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(locks_router, prefix="/locks", tags=["locks"])
app.include_router(memos_router, prefix="/memos", tags=["memos"])
app.include_router(users_router, prefix="/users", tags=["users"])
app.include_router(rollback_router, prefix="/rollback", tags=["rollback"])


@app.get("/health", response_model=HealthResponse)
def health_check_endpoint():
    """Check system health."""
    db_health = health_check()

    return HealthResponse(
        status="healthy" if db_health else "unhealthy",
        version=VERSION,
        db_health=db_health,
        memo_count=get_memo_count() if db_health else 0,
    )


@app.exception_handler(MemoRoutingError)
async def memo_routing_exception_handler(request: Request, exc: MemoRoutingError):
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.debug(f"{request.method} {request.url.path} -> {status_code}: {exc}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
    """Missing or malformed request fields are a 400."""
    errors = [
        {"loc": list(error.get("loc", [])), "msg": error.get("msg")}
        for error in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"detail": "Invalid request", "errors": errors})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle all unhandled exceptions."""
    logger.error(f"Unhandled exception: {exc}")
    content = {"detail": "Internal server error"}
    if debug_enabled():
        content["debug"] = str(exc)
    return JSONResponse(
        status_code=500,
        content=content,
    )

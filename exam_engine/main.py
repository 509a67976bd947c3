"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from exam_engine.config import settings
from exam_engine.api import (
    admin_router,
    attempts_router,
    health_router,
    tests_router,
)
from exam_engine.errors import GENERIC_FAILURE_MESSAGE, EngineError
from exam_engine.schemas.common import ErrorResponse

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s  %(name)-25s  %(levelname)-8s  %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Exam engine starting (env=%s)", settings.ENV)
    yield
    logger.info("Exam engine shut down")


app = FastAPI(
    title="Exam Engine API",
    description="Timed assessment attempts: sessions, answers, integrity warnings and scoring",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Middleware ─────────────────────────────────────────────────────────────────

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.ALLOWED_HOSTS)

# ── Error handling ────────────────────────────────────────────────────────────


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError):
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", exc.error_code, request.url.path, exc.message)
    body = ErrorResponse(error_code=exc.error_code, message=exc.message, details=exc.details)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(mode="json"))


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Database failure on %s %s", request.method, request.url.path)
    body = ErrorResponse(error_code="internal_error", message=GENERIC_FAILURE_MESSAGE)
    return JSONResponse(status_code=500, content=body.model_dump(mode="json"))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    body = ErrorResponse(error_code="internal_error", message=GENERIC_FAILURE_MESSAGE)
    return JSONResponse(status_code=500, content=body.model_dump(mode="json"))


# ── Routers ───────────────────────────────────────────────────────────────────

app.include_router(health_router, tags=["Health"])
app.include_router(tests_router, prefix="/api/tests", tags=["Tests"])
app.include_router(attempts_router, prefix="/api/attempts", tags=["Attempts"])
app.include_router(admin_router, prefix="/api/admin", tags=["Admin"])


@app.get("/")
async def root():
    return {
        "name": "Exam Engine API",
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/health",
    }

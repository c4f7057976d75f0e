"""
Coprocure - shared multi-company procurement core.
"""
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from coprocure.api import audit, committee, ingestion
from coprocure.core.config import settings
from coprocure.core.errors import CoprocureError
from coprocure.core.logging import current_request_correlation_id, get_logger, setup_logging
from coprocure.core.middleware import CorrelationMiddleware
from coprocure.db.session import SessionLocal, init_db

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    init_db()
    yield
    logger.info("Shutting down")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(CorrelationMiddleware)


@app.exception_handler(CoprocureError)
async def coprocure_error_handler(request: Request, exc: CoprocureError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            f"{exc.code} on {request.method} {request.url.path}: {exc.message}",
            extra={"correlation_id": exc.correlation_id or current_request_correlation_id()},
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    correlation_id = current_request_correlation_id()
    logger.exception(
        f"Unhandled exception on {request.method} {request.url.path}",
        extra={"correlation_id": correlation_id},
    )
    return JSONResponse(
        status_code=500,
        content={"ok": False, "error": "Internal server error", "code": "internal_error"},
    )


app.include_router(ingestion.router)
app.include_router(committee.router)
app.include_router(audit.router)


@app.get("/health")
async def health():
    """Liveness plus a database round-trip."""
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        database = "ok"
    except Exception as e:
        logger.error(f"Health check database error: {e}")
        database = "unavailable"
    finally:
        db.close()
    return {
        "status": "ok" if database == "ok" else "degraded",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "database": database,
    }


if __name__ == "__main__":
    uvicorn.run("coprocure.main:app", host="0.0.0.0", port=8000)

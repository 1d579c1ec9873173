# tablecraft/main.py

import logging
import os
import time

import orjson
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from tablecraft.api.v1.endpoints import datatables
from tablecraft.core import feature_flags
from tablecraft.core.cache import close_redis, init_redis_pool
from tablecraft.core.config import settings
from tablecraft.core.db import dispose_db, init_db, is_using_local_db
from tablecraft.core.exceptions import DataSourceUnavailableError, SecurityViolation

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.PROJECT_NAME, version=settings.VERSION)

# Set up CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(datatables.router, prefix=settings.API_V1_STR)


def _error(status_code: int, detail: str) -> Response:
    return Response(
        content=orjson.dumps({"detail": detail}),
        status_code=status_code,
        media_type="application/json"
    )


@app.exception_handler(DataSourceUnavailableError)
async def data_source_unavailable_handler(request: Request, exc: DataSourceUnavailableError):
    logger.error(f"Data source unavailable on {request.url.path}: {str(exc)}")
    return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "Data source unavailable")


@app.exception_handler(SecurityViolation)
async def security_violation_handler(request: Request, exc: SecurityViolation):
    logger.warning(f"Rejected request on {request.url.path}: {str(exc)}")
    return _error(status.HTTP_400_BAD_REQUEST, str(exc))


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "mode": feature_flags.effective_mode(settings),
        "local_db": is_using_local_db(),
        "timestamp": int(time.time())
    }


@app.on_event("startup")
async def startup_event():
    start_time = time.time()
    logger.info(f"Starting {settings.PROJECT_NAME} v{settings.VERSION}")

    os.makedirs(settings.DATA_DIR, exist_ok=True)
    os.makedirs(settings.LOGS_DIR, exist_ok=True)

    logger.info(f"Environment: {settings.APP_ENV}, datatables mode: {feature_flags.effective_mode(settings)}")
    logger.info(f"Inspector {'enabled' if feature_flags.inspector_enabled(settings) else 'disabled'}")

    await init_redis_pool()
    try:
        init_db()
    except DataSourceUnavailableError as e:
        # Requests will answer 503 until the database comes back
        logger.error(f"Database initialization failed: {str(e)}")

    elapsed = time.time() - start_time
    logger.info(f"Application startup completed in {elapsed:.2f} seconds")


@app.on_event("shutdown")
async def shutdown_event():
    await close_redis()
    dispose_db()
    logger.info("Application shutdown complete")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "tablecraft.main:app",
        host=settings.HOST,
        port=settings.PORT,
        workers=settings.WORKERS,
        log_level=settings.LOG_LEVEL,
        reload=False
    )

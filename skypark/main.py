"""
SkyPark API application
"""

from contextlib import asynccontextmanager
import logging
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from skypark.config import settings
from skypark.core.database import close_db, init_db
from skypark.core.exceptions import SkyParkException
from skypark.core.logging import setup_logging
from skypark.core.metrics import REQUEST_COUNT, REQUEST_DURATION
from skypark.core.redis import close_redis, init_redis
from skypark.core.tasks import task_dispatcher
from skypark.api.v1.api import api_router
from skypark.schemas.response import ErrorDetail, ErrorResponse

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION} ({settings.APP_ENV})")
    await init_db()

    # Redis only backs rate limiting, which fails open
    try:
        await init_redis()
    except Exception as e:
        logger.warning(f"Starting without Redis: {e}")

    yield

    logger.info("Shutting down")
    # Notifications and loyalty accrual finish before the pool goes away
    await task_dispatcher.drain()
    await close_db()
    await close_redis()


app = FastAPI(
    title=settings.APP_NAME,
    description="Children's park booking, payments, tickets and gate entry",
    version=settings.APP_VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    openapi_url="/openapi.json" if settings.DEBUG else None,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def track_requests(request: Request, call_next):
    """Request id, timing header and Prometheus request metrics"""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id

    started = time.perf_counter()
    response = await call_next(request)
    duration = time.perf_counter() - started

    # Route template keeps label cardinality bounded
    route = request.scope.get("route")
    endpoint = route.path if route is not None else "unmatched"
    REQUEST_COUNT.labels(method=request.method, endpoint=endpoint, status=response.status_code).inc()
    REQUEST_DURATION.labels(method=request.method, endpoint=endpoint).observe(duration)

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = f"{duration:.4f}"
    return response


def _error(status_code: int, code: str, message: str, details=None) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, details=details or {}))
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


@app.exception_handler(SkyParkException)
async def skypark_exception_handler(request: Request, exc: SkyParkException):
    log = logger.error if exc.status_code >= 500 else logger.info
    log(f"{exc.code}: {exc.message}", extra={"path": request.url.path})
    return _error(exc.status_code, exc.code, exc.message, exc.details)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    field = ".".join(str(part) for part in errors[0]["loc"][1:]) if errors else None
    return _error(
        422,
        "VALIDATION_ERROR",
        errors[0]["msg"] if errors else "Invalid request",
        {"field": field, "errors": [{"loc": list(e["loc"]), "msg": e["msg"]} for e in errors]},
    )


@app.exception_handler(500)
async def internal_error_handler(request: Request, exc):
    logger.error(f"Internal server error: {exc}", exc_info=True)
    return _error(500, "INTERNAL_ERROR", "An internal server error occurred")


@app.get("/")
async def root():
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.APP_ENV,
        "api_docs": "/docs" if settings.DEBUG else None
    }


app.include_router(api_router, prefix=settings.API_PREFIX)

if settings.PROMETHEUS_ENABLED:
    app.mount("/metrics", make_asgi_app())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "skypark.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )

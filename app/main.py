import asyncio
import contextlib
import logging
import time
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from app.core.cache import close_redis
from app.core.config import settings
from app.core.deps import build_services
from app.core.errors import VersionConflictError, WardrobeError
from app.routers import items, laundry, laundry_suggestions, recommendations, weather

logger = logging.getLogger("app.requests")
app_logger = logging.getLogger("uvicorn.error")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Tests may install their own container before startup.
    if getattr(app.state, "services", None) is None:
        app.state.services = build_services(settings)
    services = app.state.services
    sweeper = None
    if services.weather.config.sweep_interval_s > 0:
        sweeper = asyncio.create_task(services.weather.run_sweeper())
        app_logger.info("weather-cache: sweeper started interval_s=%s", services.weather.config.sweep_interval_s)
    try:
        yield
    finally:
        if sweeper is not None:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper
        await close_redis()


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

# CORS
origins = settings.cors_origin_list
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins if origins != ["*"] else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

prefix = settings.API_PREFIX
app.include_router(items.router, prefix=prefix)
app.include_router(laundry.router, prefix=prefix)
app.include_router(laundry_suggestions.router, prefix=prefix)
app.include_router(recommendations.router, prefix=prefix)
app.include_router(weather.router, prefix=prefix)


@app.exception_handler(WardrobeError)
async def wardrobe_error_handler(request: Request, exc: WardrobeError):
    headers = None
    if isinstance(exc, VersionConflictError):
        headers = {"Retry-After": str(exc.retry_after_s)}
    if exc.status_code >= 500:
        app_logger.error("%s %s failed code=%s", request.method, request.url.path, exc.code, exc_info=exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_body(), headers=headers)


@app.exception_handler(SQLAlchemyError)
async def persistence_error_handler(request: Request, exc: SQLAlchemyError):
    app_logger.error("%s %s database error", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "internal_error"})


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    duration_ms = (time.time() - start) * 1000
    logger.info("%s %s %s %.1fms", request.method, request.url.path, response.status_code, duration_ms)
    return response


@app.get("/")
async def root():
    return {"name": settings.APP_NAME, "env": settings.APP_ENV}

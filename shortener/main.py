import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .api import shorturls
from .api.shorturls import get_service
from .config import Settings, settings
from .errors import Expired, NotFound, ShortenerError, StorageError
from .logging_config import setup_logging
from .middleware import RequestContextMiddleware
from .observability import (
    PrometheusMiddleware,
    REDIRECT_404_TOTAL,
    REDIRECT_410_TOTAL,
    REDIRECT_TOTAL,
    metrics_endpoint,
)
from .redis import RedisClient
from .services.log_sink import LogSink
from .services.rate_limiter import RateLimiter
from .services.shortening import ShorteningService
from .storage.factory import create_store
from .utils import client_ip

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    app_settings: Settings = app.state.settings
    store = create_store(app_settings)
    sink = LogSink(
        url=app_settings.LOG_SINK_URL,
        token=app_settings.LOG_SINK_TOKEN,
        timeout=app_settings.LOG_SINK_TIMEOUT_SECONDS,
    )
    redis_client = RedisClient(app_settings.REDIS_URL)

    # Startup logic
    async with store:
        await redis_client.connect()
        app.state.redis = redis_client
        app.state.sink = sink
        app.state.service = ShorteningService(
            store,
            app_settings.BASE_URL,
            sink=sink,
            code_length=app_settings.SHORTCODE_LENGTH,
            default_validity_minutes=app_settings.DEFAULT_VALIDITY_MINUTES,
        )
        sink.log("info", "server", "URL Shortener service started")
        try:
            yield
        finally:
            # Shutdown logic
            await redis_client.close()
            await sink.close()

def _error(status_code: int, error: str, message: str, headers=None, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "message": message, **extra},
        headers=headers,
    )

def _report(request: Request, level: str, message: str) -> None:
    sink = getattr(request.app.state, "sink", None)
    if sink is not None:
        sink.log(level, "server", message)

def register_exception_handlers(app: FastAPI):
    @app.exception_handler(ShortenerError)
    async def shortener_error_handler(request: Request, exc: ShortenerError):
        if isinstance(exc, StorageError):
            logger.error(f"Storage failure on {request.method} {request.url.path}: {exc.message}")
            return _error(exc.status_code, exc.title, "Something went wrong")
        return _error(exc.status_code, exc.title, exc.message)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return _error(400, "Validation failed", "Invalid request body", details=jsonable_encoder(exc.errors()))

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            _report(request, "warning", f"404 - Route not found: {request.method} {request.url.path}")
            return _error(404, "Route not found", f"The requested route {request.url.path} does not exist")
        if exc.status_code == 429:
            return _error(429, "Too many requests", str(exc.detail), headers=exc.headers)
        return _error(exc.status_code, "Request failed", str(exc.detail), headers=exc.headers)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        _report(request, "error", f"Unhandled error on {request.method} {request.url.path}: {exc}")
        return _error(500, "Internal server error", "Something went wrong")

def create_app(app_settings: Settings = settings) -> FastAPI:
    app = FastAPI(
        title="URL Shortener",
        description="Short links with expiry and click analytics",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = app_settings

    app.add_middleware(PrometheusMiddleware)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])

    register_exception_handlers(app)

    app.add_route("/metrics", metrics_endpoint)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    app.include_router(shorturls.router)

    # Registered last: it matches any single path segment
    @app.get("/{shortcode}", dependencies=[Depends(RateLimiter())])
    async def redirect_to_url(
        shortcode: str,
        request: Request,
        service: ShorteningService = Depends(get_service)
    ):
        try:
            target_url = await service.resolve(
                shortcode,
                referrer=request.headers.get("referer"),
                user_agent=request.headers.get("user-agent"),
                ip=client_ip(request, request.app.state.settings.TRUSTED_PROXY_HOPS),
            )
        except NotFound:
            REDIRECT_404_TOTAL.inc()
            raise
        except Expired:
            REDIRECT_410_TOTAL.inc()
            raise

        REDIRECT_TOTAL.inc()
        return RedirectResponse(url=target_url, status_code=302)

    return app

setup_logging(settings.LOG_LEVEL)

app = create_app()

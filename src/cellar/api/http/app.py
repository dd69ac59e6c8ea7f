"""FastAPI application factory and setup."""

import asyncio
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import replace

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from src.cellar.api.http.app_data import ApplicationDependencies
from src.cellar.api.http.routers.health import router as health_router
from src.cellar.api.http.routers.resource import build_resource_router
from src.cellar.api.http.routers.service.product import build_product_router
from src.cellar.api.http.routers.uploads import router as uploads_router
from src.cellar.api.utils.app_startup import configure_logging
from src.cellar.core.errors import AuthError, CellarError, ValidationFailed
from src.cellar.core.services.database.db_session import DbSessionService
from src.cellar.core.services.imports.uploads import UploadStore
from src.cellar.core.services.jwt import JWKSCacheInMemory, JwksService, JwtVerificationService
from src.cellar.core.validation import violations_from_errors
from src.cellar.entities import registry as default_registry
from src.cellar.entities.registry import SchemaRegistry
from src.cellar.runtime.config.config_data import ConfigData
from src.cellar.runtime.context import get_config, get_context, reset_context, set_context

# Entities with routes beyond the generated CRUD set
CUSTOM_ROUTERS = {"product": build_product_router}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, production: bool = False):
        super().__init__(app)
        self._production = production

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        if self._production:
            response.headers.setdefault(
                "Strict-Transport-Security", "max-age=31536000; includeSubDomains"
            )
        return response


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "-")


def error_response(request: Request, exc: CellarError) -> JSONResponse:
    body = exc.to_envelope()
    body["request_id"] = _request_id(request)
    headers = {"X-Request-ID": body["request_id"]}
    if isinstance(exc, AuthError):
        headers["WWW-Authenticate"] = "Bearer"
    return JSONResponse(status_code=exc.status_code, content=body, headers=headers)


async def handle_cellar_error(request: Request, exc: CellarError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.bind(error_type=type(exc).__name__, alert=True).error("request.failed: {}", exc.message)
    else:
        logger.bind(status_code=exc.status_code, error_type=type(exc).__name__).info(
            "request.rejected: {}", exc.message
        )
    return error_response(request, exc)


async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Query, path and form parameter errors use the same 400 envelope as bodies."""
    return await handle_cellar_error(request, ValidationFailed(violations_from_errors(exc.errors())))


async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    body = {"error": str(exc.detail), "request_id": _request_id(request)}
    return JSONResponse(status_code=exc.status_code, content=body, headers=exc.headers)


def build_dependencies(config: ConfigData, registry: SchemaRegistry) -> ApplicationDependencies:
    database_service = DbSessionService(config.database, config.app.environment)
    if config.app.environment != "production":
        # Production schemas are managed with `cellar init-db`
        database_service.create_all(registry)

    jwks_service = JwksService(
        JWKSCacheInMemory(ttl=config.oidc.jwks_cache_ttl), timeout=config.oidc.jwks_timeout
    )
    upload_store = UploadStore(config.uploads)
    upload_store.ensure_root()

    return ApplicationDependencies(
        database_service=database_service,
        jwks_service=jwks_service,
        jwt_verify_service=JwtVerificationService(jwks_service),
        upload_store=upload_store,
        registry=registry,
    )


async def _prefetch_jwks(config: ConfigData, jwks_service: JwksService) -> None:
    """Fetch every provider's JWKS once so auth misconfiguration surfaces at startup."""
    providers = [p for p in config.oidc.providers.values() if p.jwks_uri and not p.public_key]
    if not providers:
        return
    results = await asyncio.gather(
        *(jwks_service.fetch_jwks(p) for p in providers), return_exceptions=True
    )
    errors = [
        (p.issuer, str(err))
        for p, err in zip(providers, results, strict=True)
        if isinstance(err, Exception)
    ]
    for issuer, err in errors:
        logger.bind(issuer=issuer, alert=True).error("Failed to fetch JWKS: {}", err)
    if errors and config.app.environment == "production":
        raise RuntimeError(f"JWKS readiness check failed for issuers: {errors}")


def create_app(config: ConfigData | None = None, registry: SchemaRegistry | None = None) -> FastAPI:
    """Build the API.

    Services are constructed in the lifespan and stored on
    ``app.state.app_dependencies``; nothing is created at import time.
    """
    config = config or get_config()
    registry = registry or default_registry
    production = config.app.environment == "production"

    configure_logging(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        token = set_context(replace(get_context(), config=config))
        logger.info("Starting up application in {} environment", config.app.environment)
        deps = build_dependencies(config, registry)
        app.state.app_dependencies = deps
        try:
            await _prefetch_jwks(config, deps.jwks_service)
            yield
        finally:
            logger.info("Shutting down application")
            await deps.aclose()
            reset_context(token)

    app = FastAPI(
        title="Cellar Inventory API",
        lifespan=lifespan,
        docs_url=None if production else "/docs",
        redoc_url=None if production else "/redoc",
    )

    app.add_exception_handler(CellarError, handle_cellar_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation)
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)

    app.add_middleware(SecurityHeadersMiddleware, production=production)

    cors = config.app.cors
    if production and "*" in cors.origins and cors.allow_credentials:
        raise RuntimeError(
            "CORS misconfigured: cannot use '*' with allow_credentials=True in production"
        )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors.origins,
        allow_credentials=cors.allow_credentials,
        allow_methods=cors.allow_methods,
        allow_headers=cors.allow_headers,
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        request.state.request_id = request_id

        xff = request.headers.get("x-forwarded-for")
        client_ip = (
            xff.split(",")[0].strip()
            if xff
            else request.client.host
            if request.client
            else "unknown"
        )
        base_ctx = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "client_ip": client_ip,
        }

        start = time.perf_counter()
        token = set_context(replace(get_context(), config=config))
        with logger.contextualize(**base_ctx):
            try:
                logger.info("request.start")
                response = await call_next(request)
                logger.bind(
                    status_code=response.status_code,
                    duration_ms=round((time.perf_counter() - start) * 1000, 1),
                ).info("request.end")
                response.headers.setdefault("X-Request-ID", request_id)
                return response
            except Exception as exc:
                logger.bind(
                    status_code=500,
                    duration_ms=round((time.perf_counter() - start) * 1000, 1),
                    error_type=type(exc).__name__,
                    alert=True,
                ).exception("request.error")
                return JSONResponse(
                    status_code=500,
                    content={"error": "Internal Server Error", "request_id": request_id},
                    headers={"X-Request-ID": request_id},
                )
            finally:
                reset_context(token)

    prefix = config.api.prefix
    for name in registry.names():
        builder = CUSTOM_ROUTERS.get(name)
        router = (
            builder(registry, config.api)
            if builder
            else build_resource_router(registry, name, config.api)
        )
        app.include_router(router, prefix=prefix)
    app.include_router(uploads_router, prefix=prefix)
    app.include_router(health_router)

    return app

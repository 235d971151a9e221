"""FastAPI application factory.

Middleware ordering (outermost first):
1. CORS -- handles OPTIONS preflight
2. Rate limiting -- slowapi default limit per client address

Storefront errors are translated to the {success: false, error} envelope
with a status code chosen by ErrorKind.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from storefront.catalog.routes import register_catalog_routes
from storefront.checkout import register_checkout_routes
from storefront.config import Settings
from storefront.errors import ErrorKind, StorefrontError
from storefront.lemonsqueezy import LemonSqueezyClient
from storefront.orders.routes import register_order_routes
from storefront.store import CommerceStore, PostgresStore
from storefront.webhooks.handlers import register_webhook_routes
from storefront.webhooks.reconciler import OrderReconciler

logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.AUTHENTICATION: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.PROCESSING: 500,
}

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=_LOG_FORMAT)


async def _storefront_error_handler(request: Request, exc: StorefrontError) -> JSONResponse:
    status_code = STATUS_BY_KIND.get(exc.kind, 500)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse({"success": False, "error": exc.message}, status_code=status_code)


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = [".".join(str(p) for p in err.get("loc", ())[1:]) for err in exc.errors()]
    message = "Invalid request"
    if any(fields):
        message = f"Invalid request: {', '.join(f for f in fields if f)}"
    return JSONResponse({"success": False, "error": message}, status_code=400)


def _rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    retry_after = getattr(exc, "retry_after", 60)
    return JSONResponse(
        {"success": False, "error": "Rate limit exceeded"},
        status_code=429,
        headers={"Retry-After": str(retry_after)},
    )


def _build_client(settings: Settings) -> LemonSqueezyClient | None:
    if not settings.lemonsqueezy_api_key or not settings.lemonsqueezy_store_id:
        logger.info("Lemon Squeezy credentials not set; checkout and sync disabled")
        return None
    return LemonSqueezyClient(settings)


def create_app(
    settings: Settings | None = None,
    store: CommerceStore | None = None,
    lemonsqueezy: LemonSqueezyClient | None = None,
) -> FastAPI:
    """Build the storefront API.

    When no store is given, a PostgresStore is created from
    settings.database_url and its schema is initialized at startup.
    """
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    owns_store = store is None
    if store is None:
        store = PostgresStore(settings.database_url)
    if lemonsqueezy is None:
        lemonsqueezy = _build_client(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if owns_store:
            store.init_schema()
        yield
        if lemonsqueezy is not None:
            lemonsqueezy.close()

    app = FastAPI(title="storefront", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store

    @app.get("/health")
    def health():
        return {"status": "ok"}

    register_webhook_routes(app, settings, OrderReconciler(store))
    register_catalog_routes(app, store, lemonsqueezy)
    register_order_routes(app, store)
    register_checkout_routes(app, store, lemonsqueezy)

    app.add_exception_handler(StorefrontError, _storefront_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)

    # Rate limiting
    app.state.limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    # CORS (outermost)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    return app

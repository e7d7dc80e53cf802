"""FastAPI application factory for the storefront API."""

from __future__ import annotations

from datetime import timedelta
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from storefront import __version__
from storefront.auth import SessionCache
from storefront.core.config import EmailSettings, Settings, load_settings
from storefront.notify import SmtpEmailSender
from storefront.payments import StripeProvider, discovering_stripe
from storefront.stores import DocumentStore, JsonDocumentStore
from storefront.utils.logger import configure_logging, get_logger

from .auth_routes import router as auth_router
from .checkout_routes import router as checkout_router

logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[DocumentStore] = None,
    stripe_factory: Callable[[str], StripeProvider] = discovering_stripe,
    sender_factory: Callable[[EmailSettings], SmtpEmailSender] = SmtpEmailSender,
) -> FastAPI:
    """
    Build the API app.

    settings default to config/settings.yaml; store defaults to a JSON
    document store under settings.storage.data_dir. The factories create
    the Stripe client (from the secret key) and the SMTP sender, and are
    swapped out in tests.
    """
    settings = settings or load_settings()
    configure_logging(settings.logging.level, settings.logging.format)

    app = FastAPI(
        title=f"{settings.app.name} Storefront API",
        description="Session auth, checkout and purchase confirmation",
        version=__version__,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.app.cors_origins if settings.is_production else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.store = store or JsonDocumentStore(settings.storage.data_dir)
    app.state.session_cache = SessionCache(
        ttl=timedelta(seconds=settings.sessions.cache_ttl_seconds)
    )
    app.state.stripe_factory = stripe_factory
    app.state.sender_factory = sender_factory

    @app.exception_handler(StarletteHTTPException)
    async def api_http_error(request: Request, exc: StarletteHTTPException):
        # /api endpoints answer with {"error": ...} like the checkout server
        if not request.url.path.startswith("/api/"):
            return await http_exception_handler(request, exc)
        message = "Method not allowed" if exc.status_code == 405 else exc.detail
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": message},
            headers=getattr(exc, "headers", None),
        )

    app.include_router(auth_router)
    app.include_router(checkout_router)

    logger.info(
        "Storefront API created",
        environment=settings.app.environment,
        data_dir=settings.storage.data_dir,
    )
    return app

"""StayBook API application.

Run with ``uvicorn staybook.main:create_app --factory``.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from staybook.core.config import Settings, get_settings
from staybook.core.container import build_services
from staybook.core.database import build_engine, build_session_factory
from staybook.core.errors import (
    ConflictError,
    ForbiddenError,
    GatewayError,
    InsufficientBalanceError,
    NotFoundError,
    SignatureError,
    StayBookError,
    ValidationError,
)
from staybook.core.logging_config import configure_logging
from staybook.routes import bookings, payments, refunds, stays, wallet, webhooks
from staybook.services.payment_gateway import PaymentGateway

logger = logging.getLogger(__name__)

ERROR_STATUS = [
    (SignatureError, status.HTTP_400_BAD_REQUEST),
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InsufficientBalanceError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
]

GATEWAY_FAILURE_MESSAGE = "Payment could not be confirmed with the payment gateway. No money has been taken."


def _violation(rule: str, message: str) -> dict:
    return {"detail": [{"rule": rule, "message": message}]}


async def domain_error_handler(request: Request, exc: StayBookError) -> JSONResponse:
    """4xx with the specific detail for caller errors; gateway detail stays in the logs."""
    if isinstance(exc, GatewayError):
        logger.error("Gateway failure on %s %s: [%s] %s", request.method, request.url.path, exc.rule, exc.message)
        return JSONResponse(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            content=_violation(exc.rule, GATEWAY_FAILURE_MESSAGE),
        )

    for error_cls, status_code in ERROR_STATUS:
        if isinstance(exc, error_cls):
            return JSONResponse(status_code=status_code, content=_violation(exc.rule, exc.message))

    logger.error("Unmapped domain error on %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_violation("internal", "Something went wrong. Please try again."),
    )


async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_violation("internal", "Something went wrong. Please try again."),
    )


def create_app(
    settings: Settings | None = None,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    gateway: PaymentGateway | None = None,
) -> FastAPI:
    """Build the application. Tests pass their own session factory and a fake gateway."""
    settings = settings or get_settings()
    configure_logging(settings)

    engine = None
    if session_factory is None:
        engine = build_engine(settings)
        session_factory = build_session_factory(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events."""
        yield
        if engine is not None:
            await engine.dispose()

    app = FastAPI(
        title=settings.app_name,
        version="0.1.0",
        docs_url=f"{settings.api_prefix}/docs",
        openapi_url=f"{settings.api_prefix}/openapi.json",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.services = build_services(settings, session_factory, gateway=gateway)

    # CORS - permissive in dev, lock down in production
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(StayBookError, domain_error_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)

    # Mount routes
    for module in (stays, bookings, payments, webhooks, wallet, refunds):
        app.include_router(module.router, prefix=settings.api_prefix)

    @app.get("/health")
    async def health():
        return {"status": "ok", "app": settings.app_name}

    return app

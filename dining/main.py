"""
FastAPI Application Entry Point

Dining Orders Service: order lifecycle, realtime collaboration and checkout.
Runs against mock payments in development and Stripe in staging/production.

Endpoints (prefix /api/v1):
    - GET/POST/PATCH/DELETE /orders/...: Order state engine
    - WS /orders/{order_id}/ws: Realtime order channel
    - POST /payments/webhook: Payment provider webhook
    - GET /health: System health check

Run:
    uvicorn dining.main:app --host 0.0.0.0 --port 8003
    dining-orders            # same, host and port from settings
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dining.core.config import get_settings, setup_logging
from dining.database import dispose_engine, get_engine, get_session_maker, init_db
from dining.dependencies import get_hub
from dining.errors import DiningError
from dining.repository import (
    BaseOrdersRepository,
    BasePaymentsRepository,
    SqlOrdersRepository,
    SqlPaymentsRepository,
)
from dining.routes import orders_router, payments_router, websockets_router
from dining.schemas import ErrorResponse, HealthResponse
from dining.services.auth import AuthServiceClient
from dining.services.checkout import CheckoutService
from dining.services.orders import OrdersService
from dining.services.payment import BasePaymentProvider, get_payment_provider
from dining.services.realtime import BroadcastHub, OrderWebsocketHandler

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


def create_app(
    orders_repository: Optional[BaseOrdersRepository] = None,
    payments_repository: Optional[BasePaymentsRepository] = None,
    payment_provider: Optional[BasePaymentProvider] = None,
    auth_client: Optional[AuthServiceClient] = None,
) -> FastAPI:
    """
    Build the application.

    Anything not passed in is created in the lifespan from settings: SQL
    repositories on the configured database, the payment provider for the
    current ENV_MODE and an auth-service client.
    """
    settings = get_settings()
    setup_logging()

    # =========================================================================
    # APPLICATION LIFECYCLE
    # =========================================================================

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("=" * 60)
        logger.info(f"🚀 Starting {settings.app_name}")
        logger.info(f"   Version: {settings.app_version}")
        logger.info(f"   Environment: {settings.env_mode.value}")
        logger.info(f"   Debug: {settings.debug}")
        logger.info("=" * 60)

        owns_database = orders_repository is None or payments_repository is None
        if owns_database:
            await init_db(get_engine())
            logger.info("✅ Database initialized")

        orders_repo = orders_repository or SqlOrdersRepository(get_session_maker())
        payments_repo = payments_repository or SqlPaymentsRepository(get_session_maker())
        provider = payment_provider or get_payment_provider()
        auth = auth_client or AuthServiceClient()

        hub = BroadcastHub(send_timeout=settings.ws_send_timeout_seconds)
        orders_service = OrdersService(orders_repo)

        app.state.orders_repository = orders_repo
        app.state.payment_provider = provider
        app.state.auth_client = auth
        app.state.hub = hub
        app.state.orders_service = orders_service
        app.state.checkout_service = CheckoutService(orders_service, payments_repo, provider)
        app.state.ws_handler = OrderWebsocketHandler(hub, orders_service)

        logger.info(f"✅ Payment Provider: {provider.provider_name}")
        logger.info(f"✅ Auth Service: {auth.verify_url}")

        if settings.use_real_services:
            missing = settings.validate_production_config()
            if missing:
                logger.warning(f"⚠️ Missing production config: {missing}")

        logger.info("=" * 60)
        logger.info("✅ Application ready!")
        logger.info("=" * 60)

        yield

        logger.info("Shutting down...")
        if auth_client is None:
            await auth.aclose()
        if owns_database:
            await dispose_engine()
        logger.info("✅ Cleanup complete")

    # =========================================================================
    # APPLICATION INSTANCE
    # =========================================================================

    app = FastAPI(
        title=settings.app_name,
        description=(
            "Order lifecycle and realtime collaboration for restaurant tables: "
            "shared orders, waiter assignment and payment checkout."
        ),
        version=settings.app_version,
        lifespan=lifespan,
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None if settings.is_production else "/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(orders_router, prefix=API_PREFIX)
    app.include_router(payments_router, prefix=API_PREFIX)
    app.include_router(websockets_router, prefix=API_PREFIX)

    # =========================================================================
    # HEALTH
    # =========================================================================

    @app.get(
        "/health",
        response_model=HealthResponse,
        tags=["Health"],
        summary="System Health Check",
    )
    async def health_check(request: Request) -> HealthResponse:
        """Verify all system components are operational."""
        db_status = "healthy" if await request.app.state.orders_repository.health_check() else "unhealthy"
        payment_status = "healthy" if await request.app.state.payment_provider.health_check() else "unhealthy"

        overall = "operational" if db_status == payment_status == "healthy" else "degraded"

        return HealthResponse(
            status=overall,
            database=db_status,
            payment_service=payment_status,
            realtime_orders=len(await get_hub(request).order_ids()),
            timestamp=datetime.now(timezone.utc),
        )

    # =========================================================================
    # ERROR HANDLERS
    # =========================================================================

    @app.exception_handler(DiningError)
    async def dining_error_handler(request: Request, exc: DiningError) -> JSONResponse:
        """Map order-core errors to their HTTP status."""
        if exc.is_server_error:
            logger.error(f"{request.method} {request.url.path} failed: {exc}", exc_info=exc)
            detail = exc.detail if settings.debug else None
        else:
            logger.info(f"{request.method} {request.url.path} rejected ({exc.status_code}): {exc}")
            detail = exc.detail

        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(error=exc.message, detail=detail).model_dump(),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all exception handler."""
        logger.exception(f"Unhandled exception: {exc}")

        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="Internal Server Error",
                detail=str(exc) if settings.debug else "An unexpected error occurred",
            ).model_dump(),
        )

    return app


app = create_app()


def run() -> None:
    """Console entry point: serve the application with uvicorn."""
    settings = get_settings()
    uvicorn.run("dining.main:app", host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    run()

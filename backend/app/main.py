"""
Quote notification service.
FastAPI application that turns Shopify draft order webhooks into quote
emails for the customer and their account executive.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.config import Settings, get_settings
from app.errors import create_error_response
from app.routers import shopify_webhook
from app.services.advisor_resolution import CustomerDataSource
from app.services.draft_order_pipeline import DraftOrderPipeline
from app.services.email_service import EmailService
from app.services.ledger import ProcessingLedger, periodic_reset
from app.services.shopify_client import ShopifyClient

# Configure logging to output to console
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

WEBHOOK_PATH = "/api/webhook/shopify"


def get_cors_origins(settings: Settings) -> List[str]:
    """
    Build the list of allowed CORS origins from CORS_ORIGINS.

    "*" (the default) allows any origin. Otherwise the value is a
    comma-separated list, e.g.:
        CORS_ORIGINS=https://admin.example.com,https://tools.example.com

    Duplicates are removed while preserving order.
    """
    raw = (settings.cors_origins or "").strip()
    if not raw or raw == "*":
        return ["*"]

    seen: set = set()
    origins: List[str] = []
    for origin in (o.strip() for o in raw.split(",")):
        if origin and origin not in seen:
            seen.add(origin)
            origins.append(origin)
    return origins


def create_app(
    settings: Optional[Settings] = None,
    *,
    customer_data: Optional[CustomerDataSource] = None,
    email_service: Optional[EmailService] = None,
    ledger: Optional[ProcessingLedger] = None,
) -> FastAPI:
    """
    Build the FastAPI application and its long-lived services.

    Collaborators default to the real implementations; tests pass fakes.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Servicio de Correos Electrónicos - GNP",
        description="Shopify draft order webhooks to quote notification emails",
        version=settings.version,
    )

    ledger = ledger or ProcessingLedger(
        max_attempts=settings.max_processing_attempts,
        retry_window_seconds=settings.retry_window_seconds,
    )
    customer_data = customer_data or ShopifyClient(settings)
    email_service = email_service or EmailService(settings)

    app.state.settings = settings
    app.state.started_at = time.monotonic()
    app.state.ledger = ledger
    app.state.shopify_client = customer_data
    app.state.email_service = email_service
    app.state.pipeline = DraftOrderPipeline(settings, ledger, email_service, customer_data)
    app.state.reset_tasks = []

    origins = get_cors_origins(settings)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(shopify_webhook.router, prefix=WEBHOOK_PATH, tags=["webhooks"])

    @app.on_event("startup")
    async def start_cache_resets() -> None:
        """Clear the processing and sent-email ledgers on independent schedules."""
        interval = settings.cache_reset_interval_seconds
        app.state.reset_tasks = [
            asyncio.create_task(periodic_reset([app.state.ledger], interval)),
            asyncio.create_task(
                periodic_reset([app.state.email_service.sent_emails], interval)
            ),
        ]
        logger.info(
            "Webhook available at %s (port %s); caches reset every %ss",
            WEBHOOK_PATH, settings.port, interval,
        )

    @app.on_event("shutdown")
    async def stop_background_work() -> None:
        for task in app.state.reset_tasks:
            task.cancel()
        await asyncio.gather(*app.state.reset_tasks, return_exceptions=True)
        app.state.reset_tasks = []

        closer = getattr(app.state.shopify_client, "aclose", None)
        if closer is not None:
            await closer()
        await app.state.email_service.aclose()

    @app.exception_handler(StarletteHTTPException)
    async def not_found_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return JSONResponse(
                status_code=404,
                content={"error": "Ruta no encontrada", "path": request.url.path},
            )
        return await http_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content=create_error_response(exc, expose_detail=settings.is_development),
        )

    @app.get("/")
    async def root():
        return {
            "message": "Servicio de Correos Electrónicos - GNP",
            "version": settings.version,
            "endpoints": {"webhook": WEBHOOK_PATH, "health": "/health"},
        }

    @app.get("/health")
    async def health():
        return {
            "status": "OK",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": round(time.monotonic() - app.state.started_at, 3),
            "environment": settings.environment,
            "version": settings.version,
        }

    @app.get("/health/shopify")
    async def health_shopify():
        """
        Check that the Shopify Admin API is reachable with the configured token.

        Returns 503 when the shop query fails.
        """
        check = getattr(app.state.shopify_client, "test_connection", None)
        if check is None or not await check():
            raise HTTPException(status_code=503, detail="Shopify connection failed")
        return {"status": "ok", "shopify": "reachable"}

    return app


app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn on PORT."""
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=get_settings().port)

"""
Shopify webhook router.

Endpoints:
  POST     draft_orders/create webhook (mounted at /api/webhook/shopify)

Response codes:
  200  processed, or duplicate delivery of an already processed draft order
  400  missing Shopify headers or malformed draft order payload
  429  attempt limit reached for this draft order
  500  customer/advisor lookup or email delivery failed (Shopify may retry)
"""

import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from app.services.draft_order_pipeline import DraftOrderPipeline

logger = logging.getLogger(__name__)

router = APIRouter()


def get_pipeline(request: Request) -> DraftOrderPipeline:
    """Return the pipeline built at startup (see app.main)."""
    return request.app.state.pipeline


@router.post(
    "",
    responses={
        200: {
            "description": "Draft order processed or already processed",
            "content": {
                "application/json": {
                    "example": {
                        "success": True,
                        "message": "Webhook procesado correctamente",
                        "draftOrderId": 1122334455,
                        "webhookId": "b54557e4-bdd9-4b37-8a5f-bf7d70bcd043",
                        "attempts": 1,
                    }
                }
            },
        },
        400: {"description": "Missing Shopify headers or invalid draft order payload"},
        429: {"description": "Too many processing attempts for this draft order"},
        500: {"description": "Processing failed; the attempt counts toward the limit"},
    },
)
async def receive_draft_order_webhook(
    request: Request,
    pipeline: DraftOrderPipeline = Depends(get_pipeline),
):
    """Receive a draft_orders/create webhook and notify customer and advisor."""
    raw = await request.body()
    try:
        payload = json.loads(raw) if raw else None
    except ValueError:
        logger.error("Webhook body is not valid JSON")
        payload = None

    result = await pipeline.handle(request.headers, payload)
    return JSONResponse(status_code=result.status_code, content=result.body)

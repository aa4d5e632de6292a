"""
Draft order webhook pipeline.

Per delivery:
  received -> headers checked -> payload validated -> ledger checked
  -> customer resolved -> advisor resolved -> emails sent -> ledger completed

handle() never raises; every outcome is a PipelineResult carrying the HTTP
status and JSON body to return to Shopify. Shopify retries non-2xx
deliveries on its own schedule; the ledger caps how many of those retries
actually run the pipeline.

Only the presence of the Shopify headers is checked. The HMAC signature
value is not verified.

Each email send is bounded at EMAIL_TIMEOUT_FACTOR times the transport
timeout, above the httpx per-request timeout.
A send cancelled by that outer bound after SendGrid accepted it is not
recorded, and a retry would send that email again.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from pydantic import ValidationError

from app.config import Settings
from app.errors import (
    AdvisorNotFoundError,
    CustomerNotFoundError,
    PayloadValidationError,
    create_error_response,
)
from app.models.draft_order import PLACEHOLDER_CUSTOMER_ID, Customer, DraftOrder
from app.services.advisor_resolution import CustomerDataSource, resolve_advisor
from app.services.email_service import EmailService
from app.services.ledger import DecisionReason, ProcessingLedger

logger = logging.getLogger(__name__)

SHOP_DOMAIN_HEADER = "x-shopify-shop-domain"
HMAC_HEADER = "x-shopify-hmac-sha256"
TOPIC_HEADER = "x-shopify-topic"
WEBHOOK_ID_HEADER = "x-shopify-webhook-id"

REQUIRED_HEADERS = (SHOP_DOMAIN_HEADER, HMAC_HEADER, TOPIC_HEADER, WEBHOOK_ID_HEADER)

PLACEHOLDER_FIRST_NAME = "Cliente"
PLACEHOLDER_LAST_NAME = "Shopify"

EMAIL_TIMEOUT_FACTOR = 3


@dataclass(frozen=True)
class PipelineResult:
    status_code: int
    body: dict = field(default_factory=dict)


def missing_headers(headers: Mapping[str, str]) -> list[str]:
    """Return the required Shopify headers that are absent or empty."""
    lowered = {k.lower(): v for k, v in headers.items()}
    return [name for name in REQUIRED_HEADERS if not lowered.get(name)]


def parse_draft_order(payload: Any) -> DraftOrder:
    """
    Structurally validate a webhook body.

    Raises:
        PayloadValidationError: when the body is not a draft order object.
    """
    if not isinstance(payload, dict):
        raise PayloadValidationError("Webhook body is not a JSON object")
    try:
        return DraftOrder.model_validate(payload)
    except ValidationError as exc:
        errors = exc.errors(include_url=False)
        raise PayloadValidationError("Draft order payload rejected", details=errors)


def resolve_customer(order: DraftOrder) -> Customer:
    """
    Return the customer for an order.

    Uses the embedded customer when present. Otherwise synthesizes a
    placeholder (id 0, "Cliente Shopify") from the order email.

    Raises:
        CustomerNotFoundError: when there is neither a customer nor an email.
    """
    if order.customer is not None:
        return order.customer

    if not order.email:
        raise CustomerNotFoundError()

    logger.info("No customer in payload, using placeholder for %s", order.email)
    return Customer(
        id=PLACEHOLDER_CUSTOMER_ID,
        email=order.email,
        first_name=PLACEHOLDER_FIRST_NAME,
        last_name=PLACEHOLDER_LAST_NAME,
        currency=order.currency,
        created_at=order.created_at,
        updated_at=order.updated_at,
    )


class DraftOrderPipeline:
    """Wires the ledger, advisor resolution and email service together."""

    def __init__(
        self,
        settings: Settings,
        ledger: ProcessingLedger,
        email_service: EmailService,
        customer_data: CustomerDataSource,
    ):
        self.settings = settings
        self.ledger = ledger
        self.email_service = email_service
        self.customer_data = customer_data

    async def handle(self, headers: Mapping[str, str], payload: Any) -> PipelineResult:
        """Run one webhook delivery through the pipeline."""
        missing = missing_headers(headers)
        if missing:
            logger.error("Missing Shopify headers: %s", missing)
            return PipelineResult(400, {
                "error": "Headers de Shopify inválidos",
                "message": "El webhook no contiene los headers requeridos de Shopify",
            })

        lowered = {k.lower(): v for k, v in headers.items()}
        webhook_id = lowered[WEBHOOK_ID_HEADER]
        logger.info(
            "Shopify webhook received: shop=%s topic=%s webhook_id=%s user_agent=%s",
            lowered[SHOP_DOMAIN_HEADER],
            lowered[TOPIC_HEADER],
            webhook_id,
            lowered.get("user-agent"),
        )

        try:
            order = parse_draft_order(payload)
        except PayloadValidationError as exc:
            logger.error("%s: %s", exc, exc.details)
            return PipelineResult(400, {
                "error": "Datos de draft order inválidos",
                "message": "El payload no contiene la estructura esperada",
            })

        order_id = str(order.id)
        decision = self.ledger.should_process(order_id)

        if decision.reason == DecisionReason.ALREADY_PROCESSED:
            return PipelineResult(200, {
                "success": True,
                "message": "Draft order ya procesado anteriormente",
                "draftOrderId": order.id,
                "webhookId": webhook_id,
            })

        if not decision.allow:
            return PipelineResult(429, {
                "error": "Demasiados intentos",
                "message": "Se excedió el límite de intentos para este draft order",
                "draftOrderId": order.id,
                "webhookId": webhook_id,
            })

        try:
            await self.process(order)
        except Exception as exc:
            logger.exception(
                "Error processing draft order %s (attempt %d)", order_id, decision.attempts
            )
            body = create_error_response(
                exc,
                message="Error procesando el webhook",
                expose_detail=self.settings.is_development,
            )
            return PipelineResult(500, body)

        self.ledger.complete(order_id)
        return PipelineResult(200, {
            "success": True,
            "message": "Webhook procesado correctamente",
            "draftOrderId": order.id,
            "webhookId": webhook_id,
            "attempts": decision.attempts,
        })

    async def process(self, order: DraftOrder) -> None:
        """
        Resolve the customer and advisor, then send both emails in order.

        The customer email goes first; if the advisor email then fails, a
        retry skips the customer email because it is already recorded as sent.

        Raises:
            CustomerNotFoundError, AdvisorNotFoundError, EmailDeliveryError,
            asyncio.TimeoutError
        """
        customer = resolve_customer(order)
        logger.info(
            "Customer: %s %s <%s>", customer.first_name, customer.last_name, customer.email
        )

        timeout = self.settings.remote_timeout_seconds
        # Two sequential lookups, each individually bounded by the client timeout.
        advisor = await asyncio.wait_for(
            resolve_advisor(customer.id, self.customer_data), timeout=timeout * 2
        )
        if advisor is None:
            raise AdvisorNotFoundError()

        send_timeout = timeout * EMAIL_TIMEOUT_FACTOR
        await asyncio.wait_for(
            self.email_service.send_customer_confirmation(order, customer),
            timeout=send_timeout,
        )
        await asyncio.wait_for(
            self.email_service.send_advisor_notification(order, customer, advisor),
            timeout=send_timeout,
        )
        logger.info("Emails sent for draft order %s", order.id)

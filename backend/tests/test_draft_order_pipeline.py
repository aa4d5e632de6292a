"""
Unit tests for the draft order webhook pipeline.
Covers header and payload validation, duplicate and retry handling, customer
and advisor resolution failures, and partial email delivery followed by retry.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.config import Settings
from app.errors import CustomerNotFoundError, EmailDeliveryError, PayloadValidationError
from app.models.draft_order import PLACEHOLDER_CUSTOMER_ID, DraftOrder
from app.services.draft_order_pipeline import (
    DraftOrderPipeline,
    missing_headers,
    parse_draft_order,
    resolve_customer,
)
from app.services.email_service import EmailService
from app.services.ledger import ProcessingLedger

ADVISOR_GID = "gid://shopify/Metaobject/987"

HEADERS = {
    "X-Shopify-Shop-Domain": "api-gnp.myshopify.com",
    "X-Shopify-Hmac-Sha256": "signature",
    "X-Shopify-Topic": "draft_orders/create",
    "X-Shopify-Webhook-Id": "b54557e4-bdd9-4b37-8a5f-bf7d70bcd043",
}


# ---------------------------------------------------------------------------
# Fakes and builders
# ---------------------------------------------------------------------------

class FakeCustomerData:
    """In-memory stand-in for ShopifyClient's two lookups."""

    def __init__(self, with_advisor: bool = True):
        self.with_advisor = with_advisor
        self.customer_calls = 0

    async def get_customer(self, customer_id):
        self.customer_calls += 1
        if not self.with_advisor:
            return {"id": f"gid://shopify/Customer/{customer_id}", "metafields": {"edges": []}}
        return {
            "id": f"gid://shopify/Customer/{customer_id}",
            "metafields": {"edges": [{"node": {
                "namespace": "custom",
                "key": "ejecutivo_de_cuenta",
                "value": ADVISOR_GID,
            }}]},
        }

    async def get_metaobject(self, metaobject_gid):
        return {
            "id": metaobject_gid,
            "fields": [
                {"key": "nombre", "value": "Ana López"},
                {"key": "correo", "value": "ana@gnp.mx"},
                {"key": "telefono", "value": "555-1234"},
            ],
        }


def _payload(order_id=1122334455, customer=True, **overrides):
    payload = {
        "id": order_id,
        "name": "#D42",
        "email": "laura@example.com",
        "currency": "MXN",
        "line_items": [{
            "title": "Playera Polo",
            "quantity": 3,
            "price": "100.00",
            "properties": [{"name": "Decorado", "value": "$10.00 por unidad"}],
        }],
    }
    if customer:
        payload["customer"] = {
            "id": 42,
            "email": "laura@example.com",
            "first_name": "Laura",
            "last_name": "Gómez",
        }
    payload.update(overrides)
    return payload


def _transport():
    transport = MagicMock()
    transport.send = AsyncMock(return_value=None)
    return transport


def _pipeline(
    customer_data=None,
    transport=None,
    environment="development",
    timeout=5.0,
):
    settings = Settings(
        environment=environment,
        sendgrid_api_key="SG.test",
        remote_timeout_seconds=timeout,
    )
    ledger = ProcessingLedger(max_attempts=3, retry_window_seconds=300)
    email_service = EmailService(settings, transport=transport or _transport())
    return DraftOrderPipeline(settings, ledger, email_service, customer_data or FakeCustomerData())


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class TestHeaders:
    """All four X-Shopify-* headers are required."""

    @pytest.mark.parametrize("header", list(HEADERS))
    @pytest.mark.asyncio
    async def test_missing_header_returns_400(self, header):
        headers = {k: v for k, v in HEADERS.items() if k != header}
        result = await _pipeline().handle(headers, _payload())

        assert result.status_code == 400
        assert result.body["error"] == "Headers de Shopify inválidos"

    @pytest.mark.asyncio
    async def test_empty_header_value_counts_as_missing(self):
        headers = {**HEADERS, "X-Shopify-Topic": ""}
        result = await _pipeline().handle(headers, _payload())
        assert result.status_code == 400

    def test_lookup_is_case_insensitive(self):
        lowered = {k.lower(): v for k, v in HEADERS.items()}
        assert missing_headers(lowered) == []
        assert missing_headers(HEADERS) == []


class TestPayload:
    """Structural validation of the draft order body."""

    @pytest.mark.parametrize("payload", [
        None,
        [],
        "draft order",
        _payload(id="1122334455"),
        _payload(id=True),
        _payload(name=None),
        _payload(email=None),
        _payload(line_items="none"),
    ])
    @pytest.mark.asyncio
    async def test_invalid_payload_returns_400(self, payload):
        pipeline = _pipeline()
        result = await pipeline.handle(HEADERS, payload)

        assert result.status_code == 400
        assert result.body == {
            "error": "Datos de draft order inválidos",
            "message": "El payload no contiene la estructura esperada",
        }

    @pytest.mark.asyncio
    async def test_missing_line_items_returns_400(self):
        payload = _payload()
        del payload["line_items"]
        result = await _pipeline().handle(HEADERS, payload)
        assert result.status_code == 400

    @pytest.mark.asyncio
    async def test_invalid_payload_does_not_touch_ledger(self):
        pipeline = _pipeline()
        await pipeline.handle(HEADERS, _payload(id="abc"))
        assert pipeline.ledger.attempts("abc") == 0

    def test_parse_error_carries_field_details(self):
        with pytest.raises(PayloadValidationError) as exc_info:
            parse_draft_order(_payload(id="abc"))
        assert exc_info.value.status_code == 400
        assert exc_info.value.details[0]["loc"] == ("id",)

    def test_parse_ignores_unknown_fields(self):
        order = parse_draft_order(_payload(tags="vip", status="open"))
        assert isinstance(order, DraftOrder)
        assert order.line_items[0].attributes[0].key == "Decorado"


# ---------------------------------------------------------------------------
# Customer resolution
# ---------------------------------------------------------------------------

class TestResolveCustomer:

    def test_embedded_customer_is_used(self):
        customer = resolve_customer(parse_draft_order(_payload()))
        assert customer.id == 42
        assert customer.first_name == "Laura"

    def test_placeholder_from_email(self):
        order = parse_draft_order(_payload(customer=False, created_at="2026-03-05T10:00:00Z"))
        customer = resolve_customer(order)

        assert customer.id == PLACEHOLDER_CUSTOMER_ID
        assert customer.email == "laura@example.com"
        assert customer.first_name == "Cliente"
        assert customer.last_name == "Shopify"
        assert customer.currency == "MXN"
        assert customer.created_at == order.created_at

    def test_no_customer_and_no_email(self):
        order = parse_draft_order(_payload(customer=False, email=""))
        with pytest.raises(CustomerNotFoundError):
            resolve_customer(order)


# ---------------------------------------------------------------------------
# Processing
# ---------------------------------------------------------------------------

class TestFirstDelivery:
    """A well-formed first delivery for a customer with an advisor."""

    @pytest.mark.asyncio
    async def test_returns_success(self):
        pipeline = _pipeline()
        result = await pipeline.handle(HEADERS, _payload())

        assert result.status_code == 200
        assert result.body == {
            "success": True,
            "message": "Webhook procesado correctamente",
            "draftOrderId": 1122334455,
            "webhookId": HEADERS["X-Shopify-Webhook-Id"],
            "attempts": 1,
        }

    @pytest.mark.asyncio
    async def test_sends_customer_then_advisor_email(self):
        transport = _transport()
        pipeline = _pipeline(transport=transport)

        await pipeline.handle(HEADERS, _payload())

        recipients = [call.args[0].to for call in transport.send.await_args_list]
        assert recipients == ["laura@example.com", "ana@gnp.mx"]

    @pytest.mark.asyncio
    async def test_marks_order_completed(self):
        pipeline = _pipeline()
        await pipeline.handle(HEADERS, _payload())
        assert pipeline.ledger.is_completed("1122334455")

    @pytest.mark.asyncio
    async def test_emails_use_decorated_prices(self):
        transport = _transport()
        await _pipeline(transport=transport).handle(HEADERS, _payload())

        customer_message = transport.send.await_args_list[0].args[0]
        assert "Precio unitario: MXN 110.00" in customer_message.text
        assert "Total: MXN 330.00" in customer_message.text


class TestDuplicates:
    """Redelivery of an order that already completed."""

    @pytest.mark.asyncio
    async def test_duplicate_returns_200_without_sending(self):
        transport = _transport()
        customer_data = FakeCustomerData()
        pipeline = _pipeline(customer_data=customer_data, transport=transport)

        await pipeline.handle(HEADERS, _payload())
        result = await pipeline.handle(HEADERS, _payload())

        assert result.status_code == 200
        assert result.body["message"] == "Draft order ya procesado anteriormente"
        assert result.body["draftOrderId"] == 1122334455
        assert transport.send.await_count == 2
        assert customer_data.customer_calls == 1
        assert pipeline.ledger.attempts("1122334455") == 1


class TestAttemptLimit:
    """Failures consume attempts; the fourth delivery is refused."""

    @pytest.mark.asyncio
    async def test_fourth_delivery_returns_429(self):
        pipeline = _pipeline(customer_data=FakeCustomerData(with_advisor=False))

        statuses = [(await pipeline.handle(HEADERS, _payload())).status_code for _ in range(3)]
        assert statuses == [500, 500, 500]

        result = await pipeline.handle(HEADERS, _payload())
        assert result.status_code == 429
        assert result.body["error"] == "Demasiados intentos"
        assert result.body["webhookId"] == HEADERS["X-Shopify-Webhook-Id"]
        assert pipeline.ledger.attempts("1122334455") == 3


class TestFailures:
    """Errors inside processing become 500 responses."""

    @pytest.mark.asyncio
    async def test_placeholder_customer_has_no_advisor(self):
        customer_data = FakeCustomerData()
        transport = _transport()
        pipeline = _pipeline(customer_data=customer_data, transport=transport)

        result = await pipeline.handle(HEADERS, _payload(customer=False))

        assert result.status_code == 500
        assert result.body["message"] == "Asesor no encontrado"
        assert customer_data.customer_calls == 0
        transport.send.assert_not_awaited()
        assert pipeline.ledger.attempts("1122334455") == 1
        assert not pipeline.ledger.is_completed("1122334455")

    @pytest.mark.asyncio
    async def test_production_hides_detail(self):
        pipeline = _pipeline(environment="production")
        result = await pipeline.handle(HEADERS, _payload(customer=False))

        assert result.status_code == 500
        assert result.body == {
            "error": "Error interno del servidor",
            "message": "Error procesando el webhook",
        }

    @pytest.mark.asyncio
    async def test_missing_customer_and_email(self):
        result = await _pipeline().handle(HEADERS, _payload(customer=False, email=""))
        assert result.status_code == 500
        assert result.body["message"] == "Cliente no encontrado"

    @pytest.mark.asyncio
    async def test_slow_lookup_times_out(self):
        class SlowCustomerData(FakeCustomerData):
            async def get_customer(self, customer_id):
                await asyncio.sleep(1)

        pipeline = _pipeline(customer_data=SlowCustomerData(), timeout=0.01)
        result = await pipeline.handle(HEADERS, _payload())

        assert result.status_code == 500
        assert not pipeline.ledger.is_completed("1122334455")


class TestPartialDelivery:
    """Customer email sent, advisor email failed, then Shopify retries."""

    @pytest.mark.asyncio
    async def test_retry_only_sends_advisor_email(self):
        transport = _transport()
        transport.send.side_effect = [None, EmailDeliveryError("SendGrid returned HTTP 500")]
        pipeline = _pipeline(transport=transport)

        first = await pipeline.handle(HEADERS, _payload())
        assert first.status_code == 500
        assert first.body["type"] == "SENDGRID_ERROR"

        transport.send.side_effect = None
        second = await pipeline.handle(HEADERS, _payload())

        assert second.status_code == 200
        assert second.body["attempts"] == 2
        recipients = [call.args[0].to for call in transport.send.await_args_list]
        assert recipients == ["laura@example.com", "ana@gnp.mx", "ana@gnp.mx"]


class TestDefaultEnvironment:
    """Without an explicit development environment, 500 bodies stay generic."""

    @pytest.mark.asyncio
    async def test_delivery_error_detail_not_exposed(self):
        settings = Settings(sendgrid_api_key="SG.test")
        transport = _transport()
        transport.send.side_effect = EmailDeliveryError("SendGrid returned HTTP 401")
        pipeline = DraftOrderPipeline(
            settings,
            ProcessingLedger(),
            EmailService(settings, transport=transport),
            FakeCustomerData(),
        )

        result = await pipeline.handle(HEADERS, _payload())

        assert result.status_code == 500
        assert result.body == {
            "error": "Error interno del servidor",
            "message": "Error procesando el webhook",
        }


class TestSendTimeout:

    @pytest.mark.asyncio
    async def test_send_slower_than_transport_timeout_completes(self):
        """The pipeline bound leaves room for the transport's own timeout."""
        async def slow_send(message):
            await asyncio.sleep(0.15)

        transport = _transport()
        transport.send.side_effect = slow_send
        pipeline = _pipeline(transport=transport, timeout=0.1)

        result = await pipeline.handle(HEADERS, _payload())

        assert result.status_code == 200
        assert len(pipeline.email_service.sent_emails) == 2


class TestConcurrentDeliveries:
    """Idempotency across deliveries of the same draft order."""

    @pytest.mark.asyncio
    async def test_sequential_deliveries_process_once(self):
        transport = _transport()
        pipeline = _pipeline(transport=transport)

        results = []
        for i in range(3):
            headers = {**HEADERS, "X-Shopify-Webhook-Id": f"webhook-{i}"}
            results.append(await pipeline.handle(headers, _payload()))

        processed = [r for r in results if r.body["message"] == "Webhook procesado correctamente"]
        assert len(processed) == 1
        assert [r.status_code for r in results] == [200, 200, 200]
        assert transport.send.await_count == 2
        assert pipeline.ledger.attempts("1122334455") == 1

    @pytest.mark.asyncio
    async def test_overlapping_first_deliveries_are_both_admitted(self):
        """
        Two deliveries suspended in the customer lookup both pass the ledger
        check before either completes; each claims its own attempt number.
        """
        gate = asyncio.Event()
        waiting = []

        class GatedCustomerData(FakeCustomerData):
            async def get_customer(self, customer_id):
                waiting.append(customer_id)
                await gate.wait()
                return await super().get_customer(customer_id)

        pipeline = _pipeline(customer_data=GatedCustomerData())

        async def open_gate_when_both_wait():
            while len(waiting) < 2:
                await asyncio.sleep(0)
            gate.set()

        first, second, _ = await asyncio.gather(
            pipeline.handle(HEADERS, _payload()),
            pipeline.handle(HEADERS, _payload()),
            open_gate_when_both_wait(),
        )

        assert first.status_code == 200
        assert second.status_code == 200
        assert sorted([first.body["attempts"], second.body["attempts"]]) == [1, 2]
        assert pipeline.ledger.attempts("1122334455") == 2
        assert pipeline.ledger.is_completed("1122334455")

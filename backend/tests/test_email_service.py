"""
Unit tests for the email service and the SendGrid transport.
The transport is a mock for service tests and httpx.MockTransport for
SendGrid wire tests.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from app.config import Settings
from app.errors import EmailDeliveryError
from app.models.draft_order import Advisor, Customer, DraftOrder
from app.services.email_service import (
    SENDGRID_SEND_URL,
    EmailMessage,
    EmailService,
    SendGridTransport,
    is_valid_email,
    sanitize_email,
)
from app.services.email_templates import ADVISOR_SUBJECT, CUSTOMER_SUBJECT
from app.services.ledger import SentEmailLedger

LIVE_SETTINGS = Settings(sendgrid_api_key="SG.test", from_email="noreply@gnp.mx", from_name="GNP")
SIMULATED_SETTINGS = Settings(sendgrid_api_key="")

ORDER = DraftOrder.model_validate({
    "id": 1001,
    "name": "#D1",
    "email": "laura@example.com",
    "line_items": [{"title": "Gorra", "quantity": 2, "price": "50.00"}],
})
CUSTOMER = Customer(id=42, email="Laura@Example.com ", first_name="Laura", last_name="Gómez")
ADVISOR = Advisor(id=987, email="ana@gnp.mx", first_name="Ana", last_name="López")


def _transport():
    transport = MagicMock()
    transport.send = AsyncMock(return_value=None)
    transport.aclose = AsyncMock()
    return transport


# ---------------------------------------------------------------------------
# EmailService
# ---------------------------------------------------------------------------

class TestCustomerConfirmation:
    """Sending through a live transport."""

    @pytest.mark.asyncio
    async def test_sends_and_records(self):
        transport = _transport()
        service = EmailService(LIVE_SETTINGS, transport=transport)

        assert await service.send_customer_confirmation(ORDER, CUSTOMER) is True

        transport.send.assert_awaited_once()
        message = transport.send.await_args.args[0]
        assert message.to == "laura@example.com"
        assert message.subject == CUSTOMER_SUBJECT
        assert message.from_email == "noreply@gnp.mx"
        assert message.from_name == "GNP"
        assert service.sent_emails.contains("customer_1001_laura@example.com")

    @pytest.mark.asyncio
    async def test_second_send_is_skipped(self):
        transport = _transport()
        service = EmailService(LIVE_SETTINGS, transport=transport)

        await service.send_customer_confirmation(ORDER, CUSTOMER)
        assert await service.send_customer_confirmation(ORDER, CUSTOMER) is False
        assert transport.send.await_count == 1

    @pytest.mark.asyncio
    async def test_invalid_email_is_skipped(self):
        transport = _transport()
        service = EmailService(LIVE_SETTINGS, transport=transport)
        customer = CUSTOMER.model_copy(update={"email": "not-an-email"})

        assert await service.send_customer_confirmation(ORDER, customer) is False
        transport.send.assert_not_awaited()
        assert len(service.sent_emails) == 0

    @pytest.mark.asyncio
    async def test_failure_is_not_recorded(self):
        transport = _transport()
        transport.send.side_effect = EmailDeliveryError("SendGrid returned HTTP 500")
        service = EmailService(LIVE_SETTINGS, transport=transport)

        with pytest.raises(EmailDeliveryError):
            await service.send_customer_confirmation(ORDER, CUSTOMER)
        assert len(service.sent_emails) == 0

        transport.send.side_effect = None
        assert await service.send_customer_confirmation(ORDER, CUSTOMER) is True

    @pytest.mark.asyncio
    async def test_raw_http_error_is_wrapped(self):
        transport = _transport()
        transport.send.side_effect = httpx.ConnectError("refused")
        service = EmailService(LIVE_SETTINGS, transport=transport)

        with pytest.raises(EmailDeliveryError):
            await service.send_customer_confirmation(ORDER, CUSTOMER)


class TestAdvisorNotification:

    @pytest.mark.asyncio
    async def test_sends_to_advisor(self):
        transport = _transport()
        service = EmailService(LIVE_SETTINGS, transport=transport)

        assert await service.send_advisor_notification(ORDER, CUSTOMER, ADVISOR) is True

        message = transport.send.await_args.args[0]
        assert message.to == "ana@gnp.mx"
        assert message.subject == ADVISOR_SUBJECT
        assert "Laura Gómez" in message.text

    @pytest.mark.asyncio
    async def test_keys_are_per_role(self):
        transport = _transport()
        service = EmailService(LIVE_SETTINGS, transport=transport)

        await service.send_customer_confirmation(ORDER, CUSTOMER)
        await service.send_advisor_notification(ORDER, CUSTOMER, ADVISOR)

        assert transport.send.await_count == 2
        assert service.sent_emails.contains("advisor_1001_ana@gnp.mx")


class TestSimulatedDelivery:
    """No SENDGRID_API_KEY: emails are logged and recorded, never sent."""

    @pytest.mark.asyncio
    async def test_simulated_send_succeeds(self):
        service = EmailService(SIMULATED_SETTINGS)
        assert service.simulated is True
        assert await service.send_customer_confirmation(ORDER, CUSTOMER) is True
        assert service.sent_emails.contains("customer_1001_laura@example.com")

    @pytest.mark.asyncio
    async def test_simulated_send_is_idempotent(self):
        service = EmailService(SIMULATED_SETTINGS)
        await service.send_customer_confirmation(ORDER, CUSTOMER)
        assert await service.send_customer_confirmation(ORDER, CUSTOMER) is False

    @pytest.mark.asyncio
    async def test_injected_transport_unused_without_key(self):
        transport = _transport()
        service = EmailService(SIMULATED_SETTINGS, transport=transport)
        await service.send_customer_confirmation(ORDER, CUSTOMER)
        transport.send.assert_not_awaited()

    def test_shared_ledger(self):
        ledger = SentEmailLedger()
        assert EmailService(SIMULATED_SETTINGS, sent_emails=ledger).sent_emails is ledger

    @pytest.mark.asyncio
    async def test_empty_shared_ledger_sees_sends(self):
        """An empty ledger passed in is kept, not replaced by a fresh one."""
        ledger = SentEmailLedger()
        service = EmailService(SIMULATED_SETTINGS, sent_emails=ledger)

        await service.send_customer_confirmation(ORDER, CUSTOMER)

        assert len(ledger) == 1
        assert ledger.contains("customer_1001_laura@example.com")


class TestConstruction:

    def test_builds_sendgrid_transport_when_key_present(self):
        service = EmailService(LIVE_SETTINGS)
        assert isinstance(service._transport, SendGridTransport)
        assert service.simulated is False

    @pytest.mark.asyncio
    async def test_aclose_closes_transport(self):
        transport = _transport()
        service = EmailService(LIVE_SETTINGS, transport=transport)
        await service.aclose()
        transport.aclose.assert_awaited_once()


# ---------------------------------------------------------------------------
# SendGridTransport
# ---------------------------------------------------------------------------

MESSAGE = EmailMessage(
    to="laura@example.com",
    from_email="noreply@gnp.mx",
    from_name="GNP",
    subject="Hola",
    text="texto",
    html="<p>html</p>",
)


def _sendgrid(handler) -> SendGridTransport:
    return SendGridTransport(
        "SG.test",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


class TestSendGridTransport:
    """Wire format and error mapping for the v3 mail/send call."""

    @pytest.mark.asyncio
    async def test_posts_v3_payload(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(202)

        await _sendgrid(handler).send(MESSAGE)

        request = seen[0]
        assert str(request.url) == SENDGRID_SEND_URL
        assert request.headers["Authorization"] == "Bearer SG.test"
        body = json.loads(request.content)
        assert body["personalizations"] == [{"to": [{"email": "laura@example.com"}]}]
        assert body["from"] == {"email": "noreply@gnp.mx", "name": "GNP"}
        assert body["subject"] == "Hola"
        assert body["content"] == [
            {"type": "text/plain", "value": "texto"},
            {"type": "text/html", "value": "<p>html</p>"},
        ]

    @pytest.mark.asyncio
    async def test_error_response_carries_details(self):
        errors = [{"message": "The from address does not match a verified Sender Identity"}]
        transport = _sendgrid(lambda request: httpx.Response(403, json={"errors": errors}))

        with pytest.raises(EmailDeliveryError) as exc_info:
            await transport.send(MESSAGE)
        assert "403" in str(exc_info.value)
        assert exc_info.value.details == errors

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        with pytest.raises(EmailDeliveryError, match="timed out"):
            await _sendgrid(handler).send(MESSAGE)

    @pytest.mark.asyncio
    async def test_non_json_error_body(self):
        transport = _sendgrid(lambda request: httpx.Response(500, text="Internal Error"))
        with pytest.raises(EmailDeliveryError) as exc_info:
            await transport.send(MESSAGE)
        assert exc_info.value.details == "Internal Error"


class TestEmailHelpers:

    def test_sanitize_email(self):
        assert sanitize_email("  Ana@GNP.mx ") == "ana@gnp.mx"

    def test_is_valid_email(self):
        assert is_valid_email("ana@gnp.mx")
        assert not is_valid_email("")
        assert not is_valid_email(None)
        assert not is_valid_email("ana@gnp")
        assert not is_valid_email("ana gnp@x.mx")

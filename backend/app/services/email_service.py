"""
Outbound email service.

EmailService renders and dispatches the two quote notifications and keeps a
SentEmailLedger so a retried webhook never resends an email that already went
out. Delivery goes through an EmailTransport; SendGridTransport talks to the
SendGrid v3 REST API with httpx.

When SENDGRID_API_KEY is not configured, sends are simulated: the email is
logged and recorded as sent, and the call succeeds.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

from app.config import Settings
from app.errors import EmailDeliveryError
from app.models.draft_order import Advisor, Customer, DraftOrder
from app.services.email_templates import (
    RenderedEmail,
    full_name,
    render_advisor_email,
    render_customer_email,
)
from app.services.ledger import SentEmailLedger

logger = logging.getLogger(__name__)

SENDGRID_SEND_URL = "https://api.sendgrid.com/v3/mail/send"

CUSTOMER_ROLE = "customer"
ADVISOR_ROLE = "advisor"

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def sanitize_email(email: str) -> str:
    return email.strip().lower()


def is_valid_email(email: Optional[str]) -> bool:
    return bool(email) and bool(_EMAIL_RE.match(email))


@dataclass(frozen=True)
class EmailMessage:
    to: str
    from_email: str
    from_name: str
    subject: str
    text: str
    html: str


class EmailTransport(Protocol):
    async def send(self, message: EmailMessage) -> None: ...


class SendGridTransport:
    """POST messages to SendGrid's v3 mail/send endpoint."""

    def __init__(self, api_key: str, timeout: float = 5.0, http_client: Optional[httpx.AsyncClient] = None):
        self._api_key = api_key
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    @staticmethod
    def build_payload(message: EmailMessage) -> dict:
        return {
            "personalizations": [{"to": [{"email": message.to}]}],
            "from": {"email": message.from_email, "name": message.from_name},
            "subject": message.subject,
            "content": [
                {"type": "text/plain", "value": message.text},
                {"type": "text/html", "value": message.html},
            ],
        }

    async def send(self, message: EmailMessage) -> None:
        """
        Deliver one message.

        Raises:
            EmailDeliveryError: on timeout, transport failure or a non-2xx
                response (SendGrid's "errors" list is attached as details).
        """
        try:
            response = await self._client.post(
                SENDGRID_SEND_URL,
                json=self.build_payload(message),
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
        except httpx.TimeoutException as exc:
            raise EmailDeliveryError(f"SendGrid request timed out: {exc}")
        except httpx.HTTPError as exc:
            raise EmailDeliveryError(f"SendGrid request failed: {exc}")

        if response.is_success:
            return

        try:
            errors = response.json().get("errors")
        except ValueError:
            errors = response.text
        logger.error("SendGrid errors: %s", errors)
        raise EmailDeliveryError(
            f"SendGrid returned HTTP {response.status_code}", details=errors
        )


class EmailService:
    """
    Sends the customer confirmation and advisor notification for a quote.

    Both send methods return True when the email was sent (or simulated) and
    False when it was skipped (invalid address or already sent). Transport
    failures propagate as EmailDeliveryError and nothing is recorded.
    """

    def __init__(
        self,
        settings: Settings,
        transport: Optional[EmailTransport] = None,
        sent_emails: Optional[SentEmailLedger] = None,
    ):
        self._settings = settings
        self._transport = transport
        self.sent_emails = sent_emails if sent_emails is not None else SentEmailLedger()

        if transport is None and settings.email_delivery_enabled:
            self._transport = SendGridTransport(
                settings.sendgrid_api_key, timeout=settings.remote_timeout_seconds
            )
        if not settings.email_delivery_enabled:
            logger.warning("SENDGRID_API_KEY is not configured; emails will be simulated")

        logger.info("Email service initialized with from email: %s", settings.from_email)

    @property
    def simulated(self) -> bool:
        return not self._settings.email_delivery_enabled

    async def aclose(self) -> None:
        closer = getattr(self._transport, "aclose", None)
        if closer is not None:
            await closer()

    async def send_customer_confirmation(self, order: DraftOrder, customer: Customer) -> bool:
        rendered = render_customer_email(order, customer, self._settings.decoration_total_mode)
        return await self._dispatch(
            CUSTOMER_ROLE,
            order,
            customer.email,
            rendered,
            recipient_name=full_name(customer.first_name, customer.last_name),
        )

    async def send_advisor_notification(
        self, order: DraftOrder, customer: Customer, advisor: Advisor
    ) -> bool:
        rendered = render_advisor_email(
            order, customer, advisor, self._settings.decoration_total_mode
        )
        return await self._dispatch(
            ADVISOR_ROLE,
            order,
            advisor.email,
            rendered,
            recipient_name=full_name(advisor.first_name, advisor.last_name),
        )

    async def _dispatch(
        self,
        role: str,
        order: DraftOrder,
        to: Optional[str],
        rendered: RenderedEmail,
        recipient_name: str,
    ) -> bool:
        to = sanitize_email(to or "")
        if not is_valid_email(to):
            logger.error("Invalid or empty %s email for draft order %s: %r", role, order.id, to)
            return False

        key = SentEmailLedger.key(role, order.id, to)
        if self.sent_emails.contains(key):
            logger.info("%s email for draft order %s already sent, skipping", role, order.id)
            return False

        message = EmailMessage(
            to=to,
            from_email=self._settings.from_email,
            from_name=self._settings.from_name,
            subject=rendered.subject,
            text=rendered.text,
            html=rendered.html,
        )
        logger.info(
            "Sending %s email: to=%s from=%s subject=%r recipient=%s",
            role, to, message.from_email, message.subject, recipient_name,
        )

        if self.simulated or self._transport is None:
            logger.info("Simulating %s email to %s:\n%s", role, to, rendered.text)
            self.sent_emails.record(key)
            return True

        try:
            await self._transport.send(message)
        except EmailDeliveryError:
            logger.error("Error sending %s email to %s", role, to)
            raise
        except httpx.HTTPError as exc:
            raise EmailDeliveryError(f"Email transport failed: {exc}")

        logger.info("%s email sent to %s", role, to)
        self.sent_emails.record(key)
        return True

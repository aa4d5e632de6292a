"""
Email body rendering for quote notifications.

Public API:
  render_customer_email(order, customer, mode) -> RenderedEmail
  render_advisor_email(order, customer, advisor, mode) -> RenderedEmail

Both recompute prices from the raw line items through the decoration pricing
engine, so the totals in the text and HTML bodies always agree.
"""

import html
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

from app.models.draft_order import Advisor, Customer, DraftOrder, LineBreakdown
from app.services.decoration_pricing import (
    PER_UNIT,
    apply_decorations,
    line_breakdown,
    order_total,
    to_money,
)

CUSTOMER_SUBJECT = "Cotización Creada Exitosamente"
ADVISOR_SUBJECT = "Nueva Cotización Generada por Cliente"

NOT_PROVIDED = "No proporcionado"

_BASE_STYLE = """
    body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; }
    .container { max-width: 600px; margin: 0 auto; padding: 20px; }
    .content { padding: 20px; }
    .footer { background-color: #f8f9fa; padding: 20px; text-align: center; font-size: 12px; }
    .order-details { background-color: #f8f9fa; padding: 15px; margin: 20px 0; border-radius: 5px; }
    .customer-info { background-color: #e9ecef; padding: 15px; margin: 20px 0; border-radius: 5px; }
    .item { margin: 10px 0; padding: 10px; border-bottom: 1px solid #eee; }
"""

_CUSTOMER_HEADER_STYLE = ".header { background-color: #f8f9fa; padding: 20px; text-align: center; }"
_ADVISOR_HEADER_STYLE = (
    ".header { background-color: #007bff; color: white; padding: 20px; text-align: center; }"
)


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    text: str
    html: str


@dataclass(frozen=True)
class _QuoteSummary:
    number: str
    date: str
    currency: str
    total: Decimal
    lines: list[LineBreakdown]


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------

def full_name(first_name: Optional[str], last_name: Optional[str]) -> str:
    return f"{first_name or ''} {last_name or ''}".strip()


def format_price(amount, currency: str) -> str:
    """Format an amount as "MXN 1234.50"; unparseable amounts become 0.00."""
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        value = Decimal("0")
    if not value.is_finite():
        value = Decimal("0")
    return f"{currency} {to_money(value)}"


def format_date(value: Optional[datetime]) -> str:
    """Spanish short date without zero padding: 5/3/2026."""
    value = value or datetime.now()
    return f"{value.day}/{value.month}/{value.year}"


def _summarize(order: DraftOrder, mode: str) -> _QuoteSummary:
    adjusted = apply_decorations(order.line_items)
    return _QuoteSummary(
        number=order.name,
        date=format_date(order.created_at),
        currency=order.currency,
        total=order_total(adjusted, mode),
        lines=[line_breakdown(item, mode) for item in adjusted],
    )


# ---------------------------------------------------------------------------
# HTML fragments
# ---------------------------------------------------------------------------

def _items_html(summary: _QuoteSummary) -> str:
    blocks = []
    for line in summary.lines:
        blocks.append(
            '<div class="item">'
            f"<p><strong>{html.escape(line.title)}</strong></p>"
            f"<p>Cantidad: {line.quantity}</p>"
            f"<p>Precio unitario: {format_price(line.unit_price, summary.currency)}</p>"
            f"<p>Precio total: {format_price(line.line_total, summary.currency)}</p>"
            "</div>"
        )
    return "\n".join(blocks)


def _order_details_html(summary: _QuoteSummary) -> str:
    return (
        '<div class="order-details">'
        "<h3>Detalles de la Cotización</h3>"
        f"<p><strong>Número de Cotización:</strong> {html.escape(summary.number)}</p>"
        f"<p><strong>Fecha:</strong> {summary.date}</p>"
        f"<p><strong>Total:</strong> {format_price(summary.total, summary.currency)}</p>"
        "</div>"
    )


def _page(title: str, header_style: str, heading: str, body: str, footer: str) -> str:
    return f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>{title}</title>
  <style>{_BASE_STYLE}    {header_style}
  </style>
</head>
<body>
  <div class="container">
    <div class="header"><h1>{heading}</h1></div>
    <div class="content">
{body}
    </div>
    <div class="footer"><p>{footer}</p></div>
  </div>
</body>
</html>
"""


# ---------------------------------------------------------------------------
# Text fragments
# ---------------------------------------------------------------------------

def _items_text(summary: _QuoteSummary) -> str:
    return "\n".join(
        f"- {line.title}\n"
        f"  Cantidad: {line.quantity}\n"
        f"  Precio unitario: {format_price(line.unit_price, summary.currency)}\n"
        f"  Precio total: {format_price(line.line_total, summary.currency)}\n"
        for line in summary.lines
    )


def _order_details_text(summary: _QuoteSummary) -> str:
    return (
        "DETALLES DE LA COTIZACIÓN:\n"
        f"- Número de Cotización: {summary.number}\n"
        f"- Fecha: {summary.date}\n"
        f"- Total: {format_price(summary.total, summary.currency)}\n"
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def render_customer_email(
    order: DraftOrder, customer: Customer, mode: str = PER_UNIT
) -> RenderedEmail:
    """Confirmation sent to the customer who requested the quote."""
    summary = _summarize(order, mode)
    customer_name = full_name(customer.first_name, customer.last_name)
    footer = "Este es un correo automático, por favor no responda a este mensaje."

    body_html = "\n".join([
        f"<p>Estimado/a {html.escape(customer_name)},</p>",
        "<p>Su cotización ha sido creada exitosamente. "
        "A continuación encontrará los detalles:</p>",
        _order_details_html(summary),
        "<h3>Productos Cotizados:</h3>",
        _items_html(summary),
        "<p>Nuestro equipo de asesores se pondrá en contacto con usted pronto "
        "para continuar con el proceso.</p>",
        "<p>Si tiene alguna pregunta, no dude en contactarnos.</p>",
    ])

    text = (
        "¡Cotización Creada Exitosamente!\n\n"
        f"Estimado/a {customer_name},\n\n"
        "Su cotización ha sido creada exitosamente. "
        "A continuación encontrará los detalles:\n\n"
        f"{_order_details_text(summary)}\n"
        "PRODUCTOS COTIZADOS:\n"
        f"{_items_text(summary)}\n"
        "Nuestro equipo de asesores se pondrá en contacto con usted pronto "
        "para continuar con el proceso.\n\n"
        "Si tiene alguna pregunta, no dude en contactarnos.\n\n"
        f"{footer}\n"
    )

    return RenderedEmail(
        subject=CUSTOMER_SUBJECT,
        text=text,
        html=_page(
            "Cotización Creada",
            _CUSTOMER_HEADER_STYLE,
            "¡Cotización Creada Exitosamente!",
            body_html,
            footer,
        ),
    )


def render_advisor_email(
    order: DraftOrder,
    customer: Customer,
    advisor: Advisor,
    mode: str = PER_UNIT,
) -> RenderedEmail:
    """Notification sent to the customer's account executive."""
    summary = _summarize(order, mode)
    customer_name = full_name(customer.first_name, customer.last_name)
    advisor_name = full_name(advisor.first_name, advisor.last_name)
    phone = customer.phone or NOT_PROVIDED
    footer = "Este es un correo automático del sistema de notificaciones."

    body_html = "\n".join([
        f"<p>Estimado/a {html.escape(advisor_name)},</p>",
        "<p>Se ha generado una nueva cotización para uno de sus clientes asignados.</p>",
        '<div class="customer-info">'
        "<h3>Información del Cliente</h3>"
        f"<p><strong>Nombre:</strong> {html.escape(customer_name)}</p>"
        f"<p><strong>Email:</strong> {html.escape(customer.email or '')}</p>"
        f"<p><strong>Teléfono:</strong> {html.escape(phone)}</p>"
        "</div>",
        _order_details_html(summary),
        "<h3>Productos Cotizados:</h3>",
        _items_html(summary),
        "<p>Por favor, contacte al cliente lo antes posible para continuar "
        "con el proceso de venta.</p>",
        "<p>Puede acceder a la cotización desde el panel de administración de Shopify.</p>",
    ])

    text = (
        "Nueva Cotización Generada\n\n"
        f"Estimado/a {advisor_name},\n\n"
        "Se ha generado una nueva cotización para uno de sus clientes asignados.\n\n"
        "INFORMACIÓN DEL CLIENTE:\n"
        f"- Nombre: {customer_name}\n"
        f"- Email: {customer.email or ''}\n"
        f"- Teléfono: {phone}\n\n"
        f"{_order_details_text(summary)}\n"
        "PRODUCTOS COTIZADOS:\n"
        f"{_items_text(summary)}\n"
        "Por favor, contacte al cliente lo antes posible para continuar "
        "con el proceso de venta.\n\n"
        "Puede acceder a la cotización desde el panel de administración de Shopify.\n\n"
        f"{footer}\n"
    )

    return RenderedEmail(
        subject=ADVISOR_SUBJECT,
        text=text,
        html=_page(
            "Nueva Cotización",
            _ADVISOR_HEADER_STYLE,
            "Nueva Cotización Generada",
            body_html,
            footer,
        ),
    )

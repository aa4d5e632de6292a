"""
Advisor (account executive) resolution.

A customer's advisor is not stored on the customer directly. The customer has
a metafield custom.ejecutivo_de_cuenta whose value is a metaobject reference
(gid://shopify/Metaobject/<id>); the metaobject holds the advisor's name,
email and phone.

resolve_advisor() walks both lookups and returns an Advisor, or None when any
step fails. It never raises for remote or data errors.
"""

import logging
from typing import Optional, Protocol

from app.errors import ShopifyError
from app.models.draft_order import ADVISOR_ROLE, PLACEHOLDER_CUSTOMER_ID, Advisor
from app.services.shopify_client import metafield_nodes

logger = logging.getLogger(__name__)

ADVISOR_METAFIELD_NAMESPACE = "custom"
ADVISOR_METAFIELD_KEY = "ejecutivo_de_cuenta"
METAOBJECT_MARKER = "Metaobject/"

NAME_FIELD = "nombre"
EMAIL_FIELD = "correo"
PHONE_FIELD = "telefono"


class CustomerDataSource(Protocol):
    """The two remote lookups advisor resolution depends on."""

    async def get_customer(self, customer_id: Optional[int]) -> Optional[dict]: ...

    async def get_metaobject(self, metaobject_gid: str) -> Optional[dict]: ...


def find_advisor_metafield(metafields: list[dict]) -> Optional[dict]:
    for metafield in metafields:
        if (
            metafield.get("namespace") == ADVISOR_METAFIELD_NAMESPACE
            and metafield.get("key") == ADVISOR_METAFIELD_KEY
        ):
            return metafield
    return None


def parse_metaobject_id(reference: Optional[str]) -> Optional[int]:
    """
    Return the numeric id at the end of a metaobject gid.

    "gid://shopify/Metaobject/123456789" -> 123456789
    Anything else -> None
    """
    if not reference or METAOBJECT_MARKER not in reference:
        return None
    tail = reference.rsplit("/", 1)[-1].strip()
    if not tail.isdigit():
        return None
    return int(tail)


def split_name(full_name: Optional[str]) -> tuple[str, str]:
    """Split "Ana María López" into ("Ana", "María López")."""
    parts = (full_name or "").split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


def advisor_from_metaobject(metaobject_id: int, fields: list[dict]) -> Optional[Advisor]:
    """Build an Advisor from metaobject fields; None if name or email is missing."""
    by_key = {field.get("key"): field for field in fields or []}
    name_field = by_key.get(NAME_FIELD)
    email_field = by_key.get(EMAIL_FIELD)
    phone_field = by_key.get(PHONE_FIELD)

    if name_field is None or email_field is None or not email_field.get("value"):
        logger.warning(
            "Metaobject %s is missing required fields; available: %s",
            metaobject_id, sorted(k for k in by_key if k),
        )
        return None

    first_name, last_name = split_name(name_field.get("value"))
    return Advisor(
        id=metaobject_id,
        email=email_field["value"],
        first_name=first_name,
        last_name=last_name,
        phone=(phone_field or {}).get("value") or "",
        role=ADVISOR_ROLE,
    )


async def resolve_advisor(customer_id: int, source: CustomerDataSource) -> Optional[Advisor]:
    """
    Resolve the advisor assigned to a customer.

    Steps:
      1. Fetch the customer and find metafield custom.ejecutivo_de_cuenta.
      2. Parse the metaobject id from the metafield value.
      3. Fetch the metaobject and read nombre / correo / telefono.

    Returns None when the customer is the placeholder (id 0), when any lookup
    fails or comes back empty, or when the data is malformed.
    """
    if not customer_id or customer_id == PLACEHOLDER_CUSTOMER_ID:
        logger.warning("No Shopify customer id available; advisor cannot be resolved")
        return None

    logger.info("Looking up advisor for customer %s", customer_id)
    try:
        customer = await source.get_customer(customer_id)
        if not customer:
            logger.warning("Customer %s not found in Shopify", customer_id)
            return None

        metafields = metafield_nodes(customer)
        metafield = find_advisor_metafield(metafields)
        if metafield is None:
            logger.warning(
                "Customer %s has no %s.%s metafield; available: %s",
                customer_id,
                ADVISOR_METAFIELD_NAMESPACE,
                ADVISOR_METAFIELD_KEY,
                [f"{m.get('namespace')}.{m.get('key')}" for m in metafields],
            )
            return None

        reference = metafield.get("value")
        metaobject_id = parse_metaobject_id(reference)
        if metaobject_id is None:
            logger.warning("Invalid metaobject reference: %r", reference)
            return None

        metaobject = await source.get_metaobject(reference)
        if not metaobject:
            logger.warning("Metaobject %s not found", reference)
            return None

        advisor = advisor_from_metaobject(metaobject_id, metaobject.get("fields") or [])
    except ShopifyError as exc:
        logger.error("Advisor lookup for customer %s failed: %s", customer_id, exc)
        return None
    except (AttributeError, KeyError, TypeError) as exc:
        logger.error("Malformed Shopify data for customer %s: %s", customer_id, exc)
        return None

    if advisor:
        logger.info(
            "Advisor found: %s %s <%s>", advisor.first_name, advisor.last_name, advisor.email
        )
    return advisor

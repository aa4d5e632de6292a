"""
Shopify Admin GraphQL client.

Thin async wrapper over httpx that knows the handful of queries this service
needs. Every failure (timeout, transport error, HTTP error status, GraphQL
"errors" array) is raised as ShopifyError so callers have a single exception
to handle.
"""

import logging
from typing import Any, Optional

import httpx

from app.config import Settings
from app.errors import ShopifyError

logger = logging.getLogger(__name__)

CUSTOMER_GID_PREFIX = "gid://shopify/Customer/"

_METAFIELDS_FRAGMENT = """
    metafields(first: 50) {
      edges {
        node {
          id
          namespace
          key
          value
          type
        }
      }
    }
"""

GET_CUSTOMER_QUERY = """
query getCustomer($id: ID!) {
  customer(id: $id) {
    id
    firstName
    lastName
    email
    phone
    %s
  }
}
""" % _METAFIELDS_FRAGMENT

GET_CUSTOMER_METAFIELDS_QUERY = """
query getCustomerMetafields($id: ID!) {
  customer(id: $id) {
    %s
  }
}
""" % _METAFIELDS_FRAGMENT

GET_METAOBJECT_QUERY = """
query getMetaobject($id: ID!) {
  metaobject(id: $id) {
    id
    type
    fields {
      key
      value
      type
    }
  }
}
"""

SHOP_QUERY = """
query {
  shop {
    id
    name
    myshopifyDomain
  }
}
"""


def customer_gid(customer_id: int) -> str:
    return f"{CUSTOMER_GID_PREFIX}{customer_id}"


def metafield_nodes(customer: dict) -> list[dict]:
    """Flatten customer.metafields.edges[].node into a list."""
    edges = ((customer or {}).get("metafields") or {}).get("edges") or []
    return [edge["node"] for edge in edges if edge.get("node")]


class ShopifyClient:
    """
    Async client for the Shopify Admin GraphQL endpoint.

    Pass an httpx.AsyncClient to reuse a connection pool or, in tests, one
    built on httpx.MockTransport.
    """

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        self._settings = settings
        self._client = http_client or httpx.AsyncClient(
            base_url=settings.shopify_base_url,
            headers={
                "X-Shopify-Access-Token": settings.shopify_access_token,
                "Content-Type": "application/json",
            },
            timeout=settings.remote_timeout_seconds,
        )
        logger.info("Shopify client initialized for %s", settings.shopify_shop_domain)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def execute(self, query: str, variables: Optional[dict] = None) -> dict[str, Any]:
        """
        Run a GraphQL query and return its "data" object.

        Raises:
            ShopifyError: on timeout, transport failure, non-2xx status or
                GraphQL errors in the response body.
        """
        payload: dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables

        try:
            response = await self._client.post("/graphql.json", json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.TimeoutException as exc:
            raise ShopifyError(f"Shopify request timed out: {exc}")
        except httpx.HTTPStatusError as exc:
            raise ShopifyError(
                f"Shopify returned HTTP {exc.response.status_code}",
                details=exc.response.text,
            )
        except (httpx.HTTPError, ValueError) as exc:
            raise ShopifyError(f"Shopify request failed: {exc}")

        if body.get("errors"):
            logger.error("GraphQL errors: %s", body["errors"])
            raise ShopifyError("Shopify GraphQL query returned errors", details=body["errors"])

        return body.get("data") or {}

    async def get_customer(self, customer_id: Optional[int]) -> Optional[dict]:
        """Fetch a customer (with up to 50 metafields); None when not found."""
        if not customer_id:
            return None
        data = await self.execute(GET_CUSTOMER_QUERY, {"id": customer_gid(customer_id)})
        return data.get("customer")

    async def get_customer_metafields(self, customer_id: int) -> list[dict]:
        data = await self.execute(
            GET_CUSTOMER_METAFIELDS_QUERY, {"id": customer_gid(customer_id)}
        )
        return metafield_nodes(data.get("customer"))

    async def get_metaobject(self, metaobject_gid: str) -> Optional[dict]:
        """Fetch a metaobject and its field list by gid; None when not found."""
        data = await self.execute(GET_METAOBJECT_QUERY, {"id": metaobject_gid})
        return data.get("metaobject")

    async def test_connection(self) -> bool:
        """Return True if the shop query succeeds."""
        try:
            data = await self.execute(SHOP_QUERY)
        except ShopifyError as exc:
            logger.error("Shopify connection check failed: %s", exc)
            return False
        shop = data.get("shop") or {}
        logger.info("Shopify connection OK: %s", shop.get("name"))
        return bool(shop)

#!/usr/bin/env python3
"""
Dev helper: send a test draft_orders/create webhook to the local service.

Builds a Shopify-shaped draft order payload (optionally with a decoration
attribute and an embedded customer), adds the four X-Shopify-* headers the
endpoint requires, and POST-s it to /api/webhook/shopify.

Usage
-----
# Basic: one line item, no embedded customer (placeholder customer path)
python scripts/send_test_webhook.py

# Embed a real Shopify customer id so advisor lookup can succeed
python scripts/send_test_webhook.py --customer-id 7012345678901

# Add a decoration surcharge to the line item
python scripts/send_test_webhook.py --decoration "$10.00 por unidad"

# Re-send the same draft order id to exercise duplicate handling
python scripts/send_test_webhook.py --order-id 1122334455

# Target a different URL / print the payload only
python scripts/send_test_webhook.py --url http://staging.example.com --dry-run

Environment / .env
------------------
SHOPIFY_SHOP_DOMAIN   Shop subdomain sent in X-Shopify-Shop-Domain
                      (default: api-gnp).
PORT                  Port of the local service (default: 3000).

The script reads these from a .env file in the project root if present,
without importing the application.
"""

import argparse
import json
import os
import random
import sys
import textwrap
import uuid
from datetime import datetime, timezone
from pathlib import Path

import httpx


# ---------------------------------------------------------------------------
# .env loader
# ---------------------------------------------------------------------------

def _load_dotenv(path: Path) -> None:
    """
    Parse a .env file and set variables in os.environ.

    Only sets variables that are not already in the environment, the same
    behavior as python-dotenv's load_dotenv(override=False).
    """
    if not path.exists():
        return
    with path.open() as fh:
        for line in fh:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, _, value = line.partition("=")
            os.environ.setdefault(key.strip(), value.strip().strip('"').strip("'"))


# ---------------------------------------------------------------------------
# Payload builders
# ---------------------------------------------------------------------------

def _build_line_item(title: str, quantity: int, price: str, decoration: str | None) -> dict:
    properties = []
    if decoration:
        properties.append({"name": "Decorado", "value": decoration})
    return {
        "id": random.randint(10**12, 10**13),
        "title": title,
        "quantity": quantity,
        "price": price,
        "sku": "TEST-SKU",
        "properties": properties,
    }


def _build_draft_order(
    order_id: int,
    email: str,
    line_item: dict,
    customer_id: int | None,
    currency: str,
) -> dict:
    """
    Build a draft order webhook body.

    Only the fields the service reads are included:
      id, name, email, currency, created_at, updated_at, line_items[], customer?
    """
    now = datetime.now(timezone.utc).isoformat()
    payload = {
        "id": order_id,
        "name": f"#D{order_id % 10000}",
        "email": email,
        "currency": currency,
        "created_at": now,
        "updated_at": now,
        "line_items": [line_item],
    }
    if customer_id:
        payload["customer"] = {
            "id": customer_id,
            "email": email,
            "first_name": "Cliente",
            "last_name": "Prueba",
            "phone": None,
        }
    return payload


def _build_headers(shop_domain: str) -> dict:
    return {
        "X-Shopify-Shop-Domain": f"{shop_domain}.myshopify.com",
        "X-Shopify-Hmac-Sha256": "test-signature",
        "X-Shopify-Topic": "draft_orders/create",
        "X-Shopify-Webhook-Id": str(uuid.uuid4()),
        "Content-Type": "application/json",
    }


# ---------------------------------------------------------------------------
# Pretty printer
# ---------------------------------------------------------------------------

def _print_response(response: httpx.Response) -> None:
    status = response.status_code
    symbol = "OK" if status == 200 else "FAIL"
    print(f"\n[{symbol}] HTTP {status}")
    try:
        print(json.dumps(response.json(), indent=2, ensure_ascii=False))
    except ValueError:
        print(response.text)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main() -> int:
    project_root = Path(__file__).resolve().parent.parent
    _load_dotenv(project_root / ".env")
    _load_dotenv(project_root / "backend" / ".env")

    parser = argparse.ArgumentParser(
        prog="send_test_webhook.py",
        description=textwrap.dedent("""\
            Send a test draft_orders/create webhook to the quote notification service.
        """),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--url",
        default=f"http://localhost:{os.getenv('PORT', '3000')}",
        help="Service base URL (default: http://localhost:$PORT)",
    )
    parser.add_argument("--order-id", type=int, default=None, help="Draft order id (random if omitted)")
    parser.add_argument("--email", default="cliente@example.com", help="Order email")
    parser.add_argument("--customer-id", type=int, default=None, help="Embed a customer with this Shopify id")
    parser.add_argument("--title", default="Playera Polo", help="Line item title")
    parser.add_argument("--quantity", type=int, default=3, help="Line item quantity")
    parser.add_argument("--price", default="100.00", help="Line item unit price")
    parser.add_argument("--decoration", default=None, help='Decorado attribute value, e.g. "$10.00 por unidad"')
    parser.add_argument("--currency", default="MXN", help="Currency code (default: MXN)")
    parser.add_argument("--dry-run", action="store_true", help="Print the request without sending it.")

    args = parser.parse_args()

    order_id = args.order_id or random.randint(10**9, 10**10)
    payload = _build_draft_order(
        order_id=order_id,
        email=args.email,
        line_item=_build_line_item(args.title, args.quantity, args.price, args.decoration),
        customer_id=args.customer_id,
        currency=args.currency,
    )
    headers = _build_headers(os.getenv("SHOPIFY_SHOP_DOMAIN", "api-gnp"))
    endpoint = f"{args.url.rstrip('/')}/api/webhook/shopify"

    print(f"Endpoint   : {endpoint}")
    print(f"Order id   : {order_id}")
    print(f"Webhook id : {headers['X-Shopify-Webhook-Id']}")
    print(f"Customer   : {args.customer_id or '(placeholder from email)'}")

    if args.dry_run:
        print("\n[DRY RUN] Payload:")
        print(json.dumps(payload, indent=2, ensure_ascii=False))
        return 0

    try:
        response = httpx.post(endpoint, json=payload, headers=headers, timeout=30)
    except httpx.ConnectError:
        print(
            f"\nERROR: Could not connect to {endpoint}\n"
            "Is the service running? Start it with:\n"
            "  uvicorn app.main:app --app-dir backend --port 3000 --reload",
            file=sys.stderr,
        )
        return 1
    except httpx.HTTPError as exc:
        print(f"\nERROR: {exc}", file=sys.stderr)
        return 1

    _print_response(response)
    return 0 if response.status_code == 200 else 1


if __name__ == "__main__":
    sys.exit(main())

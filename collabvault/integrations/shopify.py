"""Inbound Shopify order webhooks."""

from __future__ import annotations

import base64
import hashlib
import hmac
from typing import Any
from urllib.parse import parse_qs, urlsplit


def verify_webhook(raw_body: bytes, signature: str | None, secret: str) -> bool:
    """Check ``X-Shopify-Hmac-Sha256``; Shopify sends base64, some proxies re-encode as hex."""
    if not signature:
        return False
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    signature = signature.strip()
    return hmac.compare_digest(base64.b64encode(digest).decode("ascii"), signature) or hmac.compare_digest(
        digest.hex(), signature.lower()
    )


def discount_codes(order: dict[str, Any]) -> list[str]:
    codes = []
    for entry in order.get("discount_codes") or []:
        code = entry.get("code") if isinstance(entry, dict) else entry
        if code:
            codes.append(str(code))
    return codes


def landing_site_ref(order: dict[str, Any]) -> str | None:
    landing_site = order.get("landing_site") or ""
    if not landing_site:
        return None
    values = parse_qs(urlsplit(landing_site).query).get("ref")
    return values[0] if values else None


def shipping_country(order: dict[str, Any]) -> str | None:
    address = order.get("shipping_address") or {}
    country = address.get("country_code") if isinstance(address, dict) else None
    return country.upper() if country else None


def order_items(order: dict[str, Any]) -> list[dict[str, Any]]:
    return [
        {
            "item_id": str(item.get("product_id") or item.get("sku") or ""),
            "item_name": item.get("title") or item.get("name"),
            "quantity": item.get("quantity") or 1,
            "price": item.get("price") or 0,
        }
        for item in order.get("line_items") or []
        if isinstance(item, dict)
    ]

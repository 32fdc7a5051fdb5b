"""AliExpress affiliate product query adapter.

Marketplace listings have no manufacturer part number, datasheet or stock
figure, so those fields stay empty and each listing forms its own group.
"""

from __future__ import annotations

import logging
from typing import Any

from .adapter import ProviderAdapter
from .errors import ErrorKind
from .models import PartRecord

logger = logging.getLogger(__name__)

_THROTTLE_CODES = {429, 7}  # 7 is the gateway's "call limited" code


def _parse_amount(value: Any) -> float | None:
    if value in (None, ""):
        return None
    try:
        return float(str(value).replace(",", ""))
    except ValueError:
        return None


def _normalize_product(product: dict[str, Any], currency: str = "USD") -> PartRecord:
    """Normalize an AliExpress affiliate product into a PartRecord."""
    price = _parse_amount(product.get("target_sale_price"))
    if price is None:
        price = _parse_amount(product.get("target_original_price"))
    product_id = product.get("product_id")
    return PartRecord(
        vendor_id="aliexpress",
        vendor_part_number=str(product_id) if product_id is not None else "",
        manufacturer_part_number="",
        description=product.get("product_title", "") or "",
        datasheet_url=None,
        unit_price=price,
        currency=product.get("target_sale_price_currency") or currency,
        quantity_available=None,
        package_type=None,
        manufacturer=product.get("shop_name", "") or "",
        product_url=product.get("promotion_link") or product.get("product_detail_url") or None,
    )


class AliExpressAdapter(ProviderAdapter):
    provider_id = "aliexpress"
    display_name = "AliExpress"

    def _auth_params(self) -> dict[str, str]:
        return {"app_key": self.config.api_key}

    def _normalize(self, product: dict[str, Any]) -> PartRecord:
        return _normalize_product(product, self.config.currency)

    async def _search_keyword(self, keyword, user_id, limit, deadline):
        params = {
            "method": "aliexpress.affiliate.product.query",
            "keywords": keyword,
            "page_no": 1,
            "page_size": min(limit, 50),
            "target_currency": self.config.currency,
            "sort": "LAST_VOLUME_DESC",
        }
        data = await self._request("GET", f"{self.config.api_url}/product/query", user_id, deadline, params=params)
        envelope = data.get("resp_result") if isinstance(data, dict) else None
        if not isinstance(envelope, dict):
            raise self._error(ErrorKind.MALFORMED, "AliExpress response has no resp_result")

        code = envelope.get("resp_code")
        if code != 200:
            kind = ErrorKind.RATE_LIMITED if code in _THROTTLE_CODES else ErrorKind.UNAVAILABLE
            raise self._error(kind, f"AliExpress API error [{code}]: {envelope.get('resp_msg', 'unknown')}")

        result = envelope.get("result") or {}
        products = None
        if isinstance(result, dict):
            products = result.get("products") or {}
        if not isinstance(products, dict):
            raise self._error(ErrorKind.MALFORMED, "AliExpress result has no products object")
        products = products.get("product") or []
        records = self._normalize_all(products, self._normalize)[:limit]
        logger.debug(f"AliExpress: {keyword!r} -> {len(records)} results")
        return records

    async def _get_part(self, part_number, user_id, limit, deadline):
        # No part-number endpoint: listing titles are searched for the number instead
        return await self._search_keyword(part_number, user_id, limit, deadline)

    async def get_datasheets(self, part_number: str, user_id: str, deadline: float | None = None) -> list[str]:
        return []

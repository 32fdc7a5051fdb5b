"""Octopart parts search adapter (REST, ``apikey`` query parameter).

Octopart is itself an aggregator: one item carries offers from many sellers.
Each item becomes a single record holding the cheapest single-unit offer in
the configured currency and the largest stock figure among its offers.
"""

from __future__ import annotations

import logging
from typing import Any

from .adapter import ProviderAdapter
from .errors import ErrorKind
from .models import PartRecord

logger = logging.getLogger(__name__)


def _first_break_price(prices: dict[str, Any], currency: str) -> float | None:
    """Price of the lowest quantity break in ``currency``; breaks are [qty, "price"] pairs."""
    breaks = prices.get(currency) or []
    best_qty = None
    best_price = None
    for entry in breaks:
        try:
            qty, price = int(entry[0]), float(entry[1])
        except (IndexError, TypeError, ValueError):
            continue
        if best_qty is None or qty < best_qty:
            best_qty, best_price = qty, price
    return best_price


def _normalize_item(item: dict[str, Any], currency: str = "USD", snippet: str = "") -> PartRecord:
    """Normalize an Octopart part item into a PartRecord."""
    offers = item.get("offers") or []

    unit_price = None
    best_sku = ""
    stock = None
    for offer in offers:
        price = _first_break_price(offer.get("prices") or {}, currency)
        if price is not None and (unit_price is None or price < unit_price):
            unit_price = price
            best_sku = offer.get("sku", "") or ""
        in_stock = offer.get("in_stock_quantity")
        if isinstance(in_stock, int) and in_stock >= 0 and (stock is None or in_stock > stock):
            stock = in_stock

    datasheets = item.get("datasheets") or []
    datasheet_url = next((d.get("url") for d in datasheets if d.get("url")), None)

    specs = item.get("specs") or {}
    package = (specs.get("case_package") or {}).get("display_value")

    return PartRecord(
        vendor_id="octopart",
        vendor_part_number=best_sku or item.get("uid", "") or "",
        manufacturer_part_number=item.get("mpn", "") or "",
        description=item.get("short_description") or snippet or "",
        datasheet_url=datasheet_url,
        unit_price=unit_price,
        currency=currency,
        quantity_available=stock,
        package_type=package or None,
        manufacturer=(item.get("manufacturer") or {}).get("name", "") or "",
        product_url=item.get("octopart_url") or None,
    )


class OctopartAdapter(ProviderAdapter):
    provider_id = "octopart"
    display_name = "Octopart"

    def _auth_params(self) -> dict[str, str]:
        return {"apikey": self.config.api_key}

    def _normalize_result(self, result: dict[str, Any]) -> PartRecord:
        return _normalize_item(result["item"], self.config.currency, result.get("snippet") or "")

    async def _query(self, q: str, user_id: str, limit: int, deadline: float | None) -> list[PartRecord]:
        params = {
            "q": q,
            "start": 0,
            "limit": min(limit, 100),
            "include[]": ["datasheets", "short_description", "specs"],
        }
        data = await self._request("GET", f"{self.config.api_url}/parts/search", user_id, deadline, params=params)
        if not isinstance(data, dict):
            raise self._error(ErrorKind.MALFORMED, "Octopart response is not an object")
        return self._normalize_all(data.get("results") or [], self._normalize_result)

    async def _search_keyword(self, keyword, user_id, limit, deadline):
        records = await self._query(keyword, user_id, limit, deadline)
        logger.debug(f"Octopart: {keyword!r} -> {len(records)} results")
        return records[:limit]

    async def _get_part(self, part_number, user_id, limit, deadline):
        records = await self._query(part_number, user_id, limit, deadline)
        wanted = part_number.strip().upper()
        return [r for r in records if r.manufacturer_part_number.upper() == wanted][:limit]

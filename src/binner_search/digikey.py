"""DigiKey Product Information API v4 adapter.

DigiKey searches are made on behalf of a user: each request carries that
user's OAuth2 bearer token, obtained through the credential coordinator.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

from .adapter import ProviderAdapter
from .config import (
    DIGIKEY_LOCALE_SITE,
    DIGIKEY_LOCALE_LANGUAGE,
    DIGIKEY_LOCALE_CURRENCY,
)
from .errors import ErrorKind
from .models import PartRecord

logger = logging.getLogger(__name__)

# Parameter names that describe the physical package, most specific first
_PACKAGE_PARAMETERS = ("Supplier Device Package", "Package / Case")


def _normalize_product(product: dict[str, Any], currency: str = DIGIKEY_LOCALE_CURRENCY) -> PartRecord:
    """Normalize a DigiKey Product object into a PartRecord."""
    desc = product.get("Description") or {}
    manufacturer = product.get("Manufacturer") or {}
    variations = product.get("ProductVariations") or []
    first_var = variations[0] if variations else {}

    unit_price = product.get("UnitPrice")
    if not unit_price:
        pricing = first_var.get("StandardPricing") or []
        unit_price = pricing[0].get("UnitPrice") if pricing else None

    parameters = {
        p.get("ParameterText"): p.get("ValueText")
        for p in product.get("Parameters") or []
        if p.get("ParameterText") and p.get("ValueText")
    }
    package_type = next((parameters[name] for name in _PACKAGE_PARAMETERS if name in parameters), None)
    if package_type is None:
        package_type = (first_var.get("PackageType") or {}).get("Name")

    quantity = product.get("QuantityAvailable")

    return PartRecord(
        vendor_id="digikey",
        vendor_part_number=first_var.get("DigiKeyProductNumber", "") or "",
        manufacturer_part_number=product.get("ManufacturerProductNumber", "") or "",
        description=desc.get("ProductDescription") or desc.get("DetailedDescription") or "",
        datasheet_url=product.get("DatasheetUrl") or None,
        unit_price=float(unit_price) if unit_price else None,
        currency=currency,
        quantity_available=int(quantity) if quantity is not None else None,
        package_type=package_type,
        manufacturer=manufacturer.get("Name", "") or "",
        product_url=product.get("ProductUrl") or None,
    )


class DigiKeyAdapter(ProviderAdapter):
    """DigiKey adapter using per-user OAuth2 tokens."""

    provider_id = "digikey"
    display_name = "DigiKey"

    def _auth_headers(self, token: str | None) -> dict[str, str]:
        """Build required headers for DigiKey API requests."""
        return {
            "Authorization": f"Bearer {token}",
            "X-DIGIKEY-Client-Id": self.config.client_id,
            "X-DIGIKEY-Locale-Site": DIGIKEY_LOCALE_SITE,
            "X-DIGIKEY-Locale-Language": DIGIKEY_LOCALE_LANGUAGE,
            "X-DIGIKEY-Locale-Currency": self.config.currency,
            "Content-Type": "application/json",
        }

    def _normalize(self, product: dict[str, Any]) -> PartRecord:
        return _normalize_product(product, self.config.currency)

    async def _search_keyword(self, keyword, user_id, limit, deadline):
        body = {
            "Keywords": keyword,
            "Limit": min(limit, 50),  # DigiKey caps keyword pages at 50
            "Offset": 0,
        }
        data = await self._request("POST", f"{self.config.api_url}/search/keyword", user_id, deadline, json=body)
        if not isinstance(data, dict):
            raise self._error(ErrorKind.MALFORMED, "DigiKey search response is not an object")
        records = self._normalize_all(data.get("ExactMatches") or [], self._normalize)
        seen = {r.manufacturer_part_number for r in records if r.manufacturer_part_number}
        # Exact matches first; empty MPNs are never treated as duplicates
        for record in self._normalize_all(data.get("Products") or [], self._normalize):
            if record.manufacturer_part_number and record.manufacturer_part_number in seen:
                continue
            records.append(record)
        records = records[:limit]
        logger.debug(f"DigiKey: {keyword!r} -> {len(records)} results")
        return records

    async def _get_part(self, part_number, user_id, limit, deadline):
        # URL-encode to prevent path traversal or special chars altering the URL
        safe_pn = quote(part_number, safe="")
        data = await self._request(
            "GET", f"{self.config.api_url}/search/{safe_pn}/productdetails", user_id, deadline, allow_not_found=True,
        )
        if data is None:
            return []
        if not isinstance(data, dict):
            raise self._error(ErrorKind.MALFORMED, "DigiKey product details response is not an object")
        product = data.get("Product")
        if not product:
            return []
        return self._normalize_all([product], self._normalize)

"""Mouser Search API v2 adapter."""

from __future__ import annotations

import logging
import re
from typing import Any

from .adapter import ProviderAdapter
from .errors import ErrorKind, MouserAPIError
from .models import PartRecord

logger = logging.getLogger(__name__)

# Pre-compiled patterns for parsing Mouser fields
_STOCK_RE = re.compile(r"(\d[\d,]*)\s+In Stock", re.IGNORECASE)
_PRICE_RE = re.compile(r"[^\d.]")

# Mouser error codes that mean the key is bad or throttled
_AUTH_CODES = {"InvalidKey", "InvalidIdentifier", "Unauthorized", "Forbidden"}
_THROTTLE_CODES = {"TooManyRequests", "RequestLimitExceeded", "MaxCallsExceeded"}


def _parse_stock(availability: str | None) -> int | None:
    """Parse stock from Mouser's 'Availability' field like '16563 In Stock'.

    None when the field is missing; 0 when it names no in-stock quantity.
    """
    if not availability:
        return None
    match = _STOCK_RE.search(availability)
    if match:
        return int(match.group(1).replace(",", ""))
    return 0


def _parse_price(price_str: str | None) -> float | None:
    """Parse price from Mouser's format like '$0.414' or '0,350 €'."""
    if not price_str:
        return None
    if "," in price_str and "." not in price_str:
        # Decimal comma locales ("0,350 €")
        price_str = price_str.replace(",", ".")
    cleaned = _PRICE_RE.sub("", price_str)
    try:
        return float(cleaned)
    except (ValueError, TypeError):
        return None


def _normalize_part(part: dict[str, Any]) -> PartRecord:
    """Normalize a Mouser Part object into a PartRecord."""
    price_breaks = part.get("PriceBreaks") or []
    unit_price = None
    currency = "USD"
    for pb in price_breaks:
        price = _parse_price(pb.get("Price"))
        if price is not None:
            unit_price = price
            currency = pb.get("Currency") or currency
            break

    stock = _parse_stock(part.get("Availability"))
    # AvailabilityInStock is the more reliable numeric value when present
    avail_in_stock = part.get("AvailabilityInStock")
    if avail_in_stock:
        try:
            stock = int(str(avail_in_stock).replace(",", ""))
        except (ValueError, TypeError):
            pass

    package_type = None
    for attr in part.get("ProductAttributes") or []:
        if attr.get("AttributeName") == "Package / Case" and attr.get("AttributeValue"):
            package_type = attr["AttributeValue"]
            break

    return PartRecord(
        vendor_id="mouser",
        vendor_part_number=part.get("MouserPartNumber", "") or "",
        manufacturer_part_number=part.get("ManufacturerPartNumber", "") or "",
        description=part.get("Description", "") or "",
        datasheet_url=part.get("DataSheetUrl") or None,
        unit_price=unit_price,
        currency=currency,
        quantity_available=stock,
        package_type=package_type,
        manufacturer=part.get("Manufacturer", "") or "",
        product_url=part.get("ProductDetailUrl") or None,
    )


class MouserAdapter(ProviderAdapter):
    """Mouser adapter. The API key travels as the ``apiKey`` query parameter."""

    provider_id = "mouser"
    display_name = "Mouser"

    def _auth_params(self) -> dict[str, str]:
        return {"apiKey": self.config.api_key}

    async def _post(self, path: str, body: dict[str, Any], user_id: str, deadline: float | None) -> list[dict]:
        data = await self._request("POST", f"{self.config.api_url}{path}", user_id, deadline, json=body)
        if not isinstance(data, dict):
            raise self._error(ErrorKind.MALFORMED, "Mouser response is not an object")

        errors = data.get("Errors") or []
        if not isinstance(errors, list):
            raise self._error(ErrorKind.MALFORMED, "Mouser Errors field is not a list")
        if errors:
            err = errors[0]
            if not isinstance(err, dict):
                raise self._error(ErrorKind.MALFORMED, "Mouser error entry is not an object")
            code = err.get("Code", "") or ""
            msg = err.get("Message", "Unknown Mouser API error")
            if code in _AUTH_CODES:
                kind = ErrorKind.AUTH_REQUIRED
            elif code in _THROTTLE_CODES:
                kind = ErrorKind.RATE_LIMITED
            else:
                kind = ErrorKind.UNAVAILABLE
            raise MouserAPIError(kind, code, msg)

        search_results = data.get("SearchResults") or {}
        if not isinstance(search_results, dict):
            raise self._error(ErrorKind.MALFORMED, "Mouser SearchResults is not an object")
        return search_results.get("Parts") or []

    async def _search_keyword(self, keyword, user_id, limit, deadline):
        body = {
            "SearchByKeywordRequest": {
                "keyword": keyword,
                "records": min(limit, 50),  # Mouser caps records at 50
                "startingRecord": 0,
                "searchOptions": "None",
                "searchWithYourSignUpLanguage": "false",
            }
        }
        parts = await self._post("/search/keyword", body, user_id, deadline)
        records = self._normalize_all(parts, _normalize_part)[:limit]
        logger.debug(f"Mouser: {keyword!r} -> {len(records)} results")
        return records

    async def _get_part(self, part_number, user_id, limit, deadline):
        body = {
            "SearchByPartRequest": {
                "mouserPartNumber": part_number,
                "partSearchOptions": "None",
            }
        }
        parts = await self._post("/search/partnumber", body, user_id, deadline)
        return self._normalize_all(parts, _normalize_part)[:limit]

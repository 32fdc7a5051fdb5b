"""Tests for the DigiKey, Mouser, Octopart and AliExpress adapters."""

import asyncio
import time
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from binner_search.aliexpress import AliExpressAdapter, _normalize_product as ali_normalize_product
from binner_search.cache import RequestQuota, TTLCache
from binner_search.coordinator import CredentialRefreshCoordinator
from binner_search.credentials import MemoryCredentialStore
from binner_search.digikey import DigiKeyAdapter, _normalize_product
from binner_search.errors import ErrorKind, MouserAPIError, ProviderError
from binner_search.models import Credential, PartSearchQuery, ProviderConfig
from binner_search.mouser import MouserAdapter, _normalize_part, _parse_price, _parse_stock
from binner_search.octopart import OctopartAdapter, _normalize_item


def _response(status: int = 200, payload=None, headers=None):
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = payload if payload is not None else {}
    resp.headers = headers or {}
    return resp


def _mouser_part(**overrides):
    part = {
        "MouserPartNumber": "595-LM358P",
        "ManufacturerPartNumber": "LM358P",
        "Manufacturer": "Texas Instruments",
        "Description": "Operational Amplifiers - Op Amps Dual Op Amp",
        "Availability": "100 In Stock",
        "PriceBreaks": [{"Quantity": 1, "Price": "$0.41", "Currency": "USD"}],
        "ProductAttributes": [],
    }
    part.update(overrides)
    return part


# --- TTLCache / RequestQuota tests ---

class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestTTLCache:
    def test_get_set(self):
        cache = TTLCache(ttl=60)
        cache.set(("keyword", "lm358", 20), "value")
        assert cache.get(("keyword", "lm358", 20)) == "value"

    def test_expired_entry(self):
        clock = FakeClock()
        cache = TTLCache(ttl=10, clock=clock)
        cache.set("key", "value")
        clock.now += 11
        assert cache.get("key") is None
        assert len(cache) == 0

    def test_max_size_evicts_oldest(self):
        clock = FakeClock()
        cache = TTLCache(ttl=3600, max_size=2, clock=clock)
        for i, key in enumerate("abc"):
            clock.now += 1
            cache.set(key, i)
        assert cache.get("a") is None
        assert cache.get("c") == 2
        assert len(cache) == 2

    def test_zero_ttl_disables_caching(self):
        cache = TTLCache(ttl=0)
        cache.set("key", "value")
        assert cache.get("key") is None

    def test_pop(self):
        cache = TTLCache(ttl=60)
        cache.set("state", ("user-1", "digikey"))
        assert cache.pop("state") == ("user-1", "digikey")
        assert cache.pop("state") is None


class TestRequestQuota:
    def test_limit_within_window(self):
        clock = FakeClock()
        quota = RequestQuota(2, clock=clock)
        assert quota.try_acquire()
        assert quota.try_acquire()
        assert not quota.try_acquire()
        assert quota.remaining == 0

    def test_window_slides(self):
        clock = FakeClock()
        quota = RequestQuota(1, clock=clock)
        assert quota.try_acquire()
        clock.now += 30
        assert not quota.try_acquire()
        assert quota.retry_after() == pytest.approx(30)
        clock.now += 31
        assert quota.try_acquire()

    def test_zero_limit_is_unlimited(self):
        quota = RequestQuota(0)
        assert all(quota.try_acquire() for _ in range(100))


# --- Normalization tests ---

class TestMouserParsing:
    def test_stock(self):
        assert _parse_stock("1,234,567 In Stock") == 1234567
        assert _parse_stock("Factory Lead Time: 14 Weeks") == 0
        assert _parse_stock(None) is None

    def test_price(self):
        assert _parse_price("$0.414") == 0.414
        assert _parse_price("$1,234.50") == 1234.50
        assert _parse_price("0,350 €") == 0.350
        assert _parse_price("") is None
        assert _parse_price("N/A") is None


class TestMouserNormalizePart:
    def test_full_part(self):
        raw = _mouser_part(
            AvailabilityInStock="16563",
            DataSheetUrl="https://example.com/ds.pdf",
            ProductDetailUrl="https://www.mouser.com/ProductDetail/595-LM358P",
            PriceBreaks=[
                {"Quantity": 1, "Price": "$0.41", "Currency": "USD"},
                {"Quantity": 10, "Price": "$0.29", "Currency": "USD"},
            ],
            ProductAttributes=[
                {"AttributeName": "Packaging", "AttributeValue": "Tube"},
                {"AttributeName": "Package / Case", "AttributeValue": "PDIP-8"},
            ],
        )
        record = _normalize_part(raw)
        assert record.vendor_id == "mouser"
        assert record.vendor_part_number == "595-LM358P"
        assert record.manufacturer_part_number == "LM358P"
        assert record.quantity_available == 16563
        assert record.unit_price == 0.41
        assert record.currency == "USD"
        assert record.package_type == "PDIP-8"
        assert record.datasheet_url == "https://example.com/ds.pdf"

    def test_missing_fields(self):
        """Missing optional fields are not an error."""
        record = _normalize_part({})
        assert record.vendor_part_number == ""
        assert record.datasheet_url is None
        assert record.unit_price is None
        assert record.package_type is None
        assert record.quantity_available is None


class TestDigiKeyNormalizeProduct:
    def test_full_product(self):
        raw = {
            "Description": {"ProductDescription": "IC OPAMP GP 2 CIRCUIT 8DIP"},
            "Manufacturer": {"Name": "Texas Instruments"},
            "ManufacturerProductNumber": "LM358P",
            "UnitPrice": 0.29,
            "ProductUrl": "https://www.digikey.com/en/products/detail/LM358P",
            "DatasheetUrl": "https://www.ti.com/lit/ds/symlink/lm358.pdf",
            "QuantityAvailable": 15234,
            "ProductVariations": [{
                "DigiKeyProductNumber": "296-1395-5-ND",
                "StandardPricing": [{"BreakQuantity": 1, "UnitPrice": 0.41}],
            }],
            "Parameters": [
                {"ParameterText": "Package / Case", "ValueText": "8-DIP (0.300\", 7.62mm)"},
                {"ParameterText": "Supplier Device Package", "ValueText": "8-PDIP"},
            ],
        }
        record = _normalize_product(raw, "USD")
        assert record.vendor_id == "digikey"
        assert record.vendor_part_number == "296-1395-5-ND"
        assert record.unit_price == 0.29
        assert record.quantity_available == 15234
        assert record.package_type == "8-PDIP"
        assert record.manufacturer == "Texas Instruments"

    def test_price_falls_back_to_first_break(self):
        raw = {
            "ManufacturerProductNumber": "LM358P",
            "ProductVariations": [{"StandardPricing": [{"BreakQuantity": 1, "UnitPrice": 0.41}]}],
        }
        assert _normalize_product(raw).unit_price == 0.41

    def test_missing_fields(self):
        record = _normalize_product({})
        assert record.manufacturer_part_number == ""
        assert record.unit_price is None
        assert record.quantity_available is None
        assert record.datasheet_url is None


class TestOctopartNormalizeItem:
    def test_cheapest_offer_and_max_stock(self):
        item = {
            "uid": "abc123",
            "mpn": "LM358P",
            "manufacturer": {"name": "Texas Instruments"},
            "short_description": "Dual op amp",
            "datasheets": [{"url": None}, {"url": "https://octopart.test/ds.pdf"}],
            "specs": {"case_package": {"display_value": "DIP-8"}},
            "offers": [
                {"sku": "A-1", "in_stock_quantity": 500, "prices": {"USD": [[10, "0.30"], [1, "0.45"]]}},
                {"sku": "B-1", "in_stock_quantity": 9000, "prices": {"USD": [[1, "0.39"]], "EUR": [[1, "0.20"]]}},
                {"sku": "C-1", "in_stock_quantity": -1, "prices": {}},
            ],
        }
        record = _normalize_item(item, "USD")
        assert record.unit_price == 0.39
        assert record.vendor_part_number == "B-1"
        assert record.quantity_available == 9000
        assert record.datasheet_url == "https://octopart.test/ds.pdf"
        assert record.package_type == "DIP-8"

    def test_no_offers(self):
        record = _normalize_item({"uid": "abc123", "mpn": "X1"}, "USD", snippet="From snippet")
        assert record.vendor_part_number == "abc123"
        assert record.unit_price is None
        assert record.description == "From snippet"


class TestAliExpressNormalizeProduct:
    def test_listing(self):
        record = ali_normalize_product({
            "product_id": 1005001234,
            "product_title": "100PCS LM358P DIP-8 Dual Op Amp",
            "target_sale_price": "1.23",
            "target_sale_price_currency": "USD",
            "promotion_link": "https://s.click.aliexpress.com/e/abc",
        })
        assert record.vendor_part_number == "1005001234"
        assert record.manufacturer_part_number == ""
        assert record.unit_price == 1.23
        assert record.quantity_available is None
        assert record.datasheet_url is None


# --- Adapter tests ---

def _config(provider_id: str, **overrides) -> ProviderConfig:
    values = {
        "provider_id": provider_id,
        "api_url": f"https://api.{provider_id}.test",
        "api_key": "test-key",
        "rate_limit_per_minute": 100,
        "timeout": 5.0,
    }
    values.update(overrides)
    return ProviderConfig(**values)


class TestMouserAdapter:
    @pytest.fixture
    def adapter(self):
        a = MouserAdapter(_config("mouser"))
        a._get_http()  # Eagerly init for patching in tests
        return a

    @pytest.mark.asyncio
    async def test_search_keyword(self, adapter):
        resp = _response(payload={"Errors": [], "SearchResults": {"Parts": [_mouser_part()]}})
        query = PartSearchQuery(user_id="u1", keyword="LM358", limit=10)

        with patch.object(adapter._http, "request", new_callable=AsyncMock, return_value=resp) as mock_req:
            records = await adapter.search(query)

        assert [r.manufacturer_part_number for r in records] == ["LM358P"]
        method, url = mock_req.call_args.args
        assert method == "POST"
        assert url.endswith("/search/keyword")
        assert mock_req.call_args.kwargs["params"]["apiKey"] == "test-key"
        body = mock_req.call_args.kwargs["json"]["SearchByKeywordRequest"]
        assert body["keyword"] == "LM358"
        assert body["records"] == 10

    @pytest.mark.asyncio
    async def test_part_number_uses_partnumber_endpoint(self, adapter):
        resp = _response(payload={"Errors": [], "SearchResults": {"Parts": []}})
        query = PartSearchQuery(user_id="u1", part_number="595-LM358P")

        with patch.object(adapter._http, "request", new_callable=AsyncMock, return_value=resp) as mock_req:
            assert await adapter.search(query) == []

        assert mock_req.call_args.args[1].endswith("/search/partnumber")
        assert mock_req.call_args.kwargs["json"]["SearchByPartRequest"]["mouserPartNumber"] == "595-LM358P"

    @pytest.mark.asyncio
    async def test_api_error_invalid_key(self, adapter):
        resp = _response(payload={"Errors": [{"Code": "InvalidKey", "Message": "Invalid API Key"}]})

        with patch.object(adapter._http, "request", new_callable=AsyncMock, return_value=resp):
            with pytest.raises(MouserAPIError) as exc_info:
                await adapter.search_keyword("test", "u1")
        assert exc_info.value.code == "InvalidKey"
        assert exc_info.value.kind is ErrorKind.AUTH_REQUIRED

    @pytest.mark.asyncio
    async def test_http_429_is_rate_limited(self, adapter):
        resp = _response(status=429, headers={"Retry-After": "30"})

        with patch.object(adapter._http, "request", new_callable=AsyncMock, return_value=resp):
            with pytest.raises(ProviderError) as exc_info:
                await adapter.search_keyword("test", "u1")
        assert exc_info.value.kind is ErrorKind.RATE_LIMITED
        assert exc_info.value.retry_after == 30.0

    @pytest.mark.asyncio
    async def test_unparseable_body_is_malformed(self, adapter):
        resp = _response()
        resp.json.side_effect = ValueError("Expecting value")

        with patch.object(adapter._http, "request", new_callable=AsyncMock, return_value=resp):
            with pytest.raises(ProviderError) as exc_info:
                await adapter.search_keyword("test", "u1")
        assert exc_info.value.kind is ErrorKind.MALFORMED

    @pytest.mark.asyncio
    async def test_network_error_does_not_leak_key(self, adapter):
        error = httpx.ConnectError("failed: https://api.mouser.test/search/keyword?apiKey=test-key")

        with patch.object(adapter._http, "request", new_callable=AsyncMock, side_effect=error):
            with pytest.raises(ProviderError) as exc_info:
                await adapter.search_keyword("test", "u1")
        assert exc_info.value.kind is ErrorKind.UNAVAILABLE
        assert "test-key" not in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_http_timeout(self, adapter):
        with patch.object(adapter._http, "request", new_callable=AsyncMock, side_effect=httpx.ReadTimeout("slow")):
            with pytest.raises(ProviderError) as exc_info:
                await adapter.search_keyword("test", "u1")
        assert exc_info.value.kind is ErrorKind.TIMEOUT

    @pytest.mark.asyncio
    async def test_deadline_caps_timeout(self, adapter):
        resp = _response(payload={"Errors": [], "SearchResults": {"Parts": []}})
        deadline = asyncio.get_running_loop().time() + 1.0

        with patch.object(adapter._http, "request", new_callable=AsyncMock, return_value=resp) as mock_req:
            await adapter.search_keyword("test", "u1", deadline=deadline)
        assert mock_req.call_args.kwargs["timeout"] <= 1.0

    @pytest.mark.asyncio
    async def test_expired_deadline_skips_request(self, adapter):
        deadline = asyncio.get_running_loop().time() - 1.0

        with patch.object(adapter._http, "request", new_callable=AsyncMock) as mock_req:
            with pytest.raises(ProviderError) as exc_info:
                await adapter.search_keyword("test", "u1", deadline=deadline)
        assert exc_info.value.kind is ErrorKind.TIMEOUT
        mock_req.assert_not_called()

    @pytest.mark.asyncio
    async def test_cache_hit(self, adapter):
        resp = _response(payload={"Errors": [], "SearchResults": {"Parts": [_mouser_part()]}})

        with patch.object(adapter._http, "request", new_callable=AsyncMock, return_value=resp) as mock_req:
            first = await adapter.search_keyword("LM358", "u1")
            second = await adapter.search_keyword(" lm358 ", "u2")

        assert first == second
        assert mock_req.call_count == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [
        {"Errors": ["boom"]},
        {"Errors": "boom"},
        {"Errors": [], "SearchResults": "oops"},
    ])
    async def test_unexpected_shape_is_malformed(self, adapter, payload):
        with patch.object(adapter._http, "request", new_callable=AsyncMock, return_value=_response(payload=payload)):
            with pytest.raises(ProviderError) as exc_info:
                await adapter.search_keyword("LM358", "u1")
        assert exc_info.value.kind is ErrorKind.MALFORMED

    def test_missing_availability_is_unknown(self):
        record = _normalize_part(_mouser_part(Availability=None))
        assert record.quantity_available is None

    @pytest.mark.asyncio
    async def test_local_rate_limit(self):
        adapter = MouserAdapter(_config("mouser", rate_limit_per_minute=1))
        adapter._get_http()
        resp = _response(payload={"Errors": [], "SearchResults": {"Parts": []}})

        with patch.object(adapter._http, "request", new_callable=AsyncMock, return_value=resp) as mock_req:
            await adapter.search_keyword("first", "u1")
            with pytest.raises(ProviderError) as exc_info:
                await adapter.search_keyword("second", "u1")

        assert exc_info.value.kind is ErrorKind.RATE_LIMITED
        assert mock_req.call_count == 1

    @pytest.mark.asyncio
    async def test_get_datasheets_dedupes(self, adapter):
        parts = [
            _mouser_part(DataSheetUrl="https://example.com/lm358.pdf"),
            _mouser_part(MouserPartNumber="595-LM358PE4", DataSheetUrl="https://example.com/lm358.pdf"),
            _mouser_part(MouserPartNumber="595-LM358PE3"),
        ]
        resp = _response(payload={"Errors": [], "SearchResults": {"Parts": parts}})

        with patch.object(adapter._http, "request", new_callable=AsyncMock, return_value=resp):
            urls = await adapter.get_datasheets("LM358P", "u1")
        assert urls == ["https://example.com/lm358.pdf"]


class TestDigiKeyAdapter:
    @pytest.fixture
    def store(self):
        store = MemoryCredentialStore()
        store.put("u1", "digikey", Credential(
            user_id="u1",
            provider_id="digikey",
            access_token="token-1",
            refresh_token="refresh-1",
            expires_at=time.time() + 3600,
        ))
        return store

    @pytest.fixture
    def oauth(self):
        oauth = MagicMock()
        oauth.refresh = AsyncMock(return_value=Credential(
            user_id="u1",
            provider_id="digikey",
            access_token="token-2",
            refresh_token="refresh-2",
            expires_at=time.time() + 1800,
        ))
        return oauth

    @pytest.fixture
    def adapter(self, store, oauth):
        config = _config("digikey", api_key="", client_id="dk-client", client_secret="dk-secret",
                         token_url="https://api.digikey.test/v1/oauth2/token")
        coordinator = CredentialRefreshCoordinator(store, oauth, {"digikey": config})
        a = DigiKeyAdapter(config, coordinator)
        a._get_http()
        return a

    def test_requires_coordinator(self):
        with pytest.raises(ValueError):
            DigiKeyAdapter(_config("digikey", client_id="dk-client"))

    @pytest.mark.asyncio
    async def test_search_sends_bearer_token(self, adapter):
        resp = _response(payload={
            "Products": [{"ManufacturerProductNumber": "LM358P", "QuantityAvailable": 10}],
            "ExactMatches": [],
        })

        with patch.object(adapter._http, "request", new_callable=AsyncMock, return_value=resp) as mock_req:
            records = await adapter.search_keyword("LM358", "u1")

        assert records[0].manufacturer_part_number == "LM358P"
        headers = mock_req.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Bearer token-1"
        assert headers["X-DIGIKEY-Client-Id"] == "dk-client"

    @pytest.mark.asyncio
    async def test_exact_matches_first_without_repeats(self, adapter):
        resp = _response(payload={
            "ExactMatches": [{"ManufacturerProductNumber": "LM358P"}],
            "Products": [
                {"ManufacturerProductNumber": "LM358DR"},
                {"ManufacturerProductNumber": "LM358P"},
                {"ManufacturerProductNumber": "", "Description": {"ProductDescription": "Kit A"}},
                {"ManufacturerProductNumber": "", "Description": {"ProductDescription": "Kit B"}},
            ],
        })

        with patch.object(adapter._http, "request", new_callable=AsyncMock, return_value=resp):
            records = await adapter.search_keyword("LM358", "u1")

        # Empty MPNs are never deduplicated against each other
        assert [r.manufacturer_part_number for r in records] == ["LM358P", "LM358DR", "", ""]

    @pytest.mark.asyncio
    async def test_401_refreshes_and_retries_once(self, adapter, oauth, store):
        ok = _response(payload={"Products": [], "ExactMatches": []})

        with patch.object(adapter._http, "request", new_callable=AsyncMock,
                          side_effect=[_response(status=401), ok]) as mock_req:
            records = await adapter.search_keyword("LM358", "u1")

        assert records == []
        assert mock_req.call_count == 2
        assert mock_req.call_args.kwargs["headers"]["Authorization"] == "Bearer token-2"
        assert oauth.refresh.await_count == 1
        assert store.get("u1", "digikey").access_token == "token-2"

    @pytest.mark.asyncio
    async def test_second_401_gives_up(self, adapter, oauth):
        with patch.object(adapter._http, "request", new_callable=AsyncMock,
                          side_effect=[_response(status=401), _response(status=401)]) as mock_req:
            with pytest.raises(ProviderError) as exc_info:
                await adapter.search_keyword("LM358", "u1")

        assert exc_info.value.kind is ErrorKind.AUTH_REQUIRED
        assert mock_req.call_count == 2
        assert oauth.refresh.await_count == 1

    @pytest.mark.asyncio
    async def test_not_connected_user(self, adapter):
        with patch.object(adapter._http, "request", new_callable=AsyncMock) as mock_req:
            with pytest.raises(ProviderError) as exc_info:
                await adapter.search_keyword("LM358", "someone-else")

        assert exc_info.value.kind is ErrorKind.AUTH_REQUIRED
        mock_req.assert_not_called()

    @pytest.mark.asyncio
    async def test_get_part_not_found(self, adapter):
        with patch.object(adapter._http, "request", new_callable=AsyncMock, return_value=_response(status=404)):
            assert await adapter.get_part("NONEXISTENT", "u1") == []

    @pytest.mark.asyncio
    async def test_get_part_encodes_path(self, adapter):
        resp = _response(payload={"Product": {"ManufacturerProductNumber": "A/B"}})

        with patch.object(adapter._http, "request", new_callable=AsyncMock, return_value=resp) as mock_req:
            records = await adapter.get_part("A/B", "u1")

        assert records[0].manufacturer_part_number == "A/B"
        assert "/search/A%2FB/productdetails" in mock_req.call_args.args[1]

    @pytest.mark.asyncio
    async def test_get_part_non_object_is_malformed(self, adapter):
        with patch.object(adapter._http, "request", new_callable=AsyncMock, return_value=_response(payload=["x"])):
            with pytest.raises(ProviderError) as exc_info:
                await adapter.get_part("LM358P", "u1")
        assert exc_info.value.kind is ErrorKind.MALFORMED

    @pytest.mark.asyncio
    async def test_cached_results_still_require_credential(self, adapter):
        resp = _response(payload={
            "Products": [{"ManufacturerProductNumber": "LM358P"}],
            "ExactMatches": [],
        })

        with patch.object(adapter._http, "request", new_callable=AsyncMock, return_value=resp) as mock_req:
            assert await adapter.search_keyword("LM358", "u1")
            with pytest.raises(ProviderError) as exc_info:
                await adapter.search_keyword("LM358", "u2")
            # Connected users still share the cached entry
            assert await adapter.search_keyword("lm358", "u1")

        assert exc_info.value.kind is ErrorKind.AUTH_REQUIRED
        assert mock_req.call_count == 1


class TestOctopartAdapter:
    @pytest.fixture
    def adapter(self):
        a = OctopartAdapter(_config("octopart"))
        a._get_http()
        return a

    @pytest.mark.asyncio
    async def test_get_part_keeps_exact_mpn(self, adapter):
        resp = _response(payload={"results": [
            {"item": {"uid": "1", "mpn": "LM358P"}},
            {"item": {"uid": "2", "mpn": "LM358PWR"}},
        ]})

        with patch.object(adapter._http, "request", new_callable=AsyncMock, return_value=resp) as mock_req:
            records = await adapter.get_part("lm358p", "u1")

        assert [r.manufacturer_part_number for r in records] == ["LM358P"]
        params = mock_req.call_args.kwargs["params"]
        assert params["apikey"] == "test-key"
        assert params["q"] == "lm358p"

    @pytest.mark.asyncio
    async def test_item_without_body_is_malformed(self, adapter):
        resp = _response(payload={"results": [{"snippet": "no item here"}]})

        with patch.object(adapter._http, "request", new_callable=AsyncMock, return_value=resp):
            with pytest.raises(ProviderError) as exc_info:
                await adapter.search_keyword("LM358", "u1")
        assert exc_info.value.kind is ErrorKind.MALFORMED


class TestAliExpressAdapter:
    @pytest.fixture
    def adapter(self):
        a = AliExpressAdapter(_config("aliexpress"))
        a._get_http()
        return a

    @pytest.mark.asyncio
    async def test_search(self, adapter):
        resp = _response(payload={"resp_result": {
            "resp_code": 200,
            "result": {"products": {"product": [
                {"product_id": 1, "product_title": "LM358 module", "target_sale_price": "0.99"},
            ]}},
        }})

        with patch.object(adapter._http, "request", new_callable=AsyncMock, return_value=resp) as mock_req:
            records = await adapter.search_keyword("LM358", "u1")

        assert records[0].unit_price == 0.99
        assert mock_req.call_args.kwargs["params"]["app_key"] == "test-key"

    @pytest.mark.asyncio
    async def test_call_limited(self, adapter):
        resp = _response(payload={"resp_result": {"resp_code": 7, "resp_msg": "call limited"}})

        with patch.object(adapter._http, "request", new_callable=AsyncMock, return_value=resp):
            with pytest.raises(ProviderError) as exc_info:
                await adapter.search_keyword("LM358", "u1")
        assert exc_info.value.kind is ErrorKind.RATE_LIMITED

    @pytest.mark.asyncio
    async def test_missing_envelope_is_malformed(self, adapter):
        with patch.object(adapter._http, "request", new_callable=AsyncMock, return_value=_response(payload={})):
            with pytest.raises(ProviderError) as exc_info:
                await adapter.search_keyword("LM358", "u1")
        assert exc_info.value.kind is ErrorKind.MALFORMED

    @pytest.mark.asyncio
    async def test_no_datasheets(self, adapter):
        with patch.object(adapter._http, "request", new_callable=AsyncMock) as mock_req:
            assert await adapter.get_datasheets("LM358P", "u1") == []
        mock_req.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("result", ["oops", {"products": ["x"]}])
    async def test_non_object_result_is_malformed(self, adapter, result):
        resp = _response(payload={"resp_result": {"resp_code": 200, "result": result}})

        with patch.object(adapter._http, "request", new_callable=AsyncMock, return_value=resp):
            with pytest.raises(ProviderError) as exc_info:
                await adapter.search_keyword("LM358", "u1")
        assert exc_info.value.kind is ErrorKind.MALFORMED

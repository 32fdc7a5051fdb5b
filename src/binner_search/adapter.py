"""Base class for distributor adapters.

Handles what every vendor call shares: auth resolution, the local rate limit,
concurrency cap, result cache, deadline-bounded timeouts and the mapping of
HTTP outcomes onto ``ErrorKind``. Subclasses only build requests and
normalize payloads.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, TYPE_CHECKING

import httpx

from .cache import RequestQuota, TTLCache
from .errors import CredentialError, ErrorKind, ProviderError
from .models import PartRecord, PartSearchQuery, ProviderConfig

if TYPE_CHECKING:
    from .coordinator import CredentialRefreshCoordinator

logger = logging.getLogger(__name__)


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class ProviderAdapter:
    """One distributor API behind the search/lookup/datasheet capability set."""

    provider_id: str = ""
    display_name: str = ""

    def __init__(self, config: ProviderConfig, coordinator: CredentialRefreshCoordinator | None = None):
        if config.uses_oauth2 and coordinator is None:
            raise ValueError(f"{config.provider_id} uses OAuth2 and needs a credential coordinator")
        self.config = config
        self._coordinator = coordinator
        self._http: httpx.AsyncClient | None = None
        self._semaphore: asyncio.Semaphore | None = None
        self._cache = TTLCache(ttl=config.cache_ttl)
        self._quota = RequestQuota(config.rate_limit_per_minute)

    def _get_http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.config.timeout)
        return self._http

    def _get_semaphore(self) -> asyncio.Semaphore:
        # Safe in single-threaded asyncio: no await between None check and assignment
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(max(1, self.config.max_concurrency))
        return self._semaphore

    def _error(self, kind: ErrorKind, message: str, retry_after: float | None = None) -> ProviderError:
        return ProviderError(kind, self.provider_id, message, retry_after=retry_after)

    # Capability set

    async def search(self, query: PartSearchQuery, deadline: float | None = None) -> list[PartRecord]:
        """Run a query: exact part-number lookup or keyword search."""
        if query.part_number:
            return await self.get_part(query.part_number, query.user_id, limit=query.limit, deadline=deadline)
        return await self.search_keyword(query.keyword or "", query.user_id, limit=query.limit, deadline=deadline)

    async def search_keyword(
        self, keyword: str, user_id: str, limit: int = 20, deadline: float | None = None,
    ) -> list[PartRecord]:
        return await self._cached(
            ("keyword", keyword.strip().lower(), limit),
            user_id,
            lambda: self._search_keyword(keyword.strip(), user_id, limit, deadline),
        )

    async def get_part(
        self, part_number: str, user_id: str, limit: int = 20, deadline: float | None = None,
    ) -> list[PartRecord]:
        return await self._cached(
            ("part", part_number.strip().upper(), limit),
            user_id,
            lambda: self._get_part(part_number.strip(), user_id, limit, deadline),
        )

    async def get_datasheets(self, part_number: str, user_id: str, deadline: float | None = None) -> list[str]:
        """Datasheet URLs this vendor lists for a part number, duplicates removed."""
        records = await self.get_part(part_number, user_id, deadline=deadline)
        urls: list[str] = []
        for record in records:
            if record.datasheet_url and record.datasheet_url not in urls:
                urls.append(record.datasheet_url)
        return urls

    # Vendor hooks

    async def _search_keyword(
        self, keyword: str, user_id: str, limit: int, deadline: float | None,
    ) -> list[PartRecord]:
        raise NotImplementedError

    async def _get_part(
        self, part_number: str, user_id: str, limit: int, deadline: float | None,
    ) -> list[PartRecord]:
        raise NotImplementedError

    def _auth_headers(self, token: str | None) -> dict[str, str]:
        """Headers for a request. ``token`` is the OAuth2 bearer token, if any."""
        return {}

    def _auth_params(self) -> dict[str, str]:
        """Query parameters carrying a static API key, if the vendor uses one."""
        return {}

    # Shared request path

    async def _cached(self, key: tuple, user_id: str, fetch) -> list[PartRecord]:
        # Per-user OAuth2 vendors: the caller must hold a credential even for cached results
        await self._resolve_token(user_id)
        cached = self._cache.get(key)
        if cached is not None:
            return list(cached)
        # Quota is checked after the cache so cache hits don't count
        if not self._quota.try_acquire():
            raise self._error(
                ErrorKind.RATE_LIMITED,
                f"{self.display_name} local rate limit of {self.config.rate_limit_per_minute}/min reached",
                retry_after=self._quota.retry_after(),
            )
        records = await fetch()
        self._cache.set(key, tuple(records))
        return records

    def _timeout_for(self, deadline: float | None) -> float:
        timeout = self.config.timeout
        if deadline is not None:
            remaining = deadline - asyncio.get_running_loop().time()
            if remaining <= 0:
                raise self._error(ErrorKind.TIMEOUT, f"{self.display_name} search budget exhausted before request")
            timeout = min(timeout, remaining)
        return timeout

    async def _resolve_token(self, user_id: str, rejected_token: str | None = None) -> str | None:
        if not self.config.uses_oauth2:
            return None
        try:
            return await self._coordinator.get_valid_token(user_id, self.provider_id, rejected_token=rejected_token)
        except CredentialError as e:
            raise self._error(ErrorKind.AUTH_REQUIRED, str(e)) from e

    async def _send(
        self,
        method: str,
        url: str,
        token: str | None,
        timeout: float,
        params: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        params = {**(params or {}), **self._auth_params()}
        try:
            return await self._get_http().request(
                method, url, headers=self._auth_headers(token), params=params or None, timeout=timeout, **kwargs,
            )
        except httpx.TimeoutException:
            raise self._error(ErrorKind.TIMEOUT, f"{self.display_name} API request timed out") from None
        except httpx.HTTPError:
            # Sanitize: httpx exceptions may include the full URL with the API key
            raise self._error(
                ErrorKind.UNAVAILABLE, f"{self.display_name} API request failed (network/connection error)",
            ) from None

    async def _request(
        self,
        method: str,
        url: str,
        user_id: str,
        deadline: float | None = None,
        allow_not_found: bool = False,
        **kwargs: Any,
    ) -> Any:
        """Make an authenticated request and return the decoded JSON body.

        Returns None for a 404 when ``allow_not_found`` is set.
        """
        timeout = self._timeout_for(deadline)
        token = await self._resolve_token(user_id)

        async with self._get_semaphore():
            response = await self._send(method, url, token, timeout, **kwargs)

            # Stale OAuth2 token: force one refresh and retry exactly once
            if response.status_code == 401 and token is not None:
                logger.info(f"{self.display_name} rejected token for user {user_id}, refreshing")
                token = await self._resolve_token(user_id, rejected_token=token)
                response = await self._send(method, url, token, self._timeout_for(deadline), **kwargs)

        return self._decode(response, allow_not_found)

    def _decode(self, response: httpx.Response, allow_not_found: bool) -> Any:
        status = response.status_code
        name = self.display_name
        if status in (401, 403):
            raise self._error(ErrorKind.AUTH_REQUIRED, f"{name} API rejected credentials (HTTP {status})")
        if status == 429:
            raise self._error(ErrorKind.RATE_LIMITED, f"{name} API is throttling requests", _retry_after(response))
        if status == 404 and allow_not_found:
            return None
        if status >= 400:
            raise self._error(ErrorKind.UNAVAILABLE, f"{name} API returned HTTP {status}")
        try:
            return response.json()
        except ValueError:
            raise self._error(ErrorKind.MALFORMED, f"{name} API returned a body that is not JSON") from None

    def _normalize_all(self, items: Any, normalize) -> list[PartRecord]:
        """Map raw vendor items to records, failing as MALFORMED on shape errors."""
        if items is None:
            return []
        if not isinstance(items, list):
            raise self._error(ErrorKind.MALFORMED, f"{self.display_name} result list has unexpected type")
        try:
            return [normalize(item) for item in items]
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise self._error(
                ErrorKind.MALFORMED, f"{self.display_name} result item could not be parsed ({type(e).__name__})",
            ) from e

    async def close(self) -> None:
        if self._http:
            await self._http.aclose()
            self._http = None

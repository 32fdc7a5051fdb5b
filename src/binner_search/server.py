"""Binner Search MCP Server - aggregated part search across electronics distributors."""

import json
import logging
import secrets
from contextlib import asynccontextmanager
from typing import Any

from fastmcp import FastMCP
from mcp.types import ToolAnnotations
from starlette.middleware import Middleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse
from starlette.routing import Route

from . import __version__
from .aggregator import SearchAggregator
from .cache import RequestQuota, TTLCache
from .config import (
    CREDENTIAL_DB_PATH,
    DEFAULT_RESULT_LIMIT,
    HTTP_PORT,
    LOG_LEVEL,
    MAX_QUERY_LENGTH,
    MAX_RESULT_LIMIT,
    RATE_LIMIT_REQUESTS,
    SEARCH_BUDGET_SECONDS,
    load_provider_configs,
)
from .coordinator import CredentialRefreshCoordinator
from .credentials import CredentialStore, create_store
from .errors import AggregateError, AuthError
from .models import PartSearchQuery, ProviderConfig
from .oauth2 import OAuth2Client
from .providers import build_adapters

logger = logging.getLogger(__name__)

# Pending authorization requests expire after 10 minutes
_AUTH_STATE_TTL = 600

# Global state
_configs: dict[str, ProviderConfig] = {}
_store: CredentialStore | None = None
_oauth: OAuth2Client | None = None
_coordinator: CredentialRefreshCoordinator | None = None
_aggregator: SearchAggregator | None = None
_auth_states = TTLCache(ttl=_AUTH_STATE_TTL, max_size=1000)


@asynccontextmanager
async def lifespan(app):
    """Load provider configs, open the credential store and build adapters."""
    global _configs, _store, _oauth, _coordinator, _aggregator
    _configs = load_provider_configs()
    _store = create_store(CREDENTIAL_DB_PATH)
    _oauth = OAuth2Client()
    _coordinator = CredentialRefreshCoordinator(_store, _oauth, _configs)
    adapters = build_adapters(_configs, _coordinator)
    _aggregator = SearchAggregator(adapters, budget=SEARCH_BUDGET_SECONDS)
    if not adapters:
        logger.warning("No providers enabled. Set vendor API keys/client ids in the environment.")
    else:
        logger.info(f"Providers enabled: {', '.join(adapters)}")

    yield

    if _aggregator:
        await _aggregator.close()
    if _oauth:
        await _oauth.close()
    if _store:
        _store.close()


# Create MCP server
mcp = FastMCP(
    name="binner-search",
    instructions="Electronic part search across DigiKey, Mouser, Octopart and AliExpress. Use part_search with a keyword or an exact part_number; results are grouped per physical part with every vendor's price and stock kept. DigiKey needs a one-time provider_authorize_url/provider_connect per user.",
    lifespan=lifespan,
)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-IP rate limiting over a sliding one-minute window.

    The number of tracked IPs is capped to keep spoofed addresses from
    exhausting memory; idle windows are dropped on each sweep.
    """

    MAX_TRACKED_IPS = 10_000

    def __init__(self, app, requests_per_minute: int = RATE_LIMIT_REQUESTS):
        super().__init__(app)
        self.requests_per_minute = requests_per_minute
        self.windows: dict[str, RequestQuota] = {}

    def _get_client_ip(self, request) -> str:
        """Extract client IP, preferring the rightmost X-Forwarded-For entry (set by our proxy)."""
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            ips = [ip.strip() for ip in forwarded.split(",")]
            return ips[-1] if ips else "unknown"
        return request.client.host if request.client else "unknown"

    def _sweep(self) -> None:
        for ip in [ip for ip, window in self.windows.items() if window.is_idle()]:
            del self.windows[ip]

    def _check_rate_limit(self, client_ip: str) -> bool:
        """True when the request must be rejected."""
        window = self.windows.get(client_ip)
        if window is None:
            if len(self.windows) >= self.MAX_TRACKED_IPS:
                self._sweep()
                if len(self.windows) >= self.MAX_TRACKED_IPS:
                    return True
            window = self.windows[client_ip] = RequestQuota(self.requests_per_minute)
        return not window.try_acquire()

    async def dispatch(self, request, call_next):
        if request.url.path == "/health":
            return await call_next(request)

        if self._check_rate_limit(self._get_client_ip(request)):
            return JSONResponse(
                status_code=429,
                content={"error": "Rate limit exceeded", "retry_after": 60},
                headers={"Retry-After": "60"},
            )
        return await call_next(request)


def _parse_list_param(value: list[str] | str | None) -> list[str] | None:
    """Parse a list parameter that may arrive as a JSON string or comma-separated text.

    Some MCP clients serialize list parameters as JSON strings like
    '["a", "b"]' instead of actual arrays. This handles both cases.
    """
    if value is None:
        return None
    if isinstance(value, list):
        return [str(v) for v in value]
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
            if isinstance(parsed, list):
                return [str(v) for v in parsed]
        except json.JSONDecodeError:
            pass
        items = [v.strip() for v in value.split(",") if v.strip()]
        return items or None
    return None


def _provider_status(config: ProviderConfig, user_id: str) -> dict[str, Any]:
    status: dict[str, Any] = {
        "provider": config.provider_id,
        "enabled": config.enabled,
        "auth": "oauth2" if config.uses_oauth2 else "api_key",
    }
    if config.uses_oauth2:
        credential = _store.get(user_id, config.provider_id) if _store else None
        status["connected"] = credential is not None
        status["expires_at"] = credential.expires_at if credential else None
    else:
        status["connected"] = config.enabled
    return status


def _oauth_config(provider: str) -> ProviderConfig | dict[str, str]:
    """Resolve an OAuth2 provider config, or an error dict."""
    config = _configs.get(provider.strip().lower())
    if config is None:
        return {"error": f"Unknown provider: '{provider}'", "hint": f"Known providers: {', '.join(_configs)}"}
    if not config.uses_oauth2:
        return {"error": f"{config.provider_id} uses an API key and needs no authorization"}
    if not config.enabled:
        return {"error": f"{config.provider_id} is not configured. Set its client id and secret in environment."}
    return config


# Tools

@mcp.tool(
    annotations=ToolAnnotations(
        title="Search Parts (All Distributors)",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=True,
    )
)
async def part_search(
    keyword: str | None = None,
    part_number: str | None = None,
    user_id: str = "anonymous",
    providers: list[str] | str | None = None,
    limit: int = DEFAULT_RESULT_LIMIT,
) -> dict:
    """Search all enabled distributors at once and get grouped, ranked listings.

    Args:
        keyword: Free-text search (e.g., "10k resistor 0603", "ESP32")
        part_number: Exact manufacturer or vendor part number (e.g., "LM358P")
        user_id: Application user the search runs for (selects stored OAuth2 tokens)
        providers: Providers to query (e.g., ["digikey", "mouser"]). Default: all enabled
        limit: Max results per provider (default 20, max 100)

    Provide exactly one of keyword or part_number.

    Returns:
        parts: Every listing, best match first; same part from several vendors is adjacent, cheapest first
        groups: The same listings grouped per manufacturer part number with a relevance score
        errors: Per-provider failures ({provider, kind, message}); kind is one of
                auth_required, rate_limited, timeout, malformed, unavailable
    """
    if not _aggregator:
        raise RuntimeError("Aggregator not initialized")

    term = keyword or part_number
    if term and len(term) > MAX_QUERY_LENGTH:
        return {"error": f"Query too long (max {MAX_QUERY_LENGTH} characters)", "parts": [], "errors": []}
    try:
        query = PartSearchQuery(
            user_id=user_id,
            keyword=keyword,
            part_number=part_number,
            limit=max(1, min(limit, MAX_RESULT_LIMIT)),
        )
    except ValueError as e:
        return {"error": str(e), "parts": [], "errors": []}

    try:
        result = await _aggregator.search(query, _parse_list_param(providers))
    except AggregateError as e:
        logger.error(f"Search failed on every provider: {e}")
        return {
            "error": "All providers failed. Check provider credentials and configuration.",
            "parts": [],
            "errors": [f.to_dict() for f in e.failures],
        }

    response = result.to_dict()
    response["total"] = len(response["parts"])
    return response


@mcp.tool(
    annotations=ToolAnnotations(
        title="Datasheet Lookup",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=True,
    )
)
async def part_datasheets(
    part_number: str,
    user_id: str = "anonymous",
    providers: list[str] | str | None = None,
) -> dict:
    """Find datasheet URLs for a part number across distributors.

    Args:
        part_number: Manufacturer or vendor part number (e.g., "LM358P")
        user_id: Application user the lookup runs for
        providers: Providers to query. Default: all enabled

    Returns:
        datasheets: Datasheet URLs keyed by provider
        errors: Per-provider failures
    """
    if not _aggregator:
        raise RuntimeError("Aggregator not initialized")
    if not part_number or not part_number.strip():
        return {"error": "part_number is required"}
    if len(part_number) > MAX_QUERY_LENGTH:
        return {"error": f"Part number too long (max {MAX_QUERY_LENGTH} characters)"}

    try:
        return await _aggregator.datasheets(part_number.strip(), user_id, _parse_list_param(providers))
    except AggregateError as e:
        logger.error(f"Datasheet lookup failed on every provider: {e}")
        return {"error": "All providers failed.", "errors": [f.to_dict() for f in e.failures]}


@mcp.tool(
    annotations=ToolAnnotations(
        title="Provider Status",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def provider_status(user_id: str = "anonymous") -> dict:
    """Show configured distributors, how they authenticate and whether the user is connected.

    Args:
        user_id: Application user to report OAuth2 connections for

    Returns:
        providers: List of {provider, enabled, auth, connected, expires_at}
    """
    return {"providers": [_provider_status(config, user_id) for config in _configs.values()]}


@mcp.tool(
    annotations=ToolAnnotations(
        title="Start Provider Authorization",
        readOnlyHint=False,
        destructiveHint=False,
        idempotentHint=False,
        openWorldHint=False,
    )
)
async def provider_authorize_url(provider: str, user_id: str) -> dict:
    """Get the URL a user visits to connect an OAuth2 distributor account (DigiKey).

    Args:
        provider: OAuth2 provider id (e.g., "digikey")
        user_id: Application user the connection is for

    Returns:
        url: Authorization URL to open in a browser
        state: Opaque value to pass back to provider_connect with the returned code
    """
    if not _oauth:
        raise RuntimeError("OAuth2 client not initialized")
    config = _oauth_config(provider)
    if isinstance(config, dict):
        return config

    state = secrets.token_urlsafe(24)
    _auth_states.set(state, (user_id, config.provider_id))
    return {"url": _oauth.authorization_url(config, state), "state": state}


@mcp.tool(
    annotations=ToolAnnotations(
        title="Complete Provider Authorization",
        readOnlyHint=False,
        destructiveHint=False,
        idempotentHint=False,
        openWorldHint=True,
    )
)
async def provider_connect(provider: str, user_id: str, code: str, state: str) -> dict:
    """Exchange an authorization code for tokens and store them for the user.

    Args:
        provider: OAuth2 provider id (e.g., "digikey")
        user_id: Application user the connection is for
        code: Authorization code returned to the redirect URI
        state: The state value from provider_authorize_url

    Returns:
        connected: True on success, with the token expiry
    """
    if not _oauth or not _store:
        raise RuntimeError("Credential store not initialized")
    config = _oauth_config(provider)
    if isinstance(config, dict):
        return config
    # States are single use, consumed even when the exchange fails
    if _auth_states.pop(state) != (user_id, config.provider_id):
        return {"error": "Unknown or expired authorization state. Start again with provider_authorize_url."}

    try:
        credential = await _oauth.exchange_code(config, code, user_id)
    except AuthError as e:
        logger.warning(f"{config.provider_id} code exchange failed for user {user_id}: {e}")
        return {"error": f"Authorization failed ({e.kind.value}). Start again with provider_authorize_url."}

    _store.put(user_id, config.provider_id, credential)
    logger.info(f"{config.provider_id} connected for user {user_id}")
    return {"connected": True, **credential.to_dict()}


@mcp.tool(
    annotations=ToolAnnotations(
        title="Disconnect Provider",
        readOnlyHint=False,
        destructiveHint=True,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def provider_disconnect(provider: str, user_id: str) -> dict:
    """Forget a user's stored OAuth2 tokens for a distributor.

    Args:
        provider: OAuth2 provider id (e.g., "digikey")
        user_id: Application user to disconnect

    Returns:
        connected: Always False after the call
    """
    if not _store:
        raise RuntimeError("Credential store not initialized")
    config = _oauth_config(provider)
    if isinstance(config, dict):
        return config
    _store.delete(user_id, config.provider_id)
    logger.info(f"{config.provider_id} disconnected for user {user_id}")
    return {"provider": config.provider_id, "connected": False}


# Health check endpoint
async def health(request):
    return JSONResponse({
        "status": "healthy",
        "service": "binner-search",
        "version": __version__,
        "providers": _aggregator.provider_ids if _aggregator else [],
    })


# Create ASGI app
def create_app():
    """Create the ASGI application."""
    middleware = [
        Middleware(RateLimitMiddleware, requests_per_minute=RATE_LIMIT_REQUESTS),
    ]

    # Stateless: MCP clients don't reliably forward session cookies
    app = mcp.http_app(
        path="/mcp",
        middleware=middleware,
        transport="streamable-http",
        stateless_http=True,
    )
    app.routes.append(Route("/health", health))
    return app


app = create_app()


class _HealthFilterLog(logging.Filter):
    """Suppress noisy /health access logs from container healthchecks."""

    def filter(self, record: logging.LogRecord) -> bool:
        return "/health" not in record.getMessage()


def main():
    """Run the server."""
    import uvicorn

    logging.basicConfig(
        level=LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("uvicorn.access").addFilter(_HealthFilterLog())

    uvicorn.run(
        "binner_search.server:app",
        host="0.0.0.0",
        port=HTTP_PORT,
        lifespan="on",
    )


if __name__ == "__main__":
    main()

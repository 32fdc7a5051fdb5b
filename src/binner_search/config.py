"""Configuration for the Binner Search server."""

import os

from .models import ProviderConfig


def _env_bool(name: str, default: bool = True) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() not in ("0", "false", "no", "off")


# Server settings
HTTP_PORT = int(os.getenv("HTTP_PORT", "8080"))
RATE_LIMIT_REQUESTS = int(os.getenv("RATE_LIMIT_REQUESTS", "100"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Search settings
SEARCH_BUDGET_SECONDS = float(os.getenv("SEARCH_BUDGET_SECONDS", "5.0"))
DEFAULT_RESULT_LIMIT = 20
MAX_RESULT_LIMIT = 100
MAX_QUERY_LENGTH = 500
# Minimum description similarity for same-MPN listings to share a group
DEDUP_SIMILARITY_THRESHOLD = float(os.getenv("DEDUP_SIMILARITY_THRESHOLD", "0.2"))

# Credentials
TOKEN_SAFETY_MARGIN = float(os.getenv("TOKEN_SAFETY_MARGIN", "60"))
CREDENTIAL_DB_PATH = os.getenv("CREDENTIAL_DB_PATH", "")
DEFAULT_TOKEN_LIFETIME = 1800  # Used when a token response omits expires_in

# Shared vendor defaults
REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "10.0"))
VENDOR_CACHE_TTL = 3600

# DigiKey API (per-user OAuth2 authorization code grant)
DIGIKEY_CLIENT_ID = os.getenv("DIGIKEY_CLIENT_ID", "")
DIGIKEY_CLIENT_SECRET = os.getenv("DIGIKEY_CLIENT_SECRET", "")
DIGIKEY_BASE_URL = os.getenv("DIGIKEY_BASE_URL", "https://api.digikey.com/products/v4")
DIGIKEY_TOKEN_URL = "https://api.digikey.com/v1/oauth2/token"
DIGIKEY_AUTHORIZE_URL = "https://api.digikey.com/v1/oauth2/authorize"
DIGIKEY_REDIRECT_URI = os.getenv("DIGIKEY_REDIRECT_URI", "https://localhost:8090/Authorization/Authorize")
DIGIKEY_RATE_LIMIT = int(os.getenv("DIGIKEY_RATE_LIMIT", "120"))
DIGIKEY_CONCURRENT_LIMIT = 10
DIGIKEY_LOCALE_SITE = os.getenv("DIGIKEY_LOCALE_SITE", "US")
DIGIKEY_LOCALE_LANGUAGE = os.getenv("DIGIKEY_LOCALE_LANGUAGE", "en")
DIGIKEY_LOCALE_CURRENCY = os.getenv("DIGIKEY_LOCALE_CURRENCY", "USD")

# Mouser API (apiKey query parameter)
MOUSER_API_KEY = os.getenv("MOUSER_API_KEY", "")
MOUSER_BASE_URL = os.getenv("MOUSER_BASE_URL", "https://api.mouser.com/api/v2")
MOUSER_RATE_LIMIT = int(os.getenv("MOUSER_RATE_LIMIT", "30"))
MOUSER_CONCURRENT_LIMIT = 5

# Octopart API (apikey query parameter)
OCTOPART_API_KEY = os.getenv("OCTOPART_API_KEY", "")
OCTOPART_BASE_URL = os.getenv("OCTOPART_BASE_URL", "https://octopart.com/api/v3")
OCTOPART_RATE_LIMIT = int(os.getenv("OCTOPART_RATE_LIMIT", "60"))
OCTOPART_CONCURRENT_LIMIT = 3
OCTOPART_CURRENCY = os.getenv("OCTOPART_CURRENCY", "USD")

# AliExpress affiliate API (app_key query parameter)
ALIEXPRESS_API_KEY = os.getenv("ALIEXPRESS_API_KEY", "")
ALIEXPRESS_BASE_URL = os.getenv("ALIEXPRESS_BASE_URL", "https://api-sg.aliexpress.com/rest")
ALIEXPRESS_RATE_LIMIT = int(os.getenv("ALIEXPRESS_RATE_LIMIT", "30"))
ALIEXPRESS_CONCURRENT_LIMIT = 3
ALIEXPRESS_CURRENCY = os.getenv("ALIEXPRESS_CURRENCY", "USD")


def load_provider_configs() -> dict[str, ProviderConfig]:
    """Build the immutable provider table from the environment.

    A provider is enabled only when its credentials are present and its
    ``<NAME>_ENABLED`` flag is not switched off.
    """
    return {
        "digikey": ProviderConfig(
            provider_id="digikey",
            api_url=DIGIKEY_BASE_URL,
            client_id=DIGIKEY_CLIENT_ID,
            client_secret=DIGIKEY_CLIENT_SECRET,
            token_url=DIGIKEY_TOKEN_URL,
            authorize_url=DIGIKEY_AUTHORIZE_URL,
            redirect_uri=DIGIKEY_REDIRECT_URI,
            enabled=bool(DIGIKEY_CLIENT_ID and DIGIKEY_CLIENT_SECRET) and _env_bool("DIGIKEY_ENABLED"),
            rate_limit_per_minute=DIGIKEY_RATE_LIMIT,
            timeout=REQUEST_TIMEOUT,
            max_concurrency=DIGIKEY_CONCURRENT_LIMIT,
            cache_ttl=VENDOR_CACHE_TTL,
            currency=DIGIKEY_LOCALE_CURRENCY,
        ),
        "mouser": ProviderConfig(
            provider_id="mouser",
            api_url=MOUSER_BASE_URL,
            api_key=MOUSER_API_KEY,
            enabled=bool(MOUSER_API_KEY) and _env_bool("MOUSER_ENABLED"),
            rate_limit_per_minute=MOUSER_RATE_LIMIT,
            timeout=REQUEST_TIMEOUT,
            max_concurrency=MOUSER_CONCURRENT_LIMIT,
            cache_ttl=VENDOR_CACHE_TTL,
        ),
        "octopart": ProviderConfig(
            provider_id="octopart",
            api_url=OCTOPART_BASE_URL,
            api_key=OCTOPART_API_KEY,
            enabled=bool(OCTOPART_API_KEY) and _env_bool("OCTOPART_ENABLED"),
            rate_limit_per_minute=OCTOPART_RATE_LIMIT,
            timeout=REQUEST_TIMEOUT,
            max_concurrency=OCTOPART_CONCURRENT_LIMIT,
            cache_ttl=VENDOR_CACHE_TTL,
            currency=OCTOPART_CURRENCY,
        ),
        "aliexpress": ProviderConfig(
            provider_id="aliexpress",
            api_url=ALIEXPRESS_BASE_URL,
            api_key=ALIEXPRESS_API_KEY,
            enabled=bool(ALIEXPRESS_API_KEY) and _env_bool("ALIEXPRESS_ENABLED"),
            rate_limit_per_minute=ALIEXPRESS_RATE_LIMIT,
            timeout=REQUEST_TIMEOUT,
            max_concurrency=ALIEXPRESS_CONCURRENT_LIMIT,
            cache_ttl=VENDOR_CACHE_TTL,
            currency=ALIEXPRESS_CURRENCY,
        ),
    }

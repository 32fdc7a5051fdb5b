"""Error taxonomy for credential handling, vendor calls and aggregation."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import ProviderFailure


class AuthErrorKind(str, Enum):
    INVALID_GRANT = "invalid_grant"  # Revoked/expired grant, needs full re-authorization
    TRANSIENT = "transient"  # Network or server-side failure, may be retried later


class ErrorKind(str, Enum):
    """Per-vendor failure kinds reported in an aggregate's error set."""

    AUTH_REQUIRED = "auth_required"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    MALFORMED = "malformed"
    UNAVAILABLE = "unavailable"


class AggregateErrorKind(str, Enum):
    ALL_PROVIDERS_FAILED = "all_providers_failed"


class AuthError(Exception):
    """A token endpoint exchange failed."""

    def __init__(self, kind: AuthErrorKind, message: str):
        self.kind = kind
        super().__init__(message)


class CredentialError(Exception):
    """A usable access token could not be produced for a user/provider pair."""

    def __init__(self, user_id: str, provider_id: str, message: str):
        self.user_id = user_id
        self.provider_id = provider_id
        super().__init__(message)


class NotAuthorized(CredentialError):
    """No credential is stored, or the stored grant was rejected."""


class RefreshFailed(CredentialError):
    """The refresh exchange failed transiently; the old credential is kept."""


class ProviderError(Exception):
    """A vendor call failed in a way the aggregator reports per vendor."""

    def __init__(self, kind: ErrorKind, provider_id: str, message: str, retry_after: float | None = None):
        self.kind = kind
        self.provider_id = provider_id
        self.retry_after = retry_after
        super().__init__(message)


class MouserAPIError(ProviderError):
    """Mouser API returned an error with a code and message."""

    def __init__(self, kind: ErrorKind, code: str, message: str):
        self.code = code
        super().__init__(kind, "mouser", f"Mouser API error [{code}]: {message}")


class AggregateError(Exception):
    """Every provider failed for reasons that waiting will not fix."""

    def __init__(self, kind: AggregateErrorKind, failures: list[ProviderFailure]):
        self.kind = kind
        self.failures = failures
        names = ", ".join(f"{f.provider_id} ({f.kind.value})" for f in failures)
        super().__init__(f"All providers failed: {names}")

"""Data model shared by the credential layer, vendor adapters and aggregator."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from typing import Any

from .errors import ErrorKind


@dataclass(frozen=True)
class Credential:
    """OAuth2 tokens for one (user, provider) pair.

    Frozen so a store can swap whole credentials atomically; a refresh always
    produces a new instance with token and expiry committed together.
    """

    user_id: str
    provider_id: str
    access_token: str
    refresh_token: str
    expires_at: float  # Epoch seconds
    scope: str = ""

    def expires_within(self, margin: float, now: float | None = None) -> bool:
        """True if the access token expires less than ``margin`` seconds from now."""
        if now is None:
            now = time.time()
        return self.expires_at - now < margin

    def to_dict(self) -> dict[str, Any]:
        # Token values are never echoed back to callers
        return {
            "user_id": self.user_id,
            "provider_id": self.provider_id,
            "expires_at": self.expires_at,
            "scope": self.scope,
        }


@dataclass(frozen=True)
class ProviderConfig:
    provider_id: str
    api_url: str
    api_key: str = ""
    client_id: str = ""
    client_secret: str = ""
    token_url: str = ""
    authorize_url: str = ""
    redirect_uri: str = ""
    enabled: bool = True
    rate_limit_per_minute: int = 60
    timeout: float = 10.0
    max_concurrency: int = 5
    cache_ttl: float = 3600
    currency: str = "USD"

    @property
    def uses_oauth2(self) -> bool:
        return bool(self.client_id)


@dataclass(frozen=True)
class PartSearchQuery:
    """A single search: either a free-text keyword or an exact part number."""

    user_id: str
    keyword: str | None = None
    part_number: str | None = None
    limit: int = 20

    def __post_init__(self) -> None:
        keyword = (self.keyword or "").strip() or None
        part_number = (self.part_number or "").strip() or None
        if (keyword is None) == (part_number is None):
            raise ValueError("Exactly one of keyword or part_number is required")
        if self.limit < 1:
            raise ValueError("limit must be at least 1")
        # Frozen dataclass: normalized values written through object.__setattr__
        object.__setattr__(self, "keyword", keyword)
        object.__setattr__(self, "part_number", part_number)

    @property
    def text(self) -> str:
        return self.part_number or self.keyword or ""

    @property
    def is_part_number(self) -> bool:
        return self.part_number is not None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PartRecord:
    """One vendor listing, normalized. Optional fields are None when absent."""

    vendor_id: str
    vendor_part_number: str
    manufacturer_part_number: str
    description: str
    datasheet_url: str | None = None
    unit_price: float | None = None
    currency: str = "USD"
    quantity_available: int | None = None
    package_type: str | None = None
    manufacturer: str = ""
    product_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ProviderFailure:
    provider_id: str
    kind: ErrorKind
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"provider": self.provider_id, "kind": self.kind.value, "message": self.message}


@dataclass(frozen=True)
class PartGroup:
    """Listings of the same physical part from one or more vendors."""

    manufacturer_part_number: str
    relevance: float
    parts: tuple[PartRecord, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "manufacturer_part_number": self.manufacturer_part_number,
            "relevance": round(self.relevance, 4),
            "parts": [p.to_dict() for p in self.parts],
        }


@dataclass(frozen=True)
class AggregatedResult:
    query: PartSearchQuery
    groups: tuple[PartGroup, ...] = ()
    errors: tuple[ProviderFailure, ...] = field(default_factory=tuple)

    @property
    def parts(self) -> list[PartRecord]:
        return [part for group in self.groups for part in group.parts]

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query.to_dict(),
            "parts": [p.to_dict() for p in self.parts],
            "groups": [g.to_dict() for g in self.groups],
            "errors": [e.to_dict() for e in self.errors],
        }

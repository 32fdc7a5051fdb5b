"""OAuth2 token endpoint client (authorization code and refresh token grants).

A pure transport wrapper: one POST per exchange, no retries. Callers decide
what to do with ``AuthError.kind``.
"""

from __future__ import annotations

import logging
import time
from typing import Any
from urllib.parse import urlencode

import httpx

from .config import DEFAULT_TOKEN_LIFETIME
from .errors import AuthError, AuthErrorKind
from .models import Credential, ProviderConfig

logger = logging.getLogger(__name__)


class OAuth2Client:
    """Async client for provider token endpoints."""

    def __init__(self, timeout: float = 15.0):
        self._timeout = timeout
        self._http: httpx.AsyncClient | None = None

    def _get_http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self._timeout)
        return self._http

    def authorization_url(self, config: ProviderConfig, state: str) -> str:
        """URL the user visits to grant access and obtain an authorization code."""
        if not config.authorize_url:
            raise ValueError(f"{config.provider_id} has no authorization endpoint configured")
        params = {
            "response_type": "code",
            "client_id": config.client_id,
            "redirect_uri": config.redirect_uri,
            "state": state,
        }
        return f"{config.authorize_url}?{urlencode(params)}"

    async def exchange_code(self, config: ProviderConfig, code: str, user_id: str) -> Credential:
        """Trade an authorization code for a new credential."""
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": config.redirect_uri,
            "client_id": config.client_id,
            "client_secret": config.client_secret,
        }
        payload = await self._post_token(config, data)
        return self._to_credential(config, payload, user_id, previous_refresh_token="")

    async def refresh(self, config: ProviderConfig, refresh_token: str, user_id: str) -> Credential:
        """Trade a refresh token for a new credential."""
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": config.client_id,
            "client_secret": config.client_secret,
        }
        payload = await self._post_token(config, data)
        return self._to_credential(config, payload, user_id, previous_refresh_token=refresh_token)

    async def _post_token(self, config: ProviderConfig, data: dict[str, str]) -> dict[str, Any]:
        name = config.provider_id
        try:
            response = await self._get_http().post(
                config.token_url,
                data=data,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.HTTPError as e:
            # Do not include the request in the message: the body carries the client secret
            raise AuthError(AuthErrorKind.TRANSIENT, f"{name} token request failed ({type(e).__name__})") from None

        if response.status_code == 429 or response.status_code >= 500:
            raise AuthError(AuthErrorKind.TRANSIENT, f"{name} token endpoint returned HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if response.status_code >= 400:
            error = payload.get("error", "") if isinstance(payload, dict) else ""
            raise AuthError(
                AuthErrorKind.INVALID_GRANT,
                f"{name} token endpoint rejected the grant (HTTP {response.status_code}{': ' + error if error else ''})",
            )
        if not isinstance(payload, dict):
            raise AuthError(AuthErrorKind.TRANSIENT, f"{name} token endpoint returned an unreadable body")

        # Some providers return 200 with an OAuth error body
        if "error" in payload:
            error_desc = payload.get("error_description", payload["error"])
            raise AuthError(AuthErrorKind.INVALID_GRANT, f"{name} OAuth error: {error_desc}")
        if not payload.get("access_token"):
            raise AuthError(AuthErrorKind.TRANSIENT, f"{name} token response has no access_token")
        return payload

    @staticmethod
    def _to_credential(
        config: ProviderConfig,
        payload: dict[str, Any],
        user_id: str,
        previous_refresh_token: str,
    ) -> Credential:
        try:
            expires_in = float(payload.get("expires_in") or DEFAULT_TOKEN_LIFETIME)
        except (TypeError, ValueError):
            expires_in = DEFAULT_TOKEN_LIFETIME
        credential = Credential(
            user_id=user_id,
            provider_id=config.provider_id,
            access_token=payload["access_token"],
            # Providers may omit refresh_token when the old one stays valid
            refresh_token=payload.get("refresh_token") or previous_refresh_token,
            expires_at=time.time() + expires_in,
            scope=payload.get("scope", "") or "",
        )
        logger.debug(f"{config.provider_id} token issued for user {user_id}, expires in {expires_in:.0f}s")
        return credential

    async def close(self) -> None:
        if self._http:
            await self._http.aclose()
            self._http = None

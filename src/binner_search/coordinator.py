"""Single-flight OAuth2 token refresh per (user, provider)."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Mapping

from .config import TOKEN_SAFETY_MARGIN
from .credentials import CredentialStore
from .errors import AuthError, AuthErrorKind, NotAuthorized, RefreshFailed
from .models import Credential, ProviderConfig
from .oauth2 import OAuth2Client

logger = logging.getLogger(__name__)


class CredentialRefreshCoordinator:
    """Hands out valid access tokens, refreshing at most once at a time per key.

    Concurrent callers that find the same credential expiring share one
    in-flight refresh task instead of each hitting the token endpoint.
    """

    def __init__(
        self,
        store: CredentialStore,
        oauth_client: OAuth2Client,
        configs: Mapping[str, ProviderConfig],
        safety_margin: float = TOKEN_SAFETY_MARGIN,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self._oauth = oauth_client
        self._configs = configs
        self._safety_margin = safety_margin
        self._clock = clock
        self._inflight: dict[tuple[str, str], asyncio.Task[Credential]] = {}

    async def get_valid_token(self, user_id: str, provider_id: str, rejected_token: str | None = None) -> str:
        """Return an access token that is valid beyond the safety margin.

        Args:
            user_id: Application user the token belongs to
            provider_id: Provider the token is for
            rejected_token: Token the vendor just answered 401 to. Forces a
                refresh unless the stored token has already been replaced.

        Raises:
            NotAuthorized: nothing stored, or the refresh grant was rejected
            RefreshFailed: the refresh failed transiently
        """
        credential = self._store.get(user_id, provider_id)
        if credential is None:
            raise NotAuthorized(user_id, provider_id, f"{provider_id} is not connected for user {user_id}")

        stale = credential.expires_within(self._safety_margin, self._clock())
        if rejected_token is not None and credential.access_token == rejected_token:
            stale = True
        if not stale:
            return credential.access_token

        refreshed = await self._refresh_once(credential)
        return refreshed.access_token

    async def _refresh_once(self, credential: Credential) -> Credential:
        key = (credential.user_id, credential.provider_id)
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._refresh(credential))
            self._inflight[key] = task
            task.add_done_callback(lambda t: self._finish(key, t))
        # Shielded: a waiter cancelled by its search budget must not cancel the shared refresh
        return await asyncio.shield(task)

    def _finish(self, key: tuple[str, str], task: asyncio.Task[Credential]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled():
            # Mark the exception retrieved when every waiter was cancelled
            task.exception()

    async def _refresh(self, credential: Credential) -> Credential:
        user_id, provider_id = credential.user_id, credential.provider_id
        config = self._configs.get(provider_id)
        if config is None or not config.uses_oauth2:
            raise NotAuthorized(user_id, provider_id, f"{provider_id} does not support token refresh")
        if not credential.refresh_token:
            self._store.delete(user_id, provider_id)
            raise NotAuthorized(user_id, provider_id, f"{provider_id} credential has no refresh token")

        logger.info(f"Refreshing {provider_id} token for user {user_id}")
        try:
            refreshed = await self._oauth.refresh(config, credential.refresh_token, user_id)
        except AuthError as e:
            if e.kind is AuthErrorKind.INVALID_GRANT:
                logger.warning(f"{provider_id} refresh grant rejected for user {user_id}, removing credential: {e}")
                self._store.delete(user_id, provider_id)
                raise NotAuthorized(user_id, provider_id, f"{provider_id} requires re-authorization") from e
            logger.warning(f"{provider_id} token refresh failed for user {user_id}: {e}")
            raise RefreshFailed(user_id, provider_id, f"{provider_id} token refresh failed, try again later") from e

        self._store.put(user_id, provider_id, refreshed)
        return refreshed

    def inflight_count(self) -> int:
        return len(self._inflight)

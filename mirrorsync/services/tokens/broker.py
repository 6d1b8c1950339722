"""
Token Broker
Hands out valid access tokens per (user, provider)

- Cached token returned while it is outside the refresh margin (no network call)
- Concurrent refreshes for the same (user, provider) collapse into one exchange
- invalid_grant flags the credential for reauthorization and is never retried
- Revoke always clears the local credential, whatever the provider says
"""
import logging
from datetime import datetime
from typing import Callable, Optional

import httpx

from mirrorsync.core.concurrency import KeyedLock
from mirrorsync.core.errors import AuthExpiredError, SyncError
from mirrorsync.models.domain import GOOGLE, Credential, TokenGrant, utcnow
from mirrorsync.services.sync.store import MirrorStore
from mirrorsync.services.tokens.google_oauth import GoogleOAuthClient

logger = logging.getLogger(__name__)


class TokenBroker:
    def __init__(
        self,
        store: MirrorStore,
        oauth_client: GoogleOAuthClient,
        margin_seconds: float = 120,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.oauth_client = oauth_client
        self.margin_seconds = margin_seconds
        self.clock = clock
        self._refresh_locks = KeyedLock()

    def _load(self, user_id: str, provider: str) -> Credential:
        credential = self.store.get_credential(user_id, provider)
        if credential is None:
            raise AuthExpiredError(f"No {provider} credential for user {user_id}")
        if credential.needs_reauth:
            raise AuthExpiredError(f"{provider} credential for user {user_id} needs reauthorization")
        return credential

    async def get_valid_token(self, user_id: str, provider: str = GOOGLE) -> str:
        """
        Return an access token valid for at least the safety margin.

        Raises:
            AuthExpiredError: no credential, flagged credential, or refresh rejected
        """
        credential = self._load(user_id, provider)
        if credential.is_fresh(self.clock(), self.margin_seconds):
            return credential.access_token

        async with self._refresh_locks.hold((user_id, provider)):
            # Another caller may have refreshed while we waited
            credential = self._load(user_id, provider)
            if credential.is_fresh(self.clock(), self.margin_seconds):
                return credential.access_token
            return await self._refresh(credential)

    async def _refresh(self, credential: Credential) -> str:
        user_id, provider = credential.user_id, credential.provider
        if not credential.refresh_token:
            self.store.mark_needs_reauth(user_id, provider)
            raise AuthExpiredError(f"No refresh token stored for user {user_id}")

        logger.info(f"🔄 Refreshing {provider} access token for user {user_id}")
        try:
            grant = await self.oauth_client.refresh(credential.refresh_token)
        except AuthExpiredError:
            self.store.mark_needs_reauth(user_id, provider)
            raise

        self.store.update_access_token(
            user_id,
            provider,
            access_token=grant.access_token,
            expires_at=grant.expires_at,
            refresh_token=grant.refresh_token,
        )
        return grant.access_token

    async def invalidate(self, user_id: str, provider: str = GOOGLE, rejected_token: Optional[str] = None) -> None:
        """
        Force the next get_valid_token to refresh.

        With rejected_token, only expires the stored token if it is still the one
        the provider rejected, so a refresh that already happened is not repeated.
        """
        async with self._refresh_locks.hold((user_id, provider)):
            credential = self.store.get_credential(user_id, provider)
            if credential is None:
                return
            if rejected_token is not None and credential.access_token != rejected_token:
                return
            self.store.expire_access_token(user_id, provider)

    def store_grant(self, user_id: str, grant: TokenGrant, provider: str = GOOGLE) -> Credential:
        """Persist tokens from an authorization-code exchange; clears any reauth flag."""
        refresh_token = grant.refresh_token
        if not refresh_token:
            # Google omits the refresh token on repeat consent
            existing = self.store.get_credential(user_id, provider)
            refresh_token = existing.refresh_token if existing else None

        credential = Credential(
            user_id=user_id,
            provider=provider,
            access_token=grant.access_token,
            refresh_token=refresh_token,
            expires_at=grant.expires_at,
            scopes=grant.scopes,
            needs_reauth=False,
        )
        return self.store.save_credential(credential)

    async def revoke(self, user_id: str, provider: str = GOOGLE) -> None:
        """Best-effort provider revoke, then delete the local credential regardless."""
        try:
            credential = self.store.get_credential(user_id, provider)
            token = credential and (credential.refresh_token or credential.access_token)
            if token:
                await self.oauth_client.revoke(token)
                logger.info(f"✅ Revoked {provider} grant for user {user_id}")
        except (SyncError, httpx.HTTPError, ValueError) as e:
            logger.warning(f"⚠️  Provider revoke failed for user {user_id} ({provider}): {e}")
        finally:
            self.store.delete_credential(user_id, provider)

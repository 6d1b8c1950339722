"""
Google OAuth client
Token endpoint calls: refresh, authorization-code exchange, revoke
"""
import logging
from datetime import timedelta
from typing import Any, Dict, Optional

import httpx

from mirrorsync.core.circuit_breakers import RetryPolicy
from mirrorsync.core.errors import AuthExpiredError, MalformedInputError, TransientError, error_from_response
from mirrorsync.models.domain import TokenGrant, utcnow

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"


class GoogleOAuthClient:
    def __init__(
        self,
        http_client: httpx.AsyncClient,
        client_id: Optional[str],
        client_secret: Optional[str],
        retry_policy: Optional[RetryPolicy] = None,
        token_url: str = GOOGLE_TOKEN_URL,
        revoke_url: str = GOOGLE_REVOKE_URL,
    ):
        self.http_client = http_client
        self.client_id = client_id
        self.client_secret = client_secret
        self.retry_policy = retry_policy or RetryPolicy()
        self.token_url = token_url
        self.revoke_url = revoke_url

    async def refresh(self, refresh_token: str) -> TokenGrant:
        """
        Exchange a refresh token for a new access token.

        Raises:
            AuthExpiredError: Google rejected the grant (revoked, expired, wrong client)
        """
        return await self.retry_policy.call(
            self._token_request,
            {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
        )

    async def exchange_code(self, code: str, redirect_uri: str) -> TokenGrant:
        return await self.retry_policy.call(
            self._token_request,
            {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "code": code,
                "redirect_uri": redirect_uri,
                "grant_type": "authorization_code",
            },
        )

    async def revoke(self, token: str) -> None:
        response = await self.http_client.post(
            self.revoke_url,
            data={"token": token},
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        if response.status_code >= 400:
            raise error_from_response(response, "google revoke")

    async def _token_request(self, data: Dict[str, Any]) -> TokenGrant:
        if not self.client_id or not self.client_secret:
            raise MalformedInputError("Google OAuth client is not configured")

        try:
            response = await self.http_client.post(self.token_url, data=data)
        except httpx.TransportError as e:
            raise TransientError(f"google token endpoint: {type(e).__name__}: {e}") from e

        if response.status_code in (400, 401):
            error = _oauth_error(response)
            if error == "invalid_grant":
                raise AuthExpiredError(f"Google rejected {data['grant_type']}: {error}", status_code=response.status_code)
            raise MalformedInputError(f"Google token endpoint returned {response.status_code}: {error}", status_code=response.status_code)
        if response.status_code >= 300:
            raise error_from_response(response, "google token endpoint")

        payload = response.json()
        access_token = payload.get("access_token")
        if not access_token:
            raise MalformedInputError("Google token response missing access_token")

        expires_in = int(payload.get("expires_in") or 3600)
        scopes = str(payload.get("scope") or "").split()
        return TokenGrant(
            access_token=access_token,
            expires_at=utcnow() + timedelta(seconds=expires_in),
            refresh_token=payload.get("refresh_token"),
            scopes=scopes,
        )


def _oauth_error(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return "unknown_error"
    if isinstance(payload, dict):
        return str(payload.get("error") or "unknown_error")
    return "unknown_error"

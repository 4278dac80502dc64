"""
OAuth Provider — authorization-code flow against an external identity provider.

The provider only ever sees the opaque correlation token in `state`; which
conversation that token belongs to is the correlator's business.
"""
from __future__ import annotations

import abc
import structlog
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from urllib.parse import urlencode

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from config.settings import OAuthConfig, get_settings
from core.errors import ProviderExchangeFailure
from models.schemas import OAuthCredentials

logger = structlog.get_logger()


class OAuthProvider(abc.ABC):
    """Abstract base for OAuth identity providers."""

    @abc.abstractmethod
    def authorization_url(self, state: str) -> str:
        """URL the user opens to log in; `state` comes back on the redirect."""
        ...

    @abc.abstractmethod
    async def exchange_code(self, payload: dict[str, Any]) -> OAuthCredentials:
        """
        Turn the redirect's query parameters into credentials.
        Raises ProviderExchangeFailure when the user denied access or the
        exchange failed.
        """
        ...

    async def close(self) -> None:
        pass


class GoogleOAuthProvider(OAuthProvider):
    """Authorization-code flow with offline access (refresh token)."""

    def __init__(self, config: OAuthConfig = None):
        self.config = config or get_settings().oauth
        self.client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self.client is None or self.client.is_closed:
            self.client = httpx.AsyncClient(timeout=30.0)
        return self.client

    def authorization_url(self, state: str) -> str:
        params = {
            "client_id": self.config.client_id,
            "redirect_uri": self.config.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.config.scopes),
            "access_type": "offline",
            "prompt": "consent",
            "state": state,
        }
        return f"{self.config.authorize_url}?{urlencode(params)}"

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, max=10),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _post_token(self, data: dict[str, str]) -> httpx.Response:
        return await self._get_client().post(
            self.config.token_url, data=data,
            headers={"Accept": "application/json"},
        )

    async def exchange_code(self, payload: dict[str, Any]) -> OAuthCredentials:
        if payload.get("error"):
            raise ProviderExchangeFailure(f"Login was not completed: {payload['error']}")
        code = payload.get("code")
        if not code:
            raise ProviderExchangeFailure("Callback carried no authorization code")

        try:
            response = await self._post_token({
                "grant_type": "authorization_code",
                "code": code,
                "client_id": self.config.client_id,
                "client_secret": self.config.client_secret,
                "redirect_uri": self.config.redirect_uri,
            })
        except httpx.HTTPError as e:
            logger.error("oauth_exchange_transport_failed", error=str(e))
            raise ProviderExchangeFailure(f"Token endpoint unreachable: {e}", retryable=True) from e

        if response.status_code >= 400:
            logger.warning("oauth_exchange_rejected",
                           status=response.status_code, body=response.text[:200])
            raise ProviderExchangeFailure(f"Token endpoint returned {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            raise ProviderExchangeFailure("Token endpoint returned invalid JSON") from e
        return self._to_credentials(body)

    @staticmethod
    def _to_credentials(body: dict[str, Any]) -> OAuthCredentials:
        access_token = body.get("access_token")
        if not access_token:
            raise ProviderExchangeFailure("Token response carried no access_token")
        expires_at = None
        if body.get("expires_in"):
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(body["expires_in"]))
        return OAuthCredentials(
            access_token=access_token,
            refresh_token=body.get("refresh_token", ""),
            token_type=body.get("token_type", "Bearer"),
            scope=body.get("scope", ""),
            expires_at=expires_at,
        )

    async def close(self) -> None:
        if self.client is not None and not self.client.is_closed:
            await self.client.aclose()

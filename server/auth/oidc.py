# auth/oidc.py
"""
Minimal OpenID Connect client for the authorization-code flow.

- Provider metadata comes from `<issuer>/.well-known/openid-configuration`
  and is cached for an hour.
- ID tokens are verified with PyJWT against the provider's JWKS.
- Token endpoint calls (code exchange, refresh) go through httpx.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx
import jwt
from pydantic import BaseModel

logger = logging.getLogger(__name__)

SCOPES = "openid email profile offline_access"


class OidcError(Exception):
    """Raised when the identity provider answers with something unusable."""
    pass


class TokenSet(BaseModel):
    access_token: str
    id_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    token_type: Optional[str] = None

    class Config:
        extra = "ignore"


class OidcClient:
    DISCOVERY_TTL = 3600
    TIMEOUT = 10.0

    def __init__(
        self,
        issuer_url: str,
        client_id: str,
        client_secret: str = "",
        http: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.issuer_url = issuer_url.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self._http = http or httpx.AsyncClient(timeout=self.TIMEOUT)
        self._metadata: Optional[Dict[str, Any]] = None
        self._metadata_fetched_at = 0.0
        self._jwks: Optional[jwt.PyJWKClient] = None

    async def close(self) -> None:
        await self._http.aclose()

    # ---------------------------
    # Provider metadata
    # ---------------------------
    async def discover(self) -> Dict[str, Any]:
        if self._metadata is not None and time.monotonic() - self._metadata_fetched_at < self.DISCOVERY_TTL:
            return self._metadata

        url = f"{self.issuer_url}/.well-known/openid-configuration"
        response = await self._http.get(url)
        response.raise_for_status()
        metadata = response.json()
        for key in ("authorization_endpoint", "token_endpoint", "jwks_uri"):
            if key not in metadata:
                raise OidcError(f"Provider metadata is missing '{key}'")

        self._metadata = metadata
        self._metadata_fetched_at = time.monotonic()
        self._jwks = jwt.PyJWKClient(metadata["jwks_uri"])
        logger.info("OIDC provider metadata loaded.", extra={"issuer": self.issuer_url})
        return metadata

    # ---------------------------
    # Flow steps
    # ---------------------------
    async def authorization_url(self, redirect_uri: str, state: str) -> str:
        metadata = await self.discover()
        query = urlencode({
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "scope": SCOPES,
            "state": state,
            "prompt": "login consent",
        })
        return f"{metadata['authorization_endpoint']}?{query}"

    async def _token_request(self, data: Dict[str, str]) -> TokenSet:
        metadata = await self.discover()
        data = {**data, "client_id": self.client_id}
        if self.client_secret:
            data["client_secret"] = self.client_secret
        response = await self._http.post(metadata["token_endpoint"], data=data)
        response.raise_for_status()
        return TokenSet.model_validate(response.json())

    async def exchange_code(self, code: str, redirect_uri: str) -> TokenSet:
        return await self._token_request({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
        })

    async def refresh(self, refresh_token: str) -> TokenSet:
        return await self._token_request({
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        })

    async def claims(self, id_token: Optional[str]) -> Dict[str, Any]:
        """Verify an ID token's signature, audience and issuer and return its claims."""
        if not id_token:
            raise OidcError("Token response did not include an id_token")
        metadata = await self.discover()
        # PyJWKClient fetches keys with blocking I/O
        signing_key = await asyncio.to_thread(self._jwks.get_signing_key_from_jwt, id_token)
        return jwt.decode(
            id_token,
            signing_key.key,
            algorithms=metadata.get("id_token_signing_alg_values_supported", ["RS256"]),
            audience=self.client_id,
            issuer=metadata.get("issuer", self.issuer_url),
        )

    async def end_session_url(self, post_logout_redirect_uri: str) -> Optional[str]:
        metadata = await self.discover()
        endpoint = metadata.get("end_session_endpoint")
        if not endpoint:
            return None
        query = urlencode({
            "client_id": self.client_id,
            "post_logout_redirect_uri": post_logout_redirect_uri,
        })
        return f"{endpoint}?{query}"

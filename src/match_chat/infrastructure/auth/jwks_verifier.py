from __future__ import annotations

import asyncio
import logging

import jwt
from jwt import PyJWKClient

from match_chat.application.dto.principal import Principal
from match_chat.infrastructure.auth.claims import decode_options, principal_from_claims

logger = logging.getLogger(__name__)


class JWKSVerifier:
    """Verify JWTs using a remote JWKS endpoint."""

    def __init__(self, jwks_url: str, audience: str | None = None) -> None:
        self._jwks_url = jwks_url
        self._audience = audience
        self._jwk_client = PyJWKClient(jwks_url)

    async def verify(self, token: str) -> Principal:
        # key fetch is blocking HTTP on a cache miss
        signing_key = await asyncio.to_thread(self._jwk_client.get_signing_key_from_jwt, token)
        payload = jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256", "ES256"],
            audience=self._audience,
            options=decode_options(self._audience),
        )
        return principal_from_claims(payload)

from __future__ import annotations

import jwt

from match_chat.application.dto.principal import Principal
from match_chat.infrastructure.auth.claims import decode_options, principal_from_claims


class HS256Verifier:
    """Verify JWTs signed with a shared HS256 secret."""

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        audience: str | None = None,
    ) -> None:
        self._secret = secret
        self._algorithm = algorithm
        self._audience = audience

    async def verify(self, token: str) -> Principal:
        payload = jwt.decode(
            token,
            self._secret,
            algorithms=[self._algorithm],
            audience=self._audience,
            options=decode_options(self._audience),
        )
        return principal_from_claims(payload)

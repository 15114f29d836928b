from __future__ import annotations

from typing import Any
from uuid import UUID

import jwt

from match_chat.application.dto.principal import Principal


def decode_options(audience: str | None) -> dict[str, Any]:
    """Tokens from the identity provider carry ``aud``; skip the check when none is configured."""
    return {} if audience else {"verify_aud": False}


def principal_from_claims(payload: dict[str, Any]) -> Principal:
    try:
        user_id = UUID(str(payload["sub"]))
    except (KeyError, ValueError) as exc:
        raise jwt.InvalidTokenError("Token subject is not a user id") from exc
    roles = payload.get("roles") or []
    if isinstance(payload.get("role"), str):
        roles = [*roles, payload["role"]]
    return Principal(user_id=user_id, roles=list(roles))

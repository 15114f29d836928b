"""FastAPI dependency injection helpers."""
from __future__ import annotations

from typing import Annotated, AsyncIterator

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from match_chat.application.dto.principal import Principal
from match_chat.application.ports.auth import TokenVerifier
from match_chat.config import Settings, settings
from match_chat.infrastructure.auth.hs256_verifier import HS256Verifier
from match_chat.infrastructure.auth.jwks_verifier import JWKSVerifier
from match_chat.infrastructure.db.uow import SqlAlchemyUoW
from match_chat.infrastructure.realtime.broker import MessageBroker

_bearer_scheme = HTTPBearer()


async def get_uow(request: Request) -> AsyncIterator[SqlAlchemyUoW]:
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        uow = SqlAlchemyUoW(session)
        try:
            yield uow
        finally:
            await session.close()


UoWDep = Annotated[SqlAlchemyUoW, Depends(get_uow)]


def get_broker(request: Request) -> MessageBroker:
    return request.app.state.broker


BrokerDep = Annotated[MessageBroker, Depends(get_broker)]


def build_verifier(cfg: Settings) -> TokenVerifier:
    if cfg.JWT_VERIFY_MODE == "jwks":
        if not cfg.JWKS_URL:
            raise RuntimeError("JWKS_URL must be set when JWT_VERIFY_MODE=jwks")
        return JWKSVerifier(cfg.JWKS_URL, audience=cfg.JWT_AUDIENCE)
    return HS256Verifier(cfg.JWT_SECRET, cfg.JWT_ALGORITHM, audience=cfg.JWT_AUDIENCE)


def verifier_for(app: FastAPI) -> TokenVerifier:
    """The app's token verifier, built on first use."""
    verifier = getattr(app.state, "verifier", None)
    if verifier is None:
        verifier = build_verifier(settings)
        app.state.verifier = verifier
    return verifier


def get_verifier(request: Request) -> TokenVerifier:
    return verifier_for(request.app)


async def authenticate(verifier: TokenVerifier, token: str) -> Principal:
    try:
        return await verifier.verify(token)
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc) or "Invalid token",
        ) from exc


async def get_current_principal(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(_bearer_scheme)],
    verifier: Annotated[TokenVerifier, Depends(get_verifier)],
) -> Principal:
    return await authenticate(verifier, credentials.credentials)


CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]

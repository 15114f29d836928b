"""Translate driver-level failures into TransientBackendError."""
from __future__ import annotations

import functools
import logging
from typing import Any, Awaitable, Callable, TypeVar

from sqlalchemy import exc as sa_exc

from match_chat.application.exceptions import TransientBackendError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# serialization_failure, deadlock_detected
_RETRYABLE_SQLSTATES = frozenset({"40001", "40P01"})


def _sqlstate(exc: sa_exc.DBAPIError) -> str | None:
    orig = exc.orig
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, sa_exc.DBAPIError):
        return (
            exc.connection_invalidated
            or isinstance(exc, (sa_exc.OperationalError, sa_exc.InterfaceError))
            or _sqlstate(exc) in _RETRYABLE_SQLSTATES
        )
    return isinstance(exc, (sa_exc.TimeoutError, sa_exc.DisconnectionError, OSError))


def translate_backend_errors(
    fn: Callable[..., Awaitable[T]],
) -> Callable[..., Awaitable[T]]:
    """Decorator for repository coroutines: re-raise transient failures as TransientBackendError."""

    @functools.wraps(fn)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        try:
            return await fn(*args, **kwargs)
        except (sa_exc.SQLAlchemyError, OSError) as exc:
            if not is_transient(exc):
                raise
            logger.warning("Transient backend failure in %s: %s", fn.__qualname__, exc)
            raise TransientBackendError(f"Storage temporarily unavailable: {exc}") from exc

    return wrapper

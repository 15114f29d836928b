from __future__ import annotations

import asyncio
from typing import Any, Awaitable

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

router = APIRouter(tags=["health"])

CHECK_TIMEOUT_SECONDS = 2.0


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


async def _status_of(check: Awaitable[Any]) -> str:
    try:
        await asyncio.wait_for(check, CHECK_TIMEOUT_SECONDS)
    except TimeoutError:
        return "timeout"
    except Exception as exc:  # noqa: BLE001
        return f"error: {exc}"
    return "ok"


async def _postgres(request: Request) -> None:
    async with request.app.state.session_factory() as session:
        await session.execute(text("SELECT 1"))


@router.get("/readyz")
async def readyz(request: Request) -> JSONResponse:
    """PostgreSQL and Redis must both answer; they are checked concurrently."""
    postgres, redis = await asyncio.gather(
        _status_of(_postgres(request)),
        _status_of(request.app.state.redis.ping()),
    )
    checks = {"postgres": postgres, "redis": redis}
    if any(v != "ok" for v in checks.values()):
        return JSONResponse(
            status_code=503,
            content={"status": "unavailable", "checks": checks},
        )
    return JSONResponse(content={"status": "ready", "checks": checks})

"""Operations endpoints providing health checks and metrics."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict

from fastapi import APIRouter, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from clubchat.infra import postgres
from clubchat.infra.redis import redis_client
from clubchat.settings import settings

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="", tags=["ops"])


async def _redis_status(timeout: float = 0.2) -> Dict[str, Any]:
	try:
		await asyncio.wait_for(redis_client.ping(), timeout=timeout)
	except Exception as exc:  # pragma: no cover - depends on runtime
		LOGGER.warning("Redis readiness check failed", exc_info=True)
		return {"ok": False, "error": str(exc)}
	return {"ok": True}


async def _postgres_status(timeout: float = 0.3) -> Dict[str, Any]:
	try:
		await postgres.ping(timeout)
	except Exception as exc:  # pragma: no cover - depends on runtime
		LOGGER.warning("Postgres readiness query failed", exc_info=True)
		return {"ok": False, "error": str(exc)}
	return {"ok": True}


@router.get("/health/live")
async def health_live() -> dict[str, str]:
	return {"status": "ok"}


@router.get("/health/ready")
async def health_ready() -> Response:
	checks: Dict[str, Any] = {}
	if settings.chat_live_backend == "redis":
		checks["redis"] = await _redis_status()
	if settings.chat_backend == "postgres":
		checks["postgres"] = await _postgres_status()
	ok = all(check.get("ok") for check in checks.values())
	payload = {"status": "ok" if ok else "degraded", "checks": checks}
	return JSONResponse(content=payload, status_code=200 if ok else 503)


@router.get("/metrics")
async def prometheus_metrics() -> Response:
	payload = generate_latest()
	return Response(content=payload, media_type=CONTENT_TYPE_LATEST)

"""Engine health endpoint."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from pathScope.api.models import ok
from pathScope.api.utils.engine import engine_dep
from pathScope.engine.controller import TelemetryEngine
from pathScope.logging_config import get_logger

logger = get_logger("api")
router = APIRouter(prefix="/health", tags=["health"])


def _overall(engine_health: dict) -> str:
    if engine_health["state"] != "running":
        return "degraded"
    tasks = engine_health["tasks"].values()
    if any(t["ticks_failed"] and not t["ticks_completed"] for t in tasks):
        return "unhealthy"
    if engine_health["unreachable"]:
        return "degraded"
    return "healthy"


@router.get("")
async def health(request: Request, engine: TelemetryEngine = Depends(engine_dep)):
    """
    Engine state and per-task counters.

    Overall status is healthy while running with every target reachable,
    degraded when not running or a target is unreachable, and unhealthy when
    some task has only ever failed.
    """
    engine_health = engine.health()
    overall = _overall(engine_health)
    logger.info(
        "Health check performed",
        extra={"state": engine_health["state"], "outcome": "success", "extra_fields": {"overall_status": overall}},
    )
    return ok(
        {
            "status": overall,
            "api_base": str(request.base_url).rstrip("/"),
            "engine": engine_health,
        }
    )

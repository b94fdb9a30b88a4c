"""Snapshot read endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends

from pathScope.api.models import ScoreSummary, ok
from pathScope.api.utils.engine import engine_dep
from pathScope.engine.controller import TelemetryEngine
from pathScope.logging_config import get_logger

logger = get_logger("api")
router = APIRouter(prefix="/snapshot", tags=["snapshot"])


@router.get("")
async def snapshot(engine: TelemetryEngine = Depends(engine_dep)):
    data = engine.export()
    logger.debug("Snapshot served", extra={"score": data["score"], "outcome": "success"})
    return ok(data)


@router.get("/score")
async def score(engine: TelemetryEngine = Depends(engine_dep)):
    snap = engine.current_snapshot()
    summary = ScoreSummary(
        score=snap.score,
        rating=snap.rating,
        findings=len(snap.findings),
        unreachable=len(snap.unreachable),
        domain=snap.domain,
    )
    return ok(summary.model_dump())

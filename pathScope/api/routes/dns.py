"""DNS chain endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from pathScope.api.models import ok
from pathScope.api.utils.engine import engine_dep
from pathScope.engine.controller import EngineState, TelemetryEngine
from pathScope.logging_config import get_logger

logger = get_logger("api")
router = APIRouter(prefix="/dns", tags=["dns"])


@router.post("/reconstruct")
async def reconstruct(engine: TelemetryEngine = Depends(engine_dep)):
    """Run one DNS reconstruction now and fold it into the next snapshot."""
    if not engine.config.domain:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail="No domain configured")
    analysis = await engine.reconstruct_dns()
    if engine.state == EngineState.STOPPED:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail="Telemetry engine stopped")
    await engine.aggregate()
    logger.info(
        "DNS reconstruction requested",
        extra={
            "domain": analysis.domain,
            "outcome": "success" if not analysis.partial_failures else "partial",
        },
    )
    return ok(analysis.model_dump(mode="json", by_alias=True))


@router.get("/analysis")
async def latest_analysis(engine: TelemetryEngine = Depends(engine_dep)):
    """Latest DNS analysis, or null before the first run."""
    aggregator = engine.aggregator
    analysis = aggregator.dns_analysis if aggregator else None
    return ok(analysis.model_dump(mode="json", by_alias=True) if analysis else None)

"""Engine lookup for request handlers.

The engine lives on `app.state` rather than in a module global, so each app
(and each test) owns exactly one.
"""
from __future__ import annotations

from fastapi import HTTPException, Request, status

from pathScope.engine.controller import EngineState, TelemetryEngine


async def engine_dep(request: Request) -> TelemetryEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail="Telemetry engine not initialised")
    if engine.state == EngineState.STOPPED:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail="Telemetry engine stopped")
    return engine

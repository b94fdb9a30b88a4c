"""FastAPI application entrypoint for the pathScope read-only API."""
from __future__ import annotations

import os
import time
import uuid
from typing import Callable, Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from pathScope.api.models import err, ok
from pathScope.api.routes import dns, health, snapshot
from pathScope.collector.config import EngineConfig
from pathScope.collector.sources import HttpProbe
from pathScope.engine.controller import EngineState, TelemetryEngine
from pathScope.logging_config import reset_request_id, set_request_id, setup_logging

logger = setup_logging("api")


def build_engine(config_path: Optional[str] = None) -> TelemetryEngine:
    """Engine with the default HTTP probe, from a YAML file or built-in defaults."""
    path = config_path or os.getenv("PATHSCOPE_CONFIG")
    config = EngineConfig.load(path) if path else EngineConfig()
    return TelemetryEngine(HttpProbe(config.probe), config)


def create_app(engine: Optional[TelemetryEngine] = None, config_path: Optional[str] = None) -> FastAPI:
    app = FastAPI(title="pathScope-api", version="0.1.0")
    app.state.engine = engine
    app.state.config_path = config_path

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next: Callable) -> Response:
        """Log all HTTP requests with timing and outcome."""
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        token = set_request_id(request_id)
        start_time = time.time()

        logger.info(
            "Incoming request",
            extra={
                "method": request.method,
                "path": request.url.path,
                "extra_fields": {
                    "query_params": dict(request.query_params),
                    "client_host": request.client.host if request.client else None,
                },
            },
        )

        try:
            response = await call_next(request)
            duration = time.time() - start_time
            logger.info(
                "Request completed",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration": round(duration * 1000, 2),
                    "outcome": "success" if response.status_code < 400 else "error",
                },
            )
            response.headers["X-Request-ID"] = request_id
            return response
        except Exception as exc:
            duration = time.time() - start_time
            logger.error(
                f"Request failed: {str(exc)}",
                exc_info=True,
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "duration": round(duration * 1000, 2),
                    "outcome": "exception",
                    "error_type": type(exc).__name__,
                },
            )
            raise
        finally:
            reset_request_id(token)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content=err(str(exc.detail)), headers=exc.headers)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception: %s", exc)
        return JSONResponse(status_code=500, content=err(str(exc)))

    app.include_router(snapshot.router)
    app.include_router(dns.router)
    app.include_router(health.router)

    @app.on_event("startup")
    async def startup_event() -> None:
        logger.info("Starting pathScope API", extra={"state": "startup"})
        if app.state.engine is None:
            app.state.engine = build_engine(app.state.config_path)
        await app.state.engine.start()
        logger.info("API startup complete", extra={"state": "ready"})

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        logger.info("Shutting down pathScope API", extra={"state": "shutdown"})
        engine = app.state.engine
        if engine is not None and engine.state != EngineState.STOPPED:
            await engine.stop()
        logger.info("API shutdown complete", extra={"state": "stopped"})

    @app.get("/")
    async def root():
        return ok({"service": "pathScope-api", "version": app.version})

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "pathScope.api.server:app",
        host=os.getenv("PATHSCOPE_API_HOST", "0.0.0.0"),
        port=int(os.getenv("PATHSCOPE_API_PORT", "8000")),
        reload=bool(os.getenv("PATHSCOPE_API_RELOAD", "")),
    )

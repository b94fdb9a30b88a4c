from __future__ import annotations

import asyncio

from fastapi.testclient import TestClient

from conftest import FakeProbe, make_config
from pathScope.api.server import create_app
from pathScope.engine.controller import EngineState, TelemetryEngine


def _client(engine=None) -> TestClient:
    # No `with` block: startup would start the engine's periodic tasks
    return TestClient(create_app(engine=engine))


def _engine(**overrides) -> TelemetryEngine:
    return TelemetryEngine(FakeProbe(), make_config(**overrides))


def test_root_envelope() -> None:
    response = _client(_engine()).get("/")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "data": {"service": "pathScope-api", "version": "0.1.0"}}


def test_snapshot_is_camel_case() -> None:
    response = _client(_engine()).get("/snapshot")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["score"] == 100
    assert data["perTargetStats"] == {}
    assert data["topology"]["edges"][0]["fromId"] == "client"


def test_score_summary() -> None:
    response = _client(_engine()).get("/snapshot/score")

    assert response.json()["data"] == {
        "score": 100,
        "rating": "Excellent",
        "findings": 0,
        "unreachable": 0,
        "domain": "example.com",
    }


def test_health_reports_engine_state() -> None:
    response = _client(_engine()).get("/health")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "degraded"
    assert data["engine"]["state"] == "created"
    assert data["engine"]["targets"] == ["origin", "edge"]


def test_reconstruct_updates_snapshot() -> None:
    client = _client(_engine())

    assert client.get("/dns/analysis").json()["data"] is None
    response = client.post("/dns/reconstruct")

    assert response.status_code == 200
    analysis = response.json()["data"]
    assert analysis["domain"] == "example.com"
    assert "partialFailures" in analysis
    assert client.get("/snapshot/score").json()["data"]["findings"] == 4
    assert client.get("/dns/analysis").json()["data"]["domain"] == "example.com"


def test_reconstruct_without_domain_is_bad_request() -> None:
    response = _client(_engine(domain=None)).post("/dns/reconstruct")

    assert response.status_code == 400
    assert response.json() == {"status": "error", "detail": "No domain configured"}


def test_request_id_is_echoed() -> None:
    client = _client(_engine())

    response = client.get("/snapshot", headers={"X-Request-ID": "req-42"})
    generated = client.get("/snapshot")

    assert response.headers["X-Request-ID"] == "req-42"
    assert generated.headers["X-Request-ID"]


def test_missing_engine_is_unavailable() -> None:
    response = _client(None).get("/snapshot")

    assert response.status_code == 503
    assert response.json()["status"] == "error"


def test_stopped_engine_is_unavailable() -> None:
    engine = _engine()
    asyncio.run(engine.stop())

    response = _client(engine).get("/health")

    assert response.status_code == 503
    assert response.json() == {"status": "error", "detail": "Telemetry engine stopped"}


def test_unknown_route_uses_error_envelope() -> None:
    response = _client(_engine()).get("/no-such-route")

    assert response.status_code == 404
    assert response.json() == {"status": "error", "detail": "Not Found"}


class _StoppingProbe(FakeProbe):
    engine = None

    async def query_dns(self, name, record_type, *, timeout, server=None):
        if self.engine.state != EngineState.STOPPED:
            await self.engine.stop()
        return await super().query_dns(name, record_type, timeout=timeout, server=server)


def test_reconstruct_interrupted_by_stop_is_unavailable() -> None:
    probe = _StoppingProbe()
    engine = TelemetryEngine(probe, make_config())
    probe.engine = engine

    response = _client(engine).post("/dns/reconstruct")

    assert response.status_code == 503
    assert response.json() == {"status": "error", "detail": "Telemetry engine stopped"}
    assert probe.closed

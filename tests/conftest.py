from __future__ import annotations

import asyncio
import os
import tempfile
from typing import Dict, List, Optional, Set, Tuple, Union

# Loggers are configured on first use, so point them away from ./logs before
# any pathScope module is imported.
_LOG_DIR = tempfile.mkdtemp(prefix="pathscope-tests-")
os.environ.setdefault("PATHSCOPE_LOG_FILE", os.path.join(_LOG_DIR, "pathscope.jsonl"))
os.environ.setdefault("PATHSCOPE_LOG_CONSOLE", "0")
os.environ.setdefault("PATHSCOPE_LOG_LEVEL", "DEBUG")

import pytest

from pathScope.collector.config import EngineConfig
from pathScope.collector.models import DNSAnswer, DNSResponse, PublicIPMetadata, Target
from pathScope.errors import ProbeFailure, ProbeTimeout

LatencyStep = Union[float, Exception, None]
DNSStep = Union[List[Tuple[str, str]], Exception]


class FakeProbe:
    """
    Scripted probe.

    Latency steps are consumed per target name in order: a number is a
    result, None is a timeout, an exception is raised as-is. When a script
    runs out, `default_latency` is used. DNS answers are keyed by
    (name, record type); anything not scripted answers NOERROR with no data.
    Queries sent to a server in `failing_servers` fail regardless of script.
    """

    def __init__(
        self,
        *,
        latencies: Optional[Dict[str, List[LatencyStep]]] = None,
        default_latency: LatencyStep = 20.0,
        bandwidth: Union[float, Exception] = 5000.0,
        dns: Optional[Dict[Tuple[str, str], DNSStep]] = None,
        public_ip: Union[PublicIPMetadata, Exception, None] = None,
        delay: float = 0.0,
        failing_servers: Optional[Set[str]] = None,
    ) -> None:
        self.latencies = {k: list(v) for k, v in (latencies or {}).items()}
        self.default_latency = default_latency
        self.bandwidth = bandwidth
        self.dns = dict(dns or {})
        self.public_ip = public_ip or PublicIPMetadata(
            address="203.0.113.7", org="Example ISP", city="Springfield", country="Nowhere", lat=1.5, lon=2.5
        )
        self.delay = delay
        self.failing_servers = set(failing_servers or ())
        self.calls: List[Tuple[str, str]] = []
        self.closed = False

    def _resolve_step(self, step: LatencyStep) -> float:
        if step is None:
            raise ProbeTimeout("scripted timeout", operation="latency")
        if isinstance(step, Exception):
            raise step
        return float(step)

    async def measure_latency(self, target: Target, *, timeout: float) -> float:
        self.calls.append(("latency", target.name))
        if self.delay:
            await asyncio.sleep(self.delay)
        script = self.latencies.get(target.name)
        step = script.pop(0) if script else self.default_latency
        return self._resolve_step(step)

    async def measure_bandwidth_sample(self, payload_size_hint: int, *, timeout: float) -> float:
        self.calls.append(("bandwidth", str(payload_size_hint)))
        if isinstance(self.bandwidth, Exception):
            raise self.bandwidth
        return float(self.bandwidth)

    async def query_dns(
        self, name: str, record_type: str, *, timeout: float, server: Optional[str] = None
    ) -> DNSResponse:
        self.calls.append(("dns", f"{record_type} {name}" + (f" @{server}" if server else "")))
        if server in self.failing_servers:
            raise dns_failure(f"{server} unreachable")
        step = self.dns.get((name, record_type))
        if isinstance(step, Exception):
            raise step
        answers = [DNSAnswer(name=name, record_type=rtype, data=data, ttl=300) for rtype, data in (step or [])]
        return DNSResponse(status=0, answers=answers, source="fake")

    async def fetch_public_ip_metadata(self, *, timeout: float) -> PublicIPMetadata:
        self.calls.append(("public_ip", ""))
        if isinstance(self.public_ip, Exception):
            raise self.public_ip
        return self.public_ip

    async def close(self) -> None:
        self.closed = True


def make_config(**overrides) -> EngineConfig:
    """Fast config: no probe spacing, no DNS delay, no local fact discovery."""
    raw = {
        "targets": [
            {"name": "origin", "address": "https://origin.example", "kind": "origin"},
            {"name": "edge", "address": "edge.example:443", "kind": "cdn"},
        ],
        "domain": "example.com",
        "buffer_capacity": 10,
        "probe_timeout_seconds": 1.0,
        "latency": {"interval_seconds": 0.05, "probes_per_tick": 3, "probe_spacing_seconds": 0},
        "bandwidth": {"interval_seconds": 0.05, "payload_sizes_kb": [100, 500]},
        "packet_loss": {"interval_seconds": 0.05, "probes_per_tick": 10},
        "jitter": {"interval_seconds": 0.05, "probes_per_tick": 4, "probe_spacing_seconds": 0},
        "dns": {"interval_seconds": 0.05, "inter_query_delay_seconds": 0},
        "topology": {"interval_seconds": 0.05, "discover_local_facts": False},
        "aggregator": {"interval_seconds": 0.02},
    }
    raw.update(overrides)
    return EngineConfig.from_dict(raw)


def dns_failure(reason: str = "scripted failure") -> ProbeFailure:
    return ProbeFailure(reason, operation="dns")


@pytest.fixture
def fake_probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture
def config() -> EngineConfig:
    return make_config()

"""Configuration loader for the telemetry engine."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator

from pathScope.collector.models import Target
from pathScope.errors import ConfigurationError

DEFAULT_TARGETS = [
    {"name": "origin", "address": "https://example.com", "kind": "origin"},
    {"name": "Google DNS", "address": "https://dns.google/resolve?name=google.com&type=A", "kind": "dns"},
    {"name": "Cloudflare", "address": "https://cloudflare.com", "kind": "cdn"},
    {"name": "GitHub", "address": "https://github.com", "kind": "platform"},
]

DEFAULT_RECORD_TYPES = ["A", "AAAA", "CNAME", "MX", "NS", "TXT", "SOA"]

DEFAULT_PERFORMANCE_RESOLVERS = [
    "https://dns.google/resolve",
    "https://cloudflare-dns.com/dns-query",
    "https://dns.quad9.net/dns-query",
]


class LatencyConfig(BaseModel):
    interval_seconds: float = Field(default=3.0, gt=0)
    probes_per_tick: int = Field(default=5, ge=1)
    probe_spacing_seconds: float = Field(default=0.1, ge=0)


class BandwidthConfig(BaseModel):
    interval_seconds: float = Field(default=10.0, gt=0)
    payload_sizes_kb: List[int] = Field(default_factory=lambda: [100, 500, 1000], min_length=1)


class PacketLossConfig(BaseModel):
    interval_seconds: float = Field(default=15.0, gt=0)
    probes_per_tick: int = Field(default=10, ge=1)


class JitterConfig(BaseModel):
    interval_seconds: float = Field(default=8.0, gt=0)
    probes_per_tick: int = Field(default=10, ge=2)
    probe_spacing_seconds: float = Field(default=0.2, ge=0)


class DNSConfig(BaseModel):
    enabled: bool = Field(default=True)
    interval_seconds: float = Field(default=300.0, gt=0)
    record_types: List[str] = Field(default_factory=lambda: list(DEFAULT_RECORD_TYPES), min_length=1)
    inter_query_delay_seconds: float = Field(default=0.1, ge=0)
    amplification_threshold: int = Field(default=10, ge=0)
    # Resolvers timed on every run: DoH URLs or nameserver IPs; empty disables timing
    performance_resolvers: List[str] = Field(default_factory=lambda: list(DEFAULT_PERFORMANCE_RESOLVERS))


class TopologyConfig(BaseModel):
    enabled: bool = Field(default=True)
    interval_seconds: float = Field(default=60.0, gt=0)
    include_backbone: bool = Field(default=True)
    discover_local_facts: bool = Field(default=True)
    # Heuristic window: this many distinct serving IPs reads as anycast
    anycast_min_ips: int = Field(default=1, ge=0)
    anycast_max_ips: int = Field(default=4, ge=0)
    # Origin location for the route distance estimate; unset leaves it unknown
    origin_lat: Optional[float] = Field(default=None, ge=-90, le=90)
    origin_lon: Optional[float] = Field(default=None, ge=-180, le=180)

    @model_validator(mode="after")
    def _check_window(self) -> "TopologyConfig":
        if self.anycast_min_ips > self.anycast_max_ips:
            raise ValueError("anycast_min_ips must not exceed anycast_max_ips")
        if (self.origin_lat is None) != (self.origin_lon is None):
            raise ValueError("origin_lat and origin_lon must be set together")
        return self


class AggregatorConfig(BaseModel):
    interval_seconds: float = Field(default=1.0, gt=0)


class ScoreWeights(BaseModel):
    """Weighted-penalty model; approximate, not statistically calibrated."""
    high: int = Field(default=20, ge=0)
    medium: int = Field(default=10, ge=0)
    low: int = Field(default=5, ge=0)
    latency_elevated_ms: float = Field(default=100.0)
    latency_elevated_penalty: int = Field(default=20, ge=0)
    latency_severe_ms: float = Field(default=200.0)
    latency_severe_penalty: int = Field(default=30, ge=0)
    packet_loss_elevated_pct: float = Field(default=1.0)
    packet_loss_elevated_penalty: int = Field(default=25, ge=0)
    packet_loss_severe_pct: float = Field(default=5.0)
    packet_loss_severe_penalty: int = Field(default=50, ge=0)
    jitter_elevated_ms: float = Field(default=50.0)
    jitter_elevated_penalty: int = Field(default=15, ge=0)
    jitter_severe_ms: float = Field(default=100.0)
    jitter_severe_penalty: int = Field(default=25, ge=0)
    bandwidth_floor_kbps: float = Field(default=1000.0)
    bandwidth_penalty: int = Field(default=10, ge=0)
    unreachable_penalty: int = Field(default=10, ge=0)


class ProviderTablesConfig(BaseModel):
    """Optional overrides for the built-in prefix tables (ordered)."""
    cdn: Optional[Dict[str, List[str]]] = None
    hosting: Optional[Dict[str, List[str]]] = None


class ProbeConfig(BaseModel):
    user_agent: str = Field(default="pathScope/0.1")
    dns_transport: Literal["doh", "udp"] = Field(default="doh")
    doh_url: str = Field(default="https://dns.google/resolve")
    nameservers: List[str] = Field(default_factory=list)
    bandwidth_url: str = Field(default="https://speed.cloudflare.com/__down")
    public_ip_url: str = Field(default="https://ipapi.co/json/")
    api_token: Optional[str] = None
    tcp_default_port: int = Field(default=443, ge=1, le=65535)


class EngineConfig(BaseModel):
    targets: List[Target] = Field(default_factory=lambda: [Target(**t) for t in DEFAULT_TARGETS])
    domain: Optional[str] = Field(default="example.com")
    buffer_capacity: int = Field(default=100, ge=1)
    probe_timeout_seconds: float = Field(default=5.0, gt=0)
    unreachable_after_failures: int = Field(default=3, ge=1)
    bandwidth_target_name: str = Field(default="client", min_length=1)
    latency: LatencyConfig = Field(default_factory=LatencyConfig)
    bandwidth: BandwidthConfig = Field(default_factory=BandwidthConfig)
    packet_loss: PacketLossConfig = Field(default_factory=PacketLossConfig)
    jitter: JitterConfig = Field(default_factory=JitterConfig)
    dns: DNSConfig = Field(default_factory=DNSConfig)
    topology: TopologyConfig = Field(default_factory=TopologyConfig)
    aggregator: AggregatorConfig = Field(default_factory=AggregatorConfig)
    scoring: ScoreWeights = Field(default_factory=ScoreWeights)
    providers: ProviderTablesConfig = Field(default_factory=ProviderTablesConfig)
    probe: ProbeConfig = Field(default_factory=ProbeConfig)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "EngineConfig":
        try:
            cfg = cls(**raw)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid engine config: {exc}") from exc
        cfg.validate_for_start()
        return cfg

    @classmethod
    def load(cls, path: str) -> "EngineConfig":
        cfg_path = Path(path)
        if not cfg_path.exists():
            raise ConfigurationError(f"Engine config not found: {cfg_path}")
        try:
            raw = yaml.safe_load(cfg_path.read_text()) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Engine config is not valid YAML: {exc}") from exc
        if not isinstance(raw, dict):
            raise ConfigurationError("Engine config root must be a mapping")
        return cls.from_dict(raw)

    def validate_for_start(self) -> None:
        """Checks pydantic cannot express on its own (or that a caller bypassed)."""
        if not self.targets:
            raise ConfigurationError("No targets configured")
        if self.buffer_capacity < 1:
            raise ConfigurationError(f"Invalid buffer capacity: {self.buffer_capacity}")
        names = [t.name for t in self.targets]
        if len(set(names)) != len(names):
            raise ConfigurationError("Target names must be unique")
        if self.bandwidth_target_name in names:
            raise ConfigurationError(
                f"bandwidth_target_name {self.bandwidth_target_name!r} collides with a target name"
            )
        if self.domain is not None and not self.domain.strip(" ."):
            raise ConfigurationError("Domain must not be empty")
        for section in ("latency", "bandwidth", "packet_loss", "jitter", "dns", "topology", "aggregator"):
            interval = getattr(self, section).interval_seconds
            if not interval or interval <= 0:
                raise ConfigurationError(f"Invalid {section} interval: {interval}")
        if self.probe_timeout_seconds <= 0:
            raise ConfigurationError(f"Invalid probe timeout: {self.probe_timeout_seconds}")

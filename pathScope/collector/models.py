"""Data models for telemetry samples, DNS analysis, topology and snapshots."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# Marker used wherever a fact could not be discovered
UNKNOWN = "unknown"


class FrozenModel(BaseModel):
    """Immutable model exported with camelCase field names."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class MetricKind(str, Enum):
    LATENCY = "latency"
    BANDWIDTH = "bandwidth"
    PACKET_LOSS = "packetLoss"
    JITTER = "jitter"


class Target(FrozenModel):
    """A measurement endpoint: a URL (HTTP probe) or host[:port] (TCP probe)."""
    name: str = Field(min_length=1)
    address: str = Field(min_length=1)
    kind: str = Field(default="target")


class Sample(FrozenModel):
    target_name: str
    metric_kind: MetricKind
    value: float
    captured_at: datetime


class MetricStats(FrozenModel):
    current: float
    average: float
    min: float
    max: float
    stddev: float
    count: int


class SeriesPoint(FrozenModel):
    captured_at: datetime
    value: float


class LatencyTick(FrozenModel):
    """Per-tick latency detail; only the latest tick per target is kept."""
    target_name: str
    mean: float
    min: float
    max: float
    successes: int
    attempts: int
    captured_at: datetime


# ── probe payloads ───────────────────────────────────────────────────────────

class DNSAnswer(FrozenModel):
    name: str
    record_type: str
    data: str
    ttl: Optional[int] = None


class DNSResponse(FrozenModel):
    status: int = 0
    answers: List[DNSAnswer] = Field(default_factory=list)
    authority: List[DNSAnswer] = Field(default_factory=list)
    additional: List[DNSAnswer] = Field(default_factory=list)
    source: str = UNKNOWN

    def answers_of(self, record_type: str) -> List[DNSAnswer]:
        """Answers of one type; DoH answers for A also carry the CNAME chain."""
        wanted = record_type.upper()
        return [a for a in self.answers if a.record_type.upper() == wanted]


class PublicIPMetadata(FrozenModel):
    address: Optional[str] = None
    org: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    lat: Optional[float] = None
    lon: Optional[float] = None


# ── DNS chain ────────────────────────────────────────────────────────────────

class DNSRecord(FrozenModel):
    owner_name: str
    record_type: str
    data: str
    source: str
    queried_at: datetime
    ttl: Optional[int] = None


class ChainLevelKind(str, Enum):
    ROOT = "root"
    TLD = "tld"
    AUTHORITATIVE = "authoritative"
    CDN = "cdn"


class ChainLevel(FrozenModel):
    level: int = Field(ge=0)
    label: str
    kind: ChainLevelKind
    members: List[Union[DNSRecord, str]] = Field(default_factory=list)
    description: str = ""
    provider: Optional[str] = None


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SecurityFinding(FrozenModel):
    category: str
    severity: Severity
    title: str
    detail: str


class DNSInfrastructure(FrozenModel):
    serving_ips: List[str] = Field(default_factory=list)
    providers: Dict[str, str] = Field(default_factory=dict)
    redundancy: int = 0
    load_balancing: bool = False
    anycast_likely: bool = False
    name_servers: List[str] = Field(default_factory=list)
    ns_providers: List[str] = Field(default_factory=list)


class DNSPerformance(FrozenModel):
    """Timed A lookups of the domain through each resolver. None marks a failed query."""
    query_times_ms: Dict[str, Optional[float]] = Field(default_factory=dict)
    mean_ms: Optional[float] = None
    fastest_ms: Optional[float] = None
    slowest_ms: Optional[float] = None
    reliability: float = 0.0


class DNSAnalysis(FrozenModel):
    domain: str
    analyzed_at: datetime
    records: Dict[str, List[DNSRecord]] = Field(default_factory=dict)
    chain: List[ChainLevel] = Field(default_factory=list)
    findings: List[SecurityFinding] = Field(default_factory=list)
    infrastructure: DNSInfrastructure = Field(default_factory=DNSInfrastructure)
    performance: Optional[DNSPerformance] = None
    partial_failures: List[str] = Field(default_factory=list)
    unknown_checks: List[str] = Field(default_factory=list)


# ── topology ─────────────────────────────────────────────────────────────────

class Role(str, Enum):
    CLIENT = "client"
    GATEWAY = "gateway"
    ISP = "isp"
    BACKBONE = "backbone"
    CDN = "cdn"
    ORIGIN = "origin"


ROLE_ORDER: List[Role] = [
    Role.CLIENT,
    Role.GATEWAY,
    Role.ISP,
    Role.BACKBONE,
    Role.CDN,
    Role.ORIGIN,
]


class TopologyNode(FrozenModel):
    id: str
    display_name: str
    role: Role
    provider_label: str = UNKNOWN
    address: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)


class TopologyEdge(FrozenModel):
    from_id: str
    to_id: str


class Topology(FrozenModel):
    nodes: List[TopologyNode] = Field(default_factory=list)
    edges: List[TopologyEdge] = Field(default_factory=list)
    redundancy: int = 0
    anycast_likely: bool = False


# ── read model ───────────────────────────────────────────────────────────────

class HealthSnapshot(FrozenModel):
    timestamp: datetime
    domain: Optional[str] = None
    per_target_stats: Dict[str, Dict[str, Optional[MetricStats]]] = Field(default_factory=dict)
    timeseries: Dict[str, Dict[str, List[SeriesPoint]]] = Field(default_factory=dict)
    latency_ticks: Dict[str, LatencyTick] = Field(default_factory=dict)
    unreachable: List[str] = Field(default_factory=list)
    failure_counts: Dict[str, int] = Field(default_factory=dict)
    chain: List[ChainLevel] = Field(default_factory=list)
    findings: List[SecurityFinding] = Field(default_factory=list)
    topology: Topology = Field(default_factory=Topology)
    score: int = Field(ge=0, le=100)
    rating: str

"""Aggregation of buffers, DNS analysis and topology into published HealthSnapshots."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, List, Optional

from pathScope.collector.config import EngineConfig
from pathScope.collector.models import DNSAnalysis, HealthSnapshot, Topology
from pathScope.collector.sampler import MetricSampler
from pathScope.enrichment.scorer import compute_score, metric_averages, rating
from pathScope.logging_config import get_logger

logger = get_logger("aggregator")

Subscriber = Callable[[HealthSnapshot], None]


def empty_snapshot(domain: Optional[str] = None, topology: Optional[Topology] = None) -> HealthSnapshot:
    """The snapshot readers see before the first aggregation tick."""
    return HealthSnapshot(
        timestamp=datetime.now(timezone.utc),
        domain=domain,
        topology=topology or Topology(),
        score=100,
        rating=rating(100),
    )


class SnapshotStore:
    """Single reference to the latest snapshot; publish swaps it in one assignment."""

    def __init__(self, initial: HealthSnapshot) -> None:
        self._current = initial
        self._subscribers: List[Subscriber] = []
        self.published = 0

    @property
    def current(self) -> HealthSnapshot:
        return self._current

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def publish(self, snapshot: HealthSnapshot) -> None:
        self._current = snapshot
        self.published += 1
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception as exc:
                logger.error(
                    f"Snapshot subscriber failed: {exc}",
                    exc_info=True,
                    extra={"outcome": "error", "error_type": type(exc).__name__},
                )


class Aggregator:
    """Reads sampler state plus the latest DNS/topology results and publishes a snapshot."""

    def __init__(self, sampler: MetricSampler, store: SnapshotStore, config: EngineConfig) -> None:
        self.sampler = sampler
        self.store = store
        self.config = config
        self.dns_analysis: Optional[DNSAnalysis] = None
        self.topology: Optional[Topology] = None

    def update_dns(self, analysis: DNSAnalysis) -> None:
        self.dns_analysis = analysis

    def update_topology(self, topology: Topology) -> None:
        self.topology = topology

    def build(self) -> HealthSnapshot:
        stats = self.sampler.stats()
        unreachable = self.sampler.unreachable()
        findings = list(self.dns_analysis.findings) if self.dns_analysis else []
        score = compute_score(findings, metric_averages(stats), len(unreachable), self.config.scoring)
        return HealthSnapshot(
            timestamp=datetime.now(timezone.utc),
            domain=self.config.domain,
            per_target_stats=stats,
            timeseries=self.sampler.timeseries(),
            latency_ticks=dict(self.sampler.latency_ticks),
            unreachable=unreachable,
            failure_counts=dict(self.sampler.failure_counts),
            chain=list(self.dns_analysis.chain) if self.dns_analysis else [],
            findings=findings,
            topology=self.topology or self.store.current.topology,
            score=score,
            rating=rating(score),
        )

    async def tick(self) -> HealthSnapshot:
        snapshot = self.build()
        previous = self.store.current
        self.store.publish(snapshot)
        if previous.score != snapshot.score:
            logger.info(
                f"Health score changed {previous.score} -> {snapshot.score}",
                extra={"score": snapshot.score, "domain": snapshot.domain, "state": snapshot.rating},
            )
        return snapshot

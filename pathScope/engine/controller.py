"""Lifecycle controller wiring sampler, DNS reconstructor, topology and aggregator."""
from __future__ import annotations

import asyncio
import inspect
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pathScope.collector.config import EngineConfig
from pathScope.collector.dns_chain import DNSChainReconstructor
from pathScope.collector.models import DNSAnalysis, HealthSnapshot, PublicIPMetadata, Topology
from pathScope.collector.sampler import MetricSampler
from pathScope.collector.sources import Probe, bounded
from pathScope.engine.aggregator import Aggregator, SnapshotStore, Subscriber, empty_snapshot
from pathScope.enrichment import CircuitBreaker
from pathScope.enrichment.facts import ConnectionFacts, discover_connection_facts
from pathScope.enrichment.providers import ProviderPrefixTable, build_tables
from pathScope.enrichment.topology import infer_topology
from pathScope.errors import ConfigurationError, ProbeError
from pathScope.logging_config import get_logger
from pathScope.scheduler.periodic import PeriodicTask

logger = get_logger("engine")


class EngineState(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    STOPPED = "stopped"


async def _close_probe(probe: Any) -> None:
    if probe is None or not hasattr(probe, "close"):
        return
    try:
        result = probe.close()
        if inspect.isawaitable(result):
            await result
    except Exception as exc:
        logger.warning(
            f"Closing probe failed: {exc}",
            extra={"outcome": "error", "error_type": type(exc).__name__},
        )


class TelemetryEngine:
    """
    Owns every periodic task of one monitoring session.

    Nothing is module-level: several engines can run side by side, each with
    its own probe, buffers and snapshot store. start() validates the
    configuration and schedules the tasks; stop() cancels them, closes the
    probe and leaves the engine unusable.
    """

    def __init__(
        self,
        probe: Probe,
        config: Optional[EngineConfig] = None,
        cdn_table: Optional[ProviderPrefixTable] = None,
        hosting_table: Optional[ProviderPrefixTable] = None,
    ) -> None:
        self.config = config or EngineConfig()
        self._probe: Optional[Probe] = probe
        self._cdn_table = cdn_table
        self._hosting_table = hosting_table
        self.state = EngineState.CREATED
        self.tasks: Dict[str, PeriodicTask] = {}
        self.sampler: Optional[MetricSampler] = None
        self.aggregator: Optional[Aggregator] = None
        self.reconstructor: Optional[DNSChainReconstructor] = None
        self.connection_facts: Optional[ConnectionFacts] = None
        self.public_ip: Optional[PublicIPMetadata] = None
        self.public_ip_breaker = CircuitBreaker("public_ip")
        self._dns_lock = asyncio.Lock()
        self.store = SnapshotStore(
            empty_snapshot(
                self.config.domain,
                infer_topology(
                    None,
                    None,
                    origin_name=self.config.domain,
                    include_backbone=self.config.topology.include_backbone,
                    origin_location=self._origin_location(),
                ),
            )
        )

    # ── wiring ──────────────────────────────────────────────────────────────

    def _tables(self):
        try:
            cdn, hosting = build_tables(self.config.providers.cdn, self.config.providers.hosting)
        except ValueError as exc:
            raise ConfigurationError(f"Invalid provider table: {exc}") from exc
        return self._cdn_table or cdn, self._hosting_table or hosting

    @property
    def running(self) -> bool:
        return self.state == EngineState.RUNNING

    def _anycast_window(self):
        return (self.config.topology.anycast_min_ips, self.config.topology.anycast_max_ips)

    def _origin_location(self) -> Optional[Tuple[float, float]]:
        topo = self.config.topology
        if topo.origin_lat is None or topo.origin_lon is None:
            return None
        return (topo.origin_lat, topo.origin_lon)

    def _ensure_components(self) -> None:
        if self.state == EngineState.STOPPED or self._probe is None:
            raise RuntimeError("Engine has been stopped and cannot be reused")
        if self.sampler is not None:
            return
        self.config.validate_for_start()
        cdn, hosting = self._tables()
        self._cdn_table, self._hosting_table = cdn, hosting
        self.sampler = MetricSampler(self._probe, self.config.targets, self.config)
        self.aggregator = Aggregator(self.sampler, self.store, self.config)
        self.reconstructor = DNSChainReconstructor(
            self._probe,
            self.config.dns,
            timeout=self.config.probe_timeout_seconds,
            cdn_table=cdn,
            hosting_table=hosting,
            anycast_window=self._anycast_window(),
        )

    def _build_tasks(self) -> Dict[str, PeriodicTask]:
        cfg = self.config
        sampler = self.sampler
        tasks = {
            "latency": PeriodicTask("latency", cfg.latency.interval_seconds, sampler.sample_latency),
            "bandwidth": PeriodicTask("bandwidth", cfg.bandwidth.interval_seconds, sampler.sample_bandwidth),
            "packet_loss": PeriodicTask("packet_loss", cfg.packet_loss.interval_seconds, sampler.sample_packet_loss),
            "jitter": PeriodicTask("jitter", cfg.jitter.interval_seconds, sampler.sample_jitter),
        }
        if cfg.dns.enabled and cfg.domain:
            tasks["dns"] = PeriodicTask("dns", cfg.dns.interval_seconds, self.reconstruct_dns)
        if cfg.topology.enabled:
            tasks["topology"] = PeriodicTask("topology", cfg.topology.interval_seconds, self.refresh_topology)
        tasks["aggregator"] = PeriodicTask("aggregator", cfg.aggregator.interval_seconds, self.aggregate)
        return tasks

    # ── lifecycle ───────────────────────────────────────────────────────────

    async def start(self, config: Optional[EngineConfig] = None) -> None:
        """Validate configuration and start every periodic task. No-op when running."""
        if self.running:
            logger.debug("Engine already running; start ignored", extra={"state": self.state.value})
            return
        if self.state == EngineState.STOPPED:
            raise RuntimeError("Engine has been stopped and cannot be restarted")
        if config is not None:
            self.config = config
            self.sampler = None
        self._ensure_components()

        self.tasks = self._build_tasks()
        for task in self.tasks.values():
            task.start()
        self.state = EngineState.RUNNING
        logger.info(
            "Telemetry engine started",
            extra={
                "state": self.state.value,
                "domain": self.config.domain,
                "extra_fields": {
                    "targets": [t.name for t in self.config.targets],
                    "tasks": list(self.tasks),
                },
            },
        )

    async def stop(self) -> None:
        """Cancel every task and in-flight probe, close the probe, drop references."""
        if self.state == EngineState.STOPPED:
            return
        await asyncio.gather(*(task.stop() for task in self.tasks.values()), return_exceptions=True)
        probe = self._probe
        if self.sampler is not None:
            self.sampler.close()
        if self.reconstructor is not None:
            self.reconstructor.probe = None
        self._probe = None
        await _close_probe(probe)
        self.state = EngineState.STOPPED
        logger.info("Telemetry engine stopped", extra={"state": self.state.value})

    # ── one-shot cycles ─────────────────────────────────────────────────────

    async def reconstruct_dns(self) -> Optional[DNSAnalysis]:
        """Run one DNS reconstruction now; None when no domain is configured."""
        self._ensure_components()
        if not self.config.domain:
            return None
        async with self._dns_lock:
            analysis = await self.reconstructor.reconstruct(self.config.domain)
            if self.state == EngineState.STOPPED:
                return analysis
            self.aggregator.update_dns(analysis)
            if self.config.topology.enabled:
                self._infer()
            return analysis

    async def refresh_topology(self) -> Topology:
        """Rediscover connection facts and public IP, then re-infer the path."""
        self._ensure_components()
        if self.config.topology.discover_local_facts:
            self.connection_facts = await discover_connection_facts()
        probe = self._probe
        if probe is not None and self.public_ip_breaker.allow():
            timeout = self.config.probe_timeout_seconds
            try:
                self.public_ip = await bounded(
                    probe.fetch_public_ip_metadata(timeout=timeout), timeout, "public_ip"
                )
                self.public_ip_breaker.record_success()
            except ProbeError as exc:
                self.public_ip_breaker.record_failure()
                logger.warning(
                    f"Public IP lookup failed: {exc}",
                    extra={"outcome": "error", "error_type": type(exc).__name__},
                )
        return self._infer()

    def _infer(self) -> Topology:
        analysis = self.aggregator.dns_analysis
        topology = infer_topology(
            self.connection_facts,
            self.public_ip,
            serving_ips=analysis.infrastructure.serving_ips if analysis else [],
            cdn_table=self._cdn_table,
            hosting_table=self._hosting_table,
            origin_name=self.config.domain,
            include_backbone=self.config.topology.include_backbone,
            anycast_window=self._anycast_window(),
            origin_location=self._origin_location(),
        )
        self.aggregator.update_topology(topology)
        return topology

    async def aggregate(self) -> HealthSnapshot:
        """Build and publish a snapshot now."""
        self._ensure_components()
        return await self.aggregator.tick()

    # ── read side ───────────────────────────────────────────────────────────

    def current_snapshot(self) -> HealthSnapshot:
        return self.store.current

    def export(self) -> Dict[str, Any]:
        """JSON-ready dict of the current snapshot with camelCase keys."""
        return self.current_snapshot().model_dump(mode="json", by_alias=True)

    def export_json(self, indent: Optional[int] = 2) -> str:
        return self.current_snapshot().model_dump_json(by_alias=True, indent=indent)

    def subscribe(self, callback: Subscriber):
        """Call `callback(snapshot)` after every publish; returns an unsubscribe function."""
        return self.store.subscribe(callback)

    def health(self) -> Dict[str, Any]:
        snapshot = self.current_snapshot()
        return {
            "state": self.state.value,
            "domain": self.config.domain,
            "targets": [t.name for t in self.config.targets],
            "snapshots_published": self.store.published,
            "last_snapshot_at": snapshot.timestamp.isoformat(),
            "unreachable": list(snapshot.unreachable),
            "tasks": {name: task.stats() for name, task in self.tasks.items()},
            "public_ip_lookup": self.public_ip_breaker.get_stats(),
        }

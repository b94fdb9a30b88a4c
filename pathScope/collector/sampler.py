"""Metric sampler: one tick of probes per metric kind, written into rolling buffers."""
from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from statistics import fmean
from typing import Dict, List, Optional, Sequence, Tuple

from pathScope.collector.buffer import NO_DATA, RollingBuffer
from pathScope.collector.config import EngineConfig
from pathScope.collector.models import LatencyTick, MetricKind, MetricStats, Sample, SeriesPoint, Target
from pathScope.collector.sources import Probe, bounded
from pathScope.errors import ProbeError
from pathScope.logging_config import get_logger

TARGET_METRICS = (MetricKind.LATENCY, MetricKind.PACKET_LOSS, MetricKind.JITTER)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def mean_absolute_deviation(values: Sequence[float]) -> float:
    """Mean absolute deviation of `values` from their mean."""
    avg = fmean(values)
    return fmean(abs(v - avg) for v in values)


def packet_loss_ratio(attempts: int, successes: int) -> Optional[float]:
    """(n - k) / n, or None when nothing was attempted."""
    if attempts <= 0:
        return None
    return (attempts - successes) / attempts


class MetricSampler:
    """
    Owns the rolling buffers and per-target failure counters.

    Each `sample_*` coroutine runs a single tick for one metric kind across
    all targets concurrently. A failed probe never aborts the tick for other
    targets; it only means no sample for that (target, metric).
    """

    def __init__(self, probe: Probe, targets: Sequence[Target], config: EngineConfig) -> None:
        self.probe: Optional[Probe] = probe
        self.targets: List[Target] = list(targets)
        self.config = config
        self.timeout = config.probe_timeout_seconds
        self.client_name = config.bandwidth_target_name
        self.buffers: Dict[Tuple[str, MetricKind], RollingBuffer] = {}
        for target in self.targets:
            for kind in TARGET_METRICS:
                self.buffers[(target.name, kind)] = RollingBuffer(target.name, kind, config.buffer_capacity)
        self.buffers[(self.client_name, MetricKind.BANDWIDTH)] = RollingBuffer(
            self.client_name, MetricKind.BANDWIDTH, config.buffer_capacity
        )
        self.failure_counts: Dict[str, int] = {t.name: 0 for t in self.targets}
        self.loggers: Dict[str, logging.LoggerAdapter] = {
            name: get_logger("sampler", context={"target": name})
            for name in [t.name for t in self.targets] + [self.client_name]
        }
        self.latency_ticks: Dict[str, LatencyTick] = {}
        self._closed = False

    def _log(self, target_name: str) -> logging.LoggerAdapter:
        if target_name not in self.loggers:
            self.loggers[target_name] = get_logger("sampler", context={"target": target_name})
        return self.loggers[target_name]

    @property
    def closed(self) -> bool:
        return self._closed

    def buffer(self, target_name: str, kind: MetricKind) -> RollingBuffer:
        return self.buffers[(target_name, MetricKind(kind))]

    # ── failure accounting ──────────────────────────────────────────────────

    def _record_failure(self, target_name: str, kind: MetricKind) -> None:
        self.failure_counts[target_name] = self.failure_counts.get(target_name, 0) + 1
        count = self.failure_counts[target_name]
        if count == self.config.unreachable_after_failures:
            self._log(target_name).warning(
                f"Target {target_name} marked unreachable after {count} failed ticks",
                extra={"metric": kind.value, "failures": count, "state": "unreachable"},
            )

    def _record_success(self, target_name: str) -> None:
        previous = self.failure_counts.get(target_name, 0)
        self.failure_counts[target_name] = 0
        if previous >= self.config.unreachable_after_failures:
            self._log(target_name).info(
                f"Target {target_name} reachable again",
                extra={"failures": previous, "state": "reachable"},
            )

    def unreachable(self) -> List[str]:
        limit = self.config.unreachable_after_failures
        return [name for name, count in self.failure_counts.items() if count >= limit]

    def _push(self, target_name: str, kind: MetricKind, value: float, captured_at: datetime) -> None:
        self.buffers[(target_name, kind)].push(
            Sample(target_name=target_name, metric_kind=kind, value=value, captured_at=captured_at)
        )

    async def _probe_latency(self, target: Target) -> Optional[float]:
        probe = self.probe
        if probe is None:
            return None
        try:
            return await bounded(probe.measure_latency(target, timeout=self.timeout), self.timeout, "latency")
        except ProbeError as exc:
            self._log(target.name).debug(
                f"Latency probe to {target.name} failed: {exc}",
                extra={"outcome": "error", "error_type": type(exc).__name__},
            )
            return None

    async def _run_for_targets(self, fn) -> int:
        if self._closed:
            return 0
        results = await asyncio.gather(*(fn(t) for t in self.targets), return_exceptions=True)
        pushed = 0
        for target, result in zip(self.targets, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, Exception):
                self._log(target.name).error(
                    f"Sampling {target.name} raised unexpectedly: {result}",
                    extra={"outcome": "error", "error_type": type(result).__name__},
                )
                continue
            pushed += int(bool(result))
        return pushed

    # ── latency ─────────────────────────────────────────────────────────────

    async def sample_latency(self) -> int:
        """One latency tick; returns the number of samples recorded."""
        return await self._run_for_targets(self._latency_for)

    async def _latency_for(self, target: Target) -> bool:
        cfg = self.config.latency
        values: List[float] = []
        for i in range(cfg.probes_per_tick):
            if i and cfg.probe_spacing_seconds:
                await asyncio.sleep(cfg.probe_spacing_seconds)
            value = await self._probe_latency(target)
            if value is not None:
                values.append(value)
        if self._closed:
            return False
        if not values:
            self._record_failure(target.name, MetricKind.LATENCY)
            return False
        now = _utcnow()
        mean = fmean(values)
        self._push(target.name, MetricKind.LATENCY, mean, now)
        self.latency_ticks[target.name] = LatencyTick(
            target_name=target.name,
            mean=mean,
            min=min(values),
            max=max(values),
            successes=len(values),
            attempts=cfg.probes_per_tick,
            captured_at=now,
        )
        self._record_success(target.name)
        return True

    # ── packet loss ─────────────────────────────────────────────────────────

    async def sample_packet_loss(self) -> int:
        return await self._run_for_targets(self._packet_loss_for)

    async def _packet_loss_for(self, target: Target) -> bool:
        attempts = self.config.packet_loss.probes_per_tick
        results = await asyncio.gather(*(self._probe_latency(target) for _ in range(attempts)))
        if self._closed:
            return False
        successes = sum(1 for r in results if r is not None)
        loss = packet_loss_ratio(attempts, successes)
        if loss is None:
            return False
        self._push(target.name, MetricKind.PACKET_LOSS, loss, _utcnow())
        if successes == 0:
            self._record_failure(target.name, MetricKind.PACKET_LOSS)
        else:
            self._record_success(target.name)
        return True

    # ── jitter ──────────────────────────────────────────────────────────────

    async def sample_jitter(self) -> int:
        return await self._run_for_targets(self._jitter_for)

    async def _jitter_for(self, target: Target) -> bool:
        cfg = self.config.jitter
        values: List[float] = []
        for i in range(cfg.probes_per_tick):
            if i and cfg.probe_spacing_seconds:
                await asyncio.sleep(cfg.probe_spacing_seconds)
            value = await self._probe_latency(target)
            if value is not None:
                values.append(value)
        if self._closed:
            return False
        if not values:
            self._record_failure(target.name, MetricKind.JITTER)
            return False
        self._record_success(target.name)
        if len(values) < 2:
            self._log(target.name).debug(
                f"Jitter for {target.name} needs two successful probes, got {len(values)}",
                extra={"metric": MetricKind.JITTER.value, "samples": len(values)},
            )
            return False
        self._push(target.name, MetricKind.JITTER, mean_absolute_deviation(values), _utcnow())
        return True

    # ── bandwidth ───────────────────────────────────────────────────────────

    async def sample_bandwidth(self) -> int:
        """Download each configured payload once; record the mean bitrate for the client."""
        if self._closed:
            return 0
        start = time.perf_counter()
        rates: List[float] = []
        for size_kb in self.config.bandwidth.payload_sizes_kb:
            probe = self.probe
            if probe is None:
                return 0
            try:
                rate = await bounded(
                    probe.measure_bandwidth_sample(size_kb, timeout=self.timeout), self.timeout, "bandwidth"
                )
            except ProbeError as exc:
                self._log(self.client_name).warning(
                    f"Bandwidth sample of {size_kb}KB failed: {exc}",
                    extra={
                        "metric": MetricKind.BANDWIDTH.value,
                        "outcome": "error",
                        "error_type": type(exc).__name__,
                    },
                )
                continue
            rates.append(float(rate))
        if self._closed or not rates:
            return 0
        self._push(self.client_name, MetricKind.BANDWIDTH, fmean(rates), _utcnow())
        self._log(self.client_name).debug(
            "Bandwidth tick completed",
            extra={
                "metric": MetricKind.BANDWIDTH.value,
                "samples": len(rates),
                "duration": round((time.perf_counter() - start) * 1000, 2),
                "outcome": "success",
            },
        )
        return 1

    # ── read side ───────────────────────────────────────────────────────────

    def stats(self) -> Dict[str, Dict[str, Optional[MetricStats]]]:
        """Per-target stats; None where a buffer holds no data."""
        out: Dict[str, Dict[str, Optional[MetricStats]]] = {}
        for (name, kind), buf in self.buffers.items():
            snap = buf.snapshot()
            out.setdefault(name, {})[kind.value] = None if snap is NO_DATA else snap
        return out

    def timeseries(self) -> Dict[str, Dict[str, List[SeriesPoint]]]:
        out: Dict[str, Dict[str, List[SeriesPoint]]] = {}
        for (name, kind), buf in self.buffers.items():
            out.setdefault(name, {})[kind.value] = [
                SeriesPoint(captured_at=s.captured_at, value=s.value) for s in buf.samples()
            ]
        return out

    def close(self) -> Optional[Probe]:
        """Stop accepting results and hand back the released probe."""
        self._closed = True
        probe, self.probe = self.probe, None
        return probe

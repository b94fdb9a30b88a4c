"""Weighted-penalty health score.

The model is a heuristic: every weight and threshold lives in ScoreWeights
and none of them is statistically calibrated. Penalties are non-negative, so
adding a finding or worsening a metric never raises the score.
"""
from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from pathScope.collector.config import ScoreWeights
from pathScope.collector.models import MetricKind, MetricStats, SecurityFinding, Severity

RATINGS: List[Tuple[int, str]] = [(80, "Excellent"), (60, "Good"), (40, "Fair")]


def severity_penalty(severity: Severity, weights: ScoreWeights) -> int:
    return {
        Severity.HIGH: weights.high,
        Severity.MEDIUM: weights.medium,
        Severity.LOW: weights.low,
    }[Severity(severity)]


def _tiered(value: Optional[float], tiers: Iterable[Tuple[float, int]]) -> int:
    if value is None:
        return 0
    return sum(penalty for threshold, penalty in tiers if value > threshold)


def metric_averages(stats: Mapping[str, Mapping[str, Optional[MetricStats]]]) -> Dict[str, Optional[float]]:
    """Mean of per-target averages for each metric kind; None when nothing was measured."""
    collected: Dict[str, List[float]] = {kind.value: [] for kind in MetricKind}
    for per_kind in stats.values():
        for kind, snap in per_kind.items():
            if snap is None:
                continue
            collected.setdefault(kind, []).append(snap.average)
    return {kind: (sum(vals) / len(vals) if vals else None) for kind, vals in collected.items()}


def compute_score(
    findings: Iterable[SecurityFinding],
    averages: Mapping[str, Optional[float]],
    unreachable_count: int = 0,
    weights: Optional[ScoreWeights] = None,
) -> int:
    """100 minus every applicable penalty, clamped to [0, 100]."""
    w = weights or ScoreWeights()
    score = 100
    for finding in findings:
        score -= severity_penalty(finding.severity, w)

    score -= _tiered(
        averages.get(MetricKind.LATENCY.value),
        [(w.latency_elevated_ms, w.latency_elevated_penalty), (w.latency_severe_ms, w.latency_severe_penalty)],
    )
    loss = averages.get(MetricKind.PACKET_LOSS.value)
    score -= _tiered(
        None if loss is None else loss * 100,
        [
            (w.packet_loss_elevated_pct, w.packet_loss_elevated_penalty),
            (w.packet_loss_severe_pct, w.packet_loss_severe_penalty),
        ],
    )
    score -= _tiered(
        averages.get(MetricKind.JITTER.value),
        [(w.jitter_elevated_ms, w.jitter_elevated_penalty), (w.jitter_severe_ms, w.jitter_severe_penalty)],
    )
    bandwidth = averages.get(MetricKind.BANDWIDTH.value)
    if bandwidth is not None and bandwidth < w.bandwidth_floor_kbps:
        score -= w.bandwidth_penalty

    score -= max(unreachable_count, 0) * w.unreachable_penalty
    return max(0, min(100, int(score)))


def rating(score: int) -> str:
    for floor, label in RATINGS:
        if score >= floor:
            return label
    return "Poor"

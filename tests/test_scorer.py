from __future__ import annotations

import itertools

from pathScope.collector.config import ScoreWeights
from pathScope.collector.models import MetricStats, SecurityFinding, Severity
from pathScope.enrichment.scorer import compute_score, metric_averages, rating


def _finding(severity: Severity) -> SecurityFinding:
    return SecurityFinding(category="test", severity=severity, title="t", detail="d")


def _stats(average: float) -> MetricStats:
    return MetricStats(current=average, average=average, min=average, max=average, stddev=0.0, count=1)


def test_clean_network_scores_full_marks() -> None:
    assert compute_score([], {}) == 100
    assert rating(100) == "Excellent"


def test_reference_penalties() -> None:
    averages = {"latency": 250.0, "packetLoss": 0.02, "jitter": 60.0, "bandwidth": 500.0}

    # 100 - 20 - 30 (latency) - 25 (loss > 1%) - 15 (jitter) - 10 (bandwidth) = 0
    assert compute_score([], averages) == 0
    assert compute_score([_finding(Severity.HIGH)], {}) == 80
    assert compute_score([_finding(Severity.MEDIUM), _finding(Severity.LOW)], {}) == 85
    assert compute_score([], {"latency": 150.0}) == 80
    assert compute_score([], {}, unreachable_count=2) == 80


def test_thresholds_are_strict() -> None:
    assert compute_score([], {"latency": 100.0}) == 100
    assert compute_score([], {"packetLoss": 0.01}) == 100
    assert compute_score([], {"bandwidth": 1000.0}) == 100


def test_score_is_clamped() -> None:
    findings = [_finding(Severity.HIGH)] * 10

    assert compute_score(findings, {"latency": 500.0, "packetLoss": 1.0}, unreachable_count=5) == 0


def test_adding_findings_never_raises_the_score() -> None:
    pool = [_finding(s) for s in (Severity.LOW, Severity.MEDIUM, Severity.HIGH)]
    averages = {"latency": 120.0}
    for size in range(len(pool) + 1):
        for subset in itertools.combinations(pool, size):
            base = compute_score(list(subset), averages)
            for extra in pool:
                assert compute_score(list(subset) + [extra], averages) <= base


def test_worsening_metrics_never_raises_the_score() -> None:
    previous = 100
    for latency in range(0, 400, 10):
        score = compute_score([], {"latency": float(latency), "jitter": latency / 2})
        assert score <= previous
        previous = score


def test_weights_are_configurable() -> None:
    weights = ScoreWeights(high=50, latency_elevated_ms=10.0)

    assert compute_score([_finding(Severity.HIGH)], {"latency": 20.0}, weights=weights) == 30


def test_ratings() -> None:
    assert [rating(s) for s in (80, 79, 60, 59, 40, 39, 0)] == [
        "Excellent", "Good", "Good", "Fair", "Fair", "Poor", "Poor",
    ]


def test_metric_averages_mean_of_targets() -> None:
    stats = {
        "origin": {"latency": _stats(100.0), "jitter": None},
        "edge": {"latency": _stats(50.0), "jitter": _stats(4.0)},
        "client": {"bandwidth": _stats(800.0)},
    }

    averages = metric_averages(stats)

    assert averages["latency"] == 75.0
    assert averages["jitter"] == 4.0
    assert averages["bandwidth"] == 800.0
    assert averages["packetLoss"] is None

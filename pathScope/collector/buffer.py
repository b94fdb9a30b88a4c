"""Fixed-capacity rolling sample buffer with streaming statistics."""
from __future__ import annotations

import math
import statistics
from collections import deque
from typing import Deque, List, Optional, Tuple, Union

from pathScope.collector.models import MetricKind, MetricStats, Sample


class _NoData:
    """Sentinel for "never measured"; falsy and never equal to a number."""

    _instance: Optional["_NoData"] = None

    def __new__(cls) -> "_NoData":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NO_DATA"

    def __reduce__(self):
        return (_NoData, ())


NO_DATA = _NoData()

StatsResult = Union[MetricStats, _NoData]


class RollingBuffer:
    """
    Bounded FIFO of samples for one (target, metric kind) pair.

    push() is O(1) amortized: two monotonic deques of (sequence, value)
    pairs give the window minimum and maximum without rescanning. Mean and
    standard deviation are computed from the held samples at snapshot time
    with exact float summation, so statistics never include evicted samples.
    """

    def __init__(self, target_name: str, metric_kind: MetricKind, capacity: int) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self.target_name = target_name
        self.metric_kind = MetricKind(metric_kind)
        self.capacity = capacity
        self._samples: Deque[Sample] = deque()
        self._seq_head = 0   # sequence number of the oldest sample held
        self._seq_next = 0   # sequence number the next push receives
        self._min_q: Deque[Tuple[int, float]] = deque()
        self._max_q: Deque[Tuple[int, float]] = deque()

    def __len__(self) -> int:
        return len(self._samples)

    def __repr__(self) -> str:
        return (
            f"RollingBuffer(target={self.target_name!r}, metric={self.metric_kind.value}, "
            f"len={len(self)}, capacity={self.capacity})"
        )

    def push(self, sample: Sample) -> None:
        if sample.target_name != self.target_name or sample.metric_kind != self.metric_kind:
            raise ValueError(
                f"sample for ({sample.target_name}, {sample.metric_kind.value}) pushed into "
                f"buffer for ({self.target_name}, {self.metric_kind.value})"
            )
        if len(self._samples) >= self.capacity:
            self._evict_oldest()

        value = float(sample.value)
        seq = self._seq_next
        self._seq_next += 1
        self._samples.append(sample)

        while self._min_q and self._min_q[-1][1] >= value:
            self._min_q.pop()
        self._min_q.append((seq, value))
        while self._max_q and self._max_q[-1][1] <= value:
            self._max_q.pop()
        self._max_q.append((seq, value))

    def _evict_oldest(self) -> None:
        self._samples.popleft()
        if self._min_q and self._min_q[0][0] == self._seq_head:
            self._min_q.popleft()
        if self._max_q and self._max_q[0][0] == self._seq_head:
            self._max_q.popleft()
        self._seq_head += 1

    def clear(self) -> None:
        self._samples.clear()
        self._min_q.clear()
        self._max_q.clear()
        self._seq_head = self._seq_next

    def samples(self) -> Tuple[Sample, ...]:
        """Copy of the current contents, oldest first."""
        return tuple(self._samples)

    def latest(self) -> Optional[Sample]:
        return self._samples[-1] if self._samples else None

    def snapshot(self) -> StatsResult:
        """Immutable stats over the current window, or NO_DATA when empty."""
        count = len(self._samples)
        if count == 0:
            return NO_DATA
        values: List[float] = [float(s.value) for s in self._samples]
        mean = math.fsum(values) / count
        return MetricStats(
            current=values[-1],
            average=mean,
            min=self._min_q[0][1],
            max=self._max_q[0][1],
            stddev=statistics.pstdev(values, mu=mean),
            count=count,
        )

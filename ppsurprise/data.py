#   Copyright 2024 - present The ppsurprise Developers
#
#   Licensed under the Apache License, Version 2.0 (the "License");
#   you may not use this file except in compliance with the License.
#   You may obtain a copy of the License at
#
#       http://www.apache.org/licenses/LICENSE-2.0
#
#   Unless required by applicable law or agreed to in writing, software
#   distributed under the License is distributed on an "AS IS" BASIS,
#   WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#   See the License for the specific language governing permissions and
#   limitations under the License.

from collections.abc import Sequence
from typing import NamedTuple, Protocol, runtime_checkable

import numpy as np

__all__ = [
    "Changepoint",
    "DataIndexOracle",
    "EventTimes",
    "as_event_times",
    "cumulative_counts",
    "cumulative_multipliers",
]


class Changepoint(NamedTuple):
    """Interval endpoint: a time coordinate and the data index found there."""

    time: float
    index: int


@runtime_checkable
class DataIndexOracle(Protocol):
    def count_up_to(self, t: float, low: int = 0, high: int | None = None) -> int: ...

    def event_time(self, i: int) -> float: ...


class EventTimes:
    """Sorted event times of a point process.

    ``count_up_to(t)`` is the number of events at or before ``t``, a
    right-continuous step function. The optional ``low``/``high`` hints
    narrow the binary search; a hint that does not bracket the answer is
    ignored rather than trusted.
    """

    def __init__(self, times: Sequence[float] | np.ndarray):
        times = np.array(times, dtype=float)
        if times.ndim != 1:
            raise ValueError(f"event times must be one dimensional, got shape {times.shape}")
        if not np.all(np.isfinite(times)):
            raise ValueError("event times must be finite")
        if np.any(np.diff(times) < 0):
            raise ValueError("event times must be sorted in non-decreasing order")
        self.times = times
        self.times.setflags(write=False)

    def __len__(self):
        return self.times.size

    def __repr__(self):
        return f"EventTimes(n={self.times.size})"

    @property
    def last_time(self) -> float:
        return float(self.times[-1]) if self.times.size else 0.0

    def event_time(self, i: int) -> float:
        return float(self.times[i])

    def count_up_to(self, t: float, low: int = 0, high: int | None = None) -> int:
        n = self.times.size
        lo = min(max(int(low), 0), n)
        hi = n if high is None else min(max(int(high), lo), n)
        if lo > 0 and self.times[lo - 1] > t:
            lo = 0
        if hi < n and self.times[hi] <= t:
            hi = n
        return lo + int(np.searchsorted(self.times[lo:hi], t, side="right"))


def as_event_times(events) -> DataIndexOracle | None:
    if events is None or isinstance(events, DataIndexOracle):
        return events
    return EventTimes(events)


def cumulative_counts(counts: Sequence[int] | np.ndarray) -> np.ndarray:
    """Running sum of per-bin counts, starting at bin 0."""
    counts = np.asarray(counts)
    if counts.ndim != 1:
        raise ValueError(f"counts must be one dimensional, got shape {counts.shape}")
    if counts.size and (np.any(counts < 0) or np.any(counts != np.floor(counts))):
        raise ValueError("counts must be non-negative integers")
    return np.cumsum(counts.astype(np.int64))


def cumulative_multipliers(
    multipliers: Sequence[float] | np.ndarray, n_bins: int
) -> np.ndarray:
    """Running sum of per-bin intensity multipliers.

    Entry ``i`` is the exposure of bins ``0..i``; entry 0 is the first
    multiplier itself.
    """
    multipliers = np.asarray(multipliers, dtype=float)
    if multipliers.shape != (n_bins,):
        raise ValueError(
            f"expected {n_bins} intensity multipliers, one per bin, got shape {multipliers.shape}"
        )
    if np.any(multipliers < 0):
        raise ValueError("intensity multipliers must be non-negative")
    return np.cumsum(multipliers)

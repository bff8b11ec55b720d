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

"""Monotone time warps that turn elapsed time into effective exposure.

A time scale only has to answer ``duration(t1, t2)``. The value is returned
signed: a negative result means the caller passed a mis-ordered interval and
it is up to the caller to report that, never to the scale to clamp it.
"""

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

import numpy as np

__all__ = [
    "TimeScale",
    "LinearTimeScale",
    "SeasonalTimeScale",
    "DecayTimeScale",
    "effective_duration",
]


@runtime_checkable
class TimeScale(Protocol):
    def duration(self, t1: float, t2: float) -> float: ...


class LinearTimeScale:
    """Plain elapsed time."""

    def duration(self, t1: float, t2: float) -> float:
        return float(t2) - float(t1)

    def __repr__(self):
        return "LinearTimeScale()"


class SeasonalTimeScale:
    """Piecewise-constant intensity weighting repeated every ``period``.

    Parameters
    ----------
    period : float
        Length of one season cycle.
    boundaries : sequence of float
        Start of each segment within a cycle. Must begin at 0 and increase
        strictly, every entry below ``period``.
    weights : sequence of float
        Non-negative exposure weight of each segment.
    """

    def __init__(self, period: float, boundaries: Sequence[float], weights: Sequence[float]):
        starts = np.asarray(boundaries, dtype=float)
        weights = np.asarray(weights, dtype=float)
        if period <= 0:
            raise ValueError(f"period must be positive, got {period}")
        if starts.ndim != 1 or starts.shape != weights.shape or starts.size == 0:
            raise ValueError("boundaries and weights must be 1-D sequences of the same length")
        if starts[0] != 0 or np.any(np.diff(starts) <= 0) or starts[-1] >= period:
            raise ValueError("boundaries must start at 0 and increase strictly within the period")
        if np.any(weights < 0):
            raise ValueError("seasonal weights must be non-negative")

        self.period = float(period)
        self.starts = starts
        self.weights = weights
        ends = np.append(starts[1:], self.period)
        self._cum_at_start = np.concatenate([[0.0], np.cumsum(weights * (ends - starts))])
        self.cycle_total = float(self._cum_at_start[-1])

    def cumulative(self, t: float) -> float:
        """Effective exposure accumulated over ``[0, t]``."""
        cycles, offset = divmod(float(t), self.period)
        k = int(np.searchsorted(self.starts, offset, side="right")) - 1
        partial = self._cum_at_start[k] + self.weights[k] * (offset - self.starts[k])
        return cycles * self.cycle_total + float(partial)

    def duration(self, t1: float, t2: float) -> float:
        return self.cumulative(t2) - self.cumulative(t1)

    def __repr__(self):
        return f"SeasonalTimeScale(period={self.period}, segments={self.starts.size})"


class DecayTimeScale:
    """Shot-noise time scale.

    The influence of the interval start decays at ``rate``, so the exposure
    of ``[t1, t2]`` is ``(1 - exp(-rate * (t2 - t1))) / rate``.
    """

    def __init__(self, rate: float):
        if rate <= 0:
            raise ValueError(f"decay rate must be positive, got {rate}")
        self.rate = float(rate)

    def duration(self, t1: float, t2: float) -> float:
        return float(-np.expm1(-self.rate * (float(t2) - float(t1))) / self.rate)

    def __repr__(self):
        return f"DecayTimeScale(rate={self.rate})"


def effective_duration(time_scale: TimeScale | None, t1: float, t2: float) -> float:
    if time_scale is None:
        return float(t2) - float(t1)
    return float(time_scale.duration(t1, t2))

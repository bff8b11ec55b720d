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

"""Conjugate Gamma-Poisson model for event counts and point processes."""

import copy
import logging
import math

from collections.abc import Sequence
from typing import NamedTuple

import numpy as np

from scipy.special import gammaln

from ppsurprise.data import (
    Changepoint,
    as_event_times,
    cumulative_counts,
    cumulative_multipliers,
)
from ppsurprise.exceptions import IndexOrderError, IntervalOrderError
from ppsurprise.predictive import predictive_df
from ppsurprise.timescale import DecayTimeScale, TimeScale, effective_duration
from ppsurprise.util import LOG_LIKELIHOOD_SENTINEL, RandomGenerator, get_random_generator

__all__ = ["GammaPosterior", "PosteriorMean", "PoissonGammaModel"]

logger = logging.getLogger(__name__)

POINT_PROCESS = "point_process"
REGRESSION = "regression"


class GammaPosterior(NamedTuple):
    """Shape and rate of a Gamma distribution over a Poisson rate."""

    alpha: float
    beta: float

    @property
    def mean(self) -> float:
        return self.alpha / self.beta

    def update(self, count, duration) -> "GammaPosterior":
        return GammaPosterior(self.alpha + count, self.beta + duration)


class PosteriorMean(NamedTuple):
    mean: float
    variance: float
    posterior: GammaPosterior


def _check_prior(alpha, beta):
    if not (np.isfinite(alpha) and alpha > 0):
        raise ValueError(f"Prior shape alpha must be positive, got {alpha}")
    if not (np.isfinite(beta) and beta > 0):
        raise ValueError(f"Prior rate beta must be positive, got {beta}")


class PoissonGammaModel:
    r"""Poisson rate with a conjugate Gamma(alpha, beta) prior.

    The marginal likelihood of ``r`` events over effective duration ``d`` is

    .. math::

        \frac{\beta^\alpha}{\Gamma(\alpha)}
        \frac{\Gamma(r + \alpha)}{(\beta + d)^{r + \alpha}}

    (the Poisson ``1/r!`` term is dropped; it does not depend on the
    changepoints). Two flavours share this interface and are picked at
    construction: a point process, whose counts come from event times, and
    Poisson regression on binned counts (:meth:`from_counts`).

    Parameters
    ----------
    alpha : float
        Prior shape, > 0.
    beta : float
        Prior rate, > 0.
    events : sequence of float or DataIndexOracle, optional
        Event times of the point process.
    time_scale : TimeScale, optional
        Warp from elapsed time to effective duration. Linear when omitted.
    decay_rate : float, default 0
        Shot-noise decay rate. When positive and no ``time_scale`` is given
        a :class:`~ppsurprise.timescale.DecayTimeScale` is installed.
    """

    def __init__(
        self,
        alpha: float = 1.0,
        beta: float = 1.0,
        *,
        events=None,
        time_scale: TimeScale | None = None,
        decay_rate: float = 0.0,
    ):
        if decay_rate < 0:
            raise ValueError(f"decay_rate must be non-negative, got {decay_rate}")
        _check_prior(alpha, beta)
        self.kind = POINT_PROCESS
        self.events = as_event_times(events)
        self.decay_rate = float(decay_rate)
        if time_scale is None and self.decay_rate > 0:
            time_scale = DecayTimeScale(self.decay_rate)
        self.time_scale = time_scale
        self.alpha = float(alpha)
        self.beta = float(beta)
        self._likelihood_term_zero = self.alpha * math.log(self.beta)
        self._likelihood_term = self._likelihood_term_zero - float(gammaln(self.alpha))
        self._cum_counts = None
        self._cum_multipliers = None
        self.random_mean = False
        self._rng = None

    @classmethod
    def from_counts(
        cls,
        counts: Sequence[int] | np.ndarray,
        alpha: float = 1.0,
        beta: float = 1.0,
        *,
        intensity_multipliers: Sequence[float] | np.ndarray | None = None,
    ) -> "PoissonGammaModel":
        """Poisson regression on per-bin counts.

        Changepoint indices are bin indices. Each bin contributes unit
        exposure, or its intensity multiplier when those are given.
        """
        model = cls(alpha, beta)
        model.kind = REGRESSION
        model._cum_counts = cumulative_counts(counts)
        if intensity_multipliers is not None:
            model._cum_multipliers = cumulative_multipliers(
                intensity_multipliers, model._cum_counts.size
            )
        return model

    @classmethod
    def with_empirical_prior(
        cls, events, *, time_scale: TimeScale | None = None, factor: float = 0.1
    ) -> "PoissonGammaModel":
        """Fit the prior to the first ``factor`` share of the observation span."""
        oracle = as_event_times(events)
        if oracle is None or len(oracle) == 0:
            raise ValueError("An empirical prior needs at least one event")
        if not 0 < factor <= 1:
            raise ValueError(f"factor must lie in (0, 1], got {factor}")
        t0 = factor * oracle.event_time(len(oracle) - 1)
        beta = effective_duration(time_scale, 0.0, t0)
        r = oracle.count_up_to(t0)
        logger.info("Empirical prior from [0, %g]: %d events over duration %g", t0, r, beta)
        return cls(max(r, 1), beta, events=oracle, time_scale=time_scale)

    def __repr__(self):
        return f"PoissonGammaModel(alpha={self.alpha}, beta={self.beta}, kind={self.kind!r})"

    @property
    def is_regression(self) -> bool:
        return self.kind == REGRESSION

    @property
    def n_bins(self) -> int:
        return 0 if self._cum_counts is None else int(self._cum_counts.size)

    @property
    def prior(self) -> GammaPosterior:
        return GammaPosterior(self.alpha, self.beta)

    def use_random_mean(self, seed: RandomGenerator = None):
        """Report posterior means as Gamma draws from a generator owned by this model."""
        self.random_mean = True
        self._rng = get_random_generator(seed)

    def spawn(self, seed: RandomGenerator = None) -> "PoissonGammaModel":
        """Shallow copy for another particle: shared data, its own generator."""
        clone = copy.copy(self)
        if self.random_mean:
            clone._rng = get_random_generator(seed)
        return clone

    def duration(self, t1: float, t2: float) -> float:
        return effective_duration(self.time_scale, t1, t2)

    def count_up_to(self, t: float, low: int = 0, high: int | None = None) -> int:
        if self.events is None:
            return 0
        return self.events.count_up_to(t, low, high)

    def _bin_exposure(self, i1: int, i2: int) -> float:
        if self._cum_multipliers is None:
            return float(i2 - i1)
        upper = self._cum_multipliers[i2 - 1] if i2 > 0 else 0.0
        lower = self._cum_multipliers[i1 - 1] if i1 > 0 else 0.0
        return float(upper - lower)

    def _bin_count(self, i1: int, i2: int) -> int:
        upper = self._cum_counts[i2 - 1] if i2 > 0 else 0
        lower = self._cum_counts[i1 - 1] if i1 > 0 else 0
        return int(upper - lower)

    def log_likelihood_length_and_count(self, d: float, r: int) -> float:
        if d <= 0:
            return 0.0
        if not r:
            return self._likelihood_term_zero - self.alpha * math.log(self.beta + d)
        return (
            self._likelihood_term
            + float(gammaln(r + self.alpha))
            - (r + self.alpha) * math.log(self.beta + d)
        )

    def log_likelihood_with_count(self, t1: float, t2: float, count: int) -> float:
        d = self.duration(t1, t2)
        if d < 0:
            logger.error(
                "Length of time interval cannot be negative: duration %g between %g and %g",
                d,
                t1,
                t2,
            )
            return LOG_LIKELIHOOD_SENTINEL
        return self.decay_rate * count * t1 + self.log_likelihood_length_and_count(d, count)

    def log_likelihood_by_indices(self, i1: int, i2: int) -> float:
        if i1 == i2:
            return 0.0
        if i2 < i1:
            raise IndexOrderError("Interval ends before it starts", i1, i2)
        return self.log_likelihood_length_and_count(
            self._bin_exposure(i1, i2), self._bin_count(i1, i2)
        )

    def log_likelihood_interval(self, cp1: Changepoint, cp2: Changepoint) -> float:
        """Marginal log likelihood of the data between two changepoints."""
        if self.is_regression:
            return self.log_likelihood_by_indices(cp1.index, cp2.index)
        if cp2.index < cp1.index:
            raise IndexOrderError("Interval ends before it starts", cp1.index, cp2.index)
        return self.log_likelihood_with_count(cp1.time, cp2.time, cp2.index - cp1.index)

    def log_likelihood_times(self, t1: float, t2: float) -> float:
        if self.is_regression:
            return self.log_likelihood_by_indices(math.ceil(t1), math.ceil(t2))
        r1 = self.count_up_to(t1)
        r2 = self.count_up_to(t2, low=r1)
        return self.log_likelihood_with_count(t1, t2, max(r2 - r1, 0))

    def log_likelihood_up_to(self, t: float) -> float:
        if self.is_regression:
            return self.log_likelihood_by_indices(0, math.ceil(t))
        return self.log_likelihood_with_count(0.0, t, self.count_up_to(t))

    def log_likelihood_changepoints(
        self, data_indices: Sequence[int], positions: Sequence[float]
    ) -> float:
        """Pooled log likelihood of several regimes sharing one rate.

        ``data_indices`` and ``positions`` list start/end pairs of each regime,
        ``[start_0, end_0, start_1, end_1, ...]``.
        """
        if len(data_indices) != len(positions) or len(positions) % 2:
            raise ValueError("Expected matching start/end pairs of indices and positions")
        r = 0
        d = 0.0
        for i in range(0, len(data_indices), 2):
            if data_indices[i + 1] < data_indices[i]:
                raise IndexOrderError(
                    "Regime ends before it starts", data_indices[i], data_indices[i + 1]
                )
            r += data_indices[i + 1] - data_indices[i]
            d += self.duration(positions[i], positions[i + 1])
        return self.log_likelihood_length_and_count(d, r)

    def posterior_parameters_with_count(self, t1: float, t2: float, count: int) -> GammaPosterior:
        d = self.duration(t1, t2)
        if d < 0:
            raise IntervalOrderError("Changepoints are not ordered", t1, t2, d)
        return self.prior.update(count, d)

    def posterior_parameters(self, cp1: Changepoint, cp2: Changepoint) -> GammaPosterior:
        """Gamma posterior of the rate between two changepoints.

        Raises
        ------
        IndexOrderError
            If ``cp2`` sits at a smaller data index than ``cp1``.
        IntervalOrderError
            If the effective duration between them is negative.
        """
        i1, i2 = cp1.index, cp2.index
        if i2 < i1:
            raise IndexOrderError("Number of data points cannot be negative", i1, i2)
        if self.is_regression:
            return self.prior.update(self._bin_count(i1, i2), self._bin_exposure(i1, i2))
        return self.posterior_parameters_with_count(cp1.time, cp2.time, i2 - i1)

    def posterior_mean(self, cp1: Changepoint, cp2: Changepoint) -> PosteriorMean:
        posterior = self.posterior_parameters(cp1, cp2)
        if self.random_mean:
            mean = float(self._rng.gamma(posterior.alpha, 1.0 / posterior.beta))
        else:
            mean = posterior.mean
        return PosteriorMean(mean, mean / posterior.beta, posterior)

    def log_predictive_df(
        self, t1: float, t2: float, t3: float, lower_tail: bool = False
    ) -> float:
        """Log p-value of the events in ``(t2, t3]`` given those in ``(t1, t2]``."""
        t = self.duration(t2, t3)
        if t <= 0:
            return 0.0
        r2 = self.count_up_to(t2)
        r = self.count_up_to(t3, low=r2) - r2
        if not lower_tail and not r:
            return 0.0
        seen = r2 - self.count_up_to(t1, high=r2)
        posterior = self.posterior_parameters_with_count(t1, t2, seen)
        return predictive_df(posterior, t, r, lower_tail=lower_tail).log_p

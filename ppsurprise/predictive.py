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

"""Negative-binomial posterior predictive tail probabilities.

Under a Gamma(alpha*, beta*) posterior on a Poisson rate, the number of
events seen over a further effective duration ``t`` is negative binomial
with ``alpha*`` successes and success probability ``beta* / (beta* + t)``.
Everything here is a pure function of ``(posterior, t, r)``; results come
back as named tuples so that concurrent scans never share scratch state.

The probability masses are built by the ratio recursion

.. math::

    p_i = p_{i-1} \\frac{t}{\\beta^* + t} \\frac{\\alpha^* + i - 1}{i}

relative to :math:`p_0`, and rescaled by :math:`p_0` on the log scale only
when a mass is read out. Upper tails whose complement is close to one are
evaluated directly with the regularized incomplete beta function.
"""

import logging
import math

from collections.abc import Iterable
from typing import NamedTuple

import numpy as np

from scipy import stats
from scipy.special import betainc

from ppsurprise.util import LOG_MIN_PROBABILITY, MIN_PROBABILITY

__all__ = [
    "PValueEndpoint",
    "PredictivePmf",
    "PredictiveDF",
    "log_predictive_pmf",
    "predictive_df",
    "combine_p_values_from_endpoints",
]

logger = logging.getLogger(__name__)


class PValueEndpoint(NamedTuple):
    """Lower and upper bound of a discrete p-value."""

    lower: float
    upper: float
    log_scale: bool = False

    def probabilities(self) -> tuple[float, float]:
        if self.log_scale:
            return math.exp(self.lower), math.exp(self.upper)
        return self.lower, self.upper


class PredictivePmf(NamedTuple):
    log_pmf: float
    # min(P(X <= r), P(X >= r)), the smaller one-sided mass at r
    minimum_tail: float
    lower_tail: float


class PredictiveDF(NamedTuple):
    log_p: float
    one_sided: PValueEndpoint
    two_sided: PValueEndpoint | None
    tail_at_r: float
    survivor_midpoint: float
    log_pmf: float


def _clip_probability(p: float) -> float:
    return min(max(p, 0.0), 1.0)


def _scaled_mass(log_c: float, relative: float) -> float:
    """``exp(log_c) * relative`` without underflowing ``exp(log_c)`` first."""
    if relative <= 0:
        return 0.0
    return _clip_probability(math.exp(log_c + math.log(relative)))


def _lower_tail(alpha, p, k, log_c, pmf_sum):
    """P(X <= k) from the running relative sum of masses 0..k."""
    if math.isfinite(pmf_sum):
        return _scaled_mass(log_c, pmf_sum)
    logger.debug("Relative pmf sum overflowed at %d, using the incomplete beta function", k)
    return _clip_probability(float(betainc(alpha, k + 1, p)))


def _upper_tail(alpha, q, k, below):
    """P(X >= k) given ``below`` = P(X <= k - 1).

    ``1 - below`` is only trusted while ``below`` is small; past one half the
    complement is evaluated directly.
    """
    if k <= 0:
        return 1.0
    if below < 0.5:
        return _clip_probability(1.0 - below)
    return _clip_probability(float(betainc(k, alpha, q)))


def _degenerate(r: int) -> tuple[float, float]:
    """Probability and log probability of ``r`` events in zero exposure."""
    if r == 0:
        return 1.0, 0.0
    return MIN_PROBABILITY, LOG_MIN_PROBABILITY


def log_predictive_pmf(posterior, t: float, r: int) -> PredictivePmf:
    """Log posterior predictive probability of exactly ``r`` events in ``t``.

    Parameters
    ----------
    posterior : tuple of float
        ``(alpha_star, beta_star)`` of the Gamma posterior.
    t : float
        Effective duration of the forward window.
    r : int
        Observed number of events in the window.

    Returns
    -------
    PredictivePmf
        The log mass at ``r``, the smaller of the two one-sided masses at
        ``r`` and the lower tail ``P(X <= r)``.
    """
    r = int(r)
    if t <= 0:
        p, log_p = _degenerate(r)
        return PredictivePmf(log_p, p, 1.0)

    alpha, beta = float(posterior[0]), float(posterior[1])
    log_c = alpha * (math.log(beta) - math.log(beta + t))
    q = t / (beta + t)
    log_q = math.log(t) - math.log(beta + t)

    log_pmf = log_c
    pmf = pmf_sum = 1.0
    previous_sum = 0.0
    for i in range(r):
        pmf *= q * (alpha + i) / (i + 1)
        log_pmf += log_q + math.log(alpha + i) - math.log(i + 1)
        previous_sum = pmf_sum
        pmf_sum += pmf

    lower = _lower_tail(alpha, 1.0 - q, r, log_c, pmf_sum)
    if r == 0:
        return PredictivePmf(log_pmf, lower, lower)
    below = _lower_tail(alpha, 1.0 - q, r - 1, log_c, previous_sum)
    return PredictivePmf(log_pmf, min(lower, _upper_tail(alpha, q, r, below)), lower)


def predictive_df(
    posterior,
    t: float,
    r: int,
    lower_tail: bool = False,
    two_sided: bool = False,
) -> PredictiveDF:
    """Posterior predictive p-value of observing ``r`` events over ``t``.

    A single forward pass over counts ``0, 1, ...`` yields the one-sided
    endpoints at ``r``, the survivor midpoint (the tail value at the first
    count whose cumulative mass reaches one half) and, when ``two_sided``,
    the mass of every count whose one-sided tail is at least as extreme as
    that of ``r``. The pass stops as soon as the remaining counts are all
    more extreme than ``r`` and the midpoint has been seen.

    Parameters
    ----------
    posterior : tuple of float
        ``(alpha_star, beta_star)`` of the Gamma posterior.
    t : float
        Effective duration of the forward window.
    r : int
        Observed number of events in the window.
    lower_tail : bool, default False
        Score small counts as surprising instead of large ones.
    two_sided : bool, default False
        Score both directions, symmetric about the survivor midpoint.

    Returns
    -------
    PredictiveDF
        ``log_p`` is the combined p-value (see
        :func:`combine_p_values_from_endpoints`) of the two-sided pair when
        ``two_sided`` else of the one-sided pair.
    """
    r = int(r)
    if r < 0:
        raise ValueError(f"event counts must be non-negative, got {r}")
    if t <= 0:
        p, log_p = _degenerate(r)
        pair = PValueEndpoint(p, p)
        return PredictiveDF(log_p, pair, pair if two_sided else None, p, 1.0, log_p)

    alpha, beta = float(posterior[0]), float(posterior[1])
    log_c = alpha * (math.log(beta) - math.log(beta + t))
    c = math.exp(log_c)
    q = t / (beta + t)
    p_success = 1.0 - q
    log_q = math.log(t) - math.log(beta + t)

    minimum_tail = log_predictive_pmf(posterior, t, r).minimum_tail if two_sided else None

    pmf = pmf_sum = 1.0
    log_pmf = 0.0
    below = 0.0
    processed = g = _clip_probability(c)
    found_midpoint = False
    survivor_midpoint = 1.0
    saturated = False
    more_extreme = equally_extreme = 0.0
    below_r = 0.0
    lower_r = c
    tail_at_r = c
    log_pmf_r = log_c

    i = 0
    while True:
        if i > 0:
            log_pmf += log_q + math.log(alpha + (i - 1)) - math.log(i)
            pmf *= q * (alpha + (i - 1)) / i
            below = processed
            pmf_sum += pmf
            processed = _lower_tail(alpha, p_success, i, log_c, pmf_sum)
            g = _upper_tail(alpha, q, i, below)
            if not found_midpoint:
                g = min(g, processed)

        if not found_midpoint and processed >= 0.5:
            found_midpoint = True
            survivor_midpoint = g

        if two_sided and not saturated:
            # absolute mass; the relative sum may overflow for large shapes
            mass = math.exp(log_c + log_pmf)
            if below >= 1.0 or (found_midpoint and mass <= 0):
                logger.debug("Predictive mass saturated at count %d; using the minimum tail", i)
                saturated = True
            elif i == r or g == minimum_tail:
                equally_extreme += mass
            elif g < minimum_tail:
                more_extreme += mass

        if i == r - 1:
            below_r = processed
        elif i == r:
            lower_r = processed
            tail_at_r = g
            log_pmf_r = log_pmf + log_c

        i += 1
        if i > r and (not two_sided or saturated or (found_midpoint and g < tail_at_r)):
            break

    if lower_tail:
        one_sided = PValueEndpoint(below_r if r > 0 else 0.0, lower_r)
    else:
        at_least = max(_upper_tail(alpha, q, r, below_r), math.exp(log_pmf_r))
        one_sided = PValueEndpoint(_upper_tail(alpha, q, r + 1, lower_r), at_least)

    two_sided_pair = None
    if two_sided:
        if saturated:
            two_sided_pair = PValueEndpoint(minimum_tail, minimum_tail)
        else:
            # every count past the stopping point is more extreme than r
            rest = _upper_tail(alpha, q, i, processed)
            lower = _clip_probability(more_extreme + rest)
            two_sided_pair = PValueEndpoint(lower, _clip_probability(lower + equally_extreme))

    log_p = combine_p_values_from_endpoints([two_sided_pair if two_sided else one_sided])
    return PredictiveDF(log_p, one_sided, two_sided_pair, tail_at_r, survivor_midpoint, log_pmf_r)


def combine_p_values_from_endpoints(endpoints: Iterable[PValueEndpoint]) -> float:
    """Collapse p-value endpoint pairs into one log p-value.

    Each pair is summarised by its mid-p value ``(lower + upper) / 2``.
    Several pairs, one per sub-interval, are combined with Fisher's method:
    ``-2 * sum(log p)`` is chi-squared with ``2k`` degrees of freedom.
    """
    log_mids = []
    for endpoint in endpoints:
        lower, upper = endpoint.probabilities()
        mid = _clip_probability(0.5 * (lower + upper))
        log_mids.append(math.log(mid) if mid > 0 else LOG_MIN_PROBABILITY)
    if not log_mids:
        return 0.0
    if len(log_mids) == 1:
        return min(log_mids[0], 0.0)
    log_p = float(stats.chi2.logsf(-2.0 * np.sum(log_mids), 2 * len(log_mids)))
    if not np.isfinite(log_p):
        return LOG_MIN_PROBABILITY
    return min(log_p, 0.0)

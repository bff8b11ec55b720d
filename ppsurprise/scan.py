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

"""Sequential posterior predictive surprise scores along a time grid.

A scan walks forward from ``start`` to ``end`` in fixed increments and
emits one log p-value per window. The posterior is carried along and
updated with exactly the events and exposure each window consumes, in the
order they are consumed, so no window ever re-reads data before it.
"""

import dataclasses
import logging
import math
import os

from collections.abc import Sequence
from typing import NamedTuple, TextIO

import numpy as np
import xarray

from scipy import stats

from ppsurprise.exceptions import IntervalOrderError
from ppsurprise.model import GammaPosterior, PoissonGammaModel
from ppsurprise.predictive import log_predictive_pmf, predictive_df
from ppsurprise.progress_bar import create_simple_progress
from ppsurprise.util import LOG_MIN_PROBABILITY, LOG_TWO

__all__ = [
    "ScanState",
    "ScanStep",
    "ScanResult",
    "SurpriseScanner",
    "combine_waiting_time_p_values",
]

logger = logging.getLogger(__name__)

# Relative slack when counting grid windows, so that round-off in
# (end - start) / increment does not add a window past ``end``.
GRID_TOLERANCE = 1e-9


@dataclasses.dataclass
class ScanState:
    current_time: float
    current_count: int
    current_data_index: int
    elapsed: float
    alpha_star: float
    beta_star: float

    @property
    def posterior(self) -> GammaPosterior:
        return GammaPosterior(self.alpha_star, self.beta_star)

    def consume(self, count: int, duration: float):
        self.current_count += count
        self.elapsed += duration
        self.alpha_star += count
        self.beta_star += duration


class ScanStep(NamedTuple):
    time: float
    log_p: float
    observable: bool
    count: int
    duration: float


def combine_waiting_time_p_values(log_ps: Sequence[float], two_sided: bool = False) -> float:
    """Combine the log p-values of ``k`` waiting times into one.

    Under the null each ``-2 log p`` is chi-squared with 2 degrees of
    freedom, so their sum is chi-squared with ``2k``. A single gap keeps its
    own p-value. The two-sided value is twice the smaller of the two tails
    of that statistic.
    """
    k = len(log_ps)
    if k == 0:
        raise ValueError("Need at least one waiting time to combine")
    total = float(np.sum(log_ps))
    statistic = -2.0 * total
    log_p = total if k == 1 else float(stats.chi2.logsf(statistic, 2 * k))
    if two_sided:
        log_p = min(log_p, float(stats.chi2.logcdf(statistic, 2 * k))) + LOG_TWO
    if np.isnan(log_p) or log_p == -np.inf:
        return LOG_MIN_PROBABILITY
    return min(log_p, 0.0)


class ScanResult:
    """Ordered per-window scores of one scan."""

    def __init__(self, steps: Sequence[ScanStep], attrs: dict | None = None):
        self.steps = list(steps)
        self.attrs = dict(attrs or {})

    def __len__(self):
        return len(self.steps)

    def __iter__(self):
        return iter(self.steps)

    def __getitem__(self, item):
        return self.steps[item]

    def __repr__(self):
        return f"ScanResult(steps={len(self.steps)}, observable={int(self.observable.sum())})"

    @property
    def times(self) -> np.ndarray:
        return np.array([s.time for s in self.steps], dtype=float)

    @property
    def log_p(self) -> np.ndarray:
        return np.array([s.log_p for s in self.steps], dtype=float)

    @property
    def p_values(self) -> np.ndarray:
        return np.exp(self.log_p)

    @property
    def observable(self) -> np.ndarray:
        return np.array([s.observable for s in self.steps], dtype=bool)

    @property
    def counts(self) -> np.ndarray:
        return np.array([s.count for s in self.steps], dtype=np.int64)

    @property
    def durations(self) -> np.ndarray:
        return np.array([s.duration for s in self.steps], dtype=float)

    def write(self, output: str | os.PathLike | TextIO):
        """Write one p-value per line, in step order."""
        lines = [f"{p:.10g}\n" for p in self.p_values]
        if isinstance(output, str | os.PathLike):
            with open(output, "w") as f:
                f.writelines(lines)
        else:
            output.writelines(lines)

    def to_xarray(self) -> xarray.Dataset:
        coords = {"time": self.times}
        data_vars = {
            "log_p": ("time", self.log_p),
            "p_value": ("time", self.p_values),
            "observable": ("time", self.observable),
            "count": ("time", self.counts),
            "duration": ("time", self.durations),
        }
        return xarray.Dataset(data_vars, coords=coords, attrs=self.attrs)


class SurpriseScanner:
    """Online posterior predictive p-values for a point process.

    Parameters
    ----------
    model : PoissonGammaModel
        Point-process model supplying the prior, event counts and time scale.
        Read only; several scanners may share one model.
    lower_tail : bool, default False
        Score unusually few events (long waits) instead of many.
    two_sided : bool, default False
        Score both directions.
    waiting_times : bool, default False
        Score each inter-event gap inside a window and combine them, instead
        of scoring the window's event count.
    """

    def __init__(
        self,
        model: PoissonGammaModel,
        *,
        lower_tail: bool = False,
        two_sided: bool = False,
        waiting_times: bool = False,
    ):
        if model.is_regression:
            raise ValueError("Sequential scans need a point-process model, not binned counts")
        self.model = model
        self.lower_tail = lower_tail
        self.two_sided = two_sided
        self.waiting_times = waiting_times
        self._state = None
        self.reset(0.0)

    @property
    def state(self) -> ScanState:
        return dataclasses.replace(self._state)

    @property
    def settings(self) -> dict:
        return {
            "lower_tail": int(self.lower_tail),
            "two_sided": int(self.two_sided),
            "waiting_times": int(self.waiting_times),
            "alpha": self.model.alpha,
            "beta": self.model.beta,
        }

    def reset(self, start: float = 0.0) -> ScanState:
        """Position the scan at ``start``, conditioning on everything in ``[0, start]``."""
        r = self.model.count_up_to(start)
        t = self.model.duration(0.0, start)
        if t < 0:
            raise IntervalOrderError("Scan cannot start before time zero", 0.0, start, t)
        self._state = ScanState(float(start), 0, r, 0.0, self.model.alpha, self.model.beta)
        self._state.consume(r, t)
        return self.state

    def step(self, increment: float) -> ScanStep:
        """Score the window ``(current_time, current_time + increment]`` and move past it."""
        if increment <= 0:
            raise ValueError(f"increment must be positive, got {increment}")
        return self._step_to(self._state.current_time + increment)

    def _step_to(self, end: float) -> ScanStep:
        if self.waiting_times:
            step = self._waiting_time_step(end)
        else:
            step = self._event_count_step(end)
        self._state.current_time = end
        return step

    def _event_count_step(self, end: float) -> ScanStep:
        state = self._state
        t = self.model.duration(state.current_time, end)
        if t < 0:
            raise IntervalOrderError("Time scale decreased", state.current_time, end, t)
        r = self.model.count_up_to(end, low=state.current_count) - state.current_count
        if t > 0:
            df = predictive_df(
                state.posterior, t, r, lower_tail=self.lower_tail, two_sided=self.two_sided
            )
            log_p, observable = df.log_p, True
        else:
            log_p, observable = LOG_MIN_PROBABILITY, False
        step = ScanStep(state.current_time, log_p, observable, r, t)
        state.consume(r, t)
        state.current_data_index = state.current_count
        return step

    def _gap_log_p(self, posterior: GammaPosterior, t: float) -> float:
        # log P(no event within t), i.e. the waiting time survives past t
        log_survival = log_predictive_pmf(posterior, t, 0).log_pmf
        if not self.lower_tail:
            return log_survival
        if log_survival >= 0:
            return LOG_MIN_PROBABILITY
        return math.log(-math.expm1(log_survival))

    def _waiting_time_step(self, end: float) -> ScanStep:
        state = self._state
        last = self.model.count_up_to(end, low=state.current_data_index)
        gap_start = state.current_time
        log_ps = []
        exposure = 0.0
        consumed = 0
        while state.current_data_index < last:
            event = self.model.events.event_time(state.current_data_index)
            t = self.model.duration(gap_start, event)
            if t <= 0:
                raise IntervalOrderError("Rounding errors in event times", gap_start, event, t)
            log_ps.append(self._gap_log_p(state.posterior, t))
            state.consume(1, t)
            state.current_data_index += 1
            exposure += t
            consumed += 1
            gap_start = event

        # the window ends part way through the next gap
        t = self.model.duration(gap_start, end)
        if t > 0:
            log_ps.append(self._gap_log_p(state.posterior, t))
            state.consume(0, t)
            exposure += t

        if log_ps:
            log_p = combine_waiting_time_p_values(log_ps, two_sided=self.two_sided)
        else:
            log_p = LOG_MIN_PROBABILITY
        return ScanStep(state.current_time, log_p, bool(log_ps), consumed, exposure)

    def scan(
        self,
        start: float,
        end: float,
        increment: float,
        *,
        output: str | os.PathLike | TextIO | None = None,
        progressbar: bool = False,
    ) -> ScanResult:
        """Score every window from ``start`` up to ``end``.

        Parameters
        ----------
        start, end : float
            Scan range. Windows are ``(start + k * increment, start + (k + 1) * increment]``
            for every window start that lies before ``end``.
        increment : float
            Window width, > 0.
        output : path or text stream, optional
            Receives one p-value per line.
        progressbar : bool, default False
            Show a rich progress bar.

        Returns
        -------
        ScanResult
        """
        if increment <= 0:
            raise ValueError(f"increment must be positive, got {increment}")
        self.reset(start)
        n_windows = max(math.ceil((end - start) / increment - GRID_TOLERANCE), 0)
        steps = []
        with create_simple_progress(progressbar=progressbar) as progress:
            task = progress.add_task("Scanning", total=n_windows)
            for k in range(1, n_windows + 1):
                steps.append(self._step_to(start + k * increment))
                progress.advance(task)

        result = ScanResult(steps, attrs=self.settings)
        logger.info(
            "Scanned %d windows from %g to %g (%d observable)",
            len(result),
            start,
            end,
            int(result.observable.sum()),
        )
        if output is not None:
            result.write(output)
        return result

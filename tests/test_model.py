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
import logging

import numpy as np
import numpy.testing as npt
import pytest

from scipy import stats
from scipy.special import gammaln

import ppsurprise as pps

from ppsurprise.data import Changepoint
from ppsurprise.exceptions import IndexOrderError, IntervalOrderError
from ppsurprise.model import GammaPosterior, PoissonGammaModel
from ppsurprise.predictive import predictive_df
from ppsurprise.timescale import DecayTimeScale, SeasonalTimeScale
from ppsurprise.util import LOG_LIKELIHOOD_SENTINEL


class TestLogLikelihood:
    @pytest.mark.parametrize("alpha, beta", [(1.0, 1.0), (0.3, 7.0), (12.0, 0.05)])
    def test_empty_interval(self, alpha, beta):
        model = PoissonGammaModel(alpha, beta)
        assert model.log_likelihood_length_and_count(0.0, 0) == 0
        assert model.log_likelihood_with_count(2.0, 2.0, 0) == 0

    def test_no_events(self):
        model = PoissonGammaModel(1.0, 1.0)
        npt.assert_allclose(model.log_likelihood_with_count(0.0, 2.0, 0), -np.log(3.0))
        npt.assert_allclose(model.log_likelihood_with_count(0.0, 2.0, 0), -1.0986, atol=1e-4)

    @pytest.mark.parametrize("alpha, beta, d, r", [(2.0, 1.0, 1.0, 3), (0.5, 3.0, 10.0, 17)])
    def test_negative_binomial_marginal(self, alpha, beta, d, r):
        model = PoissonGammaModel(alpha, beta)
        expected = (
            stats.nbinom.logpmf(r, alpha, beta / (beta + d)) + gammaln(r + 1) - r * np.log(d)
        )
        npt.assert_allclose(model.log_likelihood_length_and_count(d, r), expected)

    def test_mis_ordered_interval(self, caplog):
        model = PoissonGammaModel(1.0, 1.0)
        with caplog.at_level(logging.ERROR, logger="ppsurprise"):
            assert model.log_likelihood_with_count(2.0, 1.0, 0) == LOG_LIKELIHOOD_SENTINEL
        assert "cannot be negative" in caplog.text

    def test_changepoint_interval(self, event_model):
        value = event_model.log_likelihood_interval(Changepoint(0.0, 0), Changepoint(3.0, 3))
        npt.assert_allclose(value, event_model.log_likelihood_length_and_count(3.0, 3))
        with pytest.raises(IndexOrderError):
            event_model.log_likelihood_interval(Changepoint(0.0, 3), Changepoint(3.0, 1))

    def test_times_and_up_to(self, event_model):
        npt.assert_allclose(
            event_model.log_likelihood_times(1.0, 3.0),
            event_model.log_likelihood_length_and_count(2.0, 2),
        )
        npt.assert_allclose(
            event_model.log_likelihood_up_to(3.0),
            event_model.log_likelihood_length_and_count(3.0, 3),
        )

    def test_pooled_regimes(self, event_model):
        value = event_model.log_likelihood_changepoints([0, 1, 3, 4], [0.0, 1.0, 3.0, 5.0])
        npt.assert_allclose(value, event_model.log_likelihood_length_and_count(3.0, 2))
        with pytest.raises(ValueError):
            event_model.log_likelihood_changepoints([0, 1, 3], [0.0, 1.0, 3.0])

    def test_shot_noise_offset(self):
        model = PoissonGammaModel(1.0, 2.0, decay_rate=0.5)
        assert isinstance(model.time_scale, DecayTimeScale)
        d = (1 - np.exp(-0.5)) / 0.5
        npt.assert_allclose(
            model.log_likelihood_with_count(1.0, 2.0, 2),
            0.5 * 2 * 1.0 + model.log_likelihood_length_and_count(d, 2),
        )

    def test_seasonal_duration(self):
        scale = SeasonalTimeScale(2.0, [0.0, 1.0], [1.0, 0.0])
        model = PoissonGammaModel(1.0, 1.0, time_scale=scale)
        npt.assert_allclose(model.log_likelihood_with_count(0.0, 4.0, 0), -np.log(3.0))


class TestRegression:
    counts = [1, 0, 2, 3]

    def test_by_indices(self):
        model = PoissonGammaModel.from_counts(self.counts, 2.0, 1.0)
        assert model.is_regression
        assert model.n_bins == 4
        assert model.log_likelihood_by_indices(2, 2) == 0
        npt.assert_allclose(
            model.log_likelihood_by_indices(1, 4), model.log_likelihood_length_and_count(3.0, 5)
        )
        npt.assert_allclose(
            model.log_likelihood_by_indices(0, 2), model.log_likelihood_length_and_count(2.0, 1)
        )
        with pytest.raises(IndexOrderError):
            model.log_likelihood_by_indices(3, 1)

    def test_intensity_multipliers(self):
        model = PoissonGammaModel.from_counts(
            self.counts, 2.0, 1.0, intensity_multipliers=[0.5, 1.0, 2.0, 1.0]
        )
        npt.assert_allclose(
            model.log_likelihood_by_indices(1, 4), model.log_likelihood_length_and_count(4.0, 5)
        )
        npt.assert_allclose(
            model.log_likelihood_by_indices(0, 1), model.log_likelihood_length_and_count(0.5, 1)
        )
        posterior = model.posterior_parameters(Changepoint(0.0, 0), Changepoint(2.0, 2))
        assert posterior == GammaPosterior(3.0, 2.5)

    def test_changepoints_are_bins(self):
        model = PoissonGammaModel.from_counts(self.counts, 2.0, 1.0)
        npt.assert_allclose(
            model.log_likelihood_interval(Changepoint(0.0, 1), Changepoint(0.0, 3)),
            model.log_likelihood_by_indices(1, 3),
        )
        npt.assert_allclose(model.log_likelihood_up_to(2.2), model.log_likelihood_by_indices(0, 3))
        posterior = model.posterior_parameters(Changepoint(0.0, 0), Changepoint(0.0, 4))
        assert posterior == GammaPosterior(8.0, 5.0)

    def test_bad_multipliers(self):
        with pytest.raises(ValueError):
            PoissonGammaModel.from_counts(self.counts, intensity_multipliers=[1.0, 1.0])


class TestPosterior:
    def test_parameters_and_mean(self):
        model = PoissonGammaModel(2.0, 1.0)
        posterior = model.posterior_parameters_with_count(0.0, 1.0, 3)
        assert posterior == GammaPosterior(5.0, 2.0)
        assert posterior.mean == 2.5

        model = PoissonGammaModel(2.0, 1.0, events=[0.2, 0.4, 0.9])
        result = model.posterior_mean(Changepoint(0.0, 0), Changepoint(1.0, 3))
        assert result.mean == 2.5
        assert result.variance == 1.25
        assert result.posterior == GammaPosterior(5.0, 2.0)

    def test_mean_monotone(self):
        model = PoissonGammaModel(1.5, 0.5)
        means = [model.posterior_parameters_with_count(0.0, 4.0, r).mean for r in range(20)]
        assert np.all(np.diff(means) >= 0)
        means = [
            model.posterior_parameters_with_count(0.0, d, 5).mean for d in np.linspace(0, 20, 41)
        ]
        assert np.all(np.diff(means) <= 0)

    def test_inverted_indices_are_fatal(self, event_model):
        with pytest.raises(IndexOrderError, match="i1=3"):
            event_model.posterior_parameters(Changepoint(1.0, 3), Changepoint(2.0, 1))

    def test_inverted_times_are_fatal(self, event_model):
        with pytest.raises(IntervalOrderError):
            event_model.posterior_parameters(Changepoint(3.0, 1), Changepoint(2.0, 2))
        with pytest.raises(pps.ContractViolation):
            event_model.posterior_mean(Changepoint(3.0, 1), Changepoint(2.0, 2))


class TestRandomMean:
    def test_reproducible(self):
        cp1, cp2 = Changepoint(0.0, 0), Changepoint(1.0, 3)
        draws = []
        for _ in range(2):
            model = PoissonGammaModel(2.0, 1.0)
            model.use_random_mean(seed=42)
            draws.append([model.posterior_mean(cp1, cp2).mean for _ in range(5)])
        assert draws[0] == draws[1]
        assert len(set(draws[0])) == 5

    def test_draws_follow_posterior(self):
        model = PoissonGammaModel(2.0, 1.0)
        model.use_random_mean(seed=1)
        cp1, cp2 = Changepoint(0.0, 0), Changepoint(1.0, 3)
        draws = np.array([model.posterior_mean(cp1, cp2).mean for _ in range(4000)])
        npt.assert_allclose(draws.mean(), 2.5, atol=0.1)
        result = model.posterior_mean(cp1, cp2)
        assert result.variance == result.mean / 2.0

    def test_spawn_owns_generator(self):
        model = PoissonGammaModel(2.0, 1.0, events=[0.5])
        model.use_random_mean(seed=3)
        a = model.spawn(seed=7)
        b = model.spawn(seed=7)
        assert a._rng is not model._rng
        assert a.events is model.events
        cp1, cp2 = Changepoint(0.0, 0), Changepoint(1.0, 1)
        assert a.posterior_mean(cp1, cp2).mean == b.posterior_mean(cp1, cp2).mean

    def test_deterministic_by_default(self):
        model = PoissonGammaModel(2.0, 1.0)
        assert not model.random_mean
        assert model.spawn()._rng is None


class TestConstruction:
    @pytest.mark.parametrize("alpha, beta", [(0.0, 1.0), (1.0, -1.0), (np.inf, 1.0)])
    def test_invalid_prior(self, alpha, beta):
        with pytest.raises(ValueError):
            PoissonGammaModel(alpha, beta)

    def test_invalid_decay(self):
        with pytest.raises(ValueError):
            PoissonGammaModel(1.0, 1.0, decay_rate=-1.0)

    def test_empirical_prior(self):
        model = PoissonGammaModel.with_empirical_prior(np.arange(1.0, 101.0))
        assert model.alpha == 10
        npt.assert_allclose(model.beta, 10.0)

    def test_empirical_prior_without_early_events(self):
        model = PoissonGammaModel.with_empirical_prior([50.0, 100.0])
        assert model.alpha == 1
        npt.assert_allclose(model.beta, 10.0)
        with pytest.raises(ValueError):
            PoissonGammaModel.with_empirical_prior([])


class TestPredictiveDF:
    def test_matches_engine(self):
        model = PoissonGammaModel(1.0, 1.0, events=[0.5, 1.0, 1.5, 2.5, 3.2, 3.4, 3.6])
        posterior = GammaPosterior(1.0 + 3, 1.0 + 2.0)
        expected = predictive_df(posterior, 2.0, 4).log_p
        npt.assert_allclose(model.log_predictive_df(0.0, 2.0, 4.0), expected)
        expected = predictive_df(posterior, 2.0, 4, lower_tail=True).log_p
        npt.assert_allclose(model.log_predictive_df(0.0, 2.0, 4.0, lower_tail=True), expected)

    def test_trivial_windows(self, event_model):
        assert event_model.log_predictive_df(0.0, 2.0, 2.0) == 0.0
        assert event_model.log_predictive_df(0.0, 3.0, 4.0) == 0.0

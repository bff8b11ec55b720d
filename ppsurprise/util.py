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

from collections import namedtuple
from collections.abc import Sequence
from copy import deepcopy

import numpy as np

__all__ = [
    "LOG_TWO",
    "MIN_PROBABILITY",
    "LOG_MIN_PROBABILITY",
    "LOG_LIKELIHOOD_SENTINEL",
    "RandomGenerator",
    "get_random_generator",
]

LOG_TWO = float(np.log(2.0))
# Smallest positive double. Stands in for "impossible" so logs stay finite.
MIN_PROBABILITY = float(np.finfo(np.float64).tiny)
LOG_MIN_PROBABILITY = float(np.log(MIN_PROBABILITY))
# Returned by likelihoods of mis-ordered intervals; read as -inf by callers.
LOG_LIKELIHOOD_SENTINEL = -1e300

RandomSeed = None | int | Sequence[int] | np.ndarray
RandomGenerator = RandomSeed | np.random.Generator | np.random.BitGenerator

RandomGeneratorState = namedtuple("RandomGeneratorState", ["bit_generator_state", "seed_seq_state"])


def get_state_from_generator(
    rng: np.random.Generator | np.random.BitGenerator,
) -> RandomGeneratorState:
    """Snapshot a generator so that each model can rebuild its own independent copy."""
    assert isinstance(rng, (np.random.Generator | np.random.BitGenerator))
    bit_gen: np.random.BitGenerator = (
        rng.bit_generator if isinstance(rng, np.random.Generator) else rng
    )

    return RandomGeneratorState(
        bit_generator_state=bit_gen.state,
        seed_seq_state=bit_gen.seed_seq.state,  # type: ignore[attr-defined]
    )


def random_generator_from_state(state: RandomGeneratorState) -> np.random.Generator:
    """Rebuild a generator from a snapshot; the result shares no state with the source."""
    seed_seq = np.random.SeedSequence(**state.seed_seq_state)
    bit_generator_class = getattr(np.random, state.bit_generator_state["bit_generator"])
    bit_generator = bit_generator_class(seed_seq)
    bit_generator.state = state.bit_generator_state
    return np.random.Generator(bit_generator)


def get_random_generator(
    seed: RandomGenerator | np.random.RandomState = None, copy: bool = True
) -> np.random.Generator:
    """Build a :py:class:`~numpy.random.Generator` object from a suitable seed.

    Every model that draws random posterior means owns the generator returned
    here, so replicate runs in separate threads never share a stream.

    Parameters
    ----------
    seed : None | int | Sequence[int] | numpy.random.Generator | numpy.random.BitGenerator
        A suitable seed to use to generate the :py:class:`~numpy.random.Generator` object.
        For more details on suitable seeds, refer to :py:func:`numpy.random.default_rng`.
    copy : bool
        Whether to copy a ``Generator`` or ``BitGenerator`` seed before use. When
        ``False`` the returned generator shares state with ``seed``.

    Returns
    -------
    rng : numpy.random.Generator

    Raises
    ------
    TypeError:
        If the supplied ``seed`` is a legacy :py:class:`~numpy.random.RandomState`.
    """
    if isinstance(seed, np.random.RandomState):
        raise TypeError(
            "Cannot create a random Generator from a RandomState object. "
            "Please provide a random seed, BitGenerator or Generator instead."
        )
    if copy:
        # default_rng hands back the very same Generator (or wraps the same
        # BitGenerator), so rebuild it from its state instead.
        if isinstance(seed, np.random.Generator | np.random.BitGenerator):
            return random_generator_from_state(get_state_from_generator(seed))
        seed = deepcopy(seed)
    return np.random.default_rng(seed)

################################################################################
# Copyright (c) 2026, National Research Foundation (SARAO)
#
# Licensed under the BSD 3-Clause License (the "License"); you may not use
# this file except in compliance with the License. You may obtain a copy
# of the License at
#
#   https://opensource.org/licenses/BSD-3-Clause
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
################################################################################

"""Generation of random input angles."""

import numbers

import numpy as np

from . import MAX_SAMPLES
from .errors import InvalidArgumentError


def generate(n: int, rng: np.random.Generator, low: float = -np.pi, high: float = np.pi) -> np.ndarray:
    """Draw `n` angles uniformly from [`low`, `high`].

    The draws are made in double precision and rounded to float32, so the
    rounded endpoints can occur. The returned array is read-only.

    Raises
    ------
    InvalidArgumentError
        if `n` is not an integer in the range [1, :data:`.MAX_SAMPLES`], or
        the range is empty.
    """
    if isinstance(n, bool) or not isinstance(n, numbers.Integral):
        raise InvalidArgumentError(f"sample count must be an integer, not {type(n).__name__}")
    if n <= 0:
        raise InvalidArgumentError(f"sample count must be positive (got {n})")
    if n > MAX_SAMPLES:
        raise InvalidArgumentError(f"sample count must be at most {MAX_SAMPLES} (got {n})")
    if not low < high:
        raise InvalidArgumentError(f"invalid angle range [{low}, {high}]")
    theta = rng.uniform(low, high, size=int(n)).astype(np.float32)
    theta.flags.writeable = False
    return theta

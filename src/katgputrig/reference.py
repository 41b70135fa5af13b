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

"""Double-precision reference values for single-precision sine and cosine."""

import numpy as np
from numpy.typing import ArrayLike


def reference(theta: ArrayLike) -> tuple[np.ndarray, np.ndarray]:
    """Compute the sine and cosine of `theta` to serve as ground truth.

    The angles are taken as float32 (the precision under test), evaluated in
    double precision, and the results narrowed to float32. Scalars give 0-d
    results.
    """
    theta64 = np.asarray(theta, dtype=np.float32).astype(np.float64)
    return np.sin(theta64).astype(np.float32), np.cos(theta64).astype(np.float32)

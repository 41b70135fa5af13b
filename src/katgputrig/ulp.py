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

"""Distances between single-precision values in units in the last place (ULP).

The bit pattern of an IEEE-754 value, reinterpreted as a two's-complement
integer, increases monotonically with the value for non-negative values, but
decreases (moving towards zero) as negative values increase in magnitude. To
compute the number of representable values between two floats, negative
patterns are first mapped to :math:`-2^{31} - i`, which makes the integer
ordering match the floating-point ordering across zero (and maps both zeros
to 0). The distance is then the absolute difference, evaluated in 64-bit
arithmetic so that it cannot overflow.
"""

from typing import Final

import numpy as np
from numpy.typing import ArrayLike

#: Distance reported when either value is NaN or infinite.
ULP_MAX: Final = int(np.iinfo(np.int64).max)
_SIGN_FLIP: Final = -(2**31)


def _ordered(bits: np.ndarray | np.int32) -> np.ndarray:
    """Map int32 bit patterns to int64 values ordered like the floats they encode."""
    wide = np.asarray(bits).astype(np.int64)
    return np.where(wide < 0, _SIGN_FLIP - wide, wide)


def float_bits(value: float) -> int:
    """Get the bit pattern of `value` (as a float32) as an unsigned integer."""
    return int(np.float32(value).view(np.uint32))


def format_bits(value: float) -> str:
    """Format the bit pattern of `value` (as a float32) as 8 uppercase hex digits."""
    return f"{float_bits(value):08X}"


def ulp_distance(a: float, b: float) -> int:
    """Compute the distance between `a` and `b` in single-precision ULPs.

    Both values are first converted to float32. If either is not finite the
    result is :data:`ULP_MAX`, even if they are equal.
    """
    a32 = np.float32(a)
    b32 = np.float32(b)
    if not (np.isfinite(a32) and np.isfinite(b32)):
        return ULP_MAX
    if a32 == b32:
        return 0
    a_int = int(_ordered(a32.view(np.int32)))
    b_int = int(_ordered(b32.view(np.int32)))
    return abs(a_int - b_int)


def ulp_distances(a: ArrayLike, b: ArrayLike) -> np.ndarray:
    """Element-wise equivalent of :func:`ulp_distance`.

    The inputs are converted to float32 and broadcast against each other. The
    result has dtype int64.
    """
    a32 = np.asarray(a, dtype=np.float32)
    b32 = np.asarray(b, dtype=np.float32)
    dist = np.abs(_ordered(a32.view(np.int32)) - _ordered(b32.view(np.int32)))
    dist = np.where(a32 == b32, np.int64(0), dist)
    finite = np.isfinite(a32) & np.isfinite(b32)
    return np.where(finite, dist, np.int64(ULP_MAX))

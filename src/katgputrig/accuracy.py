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

"""Accumulation of sine/cosine error statistics.

Device results are compared against :func:`.reference` values sample by
sample. Maximum and total ULP distances are accumulated over every sample,
while only a bounded number of outliers (samples whose error in either
function exceeds a threshold) are captured in detail. Later outliers are
still counted, so the statistics remain exact no matter how pathological the
device output is.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Generic, TypeVar

import numpy as np
from numpy.typing import ArrayLike
from prometheus_client import Counter

from . import MAX_HIGH_ERROR_LOGS, METRIC_NAMESPACE, ULP_THRESHOLD
from .errors import InvalidArgumentError, LengthMismatchError
from .reference import reference
from .ulp import ULP_MAX, format_bits, ulp_distances

logger = logging.getLogger(__name__)

T = TypeVar("T")

#: Layout of the results returned by accuracy kernels: one pair per sample.
RESULT_DTYPE = np.dtype([("sin", np.float32), ("cos", np.float32)])

verify_samples_counter = Counter("verify_samples", "number of samples compared", namespace=METRIC_NAMESPACE)
verify_outliers_counter = Counter(
    "verify_outliers", "number of samples with error above the threshold", namespace=METRIC_NAMESPACE
)


class BoundedCollector(Generic[T]):
    """Fixed-capacity append-only buffer with an unbounded counter.

    Every item offered is counted, but only the first `capacity` are kept.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 0:
            raise ValueError("capacity cannot be negative")
        self.capacity = capacity
        self.items: list[T] = []
        self.count = 0

    @property
    def remaining(self) -> int:
        """Number of items that can still be stored."""
        return self.capacity - len(self.items)

    def record(self, n: int, make: Callable[[int], T]) -> None:
        """Count `n` new items.

        Only those that fit are materialised, by calling `make` with the
        index (in the range [0, `n`)) of the item.
        """
        for i in range(min(n, self.remaining)):
            self.items.append(make(i))
        self.count += n

    def __len__(self) -> int:
        return len(self.items)


@dataclass(frozen=True)
class ErrorRecord:
    """Detailed description of a single sample with a large error."""

    theta: float
    reference_sin: float
    reference_cos: float
    gpu_sin: float
    gpu_cos: float
    sin_ulp: int
    cos_ulp: int

    def lines(self) -> list[str]:
        """Describe the sample, including the bit patterns of each value."""
        return [
            f"Theta: {self.theta:.9g}",
            f"Sin ULP: {self.sin_ulp}, "
            f"Ref: {self.reference_sin:.9g} (bits: {format_bits(self.reference_sin)}), "
            f"GPU: {self.gpu_sin:.9g} (bits: {format_bits(self.gpu_sin)})",
            f"Cos ULP: {self.cos_ulp}, "
            f"Ref: {self.reference_cos:.9g} (bits: {format_bits(self.reference_cos)}), "
            f"GPU: {self.gpu_cos:.9g} (bits: {format_bits(self.gpu_cos)})",
        ]


def _sum_ulps(ulps: np.ndarray) -> int:
    """Sum ULP distances without overflowing on :data:`.ULP_MAX` sentinels."""
    sentinel = ulps == ULP_MAX
    # Finite distances are below 2**33, so the int64 sum of any permitted
    # number of samples cannot overflow.
    return int(np.sum(ulps[~sentinel], dtype=np.int64)) + int(np.count_nonzero(sentinel)) * ULP_MAX


@dataclass
class AccuracyStats:
    """Running error statistics for one verification run.

    Totals are Python integers, so that they remain exact even when
    non-finite device output contributes :data:`.ULP_MAX` distances.
    """

    sample_count: int = 0
    max_sin_ulp: int = 0
    max_cos_ulp: int = 0
    total_sin_ulp: int = 0
    total_cos_ulp: int = 0
    outlier_count: int = 0

    @property
    def mean_sin_ulp(self) -> float:  # noqa: D102
        return self.total_sin_ulp / self.sample_count if self.sample_count else 0.0

    @property
    def mean_cos_ulp(self) -> float:  # noqa: D102
        return self.total_cos_ulp / self.sample_count if self.sample_count else 0.0

    def update(self, sin_ulp: np.ndarray, cos_ulp: np.ndarray) -> None:
        """Incorporate the per-sample distances for a batch of samples."""
        if len(sin_ulp) == 0:
            return
        self.sample_count += len(sin_ulp)
        self.max_sin_ulp = max(self.max_sin_ulp, int(np.max(sin_ulp)))
        self.max_cos_ulp = max(self.max_cos_ulp, int(np.max(cos_ulp)))
        self.total_sin_ulp += _sum_ulps(sin_ulp)
        self.total_cos_ulp += _sum_ulps(cos_ulp)


def split_results(results: ArrayLike) -> tuple[np.ndarray, np.ndarray]:
    """Split device results into separate sine and cosine arrays.

    The results may either have :data:`RESULT_DTYPE` or be an N×2 array of
    float32 with sine in the first column.
    """
    arr = np.asarray(results)
    if arr.dtype.names is not None:
        return arr["sin"].astype(np.float32, copy=False), arr["cos"].astype(np.float32, copy=False)
    if arr.ndim != 2 or arr.shape[1] != 2:
        raise InvalidArgumentError(f"results must have shape (N, 2), not {arr.shape}")
    arr = arr.astype(np.float32, copy=False)
    return arr[:, 0], arr[:, 1]


@dataclass
class AccuracyAggregator:
    """Compare device results against the reference and accumulate statistics.

    Samples may be added in several batches; the statistics and the captured
    outliers are the same as if they had all been added at once.

    Parameters
    ----------
    threshold
        Samples whose sine or cosine error exceeds this many ULPs are outliers.
    max_records
        Maximum number of outliers to capture in detail.
    """

    threshold: int = ULP_THRESHOLD
    max_records: int = MAX_HIGH_ERROR_LOGS
    stats: AccuracyStats = field(default_factory=AccuracyStats, init=False)
    outliers: BoundedCollector[ErrorRecord] = field(init=False)

    def __post_init__(self) -> None:
        self.outliers = BoundedCollector(self.max_records)

    @property
    def records(self) -> list[ErrorRecord]:
        """The outliers captured so far."""
        return self.outliers.items

    def add(self, theta: ArrayLike, results: ArrayLike) -> None:
        """Add a batch of samples and the corresponding device results.

        Raises
        ------
        LengthMismatchError
            if the number of results differs from the number of samples
        """
        theta = np.asarray(theta, dtype=np.float32)
        gpu_sin, gpu_cos = split_results(results)
        if len(theta) != len(gpu_sin):
            raise LengthMismatchError(len(theta), len(gpu_sin))
        ref_sin, ref_cos = reference(theta)
        sin_ulp = ulp_distances(gpu_sin, ref_sin)
        cos_ulp = ulp_distances(gpu_cos, ref_cos)
        self.stats.update(sin_ulp, cos_ulp)

        idx = np.flatnonzero((sin_ulp > self.threshold) | (cos_ulp > self.threshold))

        def capture(i: int) -> ErrorRecord:
            j = idx[i]
            record = ErrorRecord(
                theta=float(theta[j]),
                reference_sin=float(ref_sin[j]),
                reference_cos=float(ref_cos[j]),
                gpu_sin=float(gpu_sin[j]),
                gpu_cos=float(gpu_cos[j]),
                sin_ulp=int(sin_ulp[j]),
                cos_ulp=int(cos_ulp[j]),
            )
            logger.warning("--- High error detected (case #%d) ---", len(self.outliers) + 1)
            for line in record.lines():
                logger.warning("%s", line)
            return record

        self.outliers.record(len(idx), capture)
        self.stats.outlier_count = self.outliers.count
        verify_samples_counter.inc(len(theta))
        verify_outliers_counter.inc(len(idx))


def aggregate(
    theta: ArrayLike,
    results: ArrayLike,
    *,
    threshold: int = ULP_THRESHOLD,
    max_records: int = MAX_HIGH_ERROR_LOGS,
) -> AccuracyAggregator:
    """Compare a complete set of samples and results in one call."""
    aggregator = AccuracyAggregator(threshold=threshold, max_records=max_records)
    aggregator.add(theta, results)
    return aggregator

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

"""Summaries of accuracy runs, expressed both in ULPs and in significant bits.

An error of :math:`u` ULPs leaves :math:`24 - \\log_2 u` of the 24 significand
bits of a single-precision value trustworthy, independent of the magnitude of
the value.
"""

import logging
import math
from dataclasses import dataclass

from . import SIGNIFICAND_BITS
from .accuracy import AccuracyAggregator, ErrorRecord

logger = logging.getLogger(__name__)


def to_bits(ulp: float) -> float:
    """Convert an error in ULPs to an equivalent number of correct significand bits."""
    if ulp > 0:
        return SIGNIFICAND_BITS - math.log2(ulp)
    else:
        return float(SIGNIFICAND_BITS)


@dataclass(frozen=True)
class AccuracyReport:
    """Final statistics of a verification run.

    Use :meth:`from_aggregator` rather than constructing directly.
    """

    kernel: str
    sample_count: int
    max_sin_ulp: int
    max_cos_ulp: int
    mean_sin_ulp: float
    mean_cos_ulp: float
    outlier_count: int
    outliers: tuple[ErrorRecord, ...]

    @classmethod
    def from_aggregator(cls, aggregator: AccuracyAggregator, kernel: str = "") -> "AccuracyReport":
        """Take a snapshot of the statistics held by `aggregator`."""
        stats = aggregator.stats
        return cls(
            kernel=kernel,
            sample_count=stats.sample_count,
            max_sin_ulp=stats.max_sin_ulp,
            max_cos_ulp=stats.max_cos_ulp,
            mean_sin_ulp=stats.mean_sin_ulp,
            mean_cos_ulp=stats.mean_cos_ulp,
            outlier_count=stats.outlier_count,
            outliers=tuple(aggregator.records),
        )

    @property
    def max_sin_bits(self) -> float:  # noqa: D102
        return to_bits(self.max_sin_ulp)

    @property
    def max_cos_bits(self) -> float:  # noqa: D102
        return to_bits(self.max_cos_ulp)

    @property
    def mean_sin_bits(self) -> float:  # noqa: D102
        return to_bits(self.mean_sin_ulp)

    @property
    def mean_cos_bits(self) -> float:  # noqa: D102
        return to_bits(self.mean_cos_ulp)

    def lines(self) -> list[str]:
        """Render the summary as lines of text (excluding the outliers)."""
        title = f"sin/cos accuracy: {self.kernel}" if self.kernel else "sin/cos accuracy"
        return [
            f"--- {title} ---",
            f"Samples: {self.sample_count}",
            f"Max error (sin): {self.max_sin_ulp} ULP",
            f"Max error (cos): {self.max_cos_ulp} ULP",
            f"Mean error (sin): {self.mean_sin_ulp:.2f} ULP",
            f"Mean error (cos): {self.mean_cos_ulp:.2f} ULP",
            f"Outliers: {self.outlier_count} ({len(self.outliers)} recorded)",
            f"Precision out of {SIGNIFICAND_BITS} significand bits:",
            f"  Sin -> max: {self.max_sin_bits:.2f} bit, mean: {self.mean_sin_bits:.2f} bit",
            f"  Cos -> max: {self.max_cos_bits:.2f} bit, mean: {self.mean_cos_bits:.2f} bit",
        ]

    def outlier_lines(self) -> list[str]:
        """Render the captured outliers as lines of text."""
        out = []
        for i, record in enumerate(self.outliers, 1):
            out.append(f"Outlier #{i}")
            out.extend("  " + line for line in record.lines())
        return out

    def log(self, log: logging.Logger = logger) -> None:
        """Write the report to `log`.

        The summary is logged at INFO level. The outliers were already logged
        at WARNING level as they were captured, so they are only repeated at
        DEBUG level.
        """
        for line in self.outlier_lines():
            log.debug("%s", line)
        for line in self.lines():
            log.info("%s", line)

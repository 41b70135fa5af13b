# noqa: D104

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

from collections.abc import Mapping

import numpy as np
import prometheus_client

from katgputrig import METRIC_NAMESPACE


class PromDiff:
    """Collects Prometheus metrics before and after test code, and provides differences.

    Typical usage is::

        with PromDiff() as prom_diff:
            ...  # Do stuff that increments counters
        prom_diff.diff(name, labels)

    Metric names are given without the ``katgputrig_`` prefix.
    """

    def __init__(
        self,
        *,
        registry: prometheus_client.CollectorRegistry = prometheus_client.REGISTRY,
        namespace: str | None = METRIC_NAMESPACE,
    ) -> None:
        self._registry = registry
        self._before: list[prometheus_client.samples.Sample] = []
        self._after: list[prometheus_client.samples.Sample] = []
        self._prefix = namespace + "_" if namespace is not None else ""

    def __enter__(self) -> "PromDiff":
        self._before = [s for metric in self._registry.collect() for s in metric.samples]
        return self

    def __exit__(self, *args) -> None:
        self._after = [s for metric in self._registry.collect() for s in metric.samples]

    def _get_value(
        self, samples: list[prometheus_client.samples.Sample], name: str, labels: Mapping[str, str]
    ) -> float | None:
        for s in samples:
            if s.name == self._prefix + name and s.labels == labels:
                return s.value
        return None

    def value(self, name: str, labels: Mapping[str, str] | None = None) -> float:
        """Return the value of the metric at the end of the context manager protocol."""
        value = self._get_value(self._after, name, labels or {})
        assert value is not None, f"Metric {name}{labels} does not exist"
        return value

    def diff(self, name: str, labels: Mapping[str, str] | None = None) -> float:
        """Return the increase in the metric during the context manager protocol.

        A metric that did not exist at the start is treated as starting from zero.
        """
        before = self._get_value(self._before, name, labels or {})
        return self.value(name, labels) - (before or 0.0)


def shift_ulps(x: np.ndarray, k: int) -> np.ndarray:
    """Move each element of a float32 array up by `k` representable values."""
    out = np.array(x, dtype=np.float32)
    for _ in range(k):
        out = np.nextafter(out, np.float32(np.inf))
    return out

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

"""Measure the arithmetic throughput of synthetic kernels.

Each measurement times one dispatch followed by a blocking readback of a
single scalar. The readback is what forces the host to wait for the device
to finish, so the elapsed time covers execution and not just submission.
The number of operations is not measured: it is declared for each kernel
(threads per work-group and operations per thread per iteration) in a
:class:`BenchmarkKernel`.
"""

import asyncio
import logging
import math
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from prometheus_client import Counter, Gauge

from . import BENCH_OPS_PER_ITERATION, BENCH_THREADS_PER_GROUP, METRIC_NAMESPACE
from .dispatch import Dispatcher, KernelHandle, KernelKind
from .errors import ConfigurationError, InvalidArgumentError

logger = logging.getLogger(__name__)

elapsed_gauge = Gauge(
    "benchmark_elapsed_seconds",
    "time for the most recent dispatch and readback",
    ["kernel"],
    namespace=METRIC_NAMESPACE,
)
gops_gauge = Gauge(
    "benchmark_gops",
    "throughput of the most recent measurement, in 10^9 operations per second",
    ["kernel"],
    namespace=METRIC_NAMESPACE,
)
measurements_counter = Counter(
    "benchmark_measurements", "number of throughput measurements made", ["kernel"], namespace=METRIC_NAMESPACE
)


@dataclass(frozen=True)
class BenchmarkKernel:
    """A throughput kernel and the amount of work it is known to do."""

    name: str
    threads_per_group: int = BENCH_THREADS_PER_GROUP
    ops_per_thread_iteration: int = BENCH_OPS_PER_ITERATION


@dataclass(frozen=True)
class BenchmarkSample:
    """A single throughput measurement."""

    kernel_name: str
    elapsed_ms: float
    #: Throughput in units of 10^9 operations per second
    ops_per_second: float

    def __str__(self) -> str:
        return f"{self.kernel_name}: {self.elapsed_ms:.3f} ms   {self.ops_per_second:.2f} G ops/s"


#: Kernels provided by the standard backends, with their declared work
STANDARD_KERNELS: dict[str, BenchmarkKernel] = {
    name: BenchmarkKernel(name) for name in ["bench_sincos", "bench_sincos_native", "bench_fma"]
}


def parse_benchmark_kernel(value: str) -> BenchmarkKernel:
    """Parse a command-line kernel declaration of the form ``NAME[:OPS[:THREADS]]``.

    Omitted fields are taken from :data:`STANDARD_KERNELS` if the kernel is
    listed there, and from the package defaults otherwise.
    """
    parts = value.split(":")
    if len(parts) > 3 or not parts[0]:
        raise ValueError(f"invalid kernel declaration {value!r}")
    name = parts[0]
    base = STANDARD_KERNELS.get(name, BenchmarkKernel(name))
    ops = int(parts[1]) if len(parts) > 1 else base.ops_per_thread_iteration
    threads = int(parts[2]) if len(parts) > 2 else base.threads_per_group
    if ops <= 0 or threads <= 0:
        raise ValueError(f"invalid kernel declaration {value!r}")
    return BenchmarkKernel(name, threads_per_group=threads, ops_per_thread_iteration=ops)


def default_kernels(dispatcher: Dispatcher) -> list[BenchmarkKernel]:
    """Declare every throughput kernel provided by `dispatcher`.

    Operations per iteration are taken from :data:`STANDARD_KERNELS` where
    the kernel is listed there, and the work-group size from the dispatcher.
    """
    kernels = []
    for name in dispatcher.kernel_names(KernelKind.THROUGHPUT):
        handle = dispatcher.lookup_kernel(name)
        base = STANDARD_KERNELS.get(name, BenchmarkKernel(name))
        kernels.append(
            BenchmarkKernel(
                name,
                threads_per_group=dispatcher.group_size(handle),
                ops_per_thread_iteration=base.ops_per_thread_iteration,
            )
        )
    return kernels


def ops_per_second(
    group_count: int, threads_per_group: int, ops_per_thread_iteration: int, iterations: int, elapsed_ms: float
) -> float:
    """Compute throughput in units of 10^9 operations per second.

    Returns infinity if `elapsed_ms` is not positive.
    """
    if elapsed_ms <= 0.0:
        return math.inf
    ops = group_count * threads_per_group * ops_per_thread_iteration * iterations
    return ops / (elapsed_ms * 1e6)


def _check_positive(name: str, value: int) -> None:
    if value <= 0:
        raise InvalidArgumentError(f"{name} must be positive (got {value})")


def _lookup(dispatcher: Dispatcher, kernel: BenchmarkKernel) -> KernelHandle:
    """Look up a throughput kernel and check that its declaration matches the dispatcher."""
    handle = dispatcher.lookup_kernel(kernel.name)
    if handle.kind != KernelKind.THROUGHPUT:
        raise ConfigurationError(f"kernel {kernel.name!r} is not a throughput kernel")
    actual = dispatcher.group_size(handle)
    if kernel.threads_per_group != actual:
        raise ConfigurationError(
            f"kernel {kernel.name!r} is declared with {kernel.threads_per_group} threads per work-group "
            f"but runs with {actual}"
        )
    return handle


def measure(
    dispatcher: Dispatcher,
    kernel: BenchmarkKernel,
    group_count: int,
    iterations: int,
    *,
    clock: Callable[[], float] = time.perf_counter,
) -> BenchmarkSample:
    """Time a single run of a throughput kernel.

    Looking up the kernel and setting its parameters happen before the timer
    starts.

    Raises
    ------
    ConfigurationError
        if the kernel does not exist, is not a throughput kernel, or runs
        with a different work-group size than `kernel` declares
    InvalidArgumentError
        if `group_count` or `iterations` is not positive
    """
    _check_positive("group_count", group_count)
    _check_positive("iterations", iterations)
    handle = _lookup(dispatcher, kernel)
    dispatcher.set_scalar(handle, "iterations", iterations)

    start = clock()
    dispatcher.run_kernel(handle, None, group_count)
    elapsed_ms = (clock() - start) * 1e3

    rate = ops_per_second(
        group_count, kernel.threads_per_group, kernel.ops_per_thread_iteration, iterations, elapsed_ms
    )
    sample = BenchmarkSample(kernel.name, elapsed_ms, rate)
    elapsed_gauge.labels(kernel.name).set(elapsed_ms * 1e-3)
    gops_gauge.labels(kernel.name).set(rate)
    measurements_counter.labels(kernel.name).inc()
    logger.debug("%s", sample)
    return sample


class ThroughputBenchmark:
    """Repeatedly measure a set of throughput kernels.

    Parameters
    ----------
    dispatcher
        Backend on which to run the kernels.
    kernels
        Kernels to measure, in order.
    group_count
        Number of work-groups to dispatch for each measurement.
    iterations
        Number of loop iterations performed by each thread.
    clock
        Timer used for measurements (for testing).
    """

    def __init__(
        self,
        dispatcher: Dispatcher,
        kernels: Sequence[BenchmarkKernel],
        group_count: int,
        iterations: int,
        *,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        _check_positive("group_count", group_count)
        _check_positive("iterations", iterations)
        if not kernels:
            raise InvalidArgumentError("at least one kernel is required")
        self.dispatcher = dispatcher
        self.kernels = list(kernels)
        self.group_count = group_count
        self.iterations = iterations
        self._clock = clock
        self._halt_event = asyncio.Event()

    def warmup(self) -> None:
        """Run each kernel once without recording a measurement.

        This moves compilation and buffer allocation out of the first
        measurement, and reports configuration errors before any
        measurement is made.
        """
        for kernel in self.kernels:
            handle = _lookup(self.dispatcher, kernel)
            self.dispatcher.set_scalar(handle, "iterations", self.iterations)
            self.dispatcher.run_kernel(handle, None, self.group_count)

    def measure(self, kernel: BenchmarkKernel) -> BenchmarkSample:
        """Measure a single kernel."""
        return measure(self.dispatcher, kernel, self.group_count, self.iterations, clock=self._clock)

    def measure_all(self) -> list[BenchmarkSample]:
        """Measure each kernel once, in order."""
        return [self.measure(kernel) for kernel in self.kernels]

    def halt(self) -> None:
        """Request :meth:`run` to stop, but do not wait for it."""
        self._halt_event.set()

    async def run(self, interval: float, callback: Callable[[list[BenchmarkSample]], None]) -> None:
        """Measure all the kernels every `interval` seconds until halted.

        The results of each round are passed to `callback`.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time()
        while not self._halt_event.is_set():
            callback(self.measure_all())
            # Compute absolute time for the next round (this ensures that there
            # is no systematic drift).
            deadline += interval
            delay = max(0.0, deadline - loop.time())
            try:
                await asyncio.wait_for(self._halt_event.wait(), timeout=delay)
            except TimeoutError:
                pass

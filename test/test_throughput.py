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

"""Tests for :mod:`katgputrig.throughput`."""

import itertools
import math

import pytest

from katgputrig.dispatch import HostDispatcher
from katgputrig.errors import ConfigurationError, InvalidArgumentError
from katgputrig.throughput import (
    STANDARD_KERNELS,
    BenchmarkKernel,
    BenchmarkSample,
    ThroughputBenchmark,
    default_kernels,
    measure,
    ops_per_second,
    parse_benchmark_kernel,
)

from . import PromDiff


class FakeClock:
    """Clock that advances by a fixed step every time it is read."""

    def __init__(self, step: float) -> None:
        self._times = itertools.count(0.0, step)

    def __call__(self) -> float:
        return next(self._times)


@pytest.fixture
def dispatcher(mocker) -> HostDispatcher:
    """Host dispatcher whose throughput kernels do no work."""
    return HostDispatcher(
        throughput={"bench_fma": mocker.Mock(return_value=0.0), "bench_sincos": mocker.Mock(return_value=0.0)}
    )


class TestOpsPerSecond:
    def test_default_workload(self) -> None:
        """The default workload (2^39 operations) in 100 ms."""
        assert ops_per_second(1024, 1024, 8, 65536, 100.0) == pytest.approx(2**39 / 1e8)

    @pytest.mark.parametrize("elapsed", [0.0, -1.0])
    def test_zero_elapsed(self, elapsed: float) -> None:
        assert ops_per_second(1, 1, 1, 1, elapsed) == math.inf


class TestParseBenchmarkKernel:
    def test_standard(self) -> None:
        assert parse_benchmark_kernel("bench_fma") == STANDARD_KERNELS["bench_fma"]

    def test_custom(self) -> None:
        assert parse_benchmark_kernel("foo:4") == BenchmarkKernel("foo", ops_per_thread_iteration=4)
        assert parse_benchmark_kernel("foo:4:256") == BenchmarkKernel(
            "foo", threads_per_group=256, ops_per_thread_iteration=4
        )

    @pytest.mark.parametrize("value", ["", ":4", "foo:0", "foo:4:-1", "foo:x", "foo:1:2:3"])
    def test_invalid(self, value: str) -> None:
        with pytest.raises(ValueError):
            parse_benchmark_kernel(value)


class TestMeasure:
    """Test :func:`.measure`."""

    def test_throughput(self, dispatcher: HostDispatcher) -> None:
        kernel = BenchmarkKernel("bench_fma")
        sample = measure(dispatcher, kernel, 1024, 65536, clock=FakeClock(0.25))
        assert sample.kernel_name == "bench_fma"
        assert sample.elapsed_ms == pytest.approx(250.0)
        assert sample.ops_per_second == pytest.approx(1024 * 1024 * 8 * 65536 / (250.0 * 1e6))

    def test_iterations_passed(self, dispatcher: HostDispatcher) -> None:
        measure(dispatcher, BenchmarkKernel("bench_sincos"), 2, 17, clock=FakeClock(1.0))
        func = dispatcher._throughput["bench_sincos"]
        func.assert_called_once_with(2 * dispatcher.threads_per_group, 17)

    def test_zero_elapsed(self, dispatcher: HostDispatcher) -> None:
        sample = measure(dispatcher, BenchmarkKernel("bench_fma"), 1, 1, clock=lambda: 5.0)
        assert sample.elapsed_ms == 0.0
        assert sample.ops_per_second == math.inf

    def test_missing_kernel(self, dispatcher: HostDispatcher) -> None:
        with pytest.raises(ConfigurationError):
            measure(dispatcher, BenchmarkKernel("nope"), 1, 1)

    def test_wrong_kind(self, dispatcher: HostDispatcher) -> None:
        with pytest.raises(ConfigurationError, match="not a throughput kernel"):
            measure(dispatcher, BenchmarkKernel("sincos_reference"), 1, 1)

    @pytest.mark.parametrize("groups, iterations", [(0, 1), (1, 0), (-1, 5)])
    def test_invalid(self, dispatcher: HostDispatcher, groups: int, iterations: int) -> None:
        with pytest.raises(InvalidArgumentError):
            measure(dispatcher, BenchmarkKernel("bench_fma"), groups, iterations)

    @pytest.mark.parametrize(
        "kernel, threads_per_group",
        [
            (BenchmarkKernel("bench_fma"), 256),
            (BenchmarkKernel("bench_fma", threads_per_group=256), 1024),
        ],
    )
    def test_threads_mismatch(self, mocker, kernel: BenchmarkKernel, threads_per_group: int) -> None:
        """A declared work-group size that differs from the real one is rejected before running."""
        func = mocker.Mock(return_value=0.0)
        dispatcher = HostDispatcher(throughput={"bench_fma": func}, threads_per_group=threads_per_group)
        with pytest.raises(ConfigurationError, match="threads per work-group"):
            measure(dispatcher, kernel, 1, 1)
        func.assert_not_called()

    def test_metrics(self, dispatcher: HostDispatcher) -> None:
        labels = {"kernel": "bench_fma"}
        with PromDiff() as prom_diff:
            sample = measure(dispatcher, BenchmarkKernel("bench_fma"), 4, 8, clock=FakeClock(0.5))
        assert prom_diff.diff("benchmark_measurements_total", labels) == 1
        assert prom_diff.value("benchmark_elapsed_seconds", labels) == pytest.approx(0.5)
        assert prom_diff.value("benchmark_gops", labels) == pytest.approx(sample.ops_per_second)


class TestDefaultKernels:
    """Test :func:`.default_kernels`."""

    def test_host(self, host_dispatcher: HostDispatcher) -> None:
        assert default_kernels(host_dispatcher) == [STANDARD_KERNELS["bench_fma"], STANDARD_KERNELS["bench_sincos"]]

    def test_group_size(self, mocker) -> None:
        """The work-group size comes from the dispatcher, and unknown kernels get the default operation count."""
        dispatcher = HostDispatcher(throughput={"custom": mocker.Mock(return_value=0.0)}, threads_per_group=128)
        kernels = default_kernels(dispatcher)
        assert kernels == [BenchmarkKernel("custom", threads_per_group=128)]
        # The declarations are consistent with the dispatcher
        measure(dispatcher, kernels[0], 1, 1)

    def test_empty(self) -> None:
        assert default_kernels(HostDispatcher(throughput={})) == []


def test_sample_str() -> None:
    assert str(BenchmarkSample("bench_fma", 12.3456, 789.012)) == "bench_fma: 12.346 ms   789.01 G ops/s"


class TestThroughputBenchmark:
    """Test :class:`.ThroughputBenchmark`."""

    @pytest.fixture
    def benchmark(self, dispatcher: HostDispatcher) -> ThroughputBenchmark:
        kernels = [STANDARD_KERNELS["bench_fma"], STANDARD_KERNELS["bench_sincos"]]
        return ThroughputBenchmark(dispatcher, kernels, 2, 3, clock=FakeClock(0.001))

    def test_measure_all(self, benchmark: ThroughputBenchmark) -> None:
        samples = benchmark.measure_all()
        assert [s.kernel_name for s in samples] == ["bench_fma", "bench_sincos"]
        for sample in samples:
            assert sample.elapsed_ms == pytest.approx(1.0)

    def test_warmup(self, benchmark: ThroughputBenchmark, dispatcher: HostDispatcher, mocker) -> None:
        spy = mocker.spy(benchmark, "measure")
        benchmark.warmup()
        for name in ["bench_fma", "bench_sincos"]:
            dispatcher._throughput[name].assert_called_once_with(2 * dispatcher.threads_per_group, 3)
        # Warmup runs are not measurements
        spy.assert_not_called()

    def test_warmup_threads_mismatch(self, dispatcher: HostDispatcher) -> None:
        benchmark = ThroughputBenchmark(dispatcher, [BenchmarkKernel("bench_fma", threads_per_group=64)], 1, 1)
        with pytest.raises(ConfigurationError, match="threads per work-group"):
            benchmark.warmup()
        dispatcher._throughput["bench_fma"].assert_not_called()

    def test_no_kernels(self, dispatcher: HostDispatcher) -> None:
        with pytest.raises(InvalidArgumentError):
            ThroughputBenchmark(dispatcher, [], 1, 1)

    async def test_run(self, benchmark: ThroughputBenchmark) -> None:
        """The loop produces rounds until halted."""
        rounds = []

        def callback(samples: list[BenchmarkSample]) -> None:
            rounds.append(samples)
            if len(rounds) == 3:
                benchmark.halt()

        await benchmark.run(0.0, callback)
        assert len(rounds) == 3
        assert all(len(r) == 2 for r in rounds)

    async def test_run_halted(self, benchmark: ThroughputBenchmark) -> None:
        """A benchmark that is already halted produces nothing."""
        benchmark.halt()
        rounds = []
        await benchmark.run(0.0, rounds.append)
        assert rounds == []

    async def test_run_propagates_errors(self, dispatcher: HostDispatcher) -> None:
        benchmark = ThroughputBenchmark(dispatcher, [BenchmarkKernel("nope")], 1, 1)
        with pytest.raises(ConfigurationError):
            await benchmark.run(0.0, lambda samples: None)

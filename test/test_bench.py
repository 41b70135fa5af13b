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

"""Tests for :mod:`katgputrig.bench`."""

import logging

import pytest

from katgputrig import (
    DEFAULT_BENCH_GROUPS,
    DEFAULT_BENCH_INTERVAL,
    DEFAULT_BENCH_ITERATIONS,
    DEFAULT_HOST_BENCH_GROUPS,
    DEFAULT_HOST_BENCH_ITERATIONS,
)
from katgputrig.bench import async_main, main, parse_args
from katgputrig.dispatch import DEFAULT_HOST_THROUGHPUT, HostDispatcher
from katgputrig.throughput import BenchmarkKernel, ThroughputBenchmark


class TestParseArgs:
    def test_defaults(self) -> None:
        args = parse_args([])
        assert args.kernels is None
        assert args.groups == DEFAULT_BENCH_GROUPS
        assert args.iterations == DEFAULT_BENCH_ITERATIONS
        assert args.interval == DEFAULT_BENCH_INTERVAL
        assert args.passes == 1
        assert args.warmup
        assert args.prometheus_port is None

    def test_host_defaults(self) -> None:
        args = parse_args(["--backend=host"])
        assert args.kernels is None
        assert args.groups == DEFAULT_HOST_BENCH_GROUPS
        assert args.iterations == DEFAULT_HOST_BENCH_ITERATIONS

    def test_explicit_workload(self) -> None:
        args = parse_args(["--backend=host", "--groups=7", "--iterations=9"])
        assert args.groups == 7
        assert args.iterations == 9

    def test_kernels(self) -> None:
        args = parse_args(["--kernels=bench_fma:4,custom:2:256", "--no-warmup"])
        assert args.kernels == [
            BenchmarkKernel("bench_fma", ops_per_thread_iteration=4),
            BenchmarkKernel("custom", threads_per_group=256, ops_per_thread_iteration=2),
        ]
        assert not args.warmup

    @pytest.mark.parametrize(
        "arglist",
        [
            ["--groups=0"],
            ["--iterations=0"],
            ["--interval=-1"],
            ["--passes=0"],
            ["--kernels="],
            ["--kernels=bench_fma:0"],
        ],
    )
    def test_invalid(self, arglist: list[str]) -> None:
        with pytest.raises(SystemExit):
            parse_args(arglist)


async def test_async_main(mocker) -> None:
    func = mocker.Mock(return_value=0.0)
    dispatcher = HostDispatcher(throughput={"bench_fma": func})
    args = parse_args(["--backend=host", "--kernels=bench_fma", "--passes=3", "--interval=0", "--groups=2"])
    benchmark = ThroughputBenchmark(dispatcher, args.kernels, args.groups, args.iterations)
    rounds = await async_main(args, benchmark)
    assert len(rounds) == 3
    assert all([s.kernel_name for s in r] == ["bench_fma"] for r in rounds)
    assert func.call_count == 3


@pytest.mark.usefixtures("no_setup_logging")
class TestMain:
    """Test :func:`.bench.main` with the host backend."""

    def test_success(self, caplog) -> None:
        with caplog.at_level(logging.INFO, logger="katgputrig"):
            main(
                ["--backend=host", "--kernels=bench_fma", "--groups=1", "--iterations=1", "--interval=0", "--passes=2"]
            )
        lines = [r.getMessage() for r in caplog.records if r.getMessage().startswith("bench_fma: ")]
        assert len(lines) == 2
        assert all(line.endswith(" G ops/s") for line in lines)

    @pytest.mark.parametrize("extra", [[], ["--no-warmup"]])
    def test_missing_kernel(self, extra: list[str], caplog) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["--backend=host", "--kernels=nope", "--interval=0", *extra])
        assert exc_info.value.code == 1
        assert "Benchmark failed: kernel 'nope' not found" in [r.getMessage() for r in caplog.records]

    def test_host_defaults(self, caplog) -> None:
        """Without ``--kernels``, every throughput kernel of the host backend is measured."""
        with caplog.at_level(logging.INFO, logger="katgputrig"):
            main(["--backend=host", "--interval=0"])
        names = [r.getMessage().split(":")[0] for r in caplog.records if r.getMessage().endswith(" G ops/s")]
        assert names == list(DEFAULT_HOST_THROUGHPUT)

    def test_threads_mismatch(self, caplog) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["--backend=host", "--kernels=bench_fma:8:256", "--interval=0"])
        assert exc_info.value.code == 1
        assert any("threads per work-group" in r.getMessage() for r in caplog.records)

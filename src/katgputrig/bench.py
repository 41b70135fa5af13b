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

"""Measure the throughput of the synthetic kernels from the command line."""

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence

import katsdpservices
import prometheus_async

from . import (
    DEFAULT_BENCH_GROUPS,
    DEFAULT_BENCH_INTERVAL,
    DEFAULT_BENCH_ITERATIONS,
    DEFAULT_HOST_BENCH_GROUPS,
    DEFAULT_HOST_BENCH_ITERATIONS,
)
from .errors import ConfigurationError, InvalidArgumentError
from .main import add_common_arguments, comma_split, make_dispatcher
from .throughput import BenchmarkSample, ThroughputBenchmark, default_kernels, parse_benchmark_kernel

logger = logging.getLogger(__name__)


def add_benchmark_arguments(parser: argparse.ArgumentParser) -> None:
    """Add arguments that configure the throughput measurements."""
    parser.add_argument(
        "--kernels",
        type=comma_split(parse_benchmark_kernel),
        metavar="NAME[:OPS[:THREADS]],...",
        help="Kernels to measure, optionally with operations per thread per iteration "
        "and threads per work-group [all throughput kernels of the backend]",
    )
    parser.add_argument(
        "--groups",
        type=int,
        help=f"Work-groups per dispatch [{DEFAULT_BENCH_GROUPS}, or {DEFAULT_HOST_BENCH_GROUPS} for host]",
    )
    parser.add_argument(
        "--iterations",
        type=int,
        help="Loop iterations performed by each thread "
        f"[{DEFAULT_BENCH_ITERATIONS}, or {DEFAULT_HOST_BENCH_ITERATIONS} for host]",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=DEFAULT_BENCH_INTERVAL,
        help="Time between rounds of measurements (s) [%(default)s]",
    )


def check_benchmark_arguments(parser: argparse.ArgumentParser, args: argparse.Namespace) -> None:
    """Validate the arguments added by :func:`add_benchmark_arguments`.

    This also fills in the defaults for ``--groups`` and ``--iterations``,
    which depend on the backend. The default for ``--kernels`` is left as
    ``None``, to be resolved with :func:`.default_kernels` once the
    dispatcher exists.
    """
    host = args.backend == "host"
    if args.groups is None:
        args.groups = DEFAULT_HOST_BENCH_GROUPS if host else DEFAULT_BENCH_GROUPS
    if args.iterations is None:
        args.iterations = DEFAULT_HOST_BENCH_ITERATIONS if host else DEFAULT_BENCH_ITERATIONS
    if args.groups <= 0:
        parser.error("--groups must be positive")
    if args.iterations <= 0:
        parser.error("--iterations must be positive")
    if args.interval < 0:
        parser.error("--interval cannot be negative")


def parse_args(arglist: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse the command-line arguments."""
    parser = argparse.ArgumentParser(prog="katgputrig-bench")
    add_benchmark_arguments(parser)
    parser.add_argument("--passes", type=int, default=1, help="Number of rounds of measurements [%(default)s]")
    parser.add_argument("--no-warmup", dest="warmup", action="store_false", help="Skip the warmup pass")
    add_common_arguments(parser)
    args = parser.parse_args(arglist)
    check_benchmark_arguments(parser, args)
    if args.passes <= 0:
        parser.error("--passes must be positive")
    return args


async def async_main(args: argparse.Namespace, benchmark: ThroughputBenchmark) -> list[list[BenchmarkSample]]:
    """Run the requested number of rounds of measurements."""
    rounds: list[list[BenchmarkSample]] = []

    def report(samples: list[BenchmarkSample]) -> None:
        rounds.append(samples)
        for sample in samples:
            logger.info("%s", sample)
        if len(rounds) >= args.passes:
            benchmark.halt()

    prometheus_server = None
    if args.prometheus_port is not None:
        prometheus_server = await prometheus_async.aio.web.start_http_server(port=args.prometheus_port)
    try:
        await benchmark.run(args.interval, report)
    finally:
        if prometheus_server is not None:
            await prometheus_server.close()
    return rounds


def main(arglist: Sequence[str] | None = None) -> None:
    """Run main program."""
    args = parse_args(arglist)
    katsdpservices.setup_logging()
    try:
        with make_dispatcher(args.backend) as dispatcher:
            kernels = args.kernels if args.kernels is not None else default_kernels(dispatcher)
            benchmark = ThroughputBenchmark(dispatcher, kernels, args.groups, args.iterations)
            if args.warmup:
                benchmark.warmup()
            asyncio.run(async_main(args, benchmark))
    except (ConfigurationError, InvalidArgumentError) as exc:
        logger.error("Benchmark failed: %s", exc)
        sys.exit(1)


if __name__ == "__main__":
    main()

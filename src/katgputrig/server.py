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

"""katcp server publishing live throughput and accuracy measurements.

The throughput kernels are measured periodically and the results published
as sensors. Accuracy runs are made on request. Device runs are serialised,
so that a verification pass never overlaps a benchmark round.
"""

import argparse
import asyncio
import contextlib
import functools
import logging
import sys
from collections.abc import Sequence

import aiokatcp
import numpy as np

from . import BENCH_TASK_NAME, DEFAULT_SAMPLES, __version__
from .bench import add_benchmark_arguments, check_benchmark_arguments
from .dispatch import Dispatcher
from .errors import ConfigurationError, InvalidArgumentError, LengthMismatchError
from .main import add_common_arguments, make_dispatcher, server_main
from .report import AccuracyReport
from .throughput import BenchmarkKernel, BenchmarkSample, ThroughputBenchmark, default_kernels
from .verify import default_sincos_kernel, run_verification

logger = logging.getLogger(__name__)


class DeviceServer(aiokatcp.DeviceServer):
    """katcp server.

    Parameters
    ----------
    dispatcher
        Backend on which kernels are run.
    kernels
        Throughput kernels to measure.
    group_count, iterations
        Parameters for the throughput measurements.
    interval
        Time between rounds of throughput measurements, in seconds.
    rng
        Random generator for verification runs.
    *args, **kwargs
        Passed to base class
    """

    VERSION = "katgputrig-0.1"
    BUILD_STATE = __version__

    def __init__(
        self,
        dispatcher: Dispatcher,
        kernels: Sequence[BenchmarkKernel],
        group_count: int,
        iterations: int,
        interval: float,
        rng: np.random.Generator,
        *args,
        **kwargs,
    ) -> None:
        super().__init__(*args, **kwargs)
        self.dispatcher = dispatcher
        self.benchmark = ThroughputBenchmark(dispatcher, kernels, group_count, iterations)
        self.interval = interval
        self.rng = rng
        self._device_lock = asyncio.Lock()  # Serialises use of the dispatcher
        self._bench_task: asyncio.Task | None = None

        for kernel in self.benchmark.kernels:
            self.sensors.add(
                aiokatcp.Sensor(
                    float,
                    f"{kernel.name}.elapsed",
                    "Time for the most recent dispatch and readback",
                    units="ms",
                )
            )
            self.sensors.add(
                aiokatcp.Sensor(
                    float,
                    f"{kernel.name}.throughput",
                    "Most recently measured throughput",
                    units="Gop/s",
                )
            )
        for func in ["sin", "cos"]:
            self.sensors.add(
                aiokatcp.Sensor(int, f"{func}.max-ulp", f"Maximum {func} error in the most recent verification")
            )
            self.sensors.add(
                aiokatcp.Sensor(
                    float, f"{func}.max-bits", f"Significand bits of {func} that are correct in the worst case"
                )
            )
            self.sensors.add(
                aiokatcp.Sensor(
                    float, f"{func}.mean-bits", f"Significand bits of {func} that are correct on average"
                )
            )
        self.sensors.add(aiokatcp.Sensor(int, "verify.samples", "Number of samples in the most recent verification"))
        self.sensors.add(aiokatcp.Sensor(int, "verify.outliers", "Number of outliers in the most recent verification"))
        self.sensors.add(
            aiokatcp.Sensor(
                int,
                "bench.groups",
                "Work-groups per throughput dispatch",
                initial_status=aiokatcp.Sensor.Status.NOMINAL,
                default=group_count,
            )
        )
        self.sensors.add(
            aiokatcp.Sensor(
                int,
                "bench.iterations",
                "Loop iterations per thread in throughput kernels",
                initial_status=aiokatcp.Sensor.Status.NOMINAL,
                default=iterations,
            )
        )

    def update_benchmark_sensors(self, samples: list[BenchmarkSample]) -> None:
        """Publish a round of throughput measurements."""
        for sample in samples:
            self.sensors[f"{sample.kernel_name}.elapsed"].value = sample.elapsed_ms
            self.sensors[f"{sample.kernel_name}.throughput"].value = sample.ops_per_second

    def update_accuracy_sensors(self, report: AccuracyReport) -> None:
        """Publish the results of a verification run."""
        self.sensors["sin.max-ulp"].value = report.max_sin_ulp
        self.sensors["cos.max-ulp"].value = report.max_cos_ulp
        self.sensors["sin.max-bits"].value = report.max_sin_bits
        self.sensors["cos.max-bits"].value = report.max_cos_bits
        self.sensors["sin.mean-bits"].value = report.mean_sin_bits
        self.sensors["cos.mean-bits"].value = report.mean_cos_bits
        self.sensors["verify.samples"].value = report.sample_count
        self.sensors["verify.outliers"].value = report.outlier_count

    async def measure(self) -> list[BenchmarkSample]:
        """Measure all the throughput kernels once and publish the results."""
        loop = asyncio.get_running_loop()
        async with self._device_lock:
            # The readback blocks, so keep it off the event loop
            samples = await loop.run_in_executor(None, self.benchmark.measure_all)
        self.update_benchmark_sensors(samples)
        return samples

    def _mark_benchmark_failed(self) -> None:
        for kernel in self.benchmark.kernels:
            for suffix in ["elapsed", "throughput"]:
                sensor = self.sensors[f"{kernel.name}.{suffix}"]
                sensor.set_value(sensor.value, status=aiokatcp.Sensor.Status.FAILURE)

    async def _run_benchmark(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time()
        while True:
            try:
                await self.measure()
            except (ConfigurationError, InvalidArgumentError) as exc:
                logger.error("Benchmark failed, stopping periodic measurements: %s", exc)
                self._mark_benchmark_failed()
                return
            except Exception:
                logger.exception("Benchmark failed, stopping periodic measurements")
                self._mark_benchmark_failed()
                return
            deadline += self.interval
            await asyncio.sleep(max(0.0, deadline - loop.time()))

    async def start(self) -> None:  # noqa: D102
        await super().start()
        if self.interval > 0:
            self._bench_task = asyncio.create_task(self._run_benchmark(), name=BENCH_TASK_NAME)

    async def on_stop(self) -> None:  # noqa: D102
        if self._bench_task is not None:
            self._bench_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._bench_task
            self._bench_task = None

    async def request_measure(self, ctx) -> None:
        """Measure the throughput kernels immediately.

        One inform is sent per kernel, giving the elapsed time (ms) and the
        throughput (Gop/s).
        """
        try:
            samples = await self.measure()
        except (ConfigurationError, InvalidArgumentError) as exc:
            raise aiokatcp.FailReply(str(exc)) from None
        for sample in samples:
            ctx.inform(sample.kernel_name, sample.elapsed_ms, sample.ops_per_second)

    async def request_verify(
        self, ctx, samples: int = DEFAULT_SAMPLES, kernel: str | None = None
    ) -> tuple[int, int, float, float]:
        """Run an accuracy test and update the accuracy sensors.

        Parameters
        ----------
        samples
            Number of random angles to test.
        kernel
            Accuracy kernel to test (defaults to the first one available).

        Returns
        -------
        max_sin_ulp, max_cos_ulp
            Maximum errors in ULPs
        max_sin_bits, max_cos_bits
            Worst-case number of correct significand bits
        """
        loop = asyncio.get_running_loop()
        async with self._device_lock:
            try:
                if kernel is None:
                    kernel = default_sincos_kernel(self.dispatcher)
                report = await loop.run_in_executor(
                    None, functools.partial(run_verification, self.dispatcher, kernel, samples, self.rng)
                )
            except (ConfigurationError, InvalidArgumentError, LengthMismatchError) as exc:
                raise aiokatcp.FailReply(str(exc)) from None
        report.log()
        self.update_accuracy_sensors(report)
        return report.max_sin_ulp, report.max_cos_ulp, report.max_sin_bits, report.max_cos_bits


def parse_args(arglist: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse the command-line arguments."""
    parser = argparse.ArgumentParser(prog="katgputrig-server")
    add_benchmark_arguments(parser)
    parser.add_argument("--seed", type=int, help="Random seed for verification runs [random]")
    add_common_arguments(parser, katcp=True)
    args = parser.parse_args(arglist)
    check_benchmark_arguments(parser, args)
    return args


def make_server(dispatcher: Dispatcher, args: argparse.Namespace) -> DeviceServer:
    """Create (but do not start) the server described by `args`."""
    return DeviceServer(
        dispatcher=dispatcher,
        kernels=args.kernels if args.kernels is not None else default_kernels(dispatcher),
        group_count=args.groups,
        iterations=args.iterations,
        interval=args.interval,
        rng=np.random.default_rng(args.seed),
        host=args.katcp_host,
        port=args.katcp_port,
    )


async def start_server(args: argparse.Namespace, exit_stack: contextlib.AsyncExitStack) -> DeviceServer:
    """Create the dispatcher and start the server."""
    dispatcher = make_dispatcher(args.backend)
    exit_stack.callback(dispatcher.close)
    server = make_server(dispatcher, args)
    logger.info("Warming up kernels")
    server.benchmark.warmup()
    await server.start()
    return server


def main(arglist: Sequence[str] | None = None) -> None:
    """Run main program."""
    args = parse_args(arglist)
    try:
        server_main(args, start_server)
    except (ConfigurationError, InvalidArgumentError) as exc:
        logger.error("Server failed to start: %s", exc)
        sys.exit(1)


if __name__ == "__main__":
    main()

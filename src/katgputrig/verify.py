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

"""Measure the accuracy of a sin/cos kernel against a double-precision reference."""

import argparse
import logging
import sys
from collections.abc import Sequence

import katsdpservices
import numpy as np
from prometheus_client import Gauge

from . import DEFAULT_SAMPLES, MAX_HIGH_ERROR_LOGS, METRIC_NAMESPACE, SINCOS_WGS, ULP_THRESHOLD
from .accuracy import AccuracyAggregator
from .dispatch import Dispatcher, KernelKind
from .errors import ConfigurationError, InvalidArgumentError, LengthMismatchError
from .main import add_common_arguments, make_dispatcher
from .report import AccuracyReport
from .samples import generate

logger = logging.getLogger(__name__)

max_ulp_gauge = Gauge(
    "verify_max_ulp",
    "maximum error in the most recent verification run",
    ["kernel", "func"],
    namespace=METRIC_NAMESPACE,
)


def default_sincos_kernel(dispatcher: Dispatcher) -> str:
    """Choose the accuracy kernel to test when none is named.

    Raises
    ------
    ConfigurationError
        if `dispatcher` has no accuracy kernels
    """
    names = dispatcher.kernel_names(KernelKind.SINCOS)
    if not names:
        raise ConfigurationError("no accuracy kernels available")
    return names[0]


def run_verification(
    dispatcher: Dispatcher,
    kernel_name: str,
    samples: int,
    rng: np.random.Generator,
    *,
    max_angle: float = np.pi,
    threshold: int = ULP_THRESHOLD,
    max_records: int = MAX_HIGH_ERROR_LOGS,
) -> AccuracyReport:
    """Run an accuracy kernel on random angles and compare it to the reference.

    Parameters
    ----------
    dispatcher
        Backend that runs the kernel.
    kernel_name
        Name of an accuracy kernel known to `dispatcher`.
    samples
        Number of angles to test.
    rng
        Source of the random angles.
    max_angle
        Angles are drawn uniformly from [-`max_angle`, `max_angle`].
    threshold, max_records
        See :class:`.AccuracyAggregator`.

    Raises
    ------
    ConfigurationError
        if the kernel does not exist or is not an accuracy kernel. This is
        detected before anything is dispatched.
    InvalidArgumentError
        if `samples` or `max_angle` is invalid
    LengthMismatchError
        if the dispatcher returns the wrong number of results
    """
    handle = dispatcher.lookup_kernel(kernel_name)
    if handle.kind != KernelKind.SINCOS:
        raise ConfigurationError(f"kernel {kernel_name!r} is not an accuracy kernel")
    theta = generate(samples, rng, -max_angle, max_angle)
    dispatcher.set_scalar(handle, "n", samples)
    groups = (samples + SINCOS_WGS - 1) // SINCOS_WGS
    logger.debug("Dispatching %s over %d samples", kernel_name, samples)
    results = dispatcher.run_kernel(handle, theta, groups)

    aggregator = AccuracyAggregator(threshold=threshold, max_records=max_records)
    aggregator.add(theta, results)
    report = AccuracyReport.from_aggregator(aggregator, kernel_name)
    max_ulp_gauge.labels(kernel_name, "sin").set(report.max_sin_ulp)
    max_ulp_gauge.labels(kernel_name, "cos").set(report.max_cos_ulp)
    return report


def parse_args(arglist: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse the command-line arguments."""
    parser = argparse.ArgumentParser(prog="katgputrig-verify")
    parser.add_argument(
        "--samples", type=int, default=DEFAULT_SAMPLES, help="Number of random angles to test [%(default)s]"
    )
    parser.add_argument("--kernel", help="Accuracy kernel to test [first kernel of the backend]")
    parser.add_argument(
        "--max", type=float, default=1.0, help="Maximum angle magnitude to test, in units of pi [%(default)s]"
    )
    parser.add_argument("--seed", type=int, help="Random seed [random]")
    parser.add_argument(
        "--threshold",
        type=int,
        default=ULP_THRESHOLD,
        help="Errors above this many ULPs are reported as outliers [%(default)s]",
    )
    parser.add_argument(
        "--max-records",
        type=int,
        default=MAX_HIGH_ERROR_LOGS,
        help="Maximum number of outliers to describe in detail [%(default)s]",
    )
    add_common_arguments(parser, prometheus=False)
    args = parser.parse_args(arglist)
    if args.max <= 0:
        parser.error("--max must be positive")
    if args.threshold < 0:
        parser.error("--threshold cannot be negative")
    if args.max_records < 0:
        parser.error("--max-records cannot be negative")
    return args


def main(arglist: Sequence[str] | None = None) -> None:
    """Run main program."""
    args = parse_args(arglist)
    katsdpservices.setup_logging()
    rng = np.random.default_rng(args.seed)
    try:
        with make_dispatcher(args.backend) as dispatcher:
            kernel = args.kernel
            if kernel is None:
                kernel = default_sincos_kernel(dispatcher)
            report = run_verification(
                dispatcher,
                kernel,
                args.samples,
                rng,
                max_angle=args.max * np.pi,
                threshold=args.threshold,
                max_records=args.max_records,
            )
    except (ConfigurationError, InvalidArgumentError, LengthMismatchError) as exc:
        logger.error("Verification failed: %s", exc)
        sys.exit(1)
    report.log()


if __name__ == "__main__":
    main()

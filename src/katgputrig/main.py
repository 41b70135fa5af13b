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

"""Utilities for writing the command-line programs."""

import argparse
import asyncio
import contextlib
import gc
import logging
import signal
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

import aiokatcp
import katsdpservices
import prometheus_async
import prometheus_client

from . import DEFAULT_KATCP_HOST, DEFAULT_KATCP_PORT, METRIC_NAMESPACE, __version__
from .dispatch import Dispatcher, HostDispatcher

logger = logging.getLogger(__name__)

BACKENDS = ["accel", "host"]

T = TypeVar("T")


def comma_split(base_type: Callable[[str], T], allow_empty: bool = False) -> Callable[[str], list[T]]:
    """Return a function to split a comma-delimited str into a list of type T.

    Parameters
    ----------
    base_type
        The base type of thing you expect in the list, e.g. `int`, `float`.
    allow_empty
        If false (the default), an empty list is rejected.
    """

    def func(value: str) -> list[T]:
        parts = value.split(",")
        if parts == [""]:
            parts = []
        if not parts and not allow_empty:
            raise ValueError("Expected at least one comma-separated field")
        return [base_type(part) for part in parts]

    return func


def add_common_arguments(
    parser: argparse.ArgumentParser,
    *,
    katcp: bool = False,
    prometheus: bool = True,
    version: bool = True,
) -> None:
    """Add command-line arguments to the parser."""
    parser.add_argument(
        "--backend",
        choices=BACKENDS,
        default="accel",
        help="Where to run the kernels: a GPU (accel) or in-process on the CPU (host) [%(default)s]",
    )
    if katcp:
        parser.add_argument(
            "--katcp-host",
            type=str,
            default=DEFAULT_KATCP_HOST,
            help="Hostname or IP on which to listen for KATCP C&M connections [all interfaces]",
        )
        parser.add_argument(
            "--katcp-port",
            type=int,
            default=DEFAULT_KATCP_PORT,
            help="Network port on which to listen for KATCP C&M connections [%(default)s]",
        )
    if prometheus:
        parser.add_argument(
            "--prometheus-port",
            type=int,
            help="Network port on which to serve Prometheus metrics [none]",
        )
    if version:
        parser.add_argument("--version", action="version", version=__version__)


def make_dispatcher(backend: str) -> Dispatcher:
    """Create the dispatcher selected by the ``--backend`` argument."""
    if backend == "host":
        return HostDispatcher()
    elif backend == "accel":
        # Imported here so that the host backend works without a GPU stack
        from .accel_dispatch import make_accel_dispatcher

        return make_accel_dispatcher()
    else:
        raise ValueError(f"Unknown backend {backend!r}")


def add_signal_handlers(
    server: aiokatcp.DeviceServer, signums: Sequence[int] = (signal.SIGINT, signal.SIGTERM)
) -> None:
    """Halt `server` on the first of `signums` to arrive.

    The handlers are removed once one fires, so a second Ctrl-C falls back to
    the default behaviour if the server fails to shut down.
    """
    loop = asyncio.get_running_loop()

    def handler(signum: int) -> None:
        logger.info("Received %s, halting server", signal.Signals(signum).name)
        for s in signums:
            loop.remove_signal_handler(s)
        server.halt()

    for signum in signums:
        loop.add_signal_handler(signum, handler, signum)


def add_gc_stats(registry: prometheus_client.CollectorRegistry = prometheus_client.REGISTRY) -> Callable:
    """Add Prometheus metrics for the time spent in garbage collection.

    It is only safe to call this once per `registry`.

    Returns
    -------
    callback
        The function installed in :data:`gc.callbacks`.
    """
    gc_time = prometheus_client.Histogram(
        "gc_time_seconds",
        "Time spent in garbage collection",
        ["generation"],
        namespace=METRIC_NAMESPACE,
        buckets=[0.0002, 0.0005, 0.001, 0.002, 0.005, 0.010, 0.020, 0.050, 0.100],
        registry=registry,
    )
    for generation in range(3):
        gc_time.labels(str(generation))
    start_time = 0.0

    def callback(phase: str, info: dict) -> None:
        nonlocal start_time
        if phase == "start":
            start_time = time.monotonic()
        else:
            gc_time.labels(str(info["generation"])).observe(time.monotonic() - start_time)

    gc.callbacks.append(callback)
    return callback


async def _server_main_async(
    args: argparse.Namespace,
    start_server: Callable[[argparse.Namespace, contextlib.AsyncExitStack], Awaitable[aiokatcp.DeviceServer]],
) -> None:
    katsdpservices.setup_logging()
    add_gc_stats()
    async with contextlib.AsyncExitStack() as exit_stack:
        if getattr(args, "prometheus_port", None) is not None:
            prometheus_server = await prometheus_async.aio.web.start_http_server(port=args.prometheus_port)
            exit_stack.push_async_callback(prometheus_server.close)

        server = await start_server(args, exit_stack)
        add_signal_handlers(server)
        await server.join()


def server_main(
    args: argparse.Namespace,
    start_server: Callable[[argparse.Namespace, contextlib.AsyncExitStack], Awaitable[aiokatcp.DeviceServer]],
) -> None:
    """Run a katcp server until it is halted.

    This takes care of:

    - running an event loop;
    - setting up logging;
    - running a web server for Prometheus scraping if requested on the command line;
    - adding Prometheus statistics for the garbage collector (GC).

    Parameters
    ----------
    args
        The command-line arguments.
    start_server
        The function that creates and starts the server. It takes the
        command-line arguments and an asynchronous exit stack that can be used
        to enter contexts or schedule cleanup work.
    """
    asyncio.run(_server_main_async(args, start_server))

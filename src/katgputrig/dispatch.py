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

"""Interface between the measurement code and whatever executes the kernels.

The measurement code only needs to look up kernels by name, pass them small
integer parameters, and run them to completion with a blocking readback. A
:class:`Dispatcher` provides exactly that. :class:`HostDispatcher` runs
Python functions in-process, which makes it possible to test the measurement
code without a GPU; :class:`.AccelDispatcher` runs real GPU kernels.
"""

import enum
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Self

import numpy as np
from numpy.typing import ArrayLike

from . import BENCH_THREADS_PER_GROUP, SINCOS_WGS
from .accuracy import RESULT_DTYPE
from .errors import ConfigurationError
from .reference import reference

#: Computes (sin, cos) for an array of float32 angles
SincosFunction = Callable[[np.ndarray], tuple[ArrayLike, ArrayLike]]
#: Runs a throughput workload given (threads, iterations) and returns a scalar
ThroughputFunction = Callable[[int, int], float]


class KernelKind(enum.Enum):
    """Type of work done by a kernel, which determines its inputs and outputs."""

    #: Input is one float32 angle per sample, output is :data:`.RESULT_DTYPE` per sample
    SINCOS = "sincos"
    #: No input; output is a single float32 that depends on all the work done
    THROUGHPUT = "throughput"


@dataclass
class KernelHandle:
    """A kernel that has been looked up, along with its scalar parameters."""

    name: str
    kind: KernelKind
    params: dict[str, int] = field(default_factory=dict)

    def param(self, name: str) -> int:
        """Get a scalar parameter that must already have been set."""
        try:
            return self.params[name]
        except KeyError:
            raise ConfigurationError(f"parameter {name!r} has not been set for kernel {self.name!r}") from None


class Dispatcher(ABC):
    """Capability to look up and run kernels."""

    @abstractmethod
    def kernel_names(self, kind: KernelKind) -> list[str]:
        """List the available kernels of a given kind."""

    @abstractmethod
    def lookup_kernel(self, name: str) -> KernelHandle:
        """Find a kernel by name.

        Raises
        ------
        ConfigurationError
            if there is no such kernel
        """

    @abstractmethod
    def group_size(self, handle: KernelHandle) -> int:
        """Number of threads in each work-group when `handle` is run."""

    def set_scalar(self, handle: KernelHandle, name: str, value: int) -> None:
        """Set a scalar parameter that will be passed to the kernel.

        Accuracy kernels use ``n`` (the number of samples to process) and
        throughput kernels use ``iterations``.
        """
        handle.params[name] = int(value)

    @abstractmethod
    def run_kernel(self, handle: KernelHandle, data: np.ndarray | None, group_count: int) -> np.ndarray:
        """Run a kernel to completion and return its output.

        This allocates the buffers, uploads `data` (which must be ``None`` for
        throughput kernels), dispatches `group_count` work-groups and waits
        for the result to be read back into host memory.
        """

    def close(self) -> None:  # noqa: B027
        """Release any resources held by the dispatcher."""
        pass

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *args) -> None:
        self.close()


def _numpy_sincos(theta: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    return np.sin(theta), np.cos(theta)


def _host_fma(threads: int, iterations: int) -> float:
    """Do 8 floating-point operations per thread per iteration (4 multiply-adds)."""
    x = np.linspace(0.0, 1e-3, threads, dtype=np.float32)
    a = np.float32(0.999999)
    b = np.float32(1e-7)
    for _ in range(iterations):
        for _ in range(4):
            x *= a
            x += b
    return float(np.sum(x))


def _host_sincos(threads: int, iterations: int) -> float:
    """Do 8 transcendental operations per thread per iteration (4 sines and 4 cosines)."""
    s = np.linspace(0.0, 1.0, threads, dtype=np.float32)
    c = s.copy()
    for _ in range(iterations):
        for _ in range(4):
            np.sin(s, out=s)
            np.cos(c, out=c)
    return float(np.sum(s) + np.sum(c))


DEFAULT_HOST_SINCOS: Mapping[str, SincosFunction] = {
    "sincos_reference": reference,
    "sincos_numpy": _numpy_sincos,
}
DEFAULT_HOST_THROUGHPUT: Mapping[str, ThroughputFunction] = {
    "bench_fma": _host_fma,
    "bench_sincos": _host_sincos,
}


class HostDispatcher(Dispatcher):
    """Run kernels as Python functions on the host.

    Parameters
    ----------
    sincos
        Accuracy kernels, keyed by name. Each is called with an array of
        float32 angles and returns the sine and cosine arrays.
    throughput
        Throughput kernels, keyed by name. Each is called with the total number
        of threads and the iteration count, and returns a scalar result.
    threads_per_group
        Number of threads in each work-group of a throughput kernel.
    """

    def __init__(
        self,
        sincos: Mapping[str, SincosFunction] | None = None,
        throughput: Mapping[str, ThroughputFunction] | None = None,
        *,
        threads_per_group: int = BENCH_THREADS_PER_GROUP,
    ) -> None:
        self._sincos = dict(DEFAULT_HOST_SINCOS if sincos is None else sincos)
        self._throughput = dict(DEFAULT_HOST_THROUGHPUT if throughput is None else throughput)
        self.threads_per_group = threads_per_group

    def kernel_names(self, kind: KernelKind) -> list[str]:  # noqa: D102
        if kind == KernelKind.SINCOS:
            return list(self._sincos)
        else:
            return list(self._throughput)

    def lookup_kernel(self, name: str) -> KernelHandle:  # noqa: D102
        if name in self._sincos:
            return KernelHandle(name, KernelKind.SINCOS)
        elif name in self._throughput:
            return KernelHandle(name, KernelKind.THROUGHPUT)
        raise ConfigurationError(f"kernel {name!r} not found")

    def group_size(self, handle: KernelHandle) -> int:  # noqa: D102
        return SINCOS_WGS if handle.kind == KernelKind.SINCOS else self.threads_per_group

    def run_kernel(self, handle: KernelHandle, data: np.ndarray | None, group_count: int) -> np.ndarray:  # noqa: D102
        if handle.kind == KernelKind.SINCOS:
            if data is None:
                raise ValueError("accuracy kernels require input data")
            theta = np.asarray(data, dtype=np.float32)[: handle.param("n")]
            sin, cos = self._sincos[handle.name](theta)
            out = np.empty(len(theta), RESULT_DTYPE)
            out["sin"] = sin
            out["cos"] = cos
            return out
        else:
            if data is not None:
                raise ValueError("throughput kernels do not take input data")
            func = self._throughput[handle.name]
            value = func(group_count * self.threads_per_group, handle.param("iterations"))
            return np.array([value], np.float32)

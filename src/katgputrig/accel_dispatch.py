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

"""Run the accuracy and throughput kernels on a GPU with katsdpsigproc.

The kernels are mako templates that are portable between CUDA and OpenCL.
Following the katsdpsigproc conventions, each kernel has a template class
(which compiles the program for a context) and an :class:`~katsdpsigproc.accel.Operation`
(which owns the buffers for a particular problem size).
"""

import logging
from importlib import resources
from typing import Final

import numpy as np
from katsdpsigproc import accel
from katsdpsigproc.abc import AbstractCommandQueue, AbstractContext

from . import BENCH_THREADS_PER_GROUP, SINCOS_WGS
from .accuracy import RESULT_DTYPE
from .dispatch import Dispatcher, KernelHandle, KernelKind
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

#: Accuracy kernels, mapped to whether they use native (hardware) functions
SINCOS_KERNELS: Final = {"sincos": False, "sincos_native": True}
#: Throughput kernels, mapped to the workload done in the loop
THROUGHPUT_KERNELS: Final = {"bench_sincos": "sincos", "bench_sincos_native": "sincos_native", "bench_fma": "fma"}


class SincosTemplate:
    """Template for evaluating sine and cosine of each input angle.

    Parameters
    ----------
    context
        The GPU context that we'll operate in.
    native
        If true, use the fast hardware approximations (``__sinf`` in CUDA,
        ``native_sin`` in OpenCL) rather than the library functions.
    """

    def __init__(self, context: AbstractContext, *, native: bool) -> None:
        self.wgs = SINCOS_WGS
        self.native = native
        with resources.as_file(resources.files(__package__)) as resource_dir:
            program = accel.build(
                context,
                "kernels/sincos.mako",
                {"wgs": self.wgs, "native": native},
                extra_dirs=[str(resource_dir)],
            )
        self.kernel = program.get_kernel("sincos")

    def instantiate(self, command_queue: AbstractCommandQueue, samples: int) -> "Sincos":
        """Generate a :class:`Sincos` object based on this template."""
        return Sincos(self, command_queue, samples)


class Sincos(accel.Operation):
    """Evaluate sine and cosine of a batch of angles.

    .. rubric:: Slots

    **in** : samples, float32
        Input angles, in radians.
    **out** : samples × 2, float32
        Sine and cosine of each angle.
    """

    def __init__(self, template: SincosTemplate, command_queue: AbstractCommandQueue, samples: int) -> None:
        super().__init__(command_queue)
        if samples <= 0:
            raise ValueError("samples must be positive")
        self.template = template
        self.samples = samples
        dim = accel.Dimension(samples, template.wgs)
        self.slots["in"] = accel.IOSlot((dim,), np.float32)
        self.slots["out"] = accel.IOSlot((dim, accel.Dimension(2, exact=True)), np.float32)

    def _run(self) -> None:
        self.command_queue.enqueue_kernel(
            self.template.kernel,
            [
                self.buffer("out").buffer,
                self.buffer("in").buffer,
                np.int32(self.samples),
            ],
            global_size=(accel.roundup(self.samples, self.template.wgs),),
            local_size=(self.template.wgs,),
        )


class ThroughputTemplate:
    """Template for a synthetic arithmetic workload.

    Parameters
    ----------
    context
        The GPU context that we'll operate in.
    op
        Workload performed in the loop (see :data:`THROUGHPUT_KERNELS`).
    wgs
        Threads per work-group.
    """

    def __init__(self, context: AbstractContext, op: str, wgs: int = BENCH_THREADS_PER_GROUP) -> None:
        if op not in {"fma", "sincos", "sincos_native"}:
            raise ValueError(f"unknown op {op!r}")
        self.wgs = wgs
        self.op = op
        with resources.as_file(resources.files(__package__)) as resource_dir:
            program = accel.build(
                context,
                "kernels/throughput.mako",
                {"wgs": wgs, "op": op},
                extra_dirs=[str(resource_dir)],
            )
        self.kernel = program.get_kernel("throughput")

    def instantiate(self, command_queue: AbstractCommandQueue, groups: int, iterations: int) -> "Throughput":
        """Generate a :class:`Throughput` object based on this template."""
        return Throughput(self, command_queue, groups, iterations)


class Throughput(accel.Operation):
    """Run a synthetic workload over a number of work-groups.

    The `iterations` attribute may be changed between invocations.

    .. rubric:: Slots

    **result** : 1, float32
        A value that depends on the work done by the first work-item.
    """

    def __init__(
        self, template: ThroughputTemplate, command_queue: AbstractCommandQueue, groups: int, iterations: int
    ) -> None:
        super().__init__(command_queue)
        if groups <= 0:
            raise ValueError("groups must be positive")
        self.template = template
        self.groups = groups
        self.iterations = iterations
        self.slots["result"] = accel.IOSlot((1,), np.float32)

    def _run(self) -> None:
        self.command_queue.enqueue_kernel(
            self.template.kernel,
            [self.buffer("result").buffer, np.int32(self.iterations)],
            global_size=(self.groups * self.template.wgs,),
            local_size=(self.template.wgs,),
        )


class AccelDispatcher(Dispatcher):
    """Run kernels on a GPU.

    Programs are compiled the first time a kernel is looked up, and the
    throughput operations are kept for reuse, so that repeated measurements
    do not include compilation or allocation.
    """

    def __init__(self, context: AbstractContext, command_queue: AbstractCommandQueue | None = None) -> None:
        self.context = context
        self.command_queue = command_queue if command_queue is not None else context.create_command_queue()
        self._sincos_templates: dict[str, SincosTemplate] = {}
        self._throughput_templates: dict[str, ThroughputTemplate] = {}
        self._throughput_ops: dict[tuple[str, int], Throughput] = {}

    def kernel_names(self, kind: KernelKind) -> list[str]:  # noqa: D102
        if kind == KernelKind.SINCOS:
            return list(SINCOS_KERNELS)
        else:
            return list(THROUGHPUT_KERNELS)

    def lookup_kernel(self, name: str) -> KernelHandle:  # noqa: D102
        if name in SINCOS_KERNELS:
            if name not in self._sincos_templates:
                logger.debug("Compiling %s", name)
                self._sincos_templates[name] = SincosTemplate(self.context, native=SINCOS_KERNELS[name])
            return KernelHandle(name, KernelKind.SINCOS)
        elif name in THROUGHPUT_KERNELS:
            if name not in self._throughput_templates:
                logger.debug("Compiling %s", name)
                self._throughput_templates[name] = ThroughputTemplate(self.context, THROUGHPUT_KERNELS[name])
            return KernelHandle(name, KernelKind.THROUGHPUT)
        raise ConfigurationError(f"kernel {name!r} not found")

    def group_size(self, handle: KernelHandle) -> int:  # noqa: D102
        if handle.kind == KernelKind.SINCOS:
            return self._sincos_templates[handle.name].wgs
        else:
            return self._throughput_templates[handle.name].wgs

    def _run_sincos(self, handle: KernelHandle, data: np.ndarray) -> np.ndarray:
        samples = handle.param("n")
        if samples > len(data):
            raise ConfigurationError(f"n={samples} exceeds the {len(data)} samples provided")
        fn = self._sincos_templates[handle.name].instantiate(self.command_queue, samples)
        fn.ensure_all_bound()
        fn.buffer("in").set(self.command_queue, np.asarray(data[:samples], dtype=np.float32))
        fn()
        # get() blocks until the kernel has completed
        h_out = fn.buffer("out").get(self.command_queue)
        return np.ascontiguousarray(h_out).view(RESULT_DTYPE).reshape(-1)

    def _run_throughput(self, handle: KernelHandle, group_count: int) -> np.ndarray:
        key = (handle.name, group_count)
        fn = self._throughput_ops.get(key)
        if fn is None:
            template = self._throughput_templates[handle.name]
            fn = template.instantiate(self.command_queue, group_count, handle.param("iterations"))
            fn.ensure_all_bound()
            self._throughput_ops[key] = fn
        fn.iterations = handle.param("iterations")
        fn()
        return fn.buffer("result").get(self.command_queue)

    def run_kernel(self, handle: KernelHandle, data: np.ndarray | None, group_count: int) -> np.ndarray:  # noqa: D102
        if handle.kind == KernelKind.SINCOS:
            if data is None:
                raise ValueError("accuracy kernels require input data")
            # The group count is implied by the number of samples
            return self._run_sincos(handle, data)
        else:
            if data is not None:
                raise ValueError("throughput kernels do not take input data")
            return self._run_throughput(handle, group_count)


def make_accel_dispatcher() -> AccelDispatcher:
    """Create a dispatcher on the first available GPU."""
    context = accel.create_some_context(interactive=False)
    logger.info("Using device %s", context.device.name)
    return AccelDispatcher(context)

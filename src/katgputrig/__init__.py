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

from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as version_func
from typing import Final

try:
    __version__ = version_func(__name__)
except PackageNotFoundError:
    # Package wasn't installed yet?
    __version__ = "unknown"

METRIC_NAMESPACE: Final = "katgputrig"

#: Number of significand bits in an IEEE-754 single-precision value,
#: including the implicit leading bit.
SIGNIFICAND_BITS: Final = 24
#: Distances above this many ULPs are treated as outliers.
ULP_THRESHOLD: Final = 4
#: Maximum number of outliers captured in detail per verification run.
MAX_HIGH_ERROR_LOGS: Final = 5
#: Largest sample count accepted for a single verification run.
MAX_SAMPLES: Final = 2**24 - 1
DEFAULT_SAMPLES: Final = 4194304
#: Work-group size of the accuracy kernels.
SINCOS_WGS: Final = 64

DEFAULT_BENCH_GROUPS: Final = 1024
DEFAULT_BENCH_ITERATIONS: Final = 65536
#: Smaller workload for the in-process host backend, which is orders of
#: magnitude slower than a GPU.
DEFAULT_HOST_BENCH_GROUPS: Final = 4
DEFAULT_HOST_BENCH_ITERATIONS: Final = 16
#: Work-group size of the throughput kernels.
BENCH_THREADS_PER_GROUP: Final = 1024
#: Arithmetic operations performed by each thread in each loop iteration of
#: the throughput kernels.
BENCH_OPS_PER_ITERATION: Final = 8
#: Refresh interval (in seconds) for the live benchmark.
DEFAULT_BENCH_INTERVAL: Final = 1.0
DEFAULT_KATCP_HOST: Final = ""  # All interfaces
DEFAULT_KATCP_PORT: Final = 7147

BENCH_TASK_NAME: Final[str] = "Benchmark Loop"

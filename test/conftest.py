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

"""Common fixtures for all katgputrig tests.

GPU tests use the ``context`` and ``command_queue`` fixtures from the
katsdpsigproc plugin, which skips them if no device is available.
"""

import numpy as np
import pytest

from katgputrig.dispatch import HostDispatcher

pytest_plugins = ["katsdpsigproc.pytest_plugin"]


@pytest.fixture
def rng() -> np.random.Generator:
    """Random generator with a fixed seed."""
    return np.random.default_rng(seed=1)


@pytest.fixture
def host_dispatcher() -> HostDispatcher:
    """Host dispatcher with the default kernels."""
    return HostDispatcher()


@pytest.fixture
def no_setup_logging(mocker) -> None:
    """Prevent command-line entry points from reconfiguring logging."""
    mocker.patch("katsdpservices.setup_logging", autospec=True)

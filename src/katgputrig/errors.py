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

"""Exceptions raised when a verification or benchmark run cannot proceed.

All of these are fatal to the run in which they occur, but leave no state
behind that would affect a subsequent run.
"""


class ConfigurationError(RuntimeError):
    """A kernel (or something it requires) is not available."""


class InvalidArgumentError(ValueError):
    """A run was requested with invalid parameters (such as a non-positive sample count)."""


class LengthMismatchError(ValueError):
    """The device returned a different number of results than samples were provided.

    This indicates that the dispatch backend violated its contract.
    """

    def __init__(self, n_samples: int, n_results: int) -> None:
        super().__init__(f"received {n_results} results for {n_samples} samples")
        self.n_samples = n_samples
        self.n_results = n_results

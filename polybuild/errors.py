# Copyright (c) 2025, NVIDIA CORPORATION.  All rights reserved.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Exception hierarchy shared by every polybuild stage and the pipeline composer."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from polybuild.pipeline.results import BuildResult


class PolybuildError(Exception):
    """Base class for all errors raised by polybuild."""


class ConfigurationError(PolybuildError):
    """Build configuration or project manifest is missing or invalid."""


class SourceReadError(PolybuildError):
    """A project file could not be listed or read."""

    def __init__(self, message: str, path: str | None = None):
        super().__init__(message)
        self.path = path


class TransformError(PolybuildError):
    """A stream transform (split, rejoin, analysis, bundling) failed."""

    def __init__(self, message: str, stage: str | None = None, path: str | None = None):
        super().__init__(message)
        self.stage = stage
        self.path = path


class WriteError(PolybuildError):
    """The filesystem sink rejected a write."""

    def __init__(self, message: str, path: str | None = None):
        super().__init__(message)
        self.path = path


class ManifestError(PolybuildError):
    """Service worker / precache manifest generation failed for a branch."""

    def __init__(self, message: str, destination: str | None = None):
        super().__init__(message)
        self.destination = destination


class BuildFailedError(PolybuildError):
    """At least one selected branch failed. Carries the full all-settled result."""

    def __init__(self, result: BuildResult):
        if result.is_empty:
            message = f"No output branch selected for bundle type {result.selector!r}"
        else:
            failed = ", ".join(branch.variant.value for branch in result.failed_branches)
            message = f"Build failed for branch(es): {failed}"
        super().__init__(message)
        self.result = result

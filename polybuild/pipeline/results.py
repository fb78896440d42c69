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

from __future__ import annotations

from dataclasses import dataclass, field

from polybuild.config import OutputVariant
from polybuild.errors import BuildFailedError, PolybuildError


@dataclass
class BranchResult:
    """Settled outcome of one output branch.

    ``write_finished_at`` and ``manifest_started_at`` are ``time.monotonic()``
    readings, set only when the corresponding step was reached.
    """

    variant: OutputVariant
    destination: str
    files_written: int = 0
    write_error: PolybuildError | None = None
    manifest_error: PolybuildError | None = None
    manifest_written: str | None = None
    write_finished_at: float | None = None
    manifest_started_at: float | None = None

    @property
    def ok(self) -> bool:
        return self.write_error is None and self.manifest_error is None

    @property
    def error(self) -> PolybuildError | None:
        return self.write_error or self.manifest_error

    def describe(self) -> str:
        if self.write_error is not None:
            return f"{self.variant.value}: write failed ({self.write_error})"
        status = f"{self.variant.value}: {self.files_written} file(s) -> {self.destination}"
        if self.manifest_error is not None:
            return f"{status}, service worker failed ({self.manifest_error})"
        if self.manifest_written is not None:
            return f"{status}, service worker {self.manifest_written}"
        return status


@dataclass
class BuildResult:
    """All-settled outcome of a build: one :class:`BranchResult` per selected branch."""

    selector: str
    branches: list[BranchResult] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.branches

    @property
    def ok(self) -> bool:
        return not self.is_empty and all(branch.ok for branch in self.branches)

    @property
    def failed_branches(self) -> list[BranchResult]:
        return [branch for branch in self.branches if not branch.ok]

    @property
    def succeeded_branches(self) -> list[BranchResult]:
        return [branch for branch in self.branches if branch.ok]

    def branch(self, variant: OutputVariant) -> BranchResult | None:
        for branch in self.branches:
            if branch.variant is variant:
                return branch
        return None

    def raise_for_failures(self) -> None:
        """Raise :class:`BuildFailedError` unless every selected branch succeeded."""
        if not self.ok:
            raise BuildFailedError(self)

    def summary(self) -> str:
        if self.is_empty:
            return f"Build selected no output branch (bundle type {self.selector!r})"
        status = "succeeded" if self.ok else "failed"
        lines = [f"Build {status} ({len(self.succeeded_branches)}/{len(self.branches)} branch(es) ok)"]
        lines.extend(f"  {branch.describe()}" for branch in self.branches)
        return "\n".join(lines)

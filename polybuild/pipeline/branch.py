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
from typing import TYPE_CHECKING, Any, Literal

from polybuild.config import OutputVariant
from polybuild.stages.io import FileSystemWriter

if TYPE_CHECKING:
    from collections.abc import AsyncIterable, AsyncIterator, Callable

    from polybuild.stages.base import ProcessingStage
    from polybuild.tasks import FileRecord

    StageFactory = Callable[[], ProcessingStage]


@dataclass(frozen=True)
class PipelineBranch:
    """One output variant: where it is written and which transforms it applies.

    ``stage_factories`` are called on every run so each build gets fresh,
    stateful stage instances.
    """

    variant: OutputVariant
    destination: str
    stage_factories: tuple[StageFactory, ...] = ()

    def __post_init__(self):
        if self.variant is OutputVariant.BOTH:
            msg = "A pipeline branch must be either bundled or unbundled"
            raise ValueError(msg)

    @property
    def bundled(self) -> bool:
        return self.variant is OutputVariant.BUNDLED

    def build_stages(self) -> list[ProcessingStage]:
        return [factory() for factory in self.stage_factories]

    def apply(self, records: AsyncIterable[FileRecord]) -> AsyncIterator[FileRecord]:
        stream = records
        for stage in self.build_stages():
            stream = stage.stream(stream)
        return stream


@dataclass
class OutputWriter:
    """Pipe a branch's records through its transforms into a :class:`FileSystemWriter`."""

    writer_factory: Callable[[str], FileSystemWriter] | None = None
    storage_options: dict[str, Any] = field(default_factory=dict)
    mode: Literal["ignore", "overwrite", "error"] = "ignore"

    def make_writer(self, destination: str) -> FileSystemWriter:
        if self.writer_factory is not None:
            return self.writer_factory(destination)
        return FileSystemWriter(path=destination, storage_options=self.storage_options, mode=self.mode)

    async def write(self, branch: PipelineBranch, records: AsyncIterable[FileRecord]) -> int:
        """Resolve with the number of files written once the stream is drained."""
        writer = self.make_writer(branch.destination)
        return await writer.write(branch.apply(records))

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

import asyncio
import posixpath
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from loguru import logger

from polybuild.errors import WriteError
from polybuild.stages.base import ProcessingStage
from polybuild.tasks import FileRecord
from polybuild.utils.file_utils import check_output_mode, get_fs, join_path

if TYPE_CHECKING:
    from collections.abc import AsyncIterable


@dataclass
class FileSystemWriter(ProcessingStage[FileRecord, FileRecord]):
    """Terminal stage writing every record under ``path``, preserving its relative path.

    The output directory is prepared according to ``mode`` (see
    :func:`polybuild.utils.file_utils.check_output_mode`) before the first write.
    ``process`` returns the record with ``written_path`` set in its metadata.
    """

    path: str
    storage_options: dict[str, Any] = field(default_factory=dict)
    mode: Literal["ignore", "overwrite", "error"] = "ignore"
    _name: str = "filesystem_writer"
    _fs_path: str = field(init=False, repr=False, default="")
    _prepared: bool = field(init=False, repr=False, default=False)

    def __post_init__(self):
        self.fs, self._fs_path = get_fs(self.path, self.storage_options)

    def inputs(self) -> tuple[list[str], list[str]]:
        return ["data"], []

    def prepare(self) -> None:
        if self._prepared:
            return
        try:
            check_output_mode(self.mode, self.fs, self._fs_path)
        except (OSError, ValueError) as e:
            msg = f"Cannot prepare output directory {self.path}: {e}"
            raise WriteError(msg, path=self.path) from e
        self._prepared = True

    def process(self, task: FileRecord) -> FileRecord:
        self.prepare()
        file_path = join_path(self.fs, self._fs_path, task.path)
        try:
            self.fs.makedirs(posixpath.dirname(file_path), exist_ok=True)
            self.fs.pipe_file(file_path, task.data)
        except OSError as e:
            msg = f"Failed to write {file_path}: {e}"
            raise WriteError(msg, path=file_path) from e
        logger.debug(f"Written {task.size} bytes to {file_path}")
        task._metadata["written_path"] = file_path
        return task

    async def write(self, tasks: AsyncIterable[FileRecord]) -> int:
        """Drain ``tasks`` into the filesystem and return the number of files written.

        Resolves only after every write has been accepted by the filesystem.
        """
        await asyncio.to_thread(self.prepare)
        written = 0
        async for task in tasks:
            if not self.validate_input(task):
                msg = f"Task {task!s} failed validation for stage {self}"
                raise WriteError(msg, path=task.path)
            await asyncio.to_thread(self.process, task)
            written += 1
        logger.info(f"Wrote {written} file(s) to {self.path}")
        return written

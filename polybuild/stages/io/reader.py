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
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from loguru import logger

from polybuild.errors import SourceReadError
from polybuild.tasks import FileRecord
from polybuild.utils.file_utils import expand_globs, get_fs, join_path

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable


@dataclass
class ProjectFileReader:
    """Read project files matching glob patterns into :class:`FileRecord` streams.

    Parameters
    ----------
    root: str
        Project root directory (local path or fsspec URL).
    storage_options: dict[str, Any] | None
        Storage options to pass to the file system.
    """

    root: str
    storage_options: dict[str, Any] | None = None
    _fs_root: str = field(init=False, repr=False, default="")

    def __post_init__(self):
        self.fs, self._fs_root = get_fs(self.root, self.storage_options)

    def list_files(self, globs: Iterable[str], exclude: Iterable[str] = ()) -> list[str]:
        try:
            return expand_globs(self._fs_root, globs, self.fs, exclude=exclude)
        except OSError as e:
            msg = f"Failed to list project files under {self.root}: {e}"
            raise SourceReadError(msg) from e

    async def read(
        self,
        globs: Iterable[str],
        origin: str,
        exclude: Iterable[str] = (),
    ) -> AsyncIterator[FileRecord]:
        """Lazily yield one record per matching file. Every read suspends the caller."""
        globs = list(globs)
        exclude = list(exclude)
        paths = await asyncio.to_thread(self.list_files, globs, exclude)
        logger.info(f"Found {len(paths)} {origin} file(s) under {self.root}")
        for path in paths:
            data = await asyncio.to_thread(self._read_bytes, path)
            yield FileRecord(task_id=path, dataset_name=origin, data=data)

    def _read_bytes(self, path: str) -> bytes:
        full_path = join_path(self.fs, self._fs_root, path)
        try:
            return self.fs.cat_file(full_path)
        except OSError as e:
            msg = f"Failed to read {full_path}: {e}"
            raise SourceReadError(msg, path=path) from e

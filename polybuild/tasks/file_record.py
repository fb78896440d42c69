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

import copy
import posixpath
from dataclasses import dataclass, field

from .tasks import Task

HTML_EXTENSIONS = (".html", ".htm")

SOURCES = "sources"
DEPENDENCIES = "dependencies"


@dataclass
class FileRecord(Task[bytes]):
    """One project file in flight through the build pipeline.

    ``task_id`` is the project-relative posix path of the file and
    ``dataset_name`` is the stream the file came from (``sources`` or
    ``dependencies``). Split and analysis annotations live in ``_metadata``.
    """

    data: bytes = field(default=b"")

    @property
    def path(self) -> str:
        return self.task_id

    @property
    def num_items(self) -> int:
        return 1

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def text(self) -> str:
        """Contents decoded as UTF-8. Raises UnicodeDecodeError for binary files."""
        return self.data.decode("utf-8")

    @property
    def is_html(self) -> bool:
        return self.path.lower().endswith(HTML_EXTENSIONS)

    @property
    def is_fragment(self) -> bool:
        """Whether this record was extracted from a parent document by the split stage."""
        return "split_from" in self._metadata

    @property
    def directory(self) -> str:
        return posixpath.dirname(self.path)

    def clone(self) -> "FileRecord":
        """Return an independently owned copy. Metadata is deep copied."""
        return FileRecord(
            task_id=self.task_id,
            dataset_name=self.dataset_name,
            data=self.data,
            _metadata=copy.deepcopy(self._metadata),
        )

    def with_data(self, data: bytes | str) -> "FileRecord":
        """Return a clone carrying new contents."""
        if isinstance(data, str):
            data = data.encode("utf-8")
        record = self.clone()
        record.data = data
        return record

    def validate(self) -> bool:
        """Validate the task data."""
        if not isinstance(self.data, bytes):
            msg = f"File record {self.task_id} must carry bytes, got {type(self.data).__name__}"
            raise TypeError(msg)
        normalized = posixpath.normpath(self.task_id) if self.task_id else ""
        if not self.task_id or self.task_id.startswith("/") or normalized == ".." or normalized.startswith("../"):
            msg = f"File record path must be relative to the project root: {self.task_id!r}"
            raise ValueError(msg)
        return True

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
from typing import TYPE_CHECKING

from loguru import logger

from polybuild.errors import TransformError
from polybuild.stages.base import ProcessingStage
from polybuild.stages.html.split import SPLIT_MARKER_RE
from polybuild.tasks import FileRecord

if TYPE_CHECKING:
    from collections.abc import AsyncIterable, AsyncIterator


def _declared_fragments(record: FileRecord) -> set[str]:
    return set(record._metadata.get("split_fragments", ()))


@dataclass
class HtmlRejoinStage(ProcessingStage[FileRecord, FileRecord]):
    """Reassemble documents previously processed by :class:`HtmlSplitStage`.

    Fragments are buffered and never emitted. A document is emitted as soon as
    every fragment listed in its ``split_fragments`` metadata has been seen.
    Only markers naming those fragments are replaced, so marker-like text the
    split stage did not write is kept verbatim. Documents that received
    fragments from other documents (for instance through bundling) list them
    too. Records without declared fragments pass straight through.
    """

    _name: str = "html_rejoin"
    _fragments: dict[str, FileRecord] = field(init=False, repr=False, default_factory=dict)
    _pending: list[tuple[FileRecord, set[str]]] = field(init=False, repr=False, default_factory=list)

    def setup(self) -> None:
        self._fragments = {}
        self._pending = []

    def process(self, task: FileRecord) -> FileRecord | list[FileRecord] | None:
        if task.is_fragment:
            self._fragments[task.path] = task
            return self._release_ready()

        needed = _declared_fragments(task)
        if not needed:
            return task
        if needed.issubset(self._fragments):
            return self._rejoin(task)
        self._pending.append((task, needed))
        return None

    async def stream(self, tasks: AsyncIterable[FileRecord]) -> AsyncIterator[FileRecord]:
        async for record in super().stream(tasks):
            yield record
        if self._pending:
            waiting = {record.path: sorted(needed - set(self._fragments)) for record, needed in self._pending}
            msg = f"Missing split fragments for {len(waiting)} document(s): {waiting}"
            raise TransformError(msg, stage=self.name, path=self._pending[0][0].path)

    def _release_ready(self) -> list[FileRecord]:
        ready: list[FileRecord] = []
        still_pending: list[tuple[FileRecord, set[str]]] = []
        for record, needed in self._pending:
            if needed.issubset(self._fragments):
                ready.append(self._rejoin(record))
            else:
                still_pending.append((record, needed))
        self._pending = still_pending
        return ready

    def _rejoin(self, record: FileRecord) -> FileRecord:
        declared = _declared_fragments(record)

        def substitute(match) -> str:  # noqa: ANN001
            if match.group(1) not in declared:
                return match.group(0)
            return self._fragments[match.group(1)].text

        document = SPLIT_MARKER_RE.sub(substitute, record.text)
        rejoined = record.with_data(document)
        rejoined._metadata.pop("split_fragments", None)
        logger.debug(f"Rejoined {record.path}")
        return rejoined

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

import re
from dataclasses import dataclass

from loguru import logger

from polybuild.stages.base import ProcessingStage
from polybuild.tasks import FileRecord

SPLIT_MARKER_PREFIX = "/*polybuild-split:"
SPLIT_MARKER_SUFFIX = "*/"
SPLIT_MARKER_RE = re.compile(r"/\*polybuild-split:([^*]+)\*/")

# Inline blocks are matched textually so that the untouched parts of the
# document keep their exact bytes.
INLINE_BLOCK_RE = re.compile(
    r"(?P<open><(?P<tag>script|style)\b(?P<attrs>[^>]*)>)(?P<body>.*?)(?P<close></(?P=tag)\s*>)",
    re.IGNORECASE | re.DOTALL,
)
SRC_ATTR_RE = re.compile(r"\bsrc\s*=", re.IGNORECASE)
TYPE_ATTR_RE = re.compile(r"""\btype\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s>]+))""", re.IGNORECASE)

JAVASCRIPT_TYPES = {
    "",
    "module",
    "text/javascript",
    "application/javascript",
    "application/ecmascript",
    "text/ecmascript",
}


def make_split_marker(fragment_path: str) -> str:
    return f"{SPLIT_MARKER_PREFIX}{fragment_path}{SPLIT_MARKER_SUFFIX}"


def _script_type(attrs: str) -> str:
    match = TYPE_ATTR_RE.search(attrs)
    if match is None:
        return ""
    return next(group for group in match.groups() if group is not None).strip().lower()


def _is_splittable(tag: str, attrs: str, body: str) -> bool:
    if not body.strip():
        return False
    if tag == "style":
        return True
    return SRC_ATTR_RE.search(attrs) is None and _script_type(attrs) in JAVASCRIPT_TYPES


@dataclass
class HtmlSplitStage(ProcessingStage[FileRecord, FileRecord]):
    """Extract inline ``<script>`` and ``<style>`` blocks into their own records.

    Each extracted block becomes a fragment record named
    ``{parent}_script_{i}.js`` or ``{parent}_style_{i}.css`` and its body in the
    parent document is replaced by a marker that :class:`HtmlRejoinStage`
    resolves. The parent is emitted first, followed by its fragments.
    """

    _name: str = "html_split"

    def process(self, task: FileRecord) -> FileRecord | list[FileRecord]:
        if not task.is_html:
            return task

        try:
            document = task.text
        except UnicodeDecodeError:
            logger.warning(f"Skipping HTML split for {task.path}: contents are not valid UTF-8")
            return task

        if SPLIT_MARKER_PREFIX in document:
            logger.warning(f"Skipping HTML split for {task.path}: document already contains split markers")
            return task

        fragments: list[FileRecord] = []
        pieces: list[str] = []
        cursor = 0
        counters = {"script": 0, "style": 0}

        for match in INLINE_BLOCK_RE.finditer(document):
            tag = match.group("tag").lower()
            if not _is_splittable(tag, match.group("attrs"), match.group("body")):
                continue

            index = counters[tag]
            counters[tag] += 1
            extension = "js" if tag == "script" else "css"
            fragment_path = f"{task.path}_{tag}_{index}.{extension}"

            pieces.append(document[cursor : match.start("body")])
            pieces.append(make_split_marker(fragment_path))
            cursor = match.end("body")

            fragments.append(
                FileRecord(
                    task_id=fragment_path,
                    dataset_name=task.dataset_name,
                    data=match.group("body").encode("utf-8"),
                    _metadata={
                        "split_from": task.path,
                        "split_index": len(fragments),
                        "split_kind": tag,
                    },
                )
            )

        if not fragments:
            return task

        pieces.append(document[cursor:])
        parent = task.with_data("".join(pieces))
        parent._metadata["split_fragments"] = [fragment.path for fragment in fragments]
        logger.debug(f"Split {len(fragments)} inline block(s) out of {task.path}")
        return [parent, *fragments]

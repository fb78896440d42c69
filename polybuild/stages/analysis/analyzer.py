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

import posixpath
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING
from urllib.parse import unquote, urlsplit

from bs4 import BeautifulSoup
from loguru import logger

from polybuild.errors import TransformError
from polybuild.stages.base import ProcessingStage
from polybuild.tasks import FileRecord

if TYPE_CHECKING:
    from collections.abc import AsyncIterable, AsyncIterator

    from bs4 import Tag

ANALYSIS_KEYS = ("imports", "scripts", "stylesheets")


def resolve_reference(base_path: str, reference: str) -> str | None:
    """Resolve ``reference`` found in ``base_path`` to a project-relative path.

    Returns None for references that do not point into the project: absolute
    URLs, protocol-relative URLs, ``data:`` URIs, pure fragments and paths
    escaping the project root.
    """
    reference = reference.strip()
    if not reference or reference.startswith("#"):
        return None
    parts = urlsplit(reference)
    if parts.scheme or parts.netloc:
        return None
    path = unquote(parts.path)
    if not path:
        return None
    if path.startswith("/"):
        resolved = posixpath.normpath(path.lstrip("/"))
    else:
        resolved = posixpath.normpath(posixpath.join(posixpath.dirname(base_path), path))
    if resolved == ".." or resolved.startswith("../"):
        return None
    return resolved


def locate_tags(document: str, name: str) -> list[tuple[int, Tag]]:
    """Return ``(offset, tag)`` for every ``name`` element of ``document``, in document order.

    Offsets index into ``document``. Markup inside comments or script bodies is
    not reported, the same way :class:`DependencyAnalyzer` does not see it.
    """
    line_starts = [0, *(match.end() for match in re.finditer("\n", document))]
    soup = BeautifulSoup(document, "html.parser")
    return [
        (line_starts[tag.sourceline - 1] + tag.sourcepos, tag)
        for tag in soup.find_all(name)
        if tag.sourceline is not None
    ]


def rel_values(tag) -> list[str]:  # noqa: ANN001
    rel = tag.get("rel") or []
    if isinstance(rel, str):
        rel = rel.split()
    return [value.lower() for value in rel]


@dataclass
class DependencyAnalyzer(ProcessingStage[FileRecord, FileRecord]):
    """Annotate HTML records with the project files they reference.

    Every HTML record leaves this stage with ``imports`` (``<link rel="import">``),
    ``scripts`` (``<script src>``) and ``stylesheets`` (``<link rel="stylesheet">``)
    metadata holding project-relative paths. A document that cannot be analyzed
    is annotated with ``analysis_error`` and passed on so that only the
    consumers that need the annotations fail; with ``strict=True`` the stage
    raises :class:`TransformError` instead.

    The analyzer is meant to run once per build, upstream of any fork.
    ``invocations`` counts how many streams it has been asked to analyze.
    """

    strict: bool = False
    _name: str = "dependency_analyzer"
    invocations: int = field(init=False, default=0)

    def stream(self, tasks: AsyncIterable[FileRecord]) -> AsyncIterator[FileRecord]:
        self.invocations += 1
        logger.debug(f"Dependency analysis started (invocation {self.invocations})")
        return super().stream(tasks)

    def process(self, task: FileRecord) -> FileRecord:
        if not task.is_html:
            return task
        try:
            annotations = self.analyze(task)
        except Exception as e:
            if self.strict:
                msg = f"Failed to analyze {task.path}: {e}"
                raise TransformError(msg, stage=self.name, path=task.path) from e
            logger.warning(f"Failed to analyze {task.path}: {e}")
            task._metadata["analysis_error"] = str(e)
            return task

        task._metadata.update(annotations)
        return task

    def analyze(self, task: FileRecord) -> dict[str, list[str]]:
        """Return the resolved references of one HTML document."""
        soup = BeautifulSoup(task.text, "html.parser")
        imports: list[str] = []
        scripts: list[str] = []
        stylesheets: list[str] = []

        for link in soup.find_all("link", href=True):
            rel = rel_values(link)
            resolved = resolve_reference(task.path, link["href"])
            if resolved is None:
                continue
            if "import" in rel and resolved not in imports:
                imports.append(resolved)
            elif "stylesheet" in rel and resolved not in stylesheets:
                stylesheets.append(resolved)

        for script in soup.find_all("script", src=True):
            resolved = resolve_reference(task.path, script["src"])
            if resolved is not None and resolved not in scripts:
                scripts.append(resolved)

        return {"imports": imports, "scripts": scripts, "stylesheets": stylesheets}

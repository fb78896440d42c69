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

import html
import posixpath
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING
from urllib.parse import urlsplit, urlunsplit

from loguru import logger

from polybuild.errors import PolybuildError, TransformError
from polybuild.stages.analysis import ANALYSIS_KEYS, locate_tags, rel_values, resolve_reference
from polybuild.stages.base import ProcessingStage
from polybuild.tasks import FileRecord

if TYPE_CHECKING:
    from collections.abc import AsyncIterable, AsyncIterator, Callable

    from bs4 import Tag

LINK_TAG_RE = re.compile(r"<link\b[^>]*>", re.IGNORECASE)
EXTERNAL_SCRIPT_RE = re.compile(r"<script\b(?P<attrs>[^>]*)>\s*</script\s*>", re.IGNORECASE)
URL_ATTR_RE = re.compile(r"""(?P<prefix>\b(?:href|src)\s*=\s*)(?P<quote>["'])(?P<url>.*?)(?P=quote)""", re.IGNORECASE)


def rebase_urls(document: str, from_dir: str, to_dir: str) -> str:
    """Rewrite relative ``href``/``src`` values written for ``from_dir`` so they work from ``to_dir``."""
    if from_dir == to_dir:
        return document

    def rewrite(match: re.Match) -> str:
        url = match.group("url")
        parts = urlsplit(url)
        if parts.scheme or parts.netloc or not parts.path or parts.path.startswith(("/", "#")):
            return match.group(0)
        target = posixpath.normpath(posixpath.join(from_dir, parts.path))
        rebased = posixpath.relpath(target, to_dir or ".")
        new_url = urlunsplit(("", "", rebased, parts.query, parts.fragment))
        return f"{match.group('prefix')}{match.group('quote')}{new_url}{match.group('quote')}"

    return URL_ATTR_RE.sub(rewrite, document)


def _attribute_value(value: str | list[str]) -> str:
    if isinstance(value, list):
        value = " ".join(value)
    return html.escape(value, quote=True)


def replace_tags(
    document: str,
    name: str,
    tag_re: re.Pattern,
    replace: Callable[[Tag], str | None],
) -> str:
    """Replace the ``name`` elements the HTML parser finds in ``document``.

    ``tag_re`` must match the element's markup at its offset; elements it does
    not match, and elements for which ``replace`` returns None, are left as they are.
    """
    pieces: list[str] = []
    cursor = 0
    for offset, tag in locate_tags(document, name):
        if offset < cursor:
            continue
        match = tag_re.match(document, offset)
        if match is None:
            continue
        replacement = replace(tag)
        if replacement is None:
            continue
        pieces.append(document[cursor:offset])
        pieces.append(replacement)
        cursor = match.end()
    pieces.append(document[cursor:])
    return "".join(pieces)


@dataclass
class BundlerStage(ProcessingStage[FileRecord, FileRecord]):
    """Inline HTML imports, scripts and stylesheets into one document per entrypoint.

    The stage needs the whole analyzed stream before it can emit anything, so it
    buffers every record. Entrypoints default to every HTML document that no
    other document imports. HTML files that were inlined into some bundle and
    are not entrypoints themselves are dropped from the output; everything else,
    split fragments included, passes through unchanged.
    """

    entrypoints: list[str] | None = None
    inline_scripts: bool = True
    inline_css: bool = True
    _name: str = "bundler"
    _records: dict[str, FileRecord] = field(init=False, repr=False, default_factory=dict)

    def setup(self) -> None:
        self._records = {}

    def process(self, task: FileRecord) -> None:
        self._check_analyzed(task)
        self._records[task.path] = task

    async def stream(self, tasks: AsyncIterable[FileRecord]) -> AsyncIterator[FileRecord]:
        async for _ in super().stream(tasks):
            pass  # process() only buffers

        try:
            outputs = self._bundle_all()
        except PolybuildError:
            raise
        except Exception as e:
            msg = f"Bundling failed: {e}"
            raise TransformError(msg, stage=self.name) from e

        for record in outputs:
            yield record

    def _check_analyzed(self, task: FileRecord) -> None:
        if "analysis_error" in task._metadata:
            msg = f"Cannot bundle {task.path}: dependency analysis failed ({task._metadata['analysis_error']})"
            raise TransformError(msg, stage=self.name, path=task.path)
        if task.is_html and not task.is_fragment and not all(key in task._metadata for key in ANALYSIS_KEYS):
            msg = f"Cannot bundle {task.path}: record was not annotated by the dependency analyzer"
            raise TransformError(msg, stage=self.name, path=task.path)

    def resolve_entrypoints(self) -> list[str]:
        html_paths = [path for path, record in self._records.items() if record.is_html and not record.is_fragment]
        if self.entrypoints:
            present = [path for path in self.entrypoints if path in self._records]
            for missing in sorted(set(self.entrypoints) - set(present)):
                logger.warning(f"Bundle entrypoint {missing} is not part of the build")
            if present:
                return present
        imported = {path for record in self._records.values() for path in record._metadata.get("imports", [])}
        return [path for path in html_paths if path not in imported]

    def _bundle_all(self) -> list[FileRecord]:
        entrypoints = self.resolve_entrypoints()
        bundles: dict[str, FileRecord] = {}
        consumed: set[str] = set()

        for entrypoint in entrypoints:
            inlined: list[str] = []
            document = self._inline_imports(self._records[entrypoint].text, entrypoint, {entrypoint}, inlined)
            if self.inline_css:
                document = self._inline_stylesheets(document, entrypoint)
            if self.inline_scripts:
                document = self._inline_scripts(document, entrypoint)
            bundle = self._records[entrypoint].with_data(document)
            bundle._metadata["bundled_imports"] = inlined
            fragments = [
                fragment
                for path in [entrypoint, *inlined]
                for fragment in self._records[path]._metadata.get("split_fragments", [])
            ]
            if fragments:
                bundle._metadata["split_fragments"] = list(dict.fromkeys(fragments))
            bundles[entrypoint] = bundle
            consumed.update(inlined)
            logger.debug(f"Bundled {entrypoint} with {len(inlined)} inlined import(s)")

        outputs: list[FileRecord] = []
        for path, record in self._records.items():
            if path in bundles:
                outputs.append(bundles[path])
            elif path in consumed:
                logger.debug(f"Dropping {path}: inlined into a bundle")
            else:
                outputs.append(record)

        logger.info(f"Bundled {len(entrypoints)} entrypoint(s), inlined {len(consumed)} import(s)")
        return outputs

    def _inline_imports(self, document: str, document_path: str, seen: set[str], inlined: list[str]) -> str:
        def replace(tag: Tag) -> str | None:
            if "import" not in rel_values(tag) or not tag.get("href"):
                return None
            target = resolve_reference(document_path, tag["href"])
            if target is None or target not in self._records:
                logger.warning(f"{document_path}: import {tag['href']} not found in build; leaving it in place")
                return None
            if target in seen:
                return ""
            seen.add(target)
            inlined.append(target)
            imported = self._inline_imports(self._records[target].text, target, seen, inlined)
            return rebase_urls(imported, posixpath.dirname(target), posixpath.dirname(document_path))

        return replace_tags(document, "link", LINK_TAG_RE, replace)

    def _inline_stylesheets(self, document: str, document_path: str) -> str:
        def replace(tag: Tag) -> str | None:
            if "stylesheet" not in rel_values(tag) or not tag.get("href"):
                return None
            target = resolve_reference(document_path, tag["href"])
            if target is None or target not in self._records:
                return None
            return f"<style>{self._records[target].text}</style>"

        return replace_tags(document, "link", LINK_TAG_RE, replace)

    def _inline_scripts(self, document: str, document_path: str) -> str:
        def replace(tag: Tag) -> str | None:
            target = resolve_reference(document_path, tag.get("src", ""))
            if target is None or target not in self._records:
                return None
            kept = "".join(
                f' {name}="{_attribute_value(value)}"'
                for name, value in tag.attrs.items()
                if name not in {"src", "async", "defer"}
            )
            source = self._records[target].text.replace("</script", "<\\/script")
            return f"<script{kept}>{source}</script>"

        return replace_tags(document, "script", EXTERNAL_SCRIPT_RE, replace)

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

"""Shared fixtures for polybuild tests."""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING

import pytest
import yaml

from polybuild.tasks import SOURCES, FileRecord

if TYPE_CHECKING:
    from collections.abc import AsyncIterable, AsyncIterator, Callable, Iterable
    from pathlib import Path


INDEX_HTML = """<!doctype html>
<html>
<head>
  <link rel="import" href="src/app-shell.html">
  <link rel="stylesheet" href="src/theme.css">
  <style>
    body { margin: 0; }
  </style>
</head>
<body>
  <app-shell></app-shell>
  <script src="src/main.js"></script>
</body>
</html>
"""

APP_SHELL_HTML = """<link rel="import" href="../bower_components/lib/lib.html">
<dom-module id="app-shell">
  <template><img src="logo.png"></template>
  <script>
    Polymer({ is: 'app-shell' });
  </script>
</dom-module>
"""

LIB_HTML = """<script>
  window.Lib = { version: 1 };
</script>
"""


def make_record(path: str, data: bytes | str = b"", origin: str = SOURCES, **metadata: object) -> FileRecord:
    if isinstance(data, str):
        data = data.encode("utf-8")
    return FileRecord(task_id=path, dataset_name=origin, data=data, _metadata=dict(metadata))


@pytest.fixture
def record() -> Callable[..., FileRecord]:
    """Factory building :class:`FileRecord` objects from str or bytes contents."""
    return make_record


@pytest.fixture
def stream_of() -> Callable[[Iterable[FileRecord]], AsyncIterator[FileRecord]]:
    """Factory turning a list of records into an async stream that suspends between items."""

    def make(records: Iterable[FileRecord]) -> AsyncIterator[FileRecord]:
        async def generate() -> AsyncIterator[FileRecord]:
            for item in records:
                await asyncio.sleep(0)
                yield item

        return generate()

    return make


@pytest.fixture
def collect() -> Callable[[AsyncIterable], object]:
    """Coroutine function draining an async stream into a list."""

    async def drain(stream: AsyncIterable) -> list:
        return [item async for item in stream]

    return drain


@pytest.fixture
def web_project(tmp_path: Path) -> Path:
    """A small Polymer-style project with a manifest, sources, dependencies and a build config."""
    root = tmp_path / "project"
    files = {
        "polymer.json": json.dumps(
            {
                "entrypoint": "index.html",
                "shell": "src/app-shell.html",
                "sources": ["src/**/*"],
                "extraDependencies": ["manifest.webmanifest"],
            }
        ),
        "index.html": INDEX_HTML,
        "manifest.webmanifest": '{"name": "demo"}',
        "src/app-shell.html": APP_SHELL_HTML,
        "src/theme.css": "html { color: black; }\n",
        "src/main.js": "console.log('main');\n",
        "src/logo.png": b"\x89PNG\r\n\x1a\n\x00\x00",
        "bower_components/lib/lib.html": LIB_HTML,
        "bower_components/lib/lib.js": "window.lib = true;\n",
    }
    for relative, contents in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(contents, bytes):
            path.write_bytes(contents)
        else:
            path.write_text(contents, encoding="utf-8")

    config = {
        "manifest_path": "polymer.json",
        "build": {"root_directory": "build", "bundle_type": "both"},
        "service_worker": {"enabled": True, "path": "service-worker.js", "cache": {"cache_id": "demo"}},
    }
    (root / "polybuild.yaml").write_text(yaml.safe_dump(config), encoding="utf-8")
    return root

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

import json
from typing import TYPE_CHECKING

import pytest

from polybuild.config import OutputVariant
from polybuild.project import BuildProject
from polybuild.stages.analysis import DependencyAnalyzer
from polybuild.tasks import DEPENDENCIES, SOURCES

if TYPE_CHECKING:
    from pathlib import Path

BUNDLED_FILES = [
    "bower_components/lib/lib.js",
    "index.html",
    "manifest.webmanifest",
    "precache-manifest.json",
    "service-worker.js",
    "src/app-shell.html",
    "src/logo.png",
    "src/main.js",
    "src/theme.css",
]

UNBUNDLED_FILES = sorted([*BUNDLED_FILES, "bower_components/lib/lib.html"])


def _files(root: Path) -> list[str]:
    return sorted(path.relative_to(root).as_posix() for path in root.rglob("*") if path.is_file())


class TestBuildProject:
    """Test cases for the BuildProject entry point."""

    @pytest.mark.asyncio
    async def test_split_streams(self, web_project: Path, collect):
        """Test the contents and origins of the split source and dependency streams."""
        project = BuildProject.from_config_file(str(web_project / "polybuild.yaml"))

        sources = await collect(project.split_sources())
        dependencies = await collect(project.split_dependencies())

        assert [r.path for r in sources] == [
            "index.html",
            "index.html_style_0.css",
            "src/app-shell.html",
            "src/app-shell.html_script_0.js",
            "src/logo.png",
            "src/main.js",
            "src/theme.css",
        ]
        assert all(r.dataset_name == SOURCES for r in sources)
        assert [r.path for r in dependencies] == [
            "bower_components/lib/lib.html",
            "bower_components/lib/lib.html_script_0.js",
            "bower_components/lib/lib.js",
            "manifest.webmanifest",
        ]
        assert all(r.dataset_name == DEPENDENCIES for r in dependencies)

    @pytest.mark.asyncio
    async def test_streams_are_restartable(self, web_project: Path, collect):
        """Test that each call returns a fresh stream."""
        project = BuildProject.from_config_file(str(web_project / "polybuild.yaml"))

        first = await collect(project.split_sources())
        second = await collect(project.split_sources())

        assert [r.path for r in first] == [r.path for r in second]

    @pytest.mark.asyncio
    async def test_previous_build_output_is_not_read_back(self, web_project: Path, collect):
        """Test that files under the output root never become sources."""
        (web_project / "build" / "src").mkdir(parents=True)
        (web_project / "build" / "src" / "stale.html").write_text("<p>stale</p>")
        project = BuildProject.from_config_file(str(web_project / "polybuild.yaml"))
        project.manifest = type(project.manifest)(root=str(web_project), sources=("**/*",))

        paths = [r.path for r in await collect(project.split_sources())]

        assert "build/src/stale.html" not in paths
        assert not any(path.startswith("bower_components/") for path in paths)

    @pytest.mark.asyncio
    async def test_full_build(self, web_project: Path):
        """Test a complete build of both variants with service workers."""
        analyzer = DependencyAnalyzer()
        project = BuildProject.from_config_file(str(web_project / "polybuild.yaml"))

        result = await project.build(analyzer=analyzer)

        assert result.ok, result.summary()
        assert analyzer.invocations == 1
        bundled_root = web_project / "build" / "bundled"
        unbundled_root = web_project / "build" / "unbundled"
        assert _files(bundled_root) == BUNDLED_FILES
        assert _files(unbundled_root) == UNBUNDLED_FILES

        assert (unbundled_root / "index.html").read_bytes() == (web_project / "index.html").read_bytes()
        bundled_index = (bundled_root / "index.html").read_text()
        assert "Polymer({ is: 'app-shell' });" in bundled_index
        assert "window.Lib = { version: 1 };" in bundled_index
        assert "<style>html { color: black; }\n</style>" in bundled_index
        assert "console.log('main');" in bundled_index
        assert 'src="src/logo.png"' in bundled_index
        assert 'rel="import"' not in bundled_index
        assert "polybuild-split" not in bundled_index

        manifest = json.loads((bundled_root / "precache-manifest.json").read_text())
        assert manifest["cacheName"] == "demo-bundled"
        assert manifest["navigateFallback"] == "index.html"
        assert len(manifest["files"]) == len(BUNDLED_FILES) - 2

    @pytest.mark.asyncio
    async def test_bundle_type_override(self, web_project: Path):
        """Test that overrides replace the loaded configuration."""
        project = BuildProject.from_config_file(
            str(web_project / "polybuild.yaml"), bundle_type="unbundled", generate_service_worker=False
        )

        result = await project.build()

        assert [b.variant for b in result.branches] == [OutputVariant.UNBUNDLED]
        assert not (web_project / "build" / "bundled").exists()
        assert not (web_project / "build" / "unbundled" / "service-worker.js").exists()

    @pytest.mark.asyncio
    async def test_service_worker_only(self, web_project: Path):
        """Test regenerating service workers after a build without service workers."""
        project = BuildProject.from_config_file(str(web_project / "polybuild.yaml"), generate_service_worker=False)
        await project.build()

        result = await project.service_worker()

        assert result.ok
        assert (web_project / "build" / "bundled" / "service-worker.js").exists()
        assert (web_project / "build" / "unbundled" / "service-worker.js").exists()

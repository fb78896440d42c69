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

import os
import posixpath
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from loguru import logger

from polybuild.config import BuildConfig, ProjectManifest, load_build_config, load_project_manifest
from polybuild.pipeline import BuildResult, PipelineComposer
from polybuild.stages.html import HtmlRejoinStage, HtmlSplitStage
from polybuild.stages.io import ProjectFileReader
from polybuild.tasks import DEPENDENCIES, SOURCES

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from polybuild.tasks import FileRecord


class BuildProject:
    """Entry point tying a build configuration to its project files.

    ``split_sources`` and ``split_dependencies`` return fresh lazy streams on
    every call, so one project can be built several times.

    Example::

        project = BuildProject.from_config_file("polybuild.yaml")
        result = asyncio.run(project.build())
        result.raise_for_failures()
    """

    def __init__(self, config: BuildConfig, manifest: ProjectManifest | None = None):
        self.config = config
        storage_options = dict(config.storage_options)
        self.manifest = manifest or load_project_manifest(config.manifest_path, storage_options)
        self.reader = ProjectFileReader(self.manifest.root, storage_options)

    @classmethod
    def from_config_file(cls, path: str, **overrides: Any) -> BuildProject:  # noqa: ANN401
        """Load ``path`` and apply ``overrides`` (e.g. ``bundle_type``) on top of it."""
        config = load_build_config(path)
        if overrides:
            config = replace(config, **overrides)
        return cls(config)

    def _excluded_from_sources(self) -> list[str]:
        excludes = [posixpath.join(self.manifest.component_dir, "**")]
        # never read previous build output back in as sources
        root, output_root = self.manifest.root, self.config.output_root
        if "://" not in root and "://" not in output_root:
            relative = os.path.relpath(os.path.abspath(output_root), os.path.abspath(root))
            if relative != os.curdir and not relative.startswith(os.pardir):
                excludes.append(posixpath.join(relative.replace(os.sep, "/"), "**"))
        return excludes

    def split_sources(self) -> AsyncIterator[FileRecord]:
        files = self.reader.read(self.manifest.source_globs(), SOURCES, exclude=self._excluded_from_sources())
        return HtmlSplitStage().stream(files)

    def split_dependencies(self) -> AsyncIterator[FileRecord]:
        files = self.reader.read(self.manifest.dependency_globs(), DEPENDENCIES)
        return HtmlSplitStage().stream(files)

    def rejoin(self) -> HtmlRejoinStage:
        return HtmlRejoinStage()

    def composer(self, **kwargs: Any) -> PipelineComposer:  # noqa: ANN401
        kwargs.setdefault("project", self.manifest)
        kwargs.setdefault("rejoin_factory", self.rejoin)
        return PipelineComposer(self.config, **kwargs)

    async def build(self, **kwargs: Any) -> BuildResult:  # noqa: ANN401
        """Build every selected output. Keyword arguments are passed to :class:`PipelineComposer`."""
        logger.info(f"Building project {self.config.manifest_path}")
        return await self.composer(**kwargs).build_outputs(self.split_sources(), self.split_dependencies())

    async def service_worker(self, **kwargs: Any) -> BuildResult:  # noqa: ANN401
        return await self.composer(**kwargs).generate_service_workers()

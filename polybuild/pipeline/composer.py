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
import time
from contextlib import aclosing
from typing import TYPE_CHECKING

from loguru import logger

from polybuild.config import OutputVariant
from polybuild.errors import ManifestError, PolybuildError
from polybuild.stages.analysis import DependencyAnalyzer
from polybuild.stages.bundle import BundlerStage
from polybuild.stages.html import HtmlRejoinStage
from polybuild.stages.service_worker import ServiceWorkerGenerator

from .branch import OutputWriter, PipelineBranch
from .results import BranchResult, BuildResult
from .streams import StreamFork, merge_streams

if TYPE_CHECKING:
    from collections.abc import AsyncIterable, AsyncIterator, Callable

    from polybuild.config import BuildConfig, ProjectManifest
    from polybuild.stages.base import ProcessingStage
    from polybuild.stages.io import FileSystemWriter
    from polybuild.tasks import FileRecord


class PipelineComposer:
    """Compose the build pipeline for one configuration.

    The merged source and dependency streams are analyzed exactly once, then
    forked into one branch per selected output variant. Branches run
    concurrently; each writes its tree and then, if enabled, generates its
    service worker. Branch failures are captured in the returned
    :class:`BuildResult` rather than raised.

    Args:
        config: Resolved build configuration.
        project: Project manifest, used for bundle entrypoints and the
            navigate fallback.
        analyzer: Stage run over the merged stream before the fork.
        bundler_factory: Builds the bundling stage of the bundled branch.
        rejoin_factory: Builds the stage that rejoins split HTML.
        writer_factory: Builds the sink for a branch destination.
        service_worker_generator: Object with an async
            ``generate(branch, project, cache_options, service_worker_path)``.
    """

    def __init__(  # noqa: PLR0913
        self,
        config: BuildConfig,
        *,
        project: ProjectManifest | None = None,
        analyzer: ProcessingStage | None = None,
        bundler_factory: Callable[[], ProcessingStage] | None = None,
        rejoin_factory: Callable[[], ProcessingStage] | None = None,
        writer_factory: Callable[[str], FileSystemWriter] | None = None,
        service_worker_generator: ServiceWorkerGenerator | None = None,
    ):
        self.config = config
        self.project = project
        self.analyzer = analyzer if analyzer is not None else DependencyAnalyzer()
        self.bundler_factory = bundler_factory or self._default_bundler
        self.rejoin_factory = rejoin_factory or HtmlRejoinStage
        storage_options = dict(config.storage_options)
        self.output_writer = OutputWriter(
            writer_factory=writer_factory, storage_options=storage_options, mode=config.output_mode
        )
        self.service_worker_generator = service_worker_generator or ServiceWorkerGenerator(
            storage_options=storage_options
        )

    def _default_bundler(self) -> BundlerStage:
        entrypoints = self.project.bundle_entrypoints() if self.project is not None else None
        return BundlerStage(entrypoints=entrypoints)

    def select_branches(self) -> list[PipelineBranch]:
        """Return the branches selected by ``config.bundle_type``, bundled first."""
        variant = self.config.variant
        if variant is None:
            allowed = [v.value for v in OutputVariant]
            logger.warning(f"Unknown bundle type {self.config.bundle_type!r}, expected one of {allowed}")
            return []
        return [self.make_branch(branch_variant) for branch_variant in variant.branches()]

    def make_branch(self, variant: OutputVariant) -> PipelineBranch:
        if variant is OutputVariant.BUNDLED:
            factories = (self.bundler_factory, self.rejoin_factory)
        else:
            factories = (self.rejoin_factory,)
        return PipelineBranch(
            variant=variant,
            destination=self.config.destination_for(variant),
            stage_factories=factories,
        )

    async def build_outputs(
        self,
        source_files: AsyncIterable[FileRecord],
        dependency_files: AsyncIterable[FileRecord],
    ) -> BuildResult:
        """Build every selected output tree and settle all of them."""
        branches = self.select_branches()
        if not branches:
            logger.warning("No output branch selected, nothing to build")
            return BuildResult(selector=self.config.bundle_type)

        logger.info(
            f"Building {', '.join(branch.variant.value for branch in branches)} output(s) "
            f"under {self.config.output_root}"
        )
        merged = merge_streams(source_files, dependency_files)
        fork = StreamFork(self.analyzer.stream(merged))
        inputs = [fork.branch() for _ in branches]
        try:
            settled = await asyncio.gather(
                *(self._run_branch(branch, records) for branch, records in zip(branches, inputs, strict=True)),
                return_exceptions=True,
            )
        finally:
            await fork.aclose()
            await merged.aclose()

        for outcome in settled:
            if isinstance(outcome, BaseException):
                raise outcome
        result = BuildResult(selector=self.config.bundle_type, branches=list(settled))
        logger.info(result.summary())
        return result

    async def generate_service_workers(self) -> BuildResult:
        """Generate only the service workers of already written output trees."""
        branches = self.select_branches()
        if not branches:
            logger.warning("No output branch selected, no service worker to generate")
            return BuildResult(selector=self.config.bundle_type)

        async def run(branch: PipelineBranch) -> BranchResult:
            result = BranchResult(variant=branch.variant, destination=branch.destination)
            await self._generate_service_worker(branch, result)
            return result

        settled = await asyncio.gather(*(run(branch) for branch in branches))
        result = BuildResult(selector=self.config.bundle_type, branches=list(settled))
        logger.info(result.summary())
        return result

    async def _run_branch(self, branch: PipelineBranch, records: AsyncIterator[FileRecord]) -> BranchResult:
        result = BranchResult(variant=branch.variant, destination=branch.destination)
        try:
            async with aclosing(records):
                result.files_written = await self.output_writer.write(branch, records)
        except PolybuildError as e:
            logger.error(f"{branch.variant.value} build failed for {branch.destination}: {e}")
            result.write_error = e
            return result
        result.write_finished_at = time.monotonic()

        if self.config.generate_service_worker:
            await self._generate_service_worker(branch, result)
        return result

    async def _generate_service_worker(self, branch: PipelineBranch, result: BranchResult) -> None:
        result.manifest_started_at = time.monotonic()
        try:
            result.manifest_written = await self.service_worker_generator.generate(
                branch,
                self.project,
                self.config.cache_options,
                self.config.service_worker_path,
            )
        except ManifestError as e:
            logger.error(f"Service worker generation failed for {branch.destination}: {e}")
            result.manifest_error = e

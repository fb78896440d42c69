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

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Generic, TypeVar

from loguru import logger

from polybuild.errors import PolybuildError, TransformError
from polybuild.tasks import Task

if TYPE_CHECKING:
    from collections.abc import AsyncIterable, AsyncIterator

X = TypeVar("X", bound=Task)  # Input task type
Y = TypeVar("Y", bound=Task)  # Output task type


class ProcessingStage(ABC, Generic[X, Y]):
    """Base class for all build stages.
    Stages operate on Task objects (in practice :class:`FileRecord`).
    ``process`` handles a single record and may return:
    - A single task (typical for transformations)
    - A list of tasks (for stages that split files, like the HTML splitter)
    - None (for records that are consumed, like split fragments on rejoin)

    ``stream`` lifts ``process`` over an asynchronous sequence of tasks. Stages
    that need to see the whole sequence before emitting anything (bundling,
    rejoining) override ``stream`` instead.
    """

    _name = "ProcessingStage"

    @property
    def name(self) -> str:
        return self._name

    def validate_input(self, task: Task) -> bool:
        """Validate input task meets requirements.
        Args:
            task: Task to validate
        Returns:
            True if valid, False otherwise
        """
        required_top_level_attrs, required_metadata_keys = self.inputs()

        missing_top_level_attrs = [attr for attr in required_top_level_attrs if not hasattr(task, attr)]
        missing_metadata_keys = [key for key in required_metadata_keys if key not in task._metadata]

        if missing_top_level_attrs or missing_metadata_keys:
            logger.error(
                f"Task {task.task_id} missing required attributes: {missing_top_level_attrs} {missing_metadata_keys}"
            )

        return not missing_top_level_attrs and not missing_metadata_keys

    @abstractmethod
    def process(self, task: X) -> Y | list[Y] | None:
        """Process a task and return the result.
        Args:
            task (X): Input task to process
        Returns (Y | list[Y] | None):
            - Single task: For 1-to-1 transformations
            - List of tasks: For 1-to-many transformations (e.g., splitting)
            - None: If the task is consumed by this stage
        """

    async def stream(self, tasks: AsyncIterable[X]) -> AsyncIterator[Y]:
        """Apply ``process`` to every task of an asynchronous sequence.

        Exceptions other than :class:`PolybuildError` raised by ``process`` are
        wrapped in :class:`TransformError` so the owning branch can report them.
        """
        self.setup()
        try:
            async for task in tasks:
                if not self.validate_input(task):
                    msg = f"Task {task!s} failed validation for stage {self}"
                    raise TransformError(msg, stage=self.name, path=task.task_id)
                for result in self._run_process(task):
                    yield result
        finally:
            self.teardown()

    def _run_process(self, task: X) -> list[Y]:
        try:
            result = self.process(task)
        except PolybuildError:
            raise
        except Exception as e:
            msg = f"Stage {self.name} failed on {task.task_id}: {e}"
            raise TransformError(msg, stage=self.name, path=task.task_id) from e
        if result is None:
            return []
        if isinstance(result, list):
            return result
        return [result]

    def setup(self) -> None:
        """Setup method called once before a stream is consumed.
        Override this method to reset per-build state.
        """

    def teardown(self) -> None:
        """Teardown method called once after a stream ends, successfully or not.
        Override this method to perform any cleanup.
        """

    def __repr__(self) -> str:
        """String representation of the stage."""
        return f"{self.__class__.__name__}"

    def inputs(self) -> tuple[list[str], list[str]]:
        """Define stage input requirements.

        Returns (tuple[list[str], list[str]]):
            Tuple of (required_attributes, required_metadata_keys) where:
            - required_top_level_attributes: List of task attributes that must be present
            - required_metadata_keys: List of ``_metadata`` keys that must be present
        """
        return [], []

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
from typing import TYPE_CHECKING, Literal

import fsspec
from loguru import logger

if TYPE_CHECKING:
    from collections.abc import Iterable

GLOB_CHARS = ("*", "?", "[")


def get_fs(path: str, storage_options: dict | None = None) -> tuple[fsspec.AbstractFileSystem, str]:
    """Return the filesystem for ``path`` and the path in that filesystem's native form."""
    fs, fs_path = fsspec.core.url_to_fs(path, **(storage_options or {}))
    return fs, fs_path.rstrip("/") or fs_path


def join_path(fs: fsspec.AbstractFileSystem, *parts: str) -> str:
    return fs.sep.join(part.strip(fs.sep) if i else part.rstrip(fs.sep) for i, part in enumerate(parts) if part)


def relative_path(path: str, root: str) -> str:
    """Project-relative posix path of ``path`` under ``root``."""
    return posixpath.relpath(path, root)


def delete_dir(path: str, fs: fsspec.AbstractFileSystem) -> None:
    if fs.exists(path) and fs.isdir(path):
        fs.rm(path, recursive=True)


def check_output_mode(
    mode: Literal["overwrite", "error", "ignore"],
    fs: fsspec.AbstractFileSystem,
    path: str,
) -> None:
    """
    Validate and act on the write mode for an output directory.

    Modes:
    - "overwrite": delete existing `path` recursively if it exists.
    - "error": raise FileExistsError if `path` already exists and is not empty.
    - "ignore": no-op, existing files are overwritten one by one.
    """
    normalized = mode.strip().lower()
    allowed = {"overwrite", "error", "ignore"}
    if normalized not in allowed:
        msg = f"Invalid mode: {mode!r}. Allowed: {sorted(allowed)}"
        raise ValueError(msg)

    if normalized == "error" and fs.exists(path) and fs.ls(path):
        msg = f"Output directory {path} already exists"
        raise FileExistsError(msg)

    if normalized == "overwrite":
        if fs.exists(path):
            logger.info(f"Removing output directory {path} for overwrite mode")
            delete_dir(path=path, fs=fs)
        else:
            logger.debug(f"Overwrite mode: output directory {path} does not exist; nothing to remove")

    fs.makedirs(path, exist_ok=True)


def expand_globs(
    root: str,
    patterns: Iterable[str],
    fs: fsspec.AbstractFileSystem,
    exclude: Iterable[str] = (),
) -> list[str]:
    """
    Expand glob patterns relative to ``root`` into project-relative file paths.
    Args:
        root: Directory the patterns are relative to, in the filesystem's native form.
        patterns: Glob patterns (``**`` recurses) or plain relative paths.
        fs: The filesystem to use.
        exclude: Patterns whose matches are removed from the result.
    Returns:
        Sorted, de-duplicated list of relative posix paths of files (directories are skipped).
    """

    def _match(pattern: str) -> set[str]:
        full_pattern = join_path(fs, root, pattern)
        if any(char in pattern for char in GLOB_CHARS):
            matches = fs.glob(full_pattern)
        else:
            matches = [full_pattern] if fs.exists(full_pattern) else []
        found = set()
        for match in matches:
            if fs.isdir(match):
                continue
            found.add(relative_path(fs._strip_protocol(match), fs._strip_protocol(root)))
        return found

    included: set[str] = set()
    for pattern in patterns:
        included.update(_match(pattern))
    excluded: set[str] = set()
    for pattern in exclude:
        excluded.update(_match(pattern))

    return sorted(included - excluded)

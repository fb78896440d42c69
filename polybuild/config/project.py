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
import posixpath
from dataclasses import dataclass, field
from typing import Any

from polybuild.errors import ConfigurationError
from polybuild.utils.file_utils import get_fs


@dataclass(frozen=True)
class ProjectManifest:
    """Parsed ``polymer.json`` project manifest.

    All paths are posix paths relative to ``root``, the directory holding the
    manifest.
    """

    root: str
    entrypoint: str = "index.html"
    shell: str | None = None
    fragments: tuple[str, ...] = ()
    sources: tuple[str, ...] = ("src/**/*",)
    extra_dependencies: tuple[str, ...] = ()
    component_dir: str = "bower_components"
    storage_options: dict[str, Any] = field(default_factory=dict, compare=False)

    def source_globs(self) -> list[str]:
        globs = list(self.sources)
        for path in self.bundle_entrypoints():
            if path not in globs:
                globs.append(path)
        return globs

    def dependency_globs(self) -> list[str]:
        return [posixpath.join(self.component_dir, "**", "*"), *self.extra_dependencies]

    def bundle_entrypoints(self) -> list[str]:
        entrypoints = [self.entrypoint]
        if self.shell:
            entrypoints.append(self.shell)
        entrypoints.extend(self.fragments)
        return list(dict.fromkeys(posixpath.normpath(path) for path in entrypoints))


def _string_list(data: dict[str, Any], key: str, default: tuple[str, ...]) -> tuple[str, ...]:
    value = data.get(key)
    if value is None:
        return default
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        msg = f"polymer.json field {key!r} must be a list of strings"
        raise ConfigurationError(msg)
    return tuple(value)


def _optional_string(data: dict[str, Any], key: str, default: str | None) -> str | None:
    value = data.get(key, default)
    if value is not None and not isinstance(value, str):
        msg = f"polymer.json field {key!r} must be a string"
        raise ConfigurationError(msg)
    return value


def load_project_manifest(manifest_path: str, storage_options: dict[str, Any] | None = None) -> ProjectManifest:
    """Read and validate a ``polymer.json`` manifest."""
    fs, fs_path = get_fs(manifest_path, storage_options)
    try:
        raw = fs.cat_file(fs_path)
    except OSError as e:
        msg = f"Cannot read project manifest {manifest_path}: {e}"
        raise ConfigurationError(msg) from e
    try:
        data = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        msg = f"Invalid JSON in project manifest {manifest_path}: {e}"
        raise ConfigurationError(msg) from e
    if not isinstance(data, dict):
        msg = f"Project manifest {manifest_path} must contain a JSON object"
        raise ConfigurationError(msg)

    root = manifest_path.rsplit("/", 1)[0] if "/" in manifest_path else "."
    return ProjectManifest(
        root=root,
        entrypoint=_optional_string(data, "entrypoint", "index.html"),
        shell=_optional_string(data, "shell", None),
        fragments=_string_list(data, "fragments", ()),
        sources=_string_list(data, "sources", ("src/**/*",)),
        extra_dependencies=_string_list(data, "extraDependencies", ()),
        component_dir=_optional_string(data, "componentDir", "bower_components"),
        storage_options=dict(storage_options or {}),
    )

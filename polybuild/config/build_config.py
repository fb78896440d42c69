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
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import yaml
from loguru import logger

from polybuild.errors import ConfigurationError

DEFAULT_MAX_FILE_SIZE_TO_CACHE = 2 * 1024 * 1024
OUTPUT_MODES = ("ignore", "overwrite", "error")


class OutputVariant(str, Enum):
    """Output variant selector. ``BOTH`` is a selector only, never a branch."""

    BUNDLED = "bundled"
    UNBUNDLED = "unbundled"
    BOTH = "both"

    def branches(self) -> list[OutputVariant]:
        """Concrete branch variants selected by this selector, in execution order."""
        if self is OutputVariant.BOTH:
            return [OutputVariant.BUNDLED, OutputVariant.UNBUNDLED]
        return [self]

    @classmethod
    def parse(cls, value: str | OutputVariant) -> OutputVariant | None:
        """Return the matching variant, or None when ``value`` is not a known selector."""
        if isinstance(value, OutputVariant):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


@dataclass(frozen=True)
class CacheOptions:
    """Options forwarded to the service worker / precache manifest generator."""

    static_file_globs: tuple[str, ...] = ("**/*",)
    exclude_globs: tuple[str, ...] = ()
    navigate_fallback: str | None = None
    navigate_fallback_whitelist: tuple[str, ...] = ()
    cache_id: str = "polybuild"
    maximum_file_size_to_cache_in_bytes: int = DEFAULT_MAX_FILE_SIZE_TO_CACHE
    extra: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> CacheOptions:
        data = dict(data or {})
        known = {
            "static_file_globs",
            "exclude_globs",
            "navigate_fallback",
            "navigate_fallback_whitelist",
            "cache_id",
            "maximum_file_size_to_cache_in_bytes",
        }
        extra = {key: data.pop(key) for key in list(data) if key not in known}
        for key in ("static_file_globs", "exclude_globs", "navigate_fallback_whitelist"):
            if key in data:
                value = data[key]
                if isinstance(value, str):
                    value = [value]
                if not isinstance(value, list | tuple):
                    msg = f"Cache option {key!r} must be a list of strings"
                    raise ConfigurationError(msg)
                data[key] = tuple(value)
        return cls(**data, extra=extra)


def _normalize_subpath(name: str, subpath: str, root: str = "the output root") -> str:
    if not subpath or not str(subpath).strip():
        msg = f"{name} must not be empty"
        raise ConfigurationError(msg)
    if posixpath.isabs(subpath) or os.path.isabs(subpath):
        msg = f"{name} must be relative to {root}, got {subpath!r}"
        raise ConfigurationError(msg)
    normalized = posixpath.normpath(str(subpath).replace("\\", "/"))
    if normalized in {".", ".."} or normalized.startswith("../"):
        msg = f"{name} must point inside {root}, got {subpath!r}"
        raise ConfigurationError(msg)
    return normalized


@dataclass(frozen=True)
class BuildConfig:
    """Resolved, immutable configuration of one build invocation."""

    manifest_path: str
    output_root: str = "build"
    bundled_subpath: str = "bundled"
    unbundled_subpath: str = "unbundled"
    bundle_type: str = OutputVariant.BOTH.value
    cache_options: CacheOptions = field(default_factory=CacheOptions)
    service_worker_path: str = "service-worker.js"
    generate_service_worker: bool = True
    output_mode: str = "ignore"
    storage_options: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.manifest_path:
            msg = "manifest_path must be provided"
            raise ConfigurationError(msg)
        if not self.output_root:
            msg = "output_root must be provided"
            raise ConfigurationError(msg)

        bundled = _normalize_subpath("bundled_subpath", self.bundled_subpath)
        unbundled = _normalize_subpath("unbundled_subpath", self.unbundled_subpath)
        if bundled == unbundled or bundled.startswith(f"{unbundled}/") or unbundled.startswith(f"{bundled}/"):
            msg = f"Bundled and unbundled output paths collide: {bundled!r} vs {unbundled!r}"
            raise ConfigurationError(msg)
        object.__setattr__(self, "bundled_subpath", bundled)
        object.__setattr__(self, "unbundled_subpath", unbundled)

        if isinstance(self.bundle_type, OutputVariant):
            object.__setattr__(self, "bundle_type", self.bundle_type.value)
        worker_path = _normalize_subpath("service_worker_path", self.service_worker_path, "the output directory")
        object.__setattr__(self, "service_worker_path", worker_path)
        if self.output_mode not in OUTPUT_MODES:
            msg = f"Invalid output mode {self.output_mode!r}. Allowed: {list(OUTPUT_MODES)}"
            raise ConfigurationError(msg)

    @property
    def variant(self) -> OutputVariant | None:
        return OutputVariant.parse(self.bundle_type)

    @property
    def bundled_path(self) -> str:
        return posixpath.join(self.output_root, self.bundled_subpath)

    @property
    def unbundled_path(self) -> str:
        return posixpath.join(self.output_root, self.unbundled_subpath)

    def destination_for(self, variant: OutputVariant) -> str:
        if variant is OutputVariant.BUNDLED:
            return self.bundled_path
        if variant is OutputVariant.UNBUNDLED:
            return self.unbundled_path
        msg = f"{variant} is a selector, not an output branch"
        raise ValueError(msg)


_TOP_LEVEL_KEYS = {"manifest_path", "build", "service_worker", "storage_options"}
_BUILD_KEYS = {"root_directory", "bundled_directory", "unbundled_directory", "bundle_type", "mode"}
_SERVICE_WORKER_KEYS = {"enabled", "path", "cache"}


def _check_keys(section: str, data: Mapping[str, Any], allowed: set[str]) -> None:
    unknown = sorted(set(data) - allowed)
    if unknown:
        msg = f"Unknown key(s) in {section}: {unknown}. Allowed: {sorted(allowed)}"
        raise ConfigurationError(msg)


def _section(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, Mapping):
        msg = f"Config section {key!r} must be a mapping"
        raise ConfigurationError(msg)
    return value


def load_build_config(source: str | os.PathLike | Mapping[str, Any], base_dir: str | None = None) -> BuildConfig:
    """Load and validate a build configuration.

    ``source`` is either the path of a YAML file or an already parsed mapping.
    Relative ``manifest_path`` and ``build.root_directory`` are resolved against
    the config file's directory (or ``base_dir`` for mappings). Fails fast with
    :class:`ConfigurationError` before any file of the project is read.
    """
    if isinstance(source, Mapping):
        data = source
        base_dir = base_dir or os.getcwd()
    else:
        config_path = os.fspath(source)
        try:
            with open(config_path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except OSError as e:
            msg = f"Cannot read build config {config_path}: {e}"
            raise ConfigurationError(msg) from e
        except yaml.YAMLError as e:
            msg = f"Invalid YAML in build config {config_path}: {e}"
            raise ConfigurationError(msg) from e
        base_dir = base_dir or os.path.dirname(os.path.abspath(config_path))

    if not isinstance(data, Mapping):
        msg = "Build config must be a mapping"
        raise ConfigurationError(msg)
    _check_keys("build config", data, _TOP_LEVEL_KEYS)
    build = _section(data, "build")
    _check_keys("build", build, _BUILD_KEYS)
    service_worker = _section(data, "service_worker")
    _check_keys("service_worker", service_worker, _SERVICE_WORKER_KEYS)

    manifest_path = data.get("manifest_path", "polymer.json")
    if "://" not in manifest_path and not os.path.isabs(manifest_path):
        manifest_path = os.path.join(base_dir, manifest_path)
    if "://" not in manifest_path and not os.path.isfile(manifest_path):
        msg = f"Project manifest not found: {manifest_path}"
        raise ConfigurationError(msg)

    bundle_type = build.get("bundle_type", OutputVariant.BOTH.value)
    if OutputVariant.parse(bundle_type) is None:
        allowed = [variant.value for variant in OutputVariant]
        msg = f"Unknown bundle_type {bundle_type!r}. Allowed: {allowed}"
        raise ConfigurationError(msg)

    output_root = build.get("root_directory", "build")
    if "://" not in output_root and not os.path.isabs(output_root):
        output_root = os.path.join(base_dir, output_root)

    config = BuildConfig(
        manifest_path=manifest_path,
        output_root=output_root,
        bundled_subpath=build.get("bundled_directory", "bundled"),
        unbundled_subpath=build.get("unbundled_directory", "unbundled"),
        bundle_type=OutputVariant.parse(bundle_type).value,
        cache_options=CacheOptions.from_dict(service_worker.get("cache")),
        service_worker_path=service_worker.get("path", "service-worker.js"),
        generate_service_worker=bool(service_worker.get("enabled", True)),
        output_mode=str(build.get("mode", "ignore")).strip().lower(),
        storage_options=dict(data.get("storage_options") or {}),
    )
    logger.debug(f"Loaded build config: {config}")
    return config

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

from .build_config import OUTPUT_MODES, BuildConfig, CacheOptions, OutputVariant, load_build_config
from .project import ProjectManifest, load_project_manifest

__all__ = [
    "OUTPUT_MODES",
    "BuildConfig",
    "CacheOptions",
    "OutputVariant",
    "ProjectManifest",
    "load_build_config",
    "load_project_manifest",
]

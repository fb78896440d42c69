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
import hashlib
import json
import posixpath
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from loguru import logger

from polybuild.errors import ManifestError
from polybuild.utils.file_utils import expand_globs, get_fs, join_path

if TYPE_CHECKING:
    from polybuild.config import CacheOptions, ProjectManifest
    from polybuild.pipeline.branch import PipelineBranch

PRECACHE_MANIFEST_NAME = "precache-manifest.json"

SERVICE_WORKER_TEMPLATE = """\
/* Generated by polybuild. Do not edit. */
/* variant: {variant} (bundled: {bundled}) */
'use strict';

var precacheConfig = {precache};
var cacheName = {cache_name};
var navigateFallback = {navigate_fallback};
var navigateFallbackWhitelist = {whitelist}.map(function(source) {{ return new RegExp(source); }});
var extraOptions = {extra};

function cacheKey(entry) {{
  var url = new URL(entry[0], self.location);
  url.searchParams.set('_polybuild_hash', entry[1]);
  return url.toString();
}}

self.addEventListener('install', function(event) {{
  event.waitUntil(
    caches.open(cacheName).then(function(cache) {{
      return Promise.all(precacheConfig.map(function(entry) {{
        return fetch(new Request(entry[0], {{credentials: 'same-origin'}})).then(function(response) {{
          if (!response.ok) {{
            throw new Error('Request for ' + entry[0] + ' returned ' + response.status);
          }}
          return cache.put(cacheKey(entry), response);
        }});
      }}));
    }}).then(function() {{ return self.skipWaiting(); }})
  );
}});

self.addEventListener('activate', function(event) {{
  var expected = new Set(precacheConfig.map(cacheKey));
  event.waitUntil(
    caches.open(cacheName).then(function(cache) {{
      return cache.keys().then(function(requests) {{
        return Promise.all(requests.map(function(request) {{
          if (!expected.has(request.url)) {{
            return cache.delete(request);
          }}
        }}));
      }});
    }}).then(function() {{ return self.clients.claim(); }})
  );
}});

self.addEventListener('fetch', function(event) {{
  if (event.request.method !== 'GET') {{
    return;
  }}
  var requestUrl = new URL(event.request.url);
  var entry = precacheConfig.find(function(candidate) {{
    return new URL(candidate[0], self.location).pathname === requestUrl.pathname;
  }});
  if (!entry && navigateFallback && event.request.mode === 'navigate' &&
      (navigateFallbackWhitelist.length === 0 ||
       navigateFallbackWhitelist.some(function(regex) {{ return regex.test(requestUrl.pathname); }}))) {{
    entry = precacheConfig.find(function(candidate) {{ return candidate[0] === navigateFallback; }});
  }}
  if (entry) {{
    event.respondWith(
      caches.open(cacheName).then(function(cache) {{
        return cache.match(cacheKey(entry)).then(function(response) {{
          return response || fetch(event.request);
        }});
      }})
    );
  }}
}});
"""


@dataclass
class ServiceWorkerGenerator:
    """Generate a precaching service worker for an already written output tree.

    Every file under the branch destination that matches the cache options'
    static file globs is listed with the MD5 hash of its contents. The worker
    script is written to ``service_worker_path`` under the destination, next to
    a ``precache-manifest.json`` holding the same list.
    """

    storage_options: dict[str, Any] = field(default_factory=dict)

    async def generate(
        self,
        branch: PipelineBranch,
        project: ProjectManifest | None,
        cache_options: CacheOptions,
        service_worker_path: str,
    ) -> str:
        """Write the worker for ``branch`` and return its path.

        Must only be awaited once the branch's write has resolved.
        """
        try:
            return await asyncio.to_thread(self._generate, branch, project, cache_options, service_worker_path)
        except ManifestError:
            raise
        except (OSError, ValueError, TypeError) as e:
            msg = f"Failed to generate service worker for {branch.destination}: {e}"
            raise ManifestError(msg, destination=branch.destination) from e

    def precache_entries(
        self,
        destination: str,
        cache_options: CacheOptions,
        service_worker_path: str,
    ) -> list[tuple[str, str]]:
        """Return ``(relative path, md5)`` pairs for every file to precache, sorted by path."""
        fs, root = get_fs(destination, self.storage_options)
        if not fs.isdir(root):
            msg = f"Output directory {destination} does not exist"
            raise ManifestError(msg, destination=destination)

        skip = {posixpath.normpath(service_worker_path), PRECACHE_MANIFEST_NAME}
        paths = expand_globs(root, cache_options.static_file_globs, fs, exclude=cache_options.exclude_globs)
        entries = []
        for path in paths:
            if path in skip:
                continue
            full_path = join_path(fs, root, path)
            size = fs.size(full_path)
            if size > cache_options.maximum_file_size_to_cache_in_bytes:
                logger.warning(
                    f"Skipping {path} ({size} bytes): larger than "
                    f"{cache_options.maximum_file_size_to_cache_in_bytes} bytes precache limit"
                )
                continue
            entries.append((path, hashlib.md5(fs.cat_file(full_path)).hexdigest()))  # noqa: S324
        return entries

    def _generate(
        self,
        branch: PipelineBranch,
        project: ProjectManifest | None,
        cache_options: CacheOptions,
        service_worker_path: str,
    ) -> str:
        entries = self.precache_entries(branch.destination, cache_options, service_worker_path)

        navigate_fallback = cache_options.navigate_fallback
        if navigate_fallback is None and project is not None:
            navigate_fallback = project.entrypoint
        if navigate_fallback is not None and navigate_fallback not in {path for path, _ in entries}:
            logger.warning(f"Navigate fallback {navigate_fallback} is not precached for {branch.destination}")

        cache_name = f"{cache_options.cache_id}-{branch.variant.value}"
        script = SERVICE_WORKER_TEMPLATE.format(
            variant=branch.variant.value,
            bundled=str(branch.bundled).lower(),
            precache=json.dumps([list(entry) for entry in entries]),
            cache_name=json.dumps(cache_name),
            navigate_fallback=json.dumps(navigate_fallback),
            whitelist=json.dumps(list(cache_options.navigate_fallback_whitelist)),
            extra=json.dumps(dict(cache_options.extra), sort_keys=True),
        )

        fs, root = get_fs(branch.destination, self.storage_options)
        worker_path = join_path(fs, root, service_worker_path)
        manifest_path = join_path(fs, root, PRECACHE_MANIFEST_NAME)
        manifest = {
            "cacheName": cache_name,
            "bundled": branch.bundled,
            "navigateFallback": navigate_fallback,
            "files": [{"url": path, "revision": revision} for path, revision in entries],
        }
        fs.makedirs(posixpath.dirname(worker_path), exist_ok=True)
        fs.pipe_file(manifest_path, json.dumps(manifest, indent=2).encode("utf-8"))
        fs.pipe_file(worker_path, script.encode("utf-8"))
        logger.info(f"Service worker with {len(entries)} precached file(s) written to {worker_path}")
        return worker_path

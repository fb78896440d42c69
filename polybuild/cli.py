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

import argparse
import asyncio
import sys

from loguru import logger

from polybuild.config import OUTPUT_MODES, OutputVariant
from polybuild.errors import PolybuildError
from polybuild.project import BuildProject


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


def parse_args(args: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="polybuild", description="Build bundled and unbundled web project outputs")
    parser.add_argument("--log-level", type=str, default="INFO", help="Log level of the stderr sink")
    subparsers = parser.add_subparsers(dest="command", required=True)

    build = subparsers.add_parser("build", help="Build the selected output trees and their service workers")
    service_worker = subparsers.add_parser(
        "service-worker", help="Generate service workers for already built output trees"
    )
    for subparser in (build, service_worker):
        subparser.add_argument(
            "--config", type=str, default="polybuild.yaml", help="Path to the YAML build configuration"
        )
        subparser.add_argument(
            "--bundle-type",
            type=str,
            choices=[variant.value for variant in OutputVariant],
            default=None,
            help="Override the configured bundle type",
        )
    build.add_argument(
        "--no-service-worker", action="store_true", help="Skip service worker generation after writing"
    )
    build.add_argument(
        "--mode",
        type=str,
        choices=list(OUTPUT_MODES),
        default=None,
        help="Override how existing output directories are handled",
    )
    return parser.parse_args(args)


def main(args: list[str] | None = None) -> int:
    args = parse_args(args)
    configure_logging(args.log_level)

    overrides = {}
    if args.bundle_type is not None:
        overrides["bundle_type"] = args.bundle_type
    if getattr(args, "no_service_worker", False):
        overrides["generate_service_worker"] = False
    if getattr(args, "mode", None) is not None:
        overrides["output_mode"] = args.mode

    try:
        project = BuildProject.from_config_file(args.config, **overrides)
        if args.command == "build":
            result = asyncio.run(project.build())
        else:
            result = asyncio.run(project.service_worker())
    except PolybuildError as e:
        logger.error(str(e))
        return 2

    if not result.ok:
        logger.error(result.summary())
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

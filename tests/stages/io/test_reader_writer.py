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

from typing import TYPE_CHECKING
from unittest.mock import patch

import pytest

from polybuild.errors import SourceReadError, WriteError
from polybuild.stages.io import FileSystemWriter, ProjectFileReader
from polybuild.tasks import DEPENDENCIES, SOURCES

if TYPE_CHECKING:
    from pathlib import Path


class TestProjectFileReader:
    """Test cases for reading project files into records."""

    @pytest.mark.asyncio
    async def test_read_matching_files(self, web_project: Path, collect):
        """Test glob expansion, exclusion, ordering and record contents."""
        reader = ProjectFileReader(str(web_project))

        records = await collect(reader.read(["src/**/*", "index.html", "src/*.css"], SOURCES, exclude=["src/*.png"]))

        assert [r.path for r in records] == ["index.html", "src/app-shell.html", "src/main.js", "src/theme.css"]
        assert all(r.dataset_name == SOURCES for r in records)
        assert records[2].data == b"console.log('main');\n"

    @pytest.mark.asyncio
    async def test_read_binary_and_nested(self, web_project: Path, collect):
        """Test that nested dependency files and binary files are read verbatim."""
        reader = ProjectFileReader(str(web_project))

        dependencies = await collect(reader.read(["bower_components/**/*"], DEPENDENCIES))
        sources = await collect(reader.read(["src/logo.png"], SOURCES))

        assert [r.path for r in dependencies] == ["bower_components/lib/lib.html", "bower_components/lib/lib.js"]
        assert sources[0].data == b"\x89PNG\r\n\x1a\n\x00\x00"

    @pytest.mark.asyncio
    async def test_missing_plain_path_is_skipped(self, web_project: Path, collect):
        """Test that a plain path that does not exist yields nothing."""
        reader = ProjectFileReader(str(web_project))
        assert await collect(reader.read(["nope.html"], SOURCES)) == []

    @pytest.mark.asyncio
    async def test_read_failure_raises_source_read_error(self, web_project: Path, collect):
        """Test that a filesystem error while reading is reported with the file path."""
        reader = ProjectFileReader(str(web_project))

        with (
            patch.object(reader.fs, "cat_file", side_effect=PermissionError("denied")),
            pytest.raises(SourceReadError, match="denied") as excinfo,
        ):
            await collect(reader.read(["index.html"], SOURCES))

        assert excinfo.value.path == "index.html"

    def test_listing_failure_raises_source_read_error(self, web_project: Path):
        """Test that a filesystem error while listing is wrapped."""
        reader = ProjectFileReader(str(web_project))

        with (
            patch.object(reader.fs, "glob", side_effect=OSError("unavailable")),
            pytest.raises(SourceReadError, match="unavailable"),
        ):
            reader.list_files(["src/**/*"])


class TestFileSystemWriter:
    """Test cases for writing records to an output directory."""

    @pytest.mark.asyncio
    async def test_write_creates_tree(self, tmp_path: Path, record, stream_of):
        """Test that records are written under their relative paths."""
        out = tmp_path / "out"
        writer = FileSystemWriter(path=str(out))
        records = [record("index.html", "<p>hi</p>"), record("a/b/c.bin", b"\x00\x01")]

        written = await writer.write(stream_of(records))

        assert written == 2
        assert (out / "index.html").read_text() == "<p>hi</p>"
        assert (out / "a" / "b" / "c.bin").read_bytes() == b"\x00\x01"
        assert records[1]._metadata["written_path"].endswith("a/b/c.bin")

    @pytest.mark.asyncio
    async def test_write_empty_stream_prepares_directory(self, tmp_path: Path, stream_of):
        """Test that an empty stream still creates the output directory."""
        out = tmp_path / "empty"

        assert await FileSystemWriter(path=str(out)).write(stream_of([])) == 0
        assert out.is_dir()

    @pytest.mark.asyncio
    async def test_overwrite_mode_clears_previous_output(self, tmp_path: Path, record, stream_of):
        """Test that overwrite mode removes stale files."""
        out = tmp_path / "out"
        out.mkdir()
        (out / "stale.txt").write_text("old")

        await FileSystemWriter(path=str(out), mode="overwrite").write(stream_of([record("new.txt", "new")]))

        assert not (out / "stale.txt").exists()
        assert (out / "new.txt").read_text() == "new"

    @pytest.mark.asyncio
    async def test_error_mode_refuses_non_empty_directory(self, tmp_path: Path, record, stream_of):
        """Test that error mode fails before writing anything."""
        out = tmp_path / "out"
        out.mkdir()
        (out / "existing.txt").write_text("keep")

        with pytest.raises(WriteError, match="already exists"):
            await FileSystemWriter(path=str(out), mode="error").write(stream_of([record("new.txt", "new")]))

        assert not (out / "new.txt").exists()

    def test_invalid_mode(self, tmp_path: Path):
        """Test that an unknown mode is reported as a write error."""
        with pytest.raises(WriteError, match="Invalid mode"):
            FileSystemWriter(path=str(tmp_path / "out"), mode="append").prepare()

    @pytest.mark.asyncio
    async def test_sink_failure_raises_write_error(self, tmp_path: Path, record, stream_of):
        """Test that a rejected write surfaces as WriteError."""
        writer = FileSystemWriter(path=str(tmp_path / "out"))

        with (
            patch.object(writer.fs, "pipe_file", side_effect=OSError("disk full")),
            pytest.raises(WriteError, match="disk full") as excinfo,
        ):
            await writer.write(stream_of([record("a.txt", "a")]))

        assert excinfo.value.path.endswith("a.txt")

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

import pytest

from polybuild.errors import TransformError
from polybuild.stages.html import SPLIT_MARKER_RE, HtmlRejoinStage, HtmlSplitStage, make_split_marker

DOCUMENT = """<!doctype html>
<html>
<head>
  <style>
    h1 { color: red; }
  </style>
  <script src="vendor.js"></script>
  <script type="application/ld+json">{"@type": "WebSite"}</script>
  <SCRIPT>
    var answer = 42;
  </SCRIPT>
</head>
<body>
  <style>   </style>
  <script type="module">import "./app.js";</script>
</body>
</html>
"""


class TestHtmlSplitStage:
    """Test cases for extracting inline blocks out of HTML documents."""

    def test_non_html_passes_through(self, record):
        """Test that non-HTML records are returned unchanged."""
        original = record("app.js", "var a = 1;")
        assert HtmlSplitStage().process(original) is original

    def test_splits_inline_blocks(self, record):
        """Test fragment naming, ordering, metadata and marker placement."""
        parent, *fragments = HtmlSplitStage().process(record("src/index.html", DOCUMENT))

        assert [f.path for f in fragments] == [
            "src/index.html_style_0.css",
            "src/index.html_script_0.js",
            "src/index.html_script_1.js",
        ]
        assert fragments[0].data == b"\n    h1 { color: red; }\n  "
        assert fragments[1].text == "\n    var answer = 42;\n  "
        assert fragments[2].text == 'import "./app.js";'
        assert [f._metadata["split_index"] for f in fragments] == [0, 1, 2]
        assert [f._metadata["split_kind"] for f in fragments] == ["style", "script", "script"]
        assert all(f._metadata["split_from"] == "src/index.html" for f in fragments)
        assert all(f.is_fragment for f in fragments)

        assert parent._metadata["split_fragments"] == [f.path for f in fragments]
        assert SPLIT_MARKER_RE.findall(parent.text) == [f.path for f in fragments]
        assert f"<style>{make_split_marker('src/index.html_style_0.css')}</style>" in parent.text
        # external, data and blank blocks stay in place
        assert '<script src="vendor.js"></script>' in parent.text
        assert '{"@type": "WebSite"}' in parent.text
        assert "<style>   </style>" in parent.text

    def test_document_without_inline_blocks_is_unchanged(self, record):
        """Test that a document with nothing to split is returned as is."""
        original = record("plain.html", "<p>nothing inline</p>")
        assert HtmlSplitStage().process(original) is original

    def test_skips_undecodable_and_already_split_documents(self, record):
        """Test that binary and already split documents pass through."""
        binary = record("broken.html", b"<script>\xff\xfe</script>")
        already = record("again.html", f"<script>{make_split_marker('x.js')}</script>")

        assert HtmlSplitStage().process(binary) is binary
        assert HtmlSplitStage().process(already) is already


class TestHtmlRejoinStage:
    """Test cases for reassembling split documents."""

    @pytest.mark.asyncio
    async def test_split_then_rejoin_is_byte_identical(self, record, stream_of, collect):
        """Test the split/rejoin round trip on a mixed stream."""
        originals = [
            record("src/index.html", DOCUMENT),
            record("src/app.js", "export default 1;\n"),
            record("img/logo.png", b"\x89PNG\x00\xff"),
            record("nested/page.html", "<style>p{}</style><script>go()</script>"),
        ]

        split = HtmlSplitStage().stream(stream_of(originals))
        rejoined = await collect(HtmlRejoinStage().stream(split))

        assert sorted(r.path for r in rejoined) == sorted(r.path for r in originals)
        by_path = {r.path: r for r in rejoined}
        for original in originals:
            assert by_path[original.path].data == original.data
            assert "split_fragments" not in by_path[original.path]._metadata

    @pytest.mark.asyncio
    async def test_document_waits_for_late_fragments(self, record, stream_of, collect):
        """Test that a document arriving before its fragments is held, then emitted."""
        parent, *fragments = HtmlSplitStage().process(record("a.html", "<script>one()</script>"))
        other = record("b.css", "b{}")

        results = await collect(HtmlRejoinStage().stream(stream_of([parent, other, *fragments])))

        assert [r.path for r in results] == ["b.css", "a.html"]
        assert results[1].text == "<script>one()</script>"

    @pytest.mark.asyncio
    async def test_resolves_markers_carried_into_other_documents(self, record, stream_of, collect):
        """Test that a marker moved into another document is resolved by fragment path."""
        bundle = record(
            "bundle.html",
            f"<div><script>{make_split_marker('part.html_script_0.js')}</script></div>",
            split_fragments=["part.html_script_0.js"],
        )
        fragment = record("part.html_script_0.js", "part()", split_from="part.html")

        results = await collect(HtmlRejoinStage().stream(stream_of([fragment, bundle])))

        assert [r.path for r in results] == ["bundle.html"]
        assert results[0].text == "<div><script>part()</script></div>"

    @pytest.mark.asyncio
    async def test_missing_fragment_raises_at_end_of_stream(self, record, stream_of, collect):
        """Test that a marker whose fragment never arrives fails the stream."""
        orphan = record(
            "a.html",
            f"<script>{make_split_marker('a.html_script_0.js')}</script>",
            split_fragments=["a.html_script_0.js"],
        )

        with pytest.raises(TransformError, match=r"a\.html_script_0\.js") as excinfo:
            await collect(HtmlRejoinStage().stream(stream_of([orphan])))

        assert excinfo.value.stage == "html_rejoin"
        assert excinfo.value.path == "a.html"

    @pytest.mark.asyncio
    async def test_marker_text_in_unsplit_document_is_kept(self, record, stream_of, collect):
        """Test that a page that only mentions the marker syntax is written unchanged."""
        docs = record("docs.html", f"<pre>{make_split_marker('x.js')}</pre>")
        page, fragment = HtmlSplitStage().process(record("page.html", "<script>go()</script>"))
        page.data = page.data + f"<!-- {make_split_marker('x.js')} -->".encode()

        split = HtmlSplitStage().stream(stream_of([docs]))
        results = await collect(HtmlRejoinStage().stream(stream_of([*await collect(split), page, fragment])))

        by_path = {r.path: r for r in results}
        assert set(by_path) == {"docs.html", "page.html"}
        assert by_path["docs.html"].data == docs.data
        assert by_path["page.html"].text == f"<script>go()</script><!-- {make_split_marker('x.js')} -->"

    @pytest.mark.asyncio
    async def test_stage_is_reusable(self, record, stream_of, collect):
        """Test that buffered state is reset between streams."""
        stage = HtmlRejoinStage()
        parent, fragment = HtmlSplitStage().process(record("a.html", "<style>x{}</style>"))

        first = await collect(stage.stream(stream_of([parent, fragment])))
        second = await collect(stage.stream(stream_of([record("b.txt", "b")])))

        assert [r.path for r in first] == ["a.html"]
        assert [r.path for r in second] == ["b.txt"]

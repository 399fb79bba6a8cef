"""Tests for oasis_archive.storage."""

from __future__ import annotations

import asyncio
import threading

import pytest

from oasis_archive.storage.index_page import render_index_page, write_index_page
from oasis_archive.storage.writer import OutputPathError, OutputWriter


class TestOutputWriter:
    @pytest.mark.asyncio
    async def test_creates_parent_directories(self, tmp_path):
        writer = OutputWriter(tmp_path / "out")
        path = await writer.write("author/@seed=.ed25519/lt=10.html", b"<p>page</p>")

        assert path == (tmp_path / "out" / "author" / "@seed=.ed25519" / "lt=10.html").resolve()
        assert path.read_bytes() == b"<p>page</p>"

    @pytest.mark.asyncio
    async def test_overwrites_existing_file(self, tmp_path):
        writer = OutputWriter(tmp_path)
        await writer.write("thread/a.html", b"first")
        await writer.write("/thread/a.html", b"second")

        assert (tmp_path / "thread" / "a.html").read_bytes() == b"second"
        assert writer.get_stats() == {"files_written": 2, "bytes_written": 11, "write_errors": 0}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("local_path", ["../escape.html", "a/../../escape.html", "", "/"])
    async def test_refuses_paths_outside_root(self, tmp_path, local_path):
        writer = OutputWriter(tmp_path / "out")
        with pytest.raises(OutputPathError):
            await writer.write(local_path, b"x")
        assert writer.get_stats()["write_errors"] == 1

    @pytest.mark.asyncio
    async def test_write_does_not_block_event_loop(self, tmp_path, monkeypatch):
        started = threading.Event()
        release = threading.Event()
        released_in_time = []
        write_file = OutputWriter._write_file

        def slow_write(destination, data):
            started.set()
            released_in_time.append(release.wait(5))
            write_file(destination, data)

        monkeypatch.setattr(OutputWriter, "_write_file", staticmethod(slow_write))
        writer = OutputWriter(tmp_path)

        pending = asyncio.create_task(writer.write("slow.html", b"data"))
        assert await asyncio.to_thread(started.wait, 5)
        release.set()
        await pending

        assert released_in_time == [True]
        assert (tmp_path / "slow.html").read_bytes() == b"data"


class TestIndexPage:
    def test_render_escapes_entries(self):
        html = render_index_page([("@a<b>=.ed25519", '/author/%40a.html?"x"')], title="My <Archive>")

        assert "<title>My &lt;Archive&gt;</title>" in html
        assert "@a&lt;b&gt;=.ed25519" in html
        assert 'href="/author/%40a.html?&quot;x&quot;"' in html

    @pytest.mark.asyncio
    async def test_write_index_page(self, tmp_path):
        writer = OutputWriter(tmp_path)
        path = await write_index_page(writer, [("@seed=.ed25519", "/author/%40seed%3D.ed25519.html")])

        content = path.read_text(encoding="utf-8")
        assert path.name == "index.html"
        assert '<a href="/author/%40seed%3D.ed25519.html">@seed=.ed25519</a>' in content

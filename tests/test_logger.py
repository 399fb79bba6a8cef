"""Tests for oasis_archive.utils.logger."""

from __future__ import annotations

import asyncio
import json
import logging

import pytest

from oasis_archive.utils.config import LoggingConfig
from oasis_archive.utils.logger import (
    ArchiveLogAdapter,
    JSONFormatter,
    TransportNoiseFilter,
    get_archive_logger,
    setup_logging,
)

LOGGER = "oasis_archive.test"


def _record(name=LOGGER, level=logging.INFO, msg="hello", **attrs):
    record = logging.LogRecord(name, level, __file__, 10, msg, None, None)
    for key, value in attrs.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestJSONFormatter:
    def test_basic_fields(self):
        entry = json.loads(JSONFormatter().format(_record()))
        assert entry["level"] == "INFO"
        assert entry["logger"] == LOGGER
        assert entry["message"] == "hello"
        assert entry["timestamp"].endswith("+00:00")
        assert "task" not in entry

    def test_structured_fields_and_task(self):
        record = _record(
            fields={"reference": "/thread/%25a", "event_type": "reference"},
            task_name="worker-2",
        )
        entry = json.loads(JSONFormatter().format(record))
        assert entry["reference"] == "/thread/%25a"
        assert entry["event_type"] == "reference"
        assert entry["task"] == "worker-2"


class TestArchiveLogAdapter:
    def test_context_and_call_extras(self):
        adapter = get_archive_logger(LOGGER, run="r1")
        assert isinstance(adapter, ArchiveLogAdapter)

        msg, kwargs = adapter.process("m", {"extra": {"reference": "/a"}})
        assert msg == "m"
        assert kwargs["extra"]["fields"] == {"run": "r1", "reference": "/a"}
        assert kwargs["extra"]["task_name"] is None

    def test_bind_keeps_parent_context(self):
        parent = get_archive_logger(LOGGER, run="r1")
        child = parent.bind(seed="@a")

        assert child.extra == {"run": "r1", "seed": "@a"}
        assert parent.extra == {"run": "r1"}

    @pytest.mark.asyncio
    async def test_records_task_name(self, caplog):
        adapter = get_archive_logger(LOGGER)

        async def emit():
            adapter.info("from worker")

        with caplog.at_level(logging.INFO, logger=LOGGER):
            await asyncio.create_task(emit(), name="worker-7")

        assert caplog.records[-1].task_name == "worker-7"

    def test_log_reference_event(self, caplog):
        adapter = get_archive_logger(LOGGER)
        with caplog.at_level(logging.INFO, logger=LOGGER):
            adapter.log_reference_event(logging.INFO, "/thread/%25a", "Unavailable")

        record = caplog.records[-1]
        assert record.getMessage() == "Unavailable"
        assert record.fields == {"reference": "/thread/%25a", "event_type": "reference"}

    def test_log_document_written(self, caplog):
        adapter = get_archive_logger(LOGGER)
        with caplog.at_level(logging.DEBUG, logger=LOGGER):
            adapter.log_document_written("/thread/%25a", "thread/%25a.html", 120, 1)

        record = caplog.records[-1]
        assert record.levelno == logging.DEBUG
        assert record.fields["local_path"] == "thread/%25a.html"
        assert record.fields["bytes"] == 120

    def test_log_crawl_stat(self, caplog):
        adapter = get_archive_logger(LOGGER)
        with caplog.at_level(logging.INFO, logger=LOGGER):
            adapter.log_crawl_stat("documents_written", 7)

        record = caplog.records[-1]
        assert record.getMessage() == "Stat: documents_written = 7"
        assert record.fields["stat_value"] == 7


class TestTransportNoiseFilter:
    def test_drops_transport_debug(self):
        noise_filter = TransportNoiseFilter()
        assert not noise_filter.filter(_record(name="aiohttp.access"))
        assert not noise_filter.filter(_record(name="asyncio", level=logging.DEBUG))

    def test_keeps_warnings_and_own_records(self):
        noise_filter = TransportNoiseFilter()
        assert noise_filter.filter(_record(name="aiohttp.client", level=logging.WARNING))
        assert noise_filter.filter(_record(name="oasis_archive.crawler"))
        assert noise_filter.filter(_record(name="asyncio_like"))


class TestSetupLogging:
    def test_console_only(self, restore_root_logger):
        root = setup_logging(LoggingConfig(level="warning"))
        assert root.level == logging.WARNING
        assert len(root.handlers) == 1

    def test_file_handlers(self, tmp_path, restore_root_logger):
        log_file = tmp_path / "logs" / "archive.log"
        root = setup_logging(LoggingConfig(level="DEBUG", file=str(log_file), json=True))

        assert len(root.handlers) == 3
        assert all(isinstance(h.formatter, JSONFormatter) for h in root.handlers)
        logging.getLogger(LOGGER).error("broken")
        for handler in root.handlers:
            handler.flush()

        assert "broken" in log_file.read_text(encoding="utf-8")
        error_line = (tmp_path / "logs" / "errors.log").read_text(encoding="utf-8").strip()
        assert json.loads(error_line.splitlines()[-1])["message"] == "broken"

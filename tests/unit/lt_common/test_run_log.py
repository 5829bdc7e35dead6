import io
import logging

import pytest

from lt_common.run_log import (
    FileRunLog,
    LoggerRunLog,
    MemoryRunLog,
    RunLog,
    StreamRunLog,
    TeeRunLog,
    ensure_run_log,
)


pytestmark = pytest.mark.unit_common


class _Broken:
    def write(self, line):
        raise RuntimeError("sink down")


def test_memory_run_log_keeps_lines():
    log = MemoryRunLog()
    log.write("first")
    log.write("second")
    assert log.lines == ["first", "second"]
    assert log.contains("sec")
    log.clear()
    assert log.lines == []


def test_file_run_log_appends_timestamped_lines(tmp_path):
    path = tmp_path / "logs" / "run.log"
    log = FileRunLog(path)
    log.write("Driver state: connecting")
    log.write("Driver state: completed")
    lines = path.read_text().splitlines()
    assert len(lines) == 2
    assert lines[0].endswith(": Driver state: connecting")
    log.reset()
    assert path.read_text() == ""


def test_stream_run_log_flushes_each_line():
    stream = io.StringIO()
    StreamRunLog(stream).write("hello")
    assert stream.getvalue() == "hello\n"


def test_logger_run_log_forwards(caplog):
    with caplog.at_level(logging.INFO, logger="lt.run"):
        LoggerRunLog().write("forwarded")
    assert "forwarded" in caplog.text


def test_tee_survives_a_failing_sink():
    memory = MemoryRunLog()
    TeeRunLog(_Broken(), memory).write("kept")
    assert memory.lines == ["kept"]


def test_ensure_run_log_defaults_to_logger():
    assert isinstance(ensure_run_log(None), LoggerRunLog)
    memory = MemoryRunLog()
    assert ensure_run_log(memory) is memory
    assert isinstance(memory, RunLog)

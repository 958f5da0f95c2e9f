import io
import logging

import pytest
from rls_test_util import RecordingEditor, RecordingOutputChannel

from rlshost.config import RevealOutputChannelOn
from rlshost.exceptions import LogFileError
from rlshost.stderr import StderrLogFile, StderrLogger, StderrMirror, StderrObserver, StderrPump, determine_log_level


class CollectingObserver(StderrObserver):
    def __init__(self):
        self.chunks: list[bytes] = []
        self.closed = False

    def on_data(self, chunk: bytes) -> None:
        self.chunks.append(chunk)

    def close(self) -> None:
        self.closed = True


class FailingObserver(StderrObserver):
    def on_data(self, chunk: bytes) -> None:
        raise RuntimeError("observer failure")


@pytest.mark.parametrize(
    "line, level",
    [
        ("error[E0425]: cannot find value", logging.ERROR),
        ("thread 'main' panicked: Exception", logging.ERROR),
        ("E[2018-01-01] something", logging.ERROR),
        ("warning: unused variable", logging.INFO),
    ],
)
def test_determine_log_level(line, level):
    assert determine_log_level(line) == level


class TestStderrMirror:
    def test_decodes_multibyte_characters_split_across_chunks(self):
        channel = RecordingOutputChannel()
        mirror = StderrMirror(channel, RevealOutputChannelOn.NEVER)
        data = "ünused ✓\n".encode()
        mirror.on_data(data[:1])
        mirror.on_data(data[1:9])
        mirror.on_data(data[9:])
        mirror.close()
        assert channel.text == "ünused ✓\n"
        assert channel.show_calls == []

    @pytest.mark.parametrize(
        "reveal, expect_show",
        [(RevealOutputChannelOn.INFO, True), (RevealOutputChannelOn.WARN, False), (RevealOutputChannelOn.NEVER, False)],
    )
    def test_reveal_threshold(self, reveal, expect_show):
        channel = RecordingOutputChannel()
        StderrMirror(channel, reveal).on_data(b"hello\n")
        assert bool(channel.show_calls) == expect_show


class TestStderrLogger:
    def test_logs_complete_lines(self, caplog):
        logger = StderrLogger()
        with caplog.at_level(logging.INFO, logger="rlshost.stderr"):
            logger.on_data(b"first line\nsecond ")
            logger.on_data(b"line with error\r\npartial")
            assert [r.getMessage() for r in caplog.records] == ["first line", "second line with error"]
            assert caplog.records[1].levelno == logging.ERROR
            logger.close()
        assert caplog.records[-1].getMessage() == "partial"


class TestStderrLogFile:
    def test_appends_to_existing_file(self, tmp_path):
        path = tmp_path / "rls.log"
        path.write_bytes(b"previous\n")
        log_file = StderrLogFile(path, RecordingEditor())
        log_file.on_data(b"next\n")
        log_file.close()
        assert path.read_bytes() == b"previous\nnext\n"

    def test_open_failure(self, tmp_path):
        with pytest.raises(LogFileError):
            StderrLogFile(tmp_path / "missing" / "rls.log", RecordingEditor())

    def test_write_failure_is_reported_once(self, tmp_path):
        class BrokenFile(io.BytesIO):
            def write(self, b):
                raise OSError("disk full")

        editor = RecordingEditor()
        log_file = StderrLogFile(tmp_path / "rls.log", editor)
        log_file._file.close()
        log_file._file = BrokenFile()
        log_file.on_data(b"a")
        log_file.on_data(b"b")
        assert len(editor.warnings) == 1
        assert "disk full" in editor.warnings[0]
        assert not log_file.is_open


class TestStderrPump:
    def test_dispatches_to_all_observers_and_closes_them(self):
        collecting = CollectingObserver()
        pump = StderrPump(io.BytesIO(b"some stderr output"), [FailingObserver(), collecting])
        pump.start()
        pump.join(timeout=10)
        assert b"".join(collecting.chunks) == b"some stderr output"
        assert collecting.closed

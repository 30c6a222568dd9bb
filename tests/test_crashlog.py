"""Tests for the crash log parser."""

import pytest

from sentrel_client.crashlog import CrashLogFile, CrashLogParser, CrashReport
from sentrel_client.protocol.models import Frame, Level, Stacktrace


class TestCrashLogParser:
    """Test cases for CrashLogParser."""

    def setup_method(self):
        """Set up test fixtures."""
        self.parser = CrashLogParser()

    @pytest.mark.parametrize(
        "text",
        ["", " ", " \n ", "\t", "\t\r\n\t", "\t\n   \n\r\n\n \t  \t"],
    )
    def test_parse_blank(self, text):
        """Test that blank input yields no reports."""
        assert self.parser.parse(text) == []

    @pytest.mark.parametrize(
        "text,message",
        [
            ("fatalError", "fatalError"),
            ("fatalError\nSomething happend", "fatalError\nSomething happend"),
            ("fatalError\t\nSomething happend\t\n\t", "fatalError\nSomething happend"),
        ],
    )
    def test_parse_header_only(self, text, message):
        """Test input without stack lines."""
        reports = self.parser.parse(text)

        assert len(reports) == 1
        assert reports[0].message == message
        assert reports[0].stacktrace == Stacktrace(frames=[])

    def test_parse_stacktrace(self):
        """Test frames are stored youngest first."""
        text = "0x3141\n0xe893\n0x0350, func22 at /some/path.swift:3\n0x0000"

        reports = self.parser.parse(text)

        assert len(reports) == 1
        assert reports[0].message == ""
        frames = reports[0].stacktrace.frames
        assert len(frames) == 4
        assert frames[0] == Frame(instruction_addr="0x0000")
        assert frames[1] == Frame(
            function="func22",
            lineno=3,
            abs_path="/some/path.swift",
            instruction_addr="0x0350",
        )
        assert frames[2] == Frame(instruction_addr="0xe893")
        assert frames[3] == Frame(instruction_addr="0x3141")

    def test_parse_multiple_reports(self):
        """Test that a header after a stack block starts a new report."""
        text = (
            "fatalError 1\n"
            "Something happend\n"
            "0x3141\n"
            "0xe893\n"
            "0x0350, func22 at /some/path.swift:3\n"
            "0x0000\n"
            "fatalError 2\n"
            "Something else happend\n"
            "0x3142, func12 at /some/path1.swift:1\n"
            "0xe894, func22 at /some/path2.swift:2\n"
            "0x0350, func32 at /some/path3.swift:3\n"
        )

        reports = self.parser.parse(text)

        assert len(reports) == 2
        assert reports[0].message == "fatalError 1\nSomething happend"
        assert [f.instruction_addr for f in reports[0].stacktrace.frames] == [
            "0x0000",
            "0x0350",
            "0xe893",
            "0x3141",
        ]

        assert reports[1].message == "fatalError 2\nSomething else happend"
        assert reports[1].stacktrace.frames == [
            Frame(function="func32", lineno=3, abs_path="/some/path3.swift", instruction_addr="0x0350"),
            Frame(function="func22", lineno=2, abs_path="/some/path2.swift", instruction_addr="0xe894"),
            Frame(function="func12", lineno=1, abs_path="/some/path1.swift", instruction_addr="0x3142"),
        ]

    def test_parse_indented_lines(self):
        """Test that surrounding whitespace is ignored."""
        reports = self.parser.parse("  Crash!\r\n    0x1, main at /a.swift:9\r\n")

        assert reports[0].message == "Crash!"
        assert reports[0].stacktrace.frames[0].function == "main"
        assert reports[0].stacktrace.frames[0].lineno == 9


class TestParseFrame:
    """Test cases for single stack lines."""

    def setup_method(self):
        self.parser = CrashLogParser()

    def test_symbolicated(self):
        frame = self.parser.parse_frame("0x00007f, Foo.bar(_:) at /src/Foo.swift:120")
        assert frame == Frame(
            function="Foo.bar(_:)",
            lineno=120,
            abs_path="/src/Foo.swift",
            instruction_addr="0x00007f",
        )

    def test_non_numeric_line(self):
        frame = self.parser.parse_frame("0x1, main at /a.swift:abc")
        assert frame.function == "main"
        assert frame.abs_path == "/a.swift"
        assert frame.lineno is None

    def test_address_only(self):
        assert self.parser.parse_frame("0xdeadbeef") == Frame(instruction_addr="0xdeadbeef")

    def test_relative_path_is_not_symbolicated(self):
        """Test that the path must be absolute to match."""
        frame = self.parser.parse_frame("0x1, main at a.swift:3")
        assert frame == Frame(instruction_addr="0x1, main at a.swift:3")


class TestCrashReport:
    """Test cases for CrashReport.to_event."""

    def test_to_event(self):
        stacktrace = Stacktrace(frames=[Frame(instruction_addr="0x1")])
        report = CrashReport(message="Fatal error: oops", stacktrace=stacktrace)

        event = report.to_event(server_name="host", release="1.0", environment="prod")

        assert event.level == Level.FATAL
        assert event.server_name == "host"
        assert event.release == "1.0"
        assert event.environment == "prod"
        assert event.message.message == "Fatal error: oops"
        exception = event.exception.values[0]
        assert exception.type == "FatalError"
        assert exception.value == "Fatal error: oops"
        assert exception.stacktrace == stacktrace


class TestCrashLogFile:
    """Test cases for the filesystem crash log store."""

    def test_read_missing(self, tmp_path):
        assert CrashLogFile().read(str(tmp_path / "missing.log")) is None

    def test_read_unreadable(self, tmp_path):
        assert CrashLogFile().read(str(tmp_path)) is None

    def test_read_and_truncate(self, tmp_path):
        path = tmp_path / "crash.log"
        path.write_text("Fatal\n0x1\n")
        store = CrashLogFile()

        assert store.read(str(path)) == "Fatal\n0x1\n"
        store.truncate(str(path))
        assert path.read_text() == ""

"""Crash log parser.

Turns the text written by a crashing process (one or more error headers,
each followed by a block of `0x...` stack lines) into fatal events.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import structlog

from .protocol.models import (
    Event,
    ExceptionDataBag,
    Exceptions,
    Frame,
    Level,
    Message,
    Stacktrace,
)

logger = structlog.get_logger(__name__)

STACK_LINE_PREFIX = "0x"


@dataclass(frozen=True)
class CrashReport:
    """Error message with the stacktrace that followed it."""

    message: str
    stacktrace: Stacktrace

    def to_event(
        self,
        server_name: Optional[str] = None,
        release: Optional[str] = None,
        environment: Optional[str] = None,
    ) -> Event:
        """Build a fatal event for this report."""
        return Event(
            level=Level.FATAL,
            server_name=server_name,
            release=release,
            environment=environment,
            message=Message(message=self.message),
            exception=Exceptions(
                values=[
                    ExceptionDataBag(
                        type="FatalError",
                        value=self.message,
                        stacktrace=self.stacktrace,
                    )
                ]
            ),
        )


class CrashLogParser:
    """
    Crash log parser.

    Format:
    ```
    Fatal error: something happened
    0x000055d1c3a1b2c3, main at /app/Sources/main.swift:12
    0x00007f3a2b1c0d0e
    Fatal error: another one
    0x...
    ```

    Consecutive non-stack lines form the message of a report. A non-stack
    line following stack lines starts the next report.
    """

    def parse(self, text: str) -> List[CrashReport]:
        """
        Parse crash log text into reports.

        Args:
            text: Raw crash log content

        Returns:
            List of CrashReport objects in log order
        """
        reports: List[CrashReport] = []

        in_stacktrace = False
        frames: List[Frame] = []
        message_lines: List[str] = []

        for raw_line in text.split("\n"):
            line = raw_line.strip()
            if not line:
                continue

            if line.startswith(STACK_LINE_PREFIX):
                in_stacktrace = True
                # Frames are collected youngest first
                frames.insert(0, self.parse_frame(line))
            elif not in_stacktrace:
                message_lines.append(line)
            else:
                reports.append(self._make_report(message_lines, frames))
                in_stacktrace = False
                frames = []
                message_lines = [line]

        if frames or message_lines:
            reports.append(self._make_report(message_lines, frames))

        logger.debug("crash_log_parsed", reports=len(reports))
        return reports

    def parse_frame(self, line: str) -> Frame:
        """
        Parse a single stack line.

        `<addr>, <function> at /<path>:<lineno>` yields a symbolicated
        frame; anything else is kept as the instruction address.
        """
        pos_comma = line.find(",")
        pos_at = line.find(" at /")
        pos_colon = line.rfind(":")

        if pos_comma < 0 or pos_at < 0 or pos_colon < 0:
            return Frame(instruction_addr=line)
        if not pos_comma < pos_at < pos_colon:
            return Frame(instruction_addr=line)

        try:
            lineno: Optional[int] = int(line[pos_colon + 1:])
        except ValueError:
            lineno = None

        return Frame(
            function=line[pos_comma + 2:pos_at],
            lineno=lineno,
            abs_path=line[pos_at + len(" at "):pos_colon],
            instruction_addr=line[:pos_comma],
        )

    @staticmethod
    def _make_report(message_lines: List[str], frames: List[Frame]) -> CrashReport:
        return CrashReport(
            message="\n".join(message_lines),
            stacktrace=Stacktrace(frames=list(frames)),
        )


class CrashLogFile:
    """Crash log on the local filesystem."""

    def read(self, path: str) -> Optional[str]:
        """Return the log content, or None if it cannot be read."""
        try:
            return Path(path).read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("crash_log_unreadable", path=path, error=str(e))
            return None

    def truncate(self, path: str) -> None:
        """Empty the log so its reports are not sent twice."""
        Path(path).write_text("", encoding="utf-8")

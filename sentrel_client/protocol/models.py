"""Sentry event payload models and encoder.

docs at https://develop.sentry.dev/sdk/event-payloads/
"""

import logging
import re
import time
import traceback
import uuid
from enum import Enum
from types import TracebackType
from typing import Annotated, Any, Dict, List, Optional, Union

import orjson
from pydantic import BaseModel, BeforeValidator, Field, PlainSerializer

from ..exceptions import EncodingError, EventIdTypeMismatch

_HEX_UUID_RE = re.compile(r"[0-9a-fA-F]{32}")


def uuid_to_hex(value: uuid.UUID) -> str:
    """Hexadecimal encoded 32-character uuid without dashes."""
    return str(value).replace("-", "").lower()


def uuid_from_hex(value: Any) -> uuid.UUID:
    """
    Decode a 32-character hexadecimal string into a UUID.

    Dashes are reinserted after bytes 4, 6, 8 and 10 before parsing.

    Raises:
        EventIdTypeMismatch: If the value is not a hexadecimal encoded UUID
    """
    if not isinstance(value, str) or not _HEX_UUID_RE.fullmatch(value):
        raise EventIdTypeMismatch(value)
    dashed = "-".join(
        (value[:8], value[8:12], value[12:16], value[16:20], value[20:])
    ).upper()
    try:
        return uuid.UUID(dashed)
    except ValueError as e:
        raise EventIdTypeMismatch(value) from e


def _validate_event_id(value: Any) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    return uuid_from_hex(value)


# UUID that travels as 32 lowercase hex characters
EventId = Annotated[
    uuid.UUID,
    BeforeValidator(_validate_event_id),
    PlainSerializer(uuid_to_hex, return_type=str),
]


def generate_event_id() -> uuid.UUID:
    """Generate a new random event id."""
    return uuid.uuid4()


class Level(str, Enum):
    """Sentry event severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    FATAL = "fatal"

    @classmethod
    def from_log_level(cls, level: Union[str, int]) -> "Level":
        """
        Map a log level onto the Sentry scale.

        Accepts level names (trace, debug, info, notice, warning, error,
        critical and the structlog method aliases) or stdlib numeric levels.
        """
        if isinstance(level, int):
            if level >= logging.CRITICAL:
                return cls.FATAL
            if level >= logging.ERROR:
                return cls.ERROR
            if level >= logging.WARNING:
                return cls.WARNING
            if level >= logging.INFO:
                return cls.INFO
            return cls.DEBUG

        try:
            return _LOG_LEVEL_MAP[level.lower()]
        except KeyError:
            raise ValueError(f"Unknown log level: {level!r}") from None


_LOG_LEVEL_MAP = {
    "trace": Level.DEBUG,
    "debug": Level.DEBUG,
    "info": Level.INFO,
    "notice": Level.INFO,
    "msg": Level.INFO,
    "warning": Level.WARNING,
    "warn": Level.WARNING,
    "error": Level.ERROR,
    "exception": Level.ERROR,
    "critical": Level.FATAL,
    "fatal": Level.FATAL,
}

# Ordered source severity scale used to compare log levels
LOG_LEVEL_ORDER = {
    "trace": 0,
    "debug": 1,
    "info": 2,
    "msg": 2,
    "notice": 3,
    "warning": 4,
    "warn": 4,
    "error": 5,
    "exception": 5,
    "critical": 6,
    "fatal": 6,
}


class _Payload(BaseModel):
    model_config = {"frozen": True}


class Frame(_Payload):
    """Single stack frame."""

    # The source file name (basename only)
    filename: Optional[str] = None
    function: Optional[str] = None
    raw_function: Optional[str] = None
    lineno: Optional[int] = None
    colno: Optional[int] = None
    abs_path: Optional[str] = None
    # Hexadecimal with 0x prefix
    instruction_addr: Optional[str] = None


class Stacktrace(_Payload):
    """Frames ordered from caller to callee; the last frame raised."""

    frames: List[Frame] = Field(default_factory=list)


class ExceptionDataBag(_Payload):
    """
    Single exception value.

    At least one of type or value should be set, otherwise the collector
    discards the exception.
    """

    type: Optional[str] = None
    value: Optional[str] = None
    stacktrace: Optional[Stacktrace] = None


class Exceptions(_Payload):
    values: List[ExceptionDataBag] = Field(default_factory=list)


class Message(_Payload):
    """Message interface: raw text or a format string with params."""

    message: str
    params: Optional[List[str]] = None


class Breadcrumb(_Payload):
    message: Optional[str] = None
    level: Optional[Level] = None
    timestamp: Optional[float] = None


class Breadcrumbs(_Payload):
    values: List[Breadcrumb] = Field(default_factory=list)


class User(_Payload):
    id: str
    ip_address: str


class Event(_Payload):
    """
    Sentry event.

    Optional fields left as None are omitted from the encoded payload.
    """

    event_id: EventId = Field(default_factory=generate_event_id)
    timestamp: float = Field(default_factory=time.time)
    platform: str = "other"
    level: Optional[Level] = None
    logger: Optional[str] = None
    transaction: Optional[str] = None
    server_name: Optional[str] = None
    release: Optional[str] = None
    tags: Optional[Dict[str, str]] = None
    environment: Optional[str] = None
    message: Optional[Message] = None
    exception: Optional[Exceptions] = None
    breadcrumbs: Optional[Breadcrumbs] = None
    user: Optional[User] = None


def encode_event(event: Event) -> bytes:
    """
    Encode an event as JSON bytes.

    Raises:
        EncodingError: If the event cannot be serialized
    """
    try:
        return orjson.dumps(event.model_dump(mode="json", exclude_none=True))
    except (TypeError, ValueError) as e:
        raise EncodingError(f"Cannot encode event {event.event_id}: {e}") from e


def decode_event(payload: bytes) -> Event:
    """Decode JSON bytes produced by encode_event."""
    return Event.model_validate(orjson.loads(payload))


def frames_from_traceback(tb: Optional[TracebackType]) -> List[Frame]:
    """
    Convert a traceback into frames, oldest to youngest.

    Args:
        tb: Traceback object, usually error.__traceback__

    Returns:
        List of Frame objects (empty when tb is None)
    """
    if tb is None:
        return []

    frames = []
    for summary in traceback.extract_tb(tb):
        frames.append(
            Frame(
                filename=summary.filename.rsplit("/", 1)[-1],
                function=summary.name,
                lineno=summary.lineno,
                abs_path=summary.filename,
            )
        )
    return frames

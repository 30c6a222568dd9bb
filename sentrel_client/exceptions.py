"""Exception hierarchy for the Sentry client."""

from typing import Optional


class SentrelError(Exception):
    """Base class for every error raised by sentrel_client."""


# Configuration


class InvalidDsnError(SentrelError, ValueError):
    """The DSN connection string could not be parsed."""


# Encoding


class EncodingError(SentrelError):
    """An event could not be serialized."""


class EventIdTypeMismatch(SentrelError, ValueError):
    """A string is not a hexadecimal encoded UUID."""

    def __init__(self, value: object):
        self.value = value
        super().__init__(f"Expected UUID in hexadecimal format, got {value!r}")


# Envelope validation


class EnvelopeError(SentrelError):
    """The envelope violates a protocol requirement."""


class TooManyPrimaryItems(EnvelopeError):
    """Envelope may contain at most one event or transaction item."""

    def __init__(self, count: int):
        self.count = count
        super().__init__(
            f"Envelope contains {count} event/transaction items, at most one is allowed"
        )


class MissingEventId(EnvelopeError):
    """Envelope items require an event id in the envelope header."""

    def __init__(self):
        super().__init__("Envelope items require an event_id but the header has none")


class EnvelopeTooLarge(EnvelopeError):
    """Encoded envelope exceeds the configured ceiling."""

    def __init__(self, size: int, limit: Optional[int] = None):
        self.size = size
        self.limit = limit
        super().__init__(f"Envelope too large: {size} bytes (limit: {limit})")


class AttachmentsTooLarge(EnvelopeError):
    """Combined attachment payloads exceed the configured ceiling."""

    def __init__(self, size: int, limit: Optional[int] = None):
        self.size = size
        self.limit = limit
        super().__init__(f"Attachments too large: {size} bytes (limit: {limit})")


class EnvelopeItemError(SentrelError):
    """An envelope item violates a protocol requirement."""


class AttachmentTooLarge(EnvelopeItemError):
    def __init__(self, size: int, limit: Optional[int] = None):
        self.size = size
        self.limit = limit
        super().__init__(f"Attachment item too large: {size} bytes (limit: {limit})")


class PayloadTooLarge(EnvelopeItemError):
    """Event or transaction item exceeds the configured ceiling."""

    def __init__(self, size: int, limit: Optional[int] = None):
        self.size = size
        self.limit = limit
        super().__init__(
            f"Event/transaction item too large: {size} bytes (limit: {limit})"
        )


class SizeMismatch(EnvelopeItemError):
    def __init__(self, given_size: int, actual_size: int):
        self.given_size = given_size
        self.actual_size = actual_size
        super().__init__(
            f"Item header declares {given_size} bytes but payload has {actual_size}"
        )


# Attachments


class AttachmentError(SentrelError):
    """An attachment payload could not be produced."""


class FileReadFailed(AttachmentError):
    """The file backing an attachment could not be read."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Failed to read attachment file: {path}")


# Transport


class TransportError(SentrelError):
    """The collector did not accept the request."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        super().__init__(message)


class NoResponseBody(TransportError):
    """The response carried no usable event id."""

    def __init__(self, status_code: int):
        super().__init__(status_code, f"No event id in response body (status {status_code})")


class UnexpectedStatus(TransportError):
    def __init__(self, status_code: int, body: bytes = b""):
        self.body = body
        super().__init__(status_code, f"Collector responded with status {status_code}")

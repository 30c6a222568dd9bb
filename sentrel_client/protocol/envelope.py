"""Sentry Envelope format encoder."""

import gzip
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional
from uuid import UUID

import orjson

from ..config import SizeLimits
from ..exceptions import (
    AttachmentsTooLarge,
    AttachmentTooLarge,
    EnvelopeTooLarge,
    MissingEventId,
    PayloadTooLarge,
    SizeMismatch,
    TooManyPrimaryItems,
)
from .models import Event, encode_event, uuid_to_hex

NEWLINE = b"\n"

ENVELOPE_CONTENT_TYPE = "application/x-sentry-envelope"


class ItemType(str, Enum):
    """Sentry envelope item types."""

    EVENT = "event"
    TRANSACTION = "transaction"
    ATTACHMENT = "attachment"
    SESSION = "session"
    SESSIONS = "sessions"
    USER_REPORT = "user_report"
    CLIENT_REPORT = "client_report"


PRIMARY_ITEM_TYPES = (ItemType.EVENT.value, ItemType.TRANSACTION.value)
EVENT_ID_ITEM_TYPES = (ItemType.USER_REPORT.value, ItemType.ATTACHMENT.value)


def rfc3339_now() -> str:
    """Current UTC time as YYYY-MM-DDTHH:MM:SSZ."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True)
class EnvelopeHeader:
    """Envelope header containing metadata."""

    event_id: Optional[UUID] = None
    dsn: Optional[str] = None
    sdk: Optional[str] = None

    def to_dict(self) -> dict:
        """Header as JSON-ready dict; sent_at is stamped on every call."""
        data = {}
        if self.event_id is not None:
            data["event_id"] = uuid_to_hex(self.event_id)
        if self.dsn is not None:
            data["dsn"] = self.dsn
        if self.sdk is not None:
            data["sdk"] = self.sdk
        data["sent_at"] = rfc3339_now()
        return data


@dataclass(frozen=True)
class EnvelopeItemHeader:
    """Item header line: type, byte length and optional file metadata."""

    type: str
    length: int = 0
    filename: Optional[str] = None
    content_type: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"type": self.type, "length": self.length}
        if self.filename is not None:
            data["filename"] = self.filename
        if self.content_type is not None:
            data["content_type"] = self.content_type
        return data


@dataclass(frozen=True)
class EnvelopeItem:
    """
    Single item within an envelope.

    Validated on construction:
    - header.length must equal len(payload)
    - attachment items must fit max_each_attachment_size
    - event and transaction items must fit max_event_and_transaction_size
    """

    header: EnvelopeItemHeader
    payload: bytes = b""
    limits: SizeLimits = field(default_factory=SizeLimits, compare=False, repr=False)

    def __post_init__(self):
        if self.header.length != len(self.payload):
            raise SizeMismatch(self.header.length, len(self.payload))

        size = len(self.to_bytes())

        if self.type == ItemType.ATTACHMENT.value:
            if size > self.limits.max_each_attachment_size:
                raise AttachmentTooLarge(size, self.limits.max_each_attachment_size)

        if self.type in PRIMARY_ITEM_TYPES:
            if size > self.limits.max_event_and_transaction_size:
                raise PayloadTooLarge(size, self.limits.max_event_and_transaction_size)

    @classmethod
    def from_payload(
        cls,
        item_type: str,
        payload: bytes,
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
        limits: Optional[SizeLimits] = None,
    ) -> "EnvelopeItem":
        """Build an item whose header length matches payload."""
        return cls(
            header=EnvelopeItemHeader(
                type=item_type,
                length=len(payload),
                filename=filename,
                content_type=content_type,
            ),
            payload=payload,
            limits=limits or SizeLimits(),
        )

    @classmethod
    def from_event(cls, event: Event, limits: Optional[SizeLimits] = None) -> "EnvelopeItem":
        return cls.from_payload(
            ItemType.EVENT.value,
            encode_event(event),
            content_type="application/json",
            limits=limits,
        )

    @property
    def type(self) -> str:
        return self.header.type

    def to_bytes(self) -> bytes:
        """Item header line, payload and trailing newline."""
        return orjson.dumps(self.header.to_dict()) + NEWLINE + self.payload + NEWLINE


@dataclass(frozen=True)
class Envelope:
    """
    Sentry Envelope.

    Format:
    ```
    {"event_id":"...","dsn":"...","sent_at":"..."}
    {"type":"event","length":1234}
    <payload bytes>
    {"type":"attachment","length":5678,"filename":"..."}
    <attachment bytes>
    ```
    """

    header: EnvelopeHeader
    items: List[EnvelopeItem] = field(default_factory=list)

    def validate(self, limits: Optional[SizeLimits] = None) -> None:
        """
        Check the item rules Sentry applies to envelopes.

        Raises:
            TooManyPrimaryItems: More than one event or transaction item
            MissingEventId: Items need an event id but the header has none
            AttachmentsTooLarge: Attachments exceed max_all_attachments_size
        """
        limits = limits or SizeLimits()

        primary_count = sum(1 for item in self.items if item.type in PRIMARY_ITEM_TYPES)
        needs_event_id = sum(1 for item in self.items if item.type in EVENT_ID_ITEM_TYPES)

        if primary_count >= 2:
            raise TooManyPrimaryItems(primary_count)

        if needs_event_id + primary_count > 0 and self.header.event_id is None:
            raise MissingEventId()

        attachments_size = sum(
            len(item.payload)
            for item in self.items
            if item.type == ItemType.ATTACHMENT.value
        )
        if attachments_size > limits.max_all_attachments_size:
            raise AttachmentsTooLarge(attachments_size, limits.max_all_attachments_size)

    def to_bytes(self, limits: Optional[SizeLimits] = None) -> bytes:
        """
        Validate and encode the envelope.

        Raises:
            EnvelopeError: On any validation failure
            EnvelopeTooLarge: If the result exceeds max_envelope_uncompressed_size
        """
        limits = limits or SizeLimits()
        self.validate(limits)

        parts = [orjson.dumps(self.header.to_dict()), NEWLINE]
        parts.extend(item.to_bytes() for item in self.items)
        data = b"".join(parts)

        if len(data) > limits.max_envelope_uncompressed_size:
            raise EnvelopeTooLarge(len(data), limits.max_envelope_uncompressed_size)

        return data


def encode_envelope(envelope: Envelope, limits: Optional[SizeLimits] = None) -> bytes:
    """Encode an envelope, see Envelope.to_bytes."""
    return envelope.to_bytes(limits)


def compress_envelope(data: bytes, limits: Optional[SizeLimits] = None) -> bytes:
    """
    Gzip an encoded envelope.

    Raises:
        EnvelopeTooLarge: If the compressed body exceeds max_envelope_compressed_size
    """
    limits = limits or SizeLimits()
    compressed = gzip.compress(data)
    if len(compressed) > limits.max_envelope_compressed_size:
        raise EnvelopeTooLarge(len(compressed), limits.max_envelope_compressed_size)
    return compressed

"""Envelope attachments and their payload resolution."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import structlog

from ..config import SizeLimits
from ..exceptions import AttachmentError, FileReadFailed
from .envelope import EnvelopeItem, EnvelopeItemHeader, ItemType

logger = structlog.get_logger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class BytesPayload:
    """Attachment content held in memory."""

    data: bytes


@dataclass(frozen=True)
class FilePayload:
    """Attachment content read from disk when resolved."""

    filename: str
    path: Optional[str] = None

    @property
    def location(self) -> str:
        if self.path:
            return os.path.join(self.path, self.filename)
        return self.filename


AttachmentPayload = Union[BytesPayload, FilePayload]


@dataclass(frozen=True)
class Attachment:
    """File or blob sent alongside an event."""

    filename: str
    payload: AttachmentPayload
    content_type: str = DEFAULT_CONTENT_TYPE

    @classmethod
    def from_bytes(
        cls, data: bytes, filename: str, content_type: str = DEFAULT_CONTENT_TYPE
    ) -> "Attachment":
        return cls(filename=filename, payload=BytesPayload(bytes(data)), content_type=content_type)

    @classmethod
    def from_path(
        cls,
        path: Union[str, Path],
        filename: Optional[str] = None,
        content_type: str = DEFAULT_CONTENT_TYPE,
    ) -> "Attachment":
        """
        Reference a file on disk.

        If no filename is given it is inferred from the last path
        component, otherwise path is the directory holding filename.

        Raises:
            AttachmentError: If no filename can be inferred
        """
        path = os.fspath(path)
        if filename is None:
            directory, filename = os.path.split(path)
            if not filename:
                raise AttachmentError(f"Cannot infer attachment filename from {path!r}")
            return cls(
                filename=filename,
                payload=FilePayload(filename=filename, path=directory or None),
                content_type=content_type,
            )
        return cls(
            filename=filename,
            payload=FilePayload(filename=filename, path=path or None),
            content_type=content_type,
        )

    def __str__(self) -> str:
        return f"Attachment: {self.filename}"


def read_payload(payload: AttachmentPayload) -> bytes:
    """
    Produce the raw bytes of a payload.

    Raises:
        FileReadFailed: If a file payload cannot be read
    """
    if isinstance(payload, BytesPayload):
        return payload.data

    location = payload.location
    try:
        return Path(location).read_bytes()
    except OSError as e:
        raise FileReadFailed(location) from e


class AttachmentResolver:
    """
    Resolve attachment payloads into envelope items.

    Payloads above max_attachment_size are dropped to an empty payload so
    the event still reaches the collector.
    """

    def __init__(self, limits: Optional[SizeLimits] = None):
        self.limits = limits or SizeLimits()

    def resolve(self, attachment: Attachment) -> bytes:
        """
        Read an attachment's bytes, applying the soft size ceiling.

        Args:
            attachment: Attachment to resolve

        Returns:
            Payload bytes, empty if oversized
        """
        data = read_payload(attachment.payload)

        if len(data) > self.limits.max_attachment_size:
            logger.warning(
                "attachment_truncated",
                filename=attachment.filename,
                size=len(data),
                limit=self.limits.max_attachment_size,
            )
            return b""

        return data

    def to_envelope_item(self, attachment: Attachment) -> EnvelopeItem:
        """Resolve an attachment and wrap it as an attachment item."""
        data = self.resolve(attachment)
        return EnvelopeItem(
            header=EnvelopeItemHeader(
                type=ItemType.ATTACHMENT.value,
                length=len(data),
                filename=attachment.filename,
                content_type=attachment.content_type,
            ),
            payload=data,
            limits=self.limits,
        )

"""Sentry client: builds events and envelopes and sends them to the collector."""

import asyncio
import socket
from typing import Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Union
from uuid import UUID

import orjson
import structlog

from .config import CLIENT_ID, ClientSettings, SizeLimits
from .crashlog import CrashLogFile, CrashLogParser
from .exceptions import NoResponseBody, UnexpectedStatus
from .protocol.attachment import Attachment, AttachmentResolver
from .protocol.dsn import Dsn
from .protocol.envelope import (
    ENVELOPE_CONTENT_TYPE,
    Envelope,
    EnvelopeHeader,
    EnvelopeItem,
    compress_envelope,
)
from .protocol.models import (
    Breadcrumb,
    Breadcrumbs,
    Event,
    ExceptionDataBag,
    Exceptions,
    Frame,
    Level,
    Message,
    Stacktrace,
    encode_event,
    frames_from_traceback,
    uuid_from_hex,
    uuid_to_hex,
)
from .transport import HttpxTransport, Transport, TransportResponse

logger = structlog.get_logger(__name__)

SendResult = Union[UUID, BaseException]


class CrashLogStore(Protocol):
    def read(self, path: str) -> Optional[str]:
        ...

    def truncate(self, path: str) -> None:
        ...


class SentryClient:
    """
    Client for a Sentry compatible collector.

    Every capture/send coroutine resolves to the event id acknowledged by
    the collector, or raises. Nothing is retried.
    """

    def __init__(
        self,
        dsn: str,
        transport: Optional[Transport] = None,
        server_name: Optional[str] = None,
        release: Optional[str] = None,
        environment: Optional[str] = None,
        tags: Optional[Mapping[str, str]] = None,
        limits: Optional[SizeLimits] = None,
        crash_log_store: Optional[CrashLogStore] = None,
        compress_envelopes: bool = False,
        http_timeout: float = 10.0,
    ):
        """
        Initialize the client.

        Args:
            dsn: DSN connection string
            transport: Transport used for requests (default: HttpxTransport)
            server_name: Name reported as server_name (default: hostname)
            release: Release version of the application
            environment: Environment name, e.g. production
            tags: Tags added to every captured event
            limits: Size ceilings for envelopes and attachments
            crash_log_store: Reads and truncates crash logs
            compress_envelopes: Gzip envelope bodies
            http_timeout: Timeout for the default transport

        Raises:
            InvalidDsnError: If the DSN cannot be parsed
        """
        self.dsn = Dsn.parse(dsn)
        self._owns_transport = transport is None
        self.transport = transport or HttpxTransport(timeout=http_timeout)
        self.server_name = server_name if server_name is not None else socket.gethostname()
        self.release = release
        self.environment = environment
        self.tags = dict(tags or {})
        self.limits = limits or SizeLimits()
        self.crash_log_store = crash_log_store or CrashLogFile()
        self.compress_envelopes = compress_envelopes
        self.attachment_resolver = AttachmentResolver(self.limits)
        self.crash_log_parser = CrashLogParser()

    @classmethod
    def from_settings(
        cls, settings: ClientSettings, transport: Optional[Transport] = None
    ) -> "SentryClient":
        """Create a client from ClientSettings."""
        if not settings.dsn:
            raise ValueError("SENTREL_DSN is not configured")
        return cls(
            dsn=settings.dsn,
            transport=transport,
            server_name=settings.server_name,
            release=settings.release,
            environment=settings.environment,
            tags=settings.tags,
            limits=settings.size_limits(),
            compress_envelopes=settings.compress_envelopes,
            http_timeout=settings.http_timeout,
        )

    async def __aenter__(self) -> "SentryClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the transport if this client created it."""
        if self._owns_transport:
            await self.transport.aclose()

    # Event builders

    def _tags(self, tags: Optional[Mapping[str, str]]) -> Optional[Dict[str, str]]:
        merged = {**self.tags, **(tags or {})}
        return merged or None

    def make_error_event(self, error: BaseException) -> Event:
        """Build an error event from an exception and its traceback."""
        frames = frames_from_traceback(error.__traceback__)
        return Event(
            level=Level.ERROR,
            server_name=self.server_name,
            release=self.release,
            environment=self.environment,
            tags=self._tags(None),
            message=Message(message=str(error)),
            exception=Exceptions(
                values=[
                    ExceptionDataBag(
                        type=type(error).__name__,
                        value=str(error),
                        stacktrace=Stacktrace(frames=frames) if frames else None,
                    )
                ]
            ),
        )

    def make_message_event(
        self,
        message: str,
        level: Level = Level.INFO,
        logger_name: Optional[str] = None,
        transaction: Optional[str] = None,
        tags: Optional[Mapping[str, str]] = None,
        breadcrumbs: Optional[Sequence[Breadcrumb]] = None,
        source: Optional[Frame] = None,
    ) -> Event:
        """
        Build a message event.

        When source is given the event carries an exception whose
        stacktrace is that single call-site frame.
        """
        exception = None
        if source is not None:
            exception = Exceptions(
                values=[
                    ExceptionDataBag(
                        value=message,
                        stacktrace=Stacktrace(frames=[source]),
                    )
                ]
            )

        return Event(
            level=level,
            logger=logger_name,
            transaction=transaction,
            server_name=self.server_name,
            release=self.release,
            environment=self.environment,
            tags=self._tags(tags),
            message=Message(message=message),
            exception=exception,
            breadcrumbs=Breadcrumbs(values=list(breadcrumbs)) if breadcrumbs else None,
        )

    def make_envelope(self, event: Event, attachments: Iterable[Attachment] = ()) -> Envelope:
        """
        Bundle an event and its attachments into an envelope.

        Attachment files are read here.
        """
        items: List[EnvelopeItem] = [EnvelopeItem.from_event(event, self.limits)]
        items.extend(
            self.attachment_resolver.to_envelope_item(attachment) for attachment in attachments
        )
        return Envelope(
            header=EnvelopeHeader(event_id=event.event_id, dsn=str(self.dsn), sdk=CLIENT_ID),
            items=items,
        )

    # Capture API

    async def capture_error(self, error: BaseException) -> UUID:
        """Report an exception."""
        return await self.send_event(self.make_error_event(error))

    async def capture_message(
        self,
        message: str,
        level: Level = Level.INFO,
        logger_name: Optional[str] = None,
        transaction: Optional[str] = None,
        tags: Optional[Mapping[str, str]] = None,
        breadcrumbs: Optional[Sequence[Breadcrumb]] = None,
        source: Optional[Frame] = None,
        attachments: Sequence[Attachment] = (),
    ) -> UUID:
        """Report a message, as an envelope when attachments are given."""
        event = self.make_message_event(
            message,
            level=level,
            logger_name=logger_name,
            transaction=transaction,
            tags=tags,
            breadcrumbs=breadcrumbs,
            source=source,
        )
        if attachments:
            return await self.capture_event_with_attachments(event, attachments)
        return await self.send_event(event)

    async def capture_event_with_attachments(
        self, event: Event, attachments: Iterable[Attachment]
    ) -> UUID:
        return await self.send_envelope(self.make_envelope(event, attachments))

    async def upload_crash_log(self, path: str, strict: bool = False) -> List[SendResult]:
        """
        Send every report found in a crash log.

        The log is emptied before sending so reports are not sent twice.
        All sends run concurrently; one failure does not stop the others.

        Args:
            path: Crash log location
            strict: Raise the first failure once every send has finished

        Returns:
            Event id or exception per report, in log order
        """
        content = self.crash_log_store.read(path)
        if content is None:
            return []

        self.crash_log_store.truncate(path)

        reports = self.crash_log_parser.parse(content)
        results = await asyncio.gather(
            *(
                self.send_event(
                    report.to_event(
                        server_name=self.server_name,
                        release=self.release,
                        environment=self.environment,
                    )
                )
                for report in reports
            ),
            return_exceptions=True,
        )

        failures = [result for result in results if isinstance(result, BaseException)]
        logger.info(
            "crash_log_uploaded",
            path=path,
            reports=len(reports),
            failures=len(failures),
        )
        if strict and failures:
            raise failures[0]
        return list(results)

    # Sending

    def _headers(self, content_type: str) -> Dict[str, str]:
        return {
            "Content-Type": content_type,
            "User-Agent": CLIENT_ID,
            "X-Sentry-Auth": self.dsn.auth_header(),
        }

    async def send_event(self, event: Event) -> UUID:
        """POST an event to the store endpoint."""
        body = encode_event(event)
        response = await self.transport.post(
            self.dsn.store_api_url, self._headers("application/json"), body
        )
        event_id = self._event_id_from_response(response)
        logger.debug("event_sent", event_id=uuid_to_hex(event_id), endpoint="store")
        return event_id

    async def send_envelope(self, envelope: Envelope) -> UUID:
        """POST an envelope to the envelope endpoint."""
        body = envelope.to_bytes(self.limits)
        headers = self._headers(ENVELOPE_CONTENT_TYPE)
        if self.compress_envelopes:
            body = compress_envelope(body, self.limits)
            headers["Content-Encoding"] = "gzip"

        response = await self.transport.post(self.dsn.envelope_api_url, headers, body)
        event_id = self._event_id_from_response(response)
        logger.debug(
            "event_sent",
            event_id=uuid_to_hex(event_id),
            endpoint="envelope",
            items=len(envelope.items),
        )
        return event_id

    @staticmethod
    def _event_id_from_response(response: TransportResponse) -> UUID:
        if not 200 <= response.status_code < 300:
            raise UnexpectedStatus(response.status_code, response.body)
        try:
            return uuid_from_hex(orjson.loads(response.body)["id"])
        except (ValueError, KeyError, TypeError):
            raise NoResponseBody(response.status_code) from None

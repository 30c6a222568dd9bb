"""structlog integration: breadcrumbs and error reporting from log calls.

Usage:

    breadcrumbs = BreadcrumbBuffer(capacity=20)
    processor = SentryProcessor(client, breadcrumbs, send_level="error")
    structlog.configure(
        processors=[
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.CallsiteParameterAdder(),
            processor,
            structlog.processors.JSONRenderer(),
        ],
        ...
    )
    ...
    processor.close()
"""

import asyncio
import os
import sys
import time
from collections import deque
from concurrent.futures import CancelledError, Future, wait
from threading import Lock, Thread
from typing import Any, Coroutine, Deque, Dict, List, Mapping, MutableMapping, Optional

from .client import SendResult, SentryClient
from .config import ClientSettings, normalize_level
from .protocol.attachment import DEFAULT_CONTENT_TYPE, Attachment
from .protocol.models import LOG_LEVEL_ORDER, Breadcrumb, Frame, Level

ATTACHMENT_KEY = "attachment"
ATTACHMENT_FILENAME_KEY = "attachment_filename"
ATTACHMENT_BYTES_KEY = "attachment_bytes"
ATTACHMENT_PATH_KEY = "attachment_path"
ATTACHMENT_CONTENT_TYPE_KEY = "attachment_content_type"
TRANSACTION_KEY = "transaction"

# Keys added by structlog itself, never reported as tags
STRUCTLOG_KEYS = frozenset(
    {
        "event",
        "level",
        "logger",
        "timestamp",
        "exc_info",
        "stack_info",
        "exception",
        "pathname",
        "filename",
        "module",
        "func_name",
        "lineno",
        "thread",
        "thread_name",
        "process",
        "process_name",
    }
)


class BreadcrumbBuffer:
    """
    Ring buffer holding the most recent breadcrumbs.

    Shared by every logger that writes to it; appends and snapshots are
    serialized with a lock so handlers may log from several threads.
    """

    def __init__(self, capacity: int = 20):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._items: deque = deque(maxlen=capacity)
        self._lock = Lock()

    def append(self, breadcrumb: Breadcrumb) -> None:
        with self._lock:
            self._items.append(breadcrumb)

    def snapshot(self) -> List[Breadcrumb]:
        """Copy of the buffer, oldest first."""
        with self._lock:
            return list(self._items)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


def extract_attachment(
    metadata: Mapping[str, Any], attachment_key: Optional[str] = ATTACHMENT_KEY
) -> Optional[Attachment]:
    """
    Find an attachment smuggled through log metadata.

    Recognized forms:
    - an Attachment instance under attachment_key
    - attachment_filename plus attachment_bytes (bytes or str)
    - attachment_filename plus attachment_path (directory or full path)

    Returns:
        Attachment if one is present and well typed, None otherwise
    """
    if attachment_key:
        value = metadata.get(attachment_key)
        if isinstance(value, Attachment):
            return value

    filename = metadata.get(ATTACHMENT_FILENAME_KEY)
    if not isinstance(filename, str) or not filename:
        return None

    content_type = metadata.get(ATTACHMENT_CONTENT_TYPE_KEY)
    if not isinstance(content_type, str):
        content_type = DEFAULT_CONTENT_TYPE

    data = metadata.get(ATTACHMENT_BYTES_KEY)
    if isinstance(data, (bytes, bytearray, memoryview)):
        return Attachment.from_bytes(bytes(data), filename, content_type)
    if isinstance(data, str):
        return Attachment.from_bytes(data.encode("utf-8"), filename, content_type)

    path = metadata.get(ATTACHMENT_PATH_KEY)
    if isinstance(path, (str, os.PathLike)):
        path = os.fspath(path)
        if os.path.basename(path) == filename:
            return Attachment.from_path(path, content_type=content_type)
        return Attachment.from_path(path, filename=filename, content_type=content_type)

    return None


def _level_name(method_name: str, event_dict: Mapping[str, Any]) -> str:
    level = event_dict.get("level", method_name)
    return str(level).lower()


def _to_level(level_name: str) -> Level:
    if level_name in LOG_LEVEL_ORDER:
        return Level.from_log_level(level_name)
    return Level.INFO


def _metadata(event_dict: Mapping[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in event_dict.items() if k not in STRUCTLOG_KEYS}


def _exception_from(exc_info: Any) -> Optional[BaseException]:
    if isinstance(exc_info, BaseException):
        return exc_info
    if isinstance(exc_info, tuple) and len(exc_info) == 3:
        return exc_info[1]
    if exc_info:
        return sys.exc_info()[1]
    return None


class SentryProcessor:
    """
    structlog processor reporting log calls to Sentry.

    Calls below send_level (and at or above breadcrumb_level) are kept as
    breadcrumbs. Calls at or above send_level are sent as events carrying
    the current breadcrumbs, the call site and the metadata as tags.

    Sends run on a private event loop in a background thread, started on
    the first send, so logging never blocks and works with or without a
    running loop in the caller. The client is used only from that loop
    and is closed by close(). Call flush() to wait for pending sends and
    close() before exit; the thread is a daemon and unsent reports are
    lost at shutdown otherwise.
    """

    def __init__(
        self,
        client: SentryClient,
        breadcrumbs: Optional[BreadcrumbBuffer] = None,
        send_level: str = "error",
        breadcrumb_level: str = "debug",
        attachment_key: Optional[str] = ATTACHMENT_KEY,
        label: Optional[str] = None,
        max_results: int = 100,
    ):
        """
        Initialize the processor.

        Args:
            client: Client used to send reports
            breadcrumbs: Buffer shared with other processors
            send_level: Lowest level sent as an event
            breadcrumb_level: Lowest level kept as a breadcrumb
            attachment_key: Metadata key that may hold an Attachment
            label: Logger name used when the event has none
            max_results: Outcomes kept until the next flush()

        Raises:
            ValueError: If a level name is unknown
        """
        self.client = client
        self.breadcrumbs = breadcrumbs if breadcrumbs is not None else BreadcrumbBuffer()
        self.send_level = normalize_level(send_level)
        self.breadcrumb_level = normalize_level(breadcrumb_level)
        self.attachment_key = attachment_key
        self.label = label

        self._lock = Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[Thread] = None
        # Oldest outcomes are dropped when nobody flushes
        self._futures: Deque[Future] = deque(maxlen=max_results)

    @classmethod
    def from_settings(
        cls, client: SentryClient, settings: ClientSettings, **kwargs: Any
    ) -> "SentryProcessor":
        """Create a processor using the levels and breadcrumb count of ClientSettings."""
        return cls(
            client,
            BreadcrumbBuffer(capacity=settings.breadcrumb_count),
            send_level=settings.send_level,
            breadcrumb_level=settings.breadcrumb_level,
            **kwargs,
        )

    def __call__(
        self, logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
    ) -> MutableMapping[str, Any]:
        level_name = _level_name(method_name, event_dict)
        severity = LOG_LEVEL_ORDER.get(level_name, LOG_LEVEL_ORDER["info"])

        if severity < LOG_LEVEL_ORDER[self.send_level]:
            if severity >= LOG_LEVEL_ORDER[self.breadcrumb_level]:
                self.breadcrumbs.append(
                    Breadcrumb(
                        message=str(event_dict.get("event", "")),
                        level=_to_level(level_name),
                        timestamp=time.time(),
                    )
                )
            return event_dict

        self._dispatch(self._send(level_name, event_dict))
        return event_dict

    def _send(
        self, level_name: str, event_dict: Mapping[str, Any]
    ) -> Coroutine[Any, Any, Any]:
        metadata = _metadata(event_dict)
        attachment = extract_attachment(metadata, self.attachment_key)
        transaction = metadata.get(TRANSACTION_KEY)
        tags = {
            key: str(value)
            for key, value in metadata.items()
            if not isinstance(value, (Attachment, bytes, bytearray, memoryview))
        }

        source = None
        if "func_name" in event_dict or "lineno" in event_dict:
            source = Frame(
                filename=event_dict.get("filename"),
                function=event_dict.get("func_name"),
                lineno=event_dict.get("lineno"),
                abs_path=event_dict.get("pathname"),
            )

        breadcrumbs = self.breadcrumbs.snapshot()
        event = self.client.make_message_event(
            str(event_dict.get("event", "")),
            level=_to_level(level_name),
            logger_name=event_dict.get("logger", self.label),
            transaction=str(transaction) if transaction is not None else None,
            tags=tags,
            breadcrumbs=breadcrumbs,
            source=source,
        )

        error = _exception_from(event_dict.get("exc_info"))
        if error is not None:
            error_event = self.client.make_error_event(error)
            event = event.model_copy(update={"exception": error_event.exception})

        if attachment is not None:
            return self.client.capture_event_with_attachments(event, [attachment])
        return self.client.send_event(event)

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._loop is None:
                loop = asyncio.new_event_loop()
                thread = Thread(target=loop.run_forever, name="sentrel-sender", daemon=True)
                thread.start()
                self._loop, self._thread = loop, thread
            return self._loop

    def _dispatch(self, coro: Coroutine[Any, Any, Any]) -> None:
        future = asyncio.run_coroutine_threadsafe(coro, self._ensure_loop())
        with self._lock:
            self._futures.append(future)

    def flush(self, timeout: Optional[float] = None) -> List[SendResult]:
        """
        Wait for scheduled sends and return their outcomes since the last flush.

        Sends still running after timeout are dropped from the result.

        Returns:
            Event ids and exceptions, in send order
        """
        with self._lock:
            futures = list(self._futures)
            self._futures.clear()

        if futures:
            wait(futures, timeout=timeout)

        results: List[SendResult] = []
        for future in futures:
            if not future.done():
                continue
            if future.cancelled():
                results.append(CancelledError())
            elif future.exception() is not None:
                results.append(future.exception())
            else:
                results.append(future.result())
        return results

    def close(self, timeout: Optional[float] = None) -> List[SendResult]:
        """
        Flush, close the client and stop the sender thread.

        Returns:
            Outcomes of the sends flushed here
        """
        results = self.flush(timeout)

        with self._lock:
            loop, thread = self._loop, self._thread
            self._loop, self._thread = None, None
        if loop is None:
            return results

        asyncio.run_coroutine_threadsafe(self.client.aclose(), loop).result(timeout)
        loop.call_soon_threadsafe(loop.stop)
        thread.join(timeout)
        loop.close()
        return results


class BreadcrumbRecorder:
    """
    Pass-through structlog processor that records every log call.

    Each call becomes a breadcrumb formatted as
    `[LEVEL] message <logger.function> in (file:line) [key: value, ...]`.
    """

    def __init__(self, breadcrumbs: Optional[BreadcrumbBuffer] = None):
        self.breadcrumbs = breadcrumbs if breadcrumbs is not None else BreadcrumbBuffer(capacity=10)

    def __call__(
        self, logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
    ) -> MutableMapping[str, Any]:
        level_name = _level_name(method_name, event_dict)
        self.breadcrumbs.append(
            Breadcrumb(
                message=self.format(level_name, event_dict),
                level=_to_level(level_name),
                timestamp=time.time(),
            )
        )
        return event_dict

    @staticmethod
    def format(level_name: str, event_dict: Mapping[str, Any]) -> str:
        text = f"[{level_name.upper()}] {event_dict.get('event', '')}"

        source = event_dict.get("logger")
        function = event_dict.get("func_name")
        if source or function:
            text += f" <{'.'.join(str(p) for p in (source, function) if p)}>"

        path = event_dict.get("filename") or event_dict.get("pathname")
        if path:
            text += f" in ({path}:{event_dict.get('lineno', '?')})"

        metadata = _metadata(event_dict)
        if metadata:
            text += " [" + ", ".join(f"{k}: {metadata[k]}" for k in sorted(metadata)) + "]"

        return text

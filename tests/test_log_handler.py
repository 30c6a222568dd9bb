"""Tests for the structlog integration."""

import asyncio
import threading
import uuid
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import List

import httpx
import orjson
import pytest
import structlog

from sentrel_client.client import SentryClient
from sentrel_client.config import ClientSettings
from sentrel_client.exceptions import UnexpectedStatus
from sentrel_client.log_handler import (
    BreadcrumbBuffer,
    BreadcrumbRecorder,
    SentryProcessor,
    extract_attachment,
)
from sentrel_client.protocol.attachment import Attachment, BytesPayload, FilePayload
from sentrel_client.protocol.models import Breadcrumb, Level
from sentrel_client.transport import HttpxTransport

DSN = "https://public@sentry.example.com/42"
PROXY_VARS = ("HTTP_PROXY", "HTTPS_PROXY", "ALL_PROXY", "http_proxy", "https_proxy", "all_proxy")


def respond(request: httpx.Request) -> httpx.Response:
    body = request.content
    if request.headers["content-type"] == "application/json":
        event_id = orjson.loads(body)["event_id"]
    else:
        event_id = orjson.loads(body.split(b"\n")[0])["event_id"]
    return httpx.Response(200, json={"id": event_id})


class TestBreadcrumbBuffer:
    """Test cases for BreadcrumbBuffer."""

    def test_evicts_oldest(self):
        buffer = BreadcrumbBuffer(capacity=3)
        for i in range(5):
            buffer.append(Breadcrumb(message=str(i)))

        assert len(buffer) == 3
        assert [b.message for b in buffer.snapshot()] == ["2", "3", "4"]

    def test_snapshot_is_a_copy(self):
        buffer = BreadcrumbBuffer()
        buffer.append(Breadcrumb(message="a"))
        snapshot = buffer.snapshot()
        buffer.append(Breadcrumb(message="b"))

        assert len(snapshot) == 1

    def test_clear(self):
        buffer = BreadcrumbBuffer()
        buffer.append(Breadcrumb(message="a"))
        buffer.clear()
        assert len(buffer) == 0

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            BreadcrumbBuffer(capacity=0)

    def test_concurrent_appends(self):
        buffer = BreadcrumbBuffer(capacity=50)

        def writer():
            for i in range(200):
                buffer.append(Breadcrumb(message=str(i)))

        threads = [threading.Thread(target=writer) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(buffer) == 50


class TestExtractAttachment:
    """Test cases for metadata attachment extraction."""

    def test_attachment_instance(self):
        attachment = Attachment.from_bytes(b"x", "x.bin")
        assert extract_attachment({"attachment": attachment}) is attachment

    def test_custom_key(self):
        attachment = Attachment.from_bytes(b"x", "x.bin")
        assert extract_attachment({"file": attachment}, attachment_key="file") is attachment
        assert extract_attachment({"file": attachment}, attachment_key=None) is None

    def test_wrong_type_under_key(self):
        assert extract_attachment({"attachment": "not an attachment"}) is None

    def test_filename_and_bytes(self):
        attachment = extract_attachment(
            {"attachment_filename": "dump.bin", "attachment_bytes": b"\x01\x02"}
        )
        assert attachment.filename == "dump.bin"
        assert attachment.payload == BytesPayload(b"\x01\x02")

    def test_filename_and_text(self):
        attachment = extract_attachment(
            {
                "attachment_filename": "note.txt",
                "attachment_bytes": "héllo",
                "attachment_content_type": "text/plain",
            }
        )
        assert attachment.payload == BytesPayload("héllo".encode("utf-8"))
        assert attachment.content_type == "text/plain"

    def test_filename_and_directory(self):
        attachment = extract_attachment(
            {"attachment_filename": "app.log", "attachment_path": "/var/log"}
        )
        assert attachment.payload == FilePayload(filename="app.log", path="/var/log")

    def test_filename_and_full_path(self):
        attachment = extract_attachment(
            {"attachment_filename": "app.log", "attachment_path": "/var/log/app.log"}
        )
        assert attachment.payload == FilePayload(filename="app.log", path="/var/log")

    def test_filename_without_payload(self):
        assert extract_attachment({"attachment_filename": "app.log"}) is None

    def test_no_attachment(self):
        assert extract_attachment({"user": "bob"}) is None


class CollectorHandler(BaseHTTPRequestHandler):
    """Loopback collector answering every event with its id."""

    protocol_version = "HTTP/1.1"

    def do_POST(self):
        body = self.rfile.read(int(self.headers["Content-Length"]))
        payload = orjson.dumps({"id": orjson.loads(body)["event_id"]})
        self.send_response(200)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)

    def log_message(self, format, *args):
        pass


@pytest.fixture
def collector():
    server = ThreadingHTTPServer(("127.0.0.1", 0), CollectorHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()
    thread.join()


class TestSentryProcessor:
    """Test cases for SentryProcessor."""

    def setup_method(self):
        self.requests: List[httpx.Request] = []

        def record(request):
            self.requests.append(request)
            if b"fail me" in request.content:
                return httpx.Response(500)
            return respond(request)

        http = httpx.AsyncClient(transport=httpx.MockTransport(record))
        self.client = SentryClient(DSN, transport=HttpxTransport(client=http), server_name="host")
        self.breadcrumbs = BreadcrumbBuffer(capacity=20)
        self.processor = SentryProcessor(
            self.client, self.breadcrumbs, send_level="error", breadcrumb_level="info"
        )

    def teardown_method(self):
        self.processor.close(timeout=5)

    def test_below_send_level_becomes_breadcrumb(self):
        event_dict = {"event": "user logged in", "user": "bob"}
        result = self.processor(None, "info", event_dict)

        assert result is event_dict
        assert self.processor.flush(timeout=5) == []
        assert self.requests == []
        crumbs = self.breadcrumbs.snapshot()
        assert len(crumbs) == 1
        assert crumbs[0].message == "user logged in"
        assert crumbs[0].level == Level.INFO

    def test_below_breadcrumb_level_ignored(self):
        self.processor(None, "debug", {"event": "noise"})
        assert len(self.breadcrumbs) == 0

    def test_levels_normalized(self):
        processor = SentryProcessor(self.client, send_level="ERROR", breadcrumb_level="Warn")

        assert processor.send_level == "error"
        assert processor.breadcrumb_level == "warning"

    @pytest.mark.parametrize("field", ["send_level", "breadcrumb_level"])
    def test_unknown_level_rejected(self, field):
        with pytest.raises(ValueError):
            SentryProcessor(self.client, **{field: "loud"})

    def test_from_settings(self):
        settings = ClientSettings(
            _env_file=None,
            send_level="WARNING",
            breadcrumb_level="info",
            breadcrumb_count=3,
        )
        processor = SentryProcessor.from_settings(self.client, settings, label="worker")

        assert processor.send_level == "warning"
        assert processor.breadcrumb_level == "info"
        assert processor.breadcrumbs.capacity == 3
        assert processor.label == "worker"

        for i in range(5):
            processor(None, "info", {"event": str(i)})
        processor(None, "warning", {"event": "slow"})
        results = processor.close(timeout=5)

        assert isinstance(results[0], uuid.UUID)
        body = orjson.loads(self.requests[0].content)
        assert body["logger"] == "worker"
        assert [b["message"] for b in body["breadcrumbs"]["values"]] == ["2", "3", "4"]

    def test_error_sent_in_background(self):
        """Test sending outside an event loop."""
        self.processor(None, "info", {"event": "step 1"})
        self.processor(
            None,
            "error",
            {
                "event": "payment failed",
                "logger": "app.billing",
                "order_id": 17,
                "transaction": "POST /pay",
                "func_name": "charge",
                "lineno": 88,
                "filename": "billing.py",
                "pathname": "/srv/app/billing.py",
            },
        )

        results = self.processor.flush(timeout=5)
        assert len(results) == 1
        assert isinstance(results[0], uuid.UUID)

        assert len(self.requests) == 1
        body = orjson.loads(self.requests[0].content)
        assert body["level"] == "error"
        assert body["logger"] == "app.billing"
        assert body["transaction"] == "POST /pay"
        assert body["server_name"] == "host"
        assert body["tags"] == {"order_id": "17", "transaction": "POST /pay"}
        assert body["breadcrumbs"]["values"][0]["message"] == "step 1"
        frames = body["exception"]["values"][0]["stacktrace"]["frames"]
        assert frames == [
            {
                "filename": "billing.py",
                "function": "charge",
                "lineno": 88,
                "abs_path": "/srv/app/billing.py",
            }
        ]

    def test_critical_maps_to_fatal(self):
        self.processor(None, "critical", {"event": "down"})
        self.processor.flush(timeout=5)
        assert orjson.loads(self.requests[0].content)["level"] == "fatal"

    def test_level_key_takes_precedence(self):
        self.processor(None, "msg", {"event": "down", "level": "error"})
        self.processor.flush(timeout=5)
        assert len(self.requests) == 1

    def test_failure_recorded(self):
        """Test that failed sends are reported by flush."""
        self.processor(None, "error", {"event": "fail me"})

        results = self.processor.flush(timeout=5)
        assert isinstance(results[0], UnexpectedStatus)
        assert self.processor.flush(timeout=5) == []

    def test_outcomes_bounded_without_flush(self):
        processor = SentryProcessor(self.client, max_results=5)
        for i in range(8):
            processor(None, "error", {"event": f"failure {i}"})

        results = processor.close(timeout=5)

        assert len(results) == 5
        assert all(isinstance(result, uuid.UUID) for result in results)

    def test_exc_info(self):
        try:
            raise ValueError("bad input")
        except ValueError as e:
            self.processor(None, "error", {"event": "parse failed", "exc_info": e})
        self.processor.flush(timeout=5)

        exception = orjson.loads(self.requests[0].content)["exception"]["values"][0]
        assert exception["type"] == "ValueError"
        assert exception["value"] == "bad input"

    def test_attachment_sends_envelope(self):
        self.processor(
            None,
            "error",
            {
                "event": "upload failed",
                "attachment_filename": "payload.json",
                "attachment_bytes": b'{"a": 1}',
            },
        )
        self.processor.flush(timeout=5)

        request = self.requests[0]
        assert str(request.url).endswith("/envelope/")
        lines = request.content.split(b"\n")
        assert orjson.loads(lines[3])["filename"] == "payload.json"
        assert lines[4] == b'{"a": 1}'
        tags = orjson.loads(lines[2])["tags"]
        assert "attachment_bytes" not in tags

    def test_logging_inside_event_loop(self):
        async def main():
            self.processor(None, "error", {"event": "async failure"})

        asyncio.run(main())
        results = self.processor.flush(timeout=5)

        assert len(self.requests) == 1
        assert len(results) == 1
        assert isinstance(results[0], uuid.UUID)

    def test_with_structlog(self):
        """Test the processor inside a structlog pipeline."""
        logger = structlog.wrap_logger(
            structlog.testing.ReturnLogger(),
            wrapper_class=structlog.BoundLogger,
            processors=[
                structlog.processors.add_log_level,
                self.processor,
            ],
        )

        logger.info("warming up")
        logger.warning("slow response", duration_ms=900)
        logger.error("request failed", path="/users")
        self.processor.flush(timeout=5)

        assert len(self.requests) == 1
        body = orjson.loads(self.requests[0].content)
        assert body["message"]["message"] == "request failed"
        assert body["tags"] == {"path": "/users"}
        assert [b["level"] for b in body["breadcrumbs"]["values"]] == ["info", "warning"]

    def test_close_without_sends(self):
        assert self.processor.close() == []


class TestSentryProcessorOverHttp:
    """Test cases sending through a real loopback collector."""

    def test_consecutive_reports_with_default_transport(self, collector, monkeypatch):
        """Test that pooled connections survive between log calls."""
        for name in PROXY_VARS:
            monkeypatch.delenv(name, raising=False)
        port = collector.server_address[1]
        client = SentryClient(f"http://public@127.0.0.1:{port}/42", server_name="host")
        processor = SentryProcessor(client)

        results = []
        for i in range(3):
            processor(None, "error", {"event": f"failure {i}"})
            results.extend(processor.flush(timeout=10))
        results.extend(processor.close(timeout=10))

        assert len(results) == 3
        assert all(isinstance(result, uuid.UUID) for result in results)


class TestBreadcrumbRecorder:
    """Test cases for BreadcrumbRecorder."""

    def test_format(self):
        text = BreadcrumbRecorder.format(
            "warning",
            {
                "event": "disk almost full",
                "logger": "app.storage",
                "func_name": "check",
                "filename": "storage.py",
                "lineno": 42,
                "used": "91%",
                "device": "sda1",
            },
        )

        assert text == (
            "[WARNING] disk almost full <app.storage.check> in (storage.py:42)"
            " [device: sda1, used: 91%]"
        )

    def test_format_minimal(self):
        assert BreadcrumbRecorder.format("info", {"event": "hello"}) == "[INFO] hello"

    def test_records_and_passes_through(self):
        recorder = BreadcrumbRecorder()
        event_dict = {"event": "hello"}

        assert recorder(None, "info", event_dict) is event_dict
        crumbs = recorder.breadcrumbs.snapshot()
        assert crumbs[0].message == "[INFO] hello"
        assert crumbs[0].level == Level.INFO

    def test_default_capacity(self):
        recorder = BreadcrumbRecorder()
        for i in range(15):
            recorder(None, "debug", {"event": str(i)})

        assert len(recorder.breadcrumbs) == 10
        assert recorder.breadcrumbs.snapshot()[0].message == "[DEBUG] 5"

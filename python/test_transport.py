"""HTTP送受信と中断のテスト"""
import threading

import pytest
from botocore.exceptions import HTTPClientError
from urllib3.exceptions import ProtocolError as URLLib3ProtocolError

from s3_mover.core.errors import CancellationError, TransportError
from s3_mover.core.transport import CHUNK_SIZE, CancellableBody, HttpTransport

URL = "https://bucket.s3.example.com/key"


class StubRaw:
    def __init__(self, chunks, on_chunk=None, error=None):
        self.chunks = list(chunks)
        self.on_chunk = on_chunk
        self.error = error
        self.closed = False

    def stream(self, amt=None, decode_content=None):
        for i, chunk in enumerate(self.chunks, 1):
            yield chunk
            if self.on_chunk:
                self.on_chunk(i)
        if self.error is not None:
            raise self.error

    def close(self):
        self.closed = True


class StubResponse:
    def __init__(self, raw, status_code=200, headers=None):
        self.raw = raw
        self.status_code = status_code
        self.headers = headers or {}


class StubSession:
    """URLLib3Session の代わりにボディを小分けに読み出す"""

    def __init__(self, raw=None, on_send_chunk=None):
        self.raw = raw or StubRaw([])
        self.on_send_chunk = on_send_chunk
        self.sent = []
        self.calls = 0

    def send(self, prepared):
        self.calls += 1
        try:
            if prepared.body is not None:
                while True:
                    chunk = prepared.body.read(8192)
                    if not chunk:
                        break
                    self.sent.append(chunk)
                    if self.on_send_chunk:
                        self.on_send_chunk(len(self.sent))
        except Exception as e:
            raise HTTPClientError(error=e)
        return StubResponse(self.raw, headers={"ETag": '"abc"', "x-amz-request-id": "req-1"})

    def close(self):
        pass


def make_transport(session):
    transport = HttpTransport()
    transport._session = session
    return transport


def test_send_streams_body_and_reads_response():
    session = StubSession(StubRaw([b"hello ", b"world"]))
    body = b"x" * 20000

    response = make_transport(session).send("PUT", URL, {"Content-Length": "20000"}, body,
                                            cancel_event=threading.Event())

    assert b"".join(session.sent) == body
    assert response.status == 200
    assert response.body == b"hello world"
    assert response.header("etag") == '"abc"'


def test_cancel_before_send_skips_request():
    session = StubSession()
    event = threading.Event()
    event.set()

    with pytest.raises(CancellationError):
        make_transport(session).send("GET", URL, {}, cancel_event=event)
    assert session.calls == 0


def test_cancel_while_sending_body():
    event = threading.Event()
    session = StubSession(on_send_chunk=lambda n: event.set())

    with pytest.raises(CancellationError):
        make_transport(session).send("PUT", URL, {}, b"x" * (4 * 8192), cancel_event=event)
    assert len(session.sent) == 1


def test_cancel_while_receiving_body():
    event = threading.Event()
    raw = StubRaw([b"a" * 10, b"b" * 10, b"c" * 10], on_chunk=lambda n: event.set())

    with pytest.raises(CancellationError):
        make_transport(StubSession(raw)).send("GET", URL, {}, cancel_event=event)
    assert raw.closed


def test_broken_response_stream_is_transport_error():
    raw = StubRaw([b"partial"], error=URLLib3ProtocolError("connection broken"))

    with pytest.raises(TransportError) as e:
        make_transport(StubSession(raw)).send("GET", URL, {})
    assert e.value.retryable
    assert raw.closed


def test_client_error_is_transport_error():
    class FailingSession(StubSession):
        def send(self, prepared):
            raise HTTPClientError(error=OSError("reset"))

    with pytest.raises(TransportError):
        make_transport(FailingSession()).send("GET", URL, {}, cancel_event=threading.Event())


def test_cancellable_body_reads_in_bounded_chunks():
    body = CancellableBody(b"x" * (CHUNK_SIZE + 10), threading.Event())

    assert len(body) == CHUNK_SIZE + 10
    assert len(body.read()) == CHUNK_SIZE
    assert body.tell() == CHUNK_SIZE
    assert body.read(100) == b"x" * 10
    assert body.read(100) == b""
    body.seek(0)
    assert len(body.read(5)) == 5

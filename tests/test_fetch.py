from __future__ import annotations

import socket
import threading
import time

import pytest
import requests
from urllib3.exceptions import ReadTimeoutError

from bboxviewer.pipeline.errors import FetchTimeout, TransportError
from bboxviewer.pipeline.fetch import BoundedFetcher, fetch_with_timeout, make_session


class FakeResponse:
    def __init__(self, chunks, status_code=200, clock=None, per_chunk_s=0.0):
        self.chunks = chunks
        self.status_code = status_code
        self.clock = clock
        self.per_chunk_s = per_chunk_s
        self.closed = False
        self.url = "http://cam/fake"

    def close(self):
        self.closed = True

    def iter_content(self, chunk_size=1):
        for chunk in self.chunks:
            if self.clock is not None:
                self.clock.advance(self.per_chunk_s)
            yield chunk

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.closed = True
        return False


class FakeSession:
    def __init__(self, response=None, exc=None):
        self.response = response
        self.exc = exc
        self.calls = []

    def get(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.exc is not None:
            raise self.exc
        return self.response


def test_returns_whole_body() -> None:
    session = FakeSession(FakeResponse([b"ab", b"cd"]))
    assert fetch_with_timeout(session, "http://cam/jpg", 2000) == b"abcd"
    url, kwargs = session.calls[0]
    assert url == "http://cam/jpg"
    assert kwargs["stream"] is True
    assert kwargs["timeout"].total == 2.0
    assert session.response.closed


def test_non_2xx_is_transport_error() -> None:
    session = FakeSession(FakeResponse([b"nope"], status_code=503))
    with pytest.raises(TransportError, match="HTTP 503"):
        fetch_with_timeout(session, "http://cam/jpg", 2000)
    assert session.response.closed


def test_connection_failure_is_transport_error() -> None:
    session = FakeSession(exc=requests.ConnectionError("refused"))
    with pytest.raises(TransportError) as info:
        fetch_with_timeout(session, "http://cam/bbox", 200)
    assert info.value.url == "http://cam/bbox"


def test_requests_timeout_is_fetch_timeout() -> None:
    session = FakeSession(exc=requests.ReadTimeout("slow"))
    with pytest.raises(FetchTimeout):
        fetch_with_timeout(session, "http://cam/bbox", 200)


def test_body_past_deadline_is_abandoned(clock) -> None:
    response = FakeResponse([b"a", b"b", b"c"], clock=clock, per_chunk_s=0.15)
    session = FakeSession(response)
    with pytest.raises(FetchTimeout):
        fetch_with_timeout(session, "http://cam/bbox", 200, clock=clock)
    assert response.closed
    # stopped reading at the second chunk instead of draining the body
    assert clock.t == pytest.approx(0.30)


def test_body_within_deadline(clock) -> None:
    response = FakeResponse([b"a", b"b"], clock=clock, per_chunk_s=0.05)
    assert fetch_with_timeout(FakeSession(response), "http://cam/bbox", 200, clock=clock) == b"ab"


def test_session_does_not_retry() -> None:
    session = make_session("test-agent")
    adapter = session.get_adapter("http://cam/jpg")
    assert adapter.max_retries.total == 0
    assert session.headers["User-Agent"] == "test-agent"


def test_bounded_fetcher_uses_its_budget() -> None:
    session = FakeSession(FakeResponse([b"{}"]))
    fetcher = BoundedFetcher("http://cam/bbox", 200, session=session)
    assert fetcher.fetch() == b"{}"
    assert session.calls[0][1]["timeout"].total == 0.2


def test_read_timeout_inside_body_is_fetch_timeout() -> None:
    # requests reports a body read timeout as ConnectionError wrapping urllib3's error
    wrapped = requests.ConnectionError(ReadTimeoutError(None, "http://cam/bbox", "Read timed out."))
    with pytest.raises(FetchTimeout):
        fetch_with_timeout(FakeSession(exc=wrapped), "http://cam/bbox", 200)


def test_refused_connection_stays_transport_error() -> None:
    wrapped = requests.ConnectionError(ConnectionRefusedError(111, "Connection refused"))
    with pytest.raises(TransportError):
        fetch_with_timeout(FakeSession(exc=wrapped), "http://cam/bbox", 200)


class SlowHttpServer:
    """One-shot HTTP server on localhost that sends its body at a chosen pace."""

    def __init__(self, body: bytes, content_length: int, delay_s: float, stall_after: int = -1):
        self.body = body
        self.content_length = content_length
        self.delay_s = delay_s
        self.stall_after = stall_after
        self.done = threading.Event()
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.listen(1)
        self.url = f"http://127.0.0.1:{self.sock.getsockname()[1]}/bbox"
        self.thread = threading.Thread(target=self._serve, daemon=True)
        self.thread.start()

    def _serve(self) -> None:
        conn, _ = self.sock.accept()
        try:
            data = b""
            while b"\r\n\r\n" not in data:
                data += conn.recv(1024)
            conn.sendall(b"HTTP/1.1 200 OK\r\nContent-Type: application/json\r\n"
                         b"Content-Length: %d\r\n\r\n" % self.content_length)
            for i in range(len(self.body)):
                if i == self.stall_after:
                    self.done.wait(5.0)
                    break
                conn.sendall(self.body[i:i + 1])
                time.sleep(self.delay_s)
        except OSError:
            pass
        finally:
            self.done.set()
            conn.close()
            self.sock.close()


def _timed_fetch(url: str, timeout_ms: float):
    session = make_session()
    t0 = time.monotonic()
    try:
        with pytest.raises(FetchTimeout) as info:
            fetch_with_timeout(session, url, timeout_ms)
    finally:
        session.close()
    return time.monotonic() - t0, info.value


def test_dripping_body_is_cut_at_the_deadline() -> None:
    body = b'{"dtime": 50, "bboxes": [], "pad": "xxxxxxxxx"}'
    server = SlowHttpServer(body, len(body), delay_s=0.05)
    elapsed, _ = _timed_fetch(server.url, 200)
    assert elapsed < 0.6, f"200 ms budget took {elapsed:.2f}s"


def test_stalled_body_is_fetch_timeout() -> None:
    server = SlowHttpServer(b"{" + b" " * 99, 100, delay_s=0.0, stall_after=1)
    elapsed, err = _timed_fetch(server.url, 200)
    assert elapsed < 0.6
    assert err.url == server.url
    server.done.set()


def test_prompt_body_is_returned_whole() -> None:
    body = b'{"dtime": 50, "bboxes": []}'
    server = SlowHttpServer(body, len(body), delay_s=0.0)
    session = make_session()
    try:
        assert fetch_with_timeout(session, server.url, 2000) == body
    finally:
        session.close()

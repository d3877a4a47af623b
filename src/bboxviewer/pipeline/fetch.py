from __future__ import annotations
import logging, socket, threading, time
from typing import Callable, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.exceptions import HTTPError, ReadTimeoutError
from urllib3.util import Retry, Timeout

from .errors import FetchTimeout, TransportError

log = logging.getLogger("pipeline.fetch")

def make_session(user_agent: str = "bboxviewer") -> requests.Session:
    s = requests.Session()
    # retry policy belongs to the polling loop, never to the transport
    retry = Retry(total=0, connect=0, read=0, redirect=3, raise_on_status=False)
    s.mount("https://", HTTPAdapter(max_retries=retry, pool_maxsize=2))
    s.mount("http://", HTTPAdapter(max_retries=retry, pool_maxsize=2))
    s.headers.update({
        "User-Agent": user_agent,
        "Cache-Control": "no-cache",
    })
    return s


def _is_timeout(exc: BaseException) -> bool:
    """True if a read timeout sits anywhere in the exception chain.

    requests re-raises a urllib3 ReadTimeoutError hit inside ``iter_content``
    as ``requests.ConnectionError``, so the type alone is not enough.
    """
    seen = set()
    stack = [exc]
    while stack:
        e = stack.pop()
        if e is None or id(e) in seen:
            continue
        seen.add(id(e))
        if isinstance(e, (requests.Timeout, ReadTimeoutError, socket.timeout)):
            return True
        stack.extend(a for a in getattr(e, "args", ()) if isinstance(a, BaseException))
        stack.extend((getattr(e, "reason", None), e.__cause__, e.__context__))
    return False


class _Watchdog:
    """Shuts the response's socket down when the deadline passes.

    ``shutdown`` wakes a ``recv`` blocked in another thread, which a plain
    ``close`` does not, so a peer dripping bytes cannot hold the read open.
    """
    def __init__(self, resp: requests.Response, delay_s: float):
        self.resp = resp
        self.fired = threading.Event()
        self._timer = threading.Timer(max(0.0, delay_s), self._abort)
        self._timer.daemon = True

    def __enter__(self):
        self._timer.start()
        return self

    def __exit__(self, *exc):
        self._timer.cancel()
        return False

    def _abort(self):
        self.fired.set()
        conn = getattr(getattr(self.resp, "raw", None), "connection", None)
        sock = getattr(conn, "sock", None)
        try:
            if sock is not None:
                sock.shutdown(socket.SHUT_RDWR)
            else:
                self.resp.close()
        except OSError as e:
            log.debug("Abort of %s: %s", self.resp.url, e)


def fetch_with_timeout(session: requests.Session, url: str, timeout_ms: float,
                       chunk_size: int = 4096,
                       clock: Callable[[], float] = time.monotonic) -> bytes:
    """GET ``url`` and return its body, or raise ``FetchTimeout`` once ``timeout_ms`` has passed.

    The budget is one deadline for connect, headers and the whole body.
    Connect + headers share a urllib3 ``Timeout(total=...)``; the body is read
    under a watchdog that kills the socket at the deadline, so the request is
    aborted rather than left to finish in the background.
    """
    budget_s = max(0.001, float(timeout_ms) / 1000.0)
    deadline = clock() + budget_s
    expired = lambda: FetchTimeout(url, f"no complete response within {timeout_ms:.0f} ms")
    fired = False
    try:
        with session.get(url, stream=True, timeout=Timeout(total=budget_s)) as resp:
            if not 200 <= resp.status_code < 300:
                raise TransportError(url, f"HTTP {resp.status_code}")
            remaining = deadline - clock()
            if remaining <= 0:
                raise expired()
            chunks = []
            with _Watchdog(resp, remaining) as dog:
                try:
                    for chunk in resp.iter_content(chunk_size=chunk_size):
                        chunks.append(chunk)
                        if clock() > deadline:
                            raise expired()
                finally:
                    fired = dog.fired.is_set()
            # a shutdown socket can look like a clean EOF on bodies without Content-Length
            if fired or clock() > deadline:
                raise expired()
            return b"".join(chunks)
    except (requests.RequestException, HTTPError, OSError) as e:
        if fired or _is_timeout(e):
            raise expired() from e
        raise TransportError(url, str(e) or e.__class__.__name__) from e


class BoundedFetcher:
    """One endpoint + one time budget."""
    def __init__(self, url: str, timeout_ms: float, session: Optional[requests.Session] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.url = url
        self.timeout_ms = float(timeout_ms)
        self.session = session or make_session()
        self.clock = clock

    def fetch(self) -> bytes:
        t0 = self.clock()
        body = fetch_with_timeout(self.session, self.url, self.timeout_ms, clock=self.clock)
        log.debug("GET %s -> %d bytes in %.1f ms", self.url, len(body), (self.clock() - t0) * 1000.0)
        return body

    def close(self):
        self.session.close()

"""Resilient HTTP transport: retries, full-jitter backoff, proxy selection.

One call to ``HttpClient.send`` is one *logical* request: it may run several
network attempts, each reported to an optional callback and recorded in an
ordered attempt log that travels with the result (or with the error).
"""

import errno
import json
import os
import random
import socket
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import urlsplit

import httpx


SAFE_METHODS = frozenset({"GET", "HEAD"})
RETRY_STATUS = frozenset({502, 503, 504})
RETRY_ERROR_CODES = frozenset({
    "ECONNRESET",
    "ETIMEDOUT",
    "ENOTFOUND",
    "EAI_AGAIN",
    "HEADERS_TIMEOUT",
    "BODY_TIMEOUT",
})

_DNS_AGAIN_MARKERS = ("temporary failure in name resolution",)
_DNS_FAIL_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "no address associated",
    "name resolution",
)


# ── Data types ─────────────────────────────────────────────────

@dataclass(frozen=True)
class RetryPolicy:
    """How many attempts one request may take and how long to wait between them."""
    max_attempts: int = 1
    base_delay: float = 0.2      # seconds
    delay_cap: float = 2.0       # seconds
    allow_unsafe_retry: bool = False

    def __post_init__(self):
        object.__setattr__(self, "max_attempts", max(1, int(self.max_attempts)))
        object.__setattr__(self, "base_delay", max(0.001, float(self.base_delay)))
        object.__setattr__(self, "delay_cap", max(0.001, float(self.delay_cap)))


@dataclass(frozen=True)
class AttemptRecord:
    """One network try. Exactly one of status / error_code is set."""
    url: str
    method: str
    attempt: int                 # 1-based
    started_at: float            # epoch seconds
    duration_ms: float
    status: Optional[int] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    will_retry: bool = False
    retry_delay: Optional[float] = None   # seconds
    reason: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "url": self.url, "method": self.method, "attempt": self.attempt,
            "started_at": self.started_at, "duration_ms": self.duration_ms,
            "status": self.status, "error_code": self.error_code,
            "error_message": self.error_message, "will_retry": self.will_retry,
            "retry_delay": self.retry_delay, "reason": self.reason,
        }


@dataclass
class HttpResponse:
    status: int
    headers: httpx.Headers
    text: str
    elapsed_ms: float
    attempts: int
    attempt_log: List[AttemptRecord] = field(default_factory=list)


class TransportError(Exception):
    """No attempt of a logical request ever produced an HTTP status."""

    def __init__(self, message: str, attempt_log: List[AttemptRecord]):
        super().__init__(message)
        self.attempt_log = list(attempt_log)

    @property
    def error_code(self) -> Optional[str]:
        return self.attempt_log[-1].error_code if self.attempt_log else None


AttemptSink = Callable[[AttemptRecord], None]


# ── Retry policy helpers ───────────────────────────────────────

def backoff_delay(retry: int, base: float, cap: float) -> float:
    """Full-jitter exponential delay (seconds) before retry number *retry* (1-based)."""
    ceiling = min(cap, base * (2 ** max(0, retry - 1)))
    return random.uniform(0, ceiling)


def retry_decision(
    method: str,
    policy: RetryPolicy,
    status: Optional[int] = None,
    error_code: Optional[str] = None,
) -> Tuple[bool, Optional[str]]:
    """Return (retry?, reason) for one attempt outcome, ignoring the attempt budget."""
    if method.upper() not in SAFE_METHODS and not policy.allow_unsafe_retry:
        return False, None
    if status is not None and status in RETRY_STATUS:
        return True, f"status:{status}"
    if error_code and error_code in RETRY_ERROR_CODES:
        return True, f"error:{error_code}"
    return False, None


def _exception_chain(exc: BaseException):
    seen = set()
    while exc is not None and id(exc) not in seen:
        seen.add(id(exc))
        yield exc
        exc = exc.__cause__ or exc.__context__


def classify_error(exc: BaseException, phase: str = "headers") -> str:
    """Map an httpx/socket failure to a stable error code.

    *phase* is ``"headers"`` while waiting for the response head and
    ``"body"`` while streaming the body; it only matters for read timeouts.
    """
    if isinstance(exc, httpx.ReadTimeout):
        return "BODY_TIMEOUT" if phase == "body" else "HEADERS_TIMEOUT"
    if isinstance(exc, httpx.TimeoutException):
        return "ETIMEDOUT"

    for err in _exception_chain(exc):
        if isinstance(err, socket.gaierror):
            return "EAI_AGAIN" if err.errno == socket.EAI_AGAIN else "ENOTFOUND"
        if isinstance(err, socket.timeout):
            return "ETIMEDOUT"
        if isinstance(err, OSError) and err.errno == errno.ECONNRESET:
            return "ECONNRESET"
        if isinstance(err, OSError) and err.errno == errno.ECONNREFUSED:
            return "ECONNREFUSED"

    text = " ".join(str(e) for e in _exception_chain(exc)).lower()
    if any(m in text for m in _DNS_AGAIN_MARKERS):
        return "EAI_AGAIN"
    if any(m in text for m in _DNS_FAIL_MARKERS):
        return "ENOTFOUND"
    if "connection reset" in text or "disconnected" in text:
        return "ECONNRESET"
    if "connection refused" in text:
        return "ECONNREFUSED"
    return type(exc).__name__


# ── Proxy selection ────────────────────────────────────────────

def _env(environ, *names: str) -> str:
    for name in names:
        value = environ.get(name)
        if value:
            return value
    return ""


def should_bypass_proxy(url: str, no_proxy: Optional[str]) -> bool:
    """NO_PROXY matching: ``*``, ``.suffix``, ``host:port`` and exact host entries."""
    if not no_proxy:
        return False
    parts = urlsplit(url)
    host = (parts.hostname or "").lower()
    port = parts.port or (443 if parts.scheme == "https" else 80)

    for entry in (e.strip().lower() for e in no_proxy.split(",")):
        if not entry:
            continue
        if entry == "*":
            return True
        if ":" in entry:
            if entry == f"{host}:{port}":
                return True
        elif entry.startswith("."):
            if host.endswith(entry):
                return True
        elif entry == host:
            return True
    return False


def resolve_proxy(url: str, override: Optional[str] = None, environ=None) -> Optional[str]:
    """Pick the proxy for *url*: bypass list, then override, then scheme env var.

    Anything that fails to parse, target or proxy, resolves to no proxy.
    """
    environ = os.environ if environ is None else environ
    try:
        if should_bypass_proxy(url, _env(environ, "NO_PROXY", "no_proxy")):
            return None
        proxy = override
        if not proxy:
            scheme = urlsplit(url).scheme.lower()
            if scheme == "http":
                proxy = _env(environ, "HTTP_PROXY", "http_proxy")
            elif scheme == "https":
                proxy = _env(environ, "HTTPS_PROXY", "https_proxy")
        if not proxy:
            return None
        httpx.Proxy(proxy)
        return proxy
    except (ValueError, httpx.InvalidURL):
        return None


# ── Client ─────────────────────────────────────────────────────

def _encode_body(body) -> Optional[bytes]:
    if body is None:
        return None
    if isinstance(body, bytes):
        return body
    if isinstance(body, str):
        return body.encode("utf-8")
    try:
        return json.dumps(body).encode("utf-8")
    except (TypeError, ValueError):
        return None


def _notify(sink: Optional[AttemptSink], record: AttemptRecord) -> None:
    if sink is not None:
        try:
            sink(record)
        except Exception:
            # attempt sinks must never break the request path
            pass


def describe_attempt(record: AttemptRecord) -> str:
    """One-line summary of an attempt, as printed under NOSQLSCAN_HTTP_DEBUG=1."""
    tail = f"status={record.status}" if record.status is not None else f"error={record.error_code}"
    retry = f" retry in {record.retry_delay:.3f}s ({record.reason or ''})" if record.will_retry else ""
    return f"[HTTP attempt {record.attempt}] {record.method} {record.url} {tail}{retry}"


class HttpClient:
    """Sequential request executor.

    One ``httpx.Client`` is kept per resolved proxy (``None`` = direct) so
    connections can be reused between attempts. When *transport* is given it
    serves every request and proxy selection is bypassed.
    """

    def __init__(self, transport: Optional[httpx.BaseTransport] = None, verify: bool = False):
        self.transport = transport
        self.verify = verify
        self._clients: Dict[Optional[str], httpx.Client] = {}

    def _client_for(self, proxy: Optional[str]) -> httpx.Client:
        if self.transport is not None:
            proxy = None
        client = self._clients.get(proxy)
        if client is None:
            client = httpx.Client(
                verify=self.verify, proxy=proxy, transport=self.transport,
                trust_env=False)
            self._clients[proxy] = client
        return client

    def close(self) -> None:
        for client in self._clients.values():
            client.close()
        self._clients.clear()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def send(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
        body=None,
        timeout: float = 8.0,
        retry_policy: Optional[RetryPolicy] = None,
        proxy: Optional[str] = None,
        on_attempt: Optional[AttemptSink] = None,
        follow_redirects: bool = False,
    ) -> HttpResponse:
        """Run one logical request; raise TransportError only if no status was ever seen."""
        method = method.upper()
        policy = retry_policy or RetryPolicy()
        content = _encode_body(body)
        client = self._client_for(resolve_proxy(url, proxy))

        attempt_log: List[AttemptRecord] = []
        last_status: Optional[int] = None
        last_headers = httpx.Headers()
        last_text = ""
        last_error: Optional[BaseException] = None
        wall_start = time.perf_counter()

        for attempt in range(1, policy.max_attempts + 1):
            started_at = time.time()
            t0 = time.perf_counter()
            status = error_code = error_message = None
            phase = "headers"
            try:
                request = client.build_request(
                    method, url, headers=headers or {}, content=content,
                    timeout=httpx.Timeout(timeout))
                response = client.send(request, stream=True, follow_redirects=follow_redirects)
                phase = "body"
                try:
                    response.read()
                finally:
                    response.close()
            except (httpx.HTTPError, httpx.InvalidURL, OSError) as exc:
                last_error = exc
                error_code = classify_error(exc, phase)
                error_message = str(exc) or type(exc).__name__
            else:
                status = response.status_code
                last_status = status
                last_headers = response.headers
                last_text = response.text

            retry, reason = retry_decision(method, policy, status=status, error_code=error_code)
            will_retry = retry and attempt < policy.max_attempts
            delay = backoff_delay(attempt, policy.base_delay, policy.delay_cap) if will_retry else None

            record = AttemptRecord(
                url=url, method=method, attempt=attempt, started_at=started_at,
                duration_ms=(time.perf_counter() - t0) * 1000.0,
                status=status, error_code=error_code, error_message=error_message,
                will_retry=will_retry, retry_delay=delay, reason=reason,
            )
            attempt_log.append(record)
            _notify(on_attempt, record)

            if not will_retry:
                break
            time.sleep(delay)

        if last_status is not None:
            return HttpResponse(
                status=last_status,
                headers=last_headers,
                text=last_text,
                elapsed_ms=(time.perf_counter() - wall_start) * 1000.0,
                attempts=len(attempt_log),
                attempt_log=attempt_log,
            )
        raise TransportError(
            f"HTTP request failed after {len(attempt_log)} attempt(s): {last_error}",
            attempt_log,
        )


def send(url: str, method: str = "GET", **kwargs) -> HttpResponse:
    """One-shot request through a throwaway HttpClient."""
    transport = kwargs.pop("transport", None)
    with HttpClient(transport=transport) as client:
        return client.send(url, method, **kwargs)

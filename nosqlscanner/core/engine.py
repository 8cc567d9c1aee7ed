import os
import time
from typing import Any, Callable, Dict, Iterable, Iterator, List, NamedTuple, Optional, Sequence
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

import httpx

from nosqlscanner.core.crawler import Crawler
from nosqlscanner.core.debug import DebugLogger
from nosqlscanner.core.evidence import EvidenceEngine, TaggingPolicy
from nosqlscanner.core.fingerprint import match_fingerprint
from nosqlscanner.core.http import AttemptRecord, HttpClient, RetryPolicy, TransportError, describe_attempt
from nosqlscanner.core.models import Evidence, Finding, Fingerprint, ResponseSnapshot
from nosqlscanner.payloads.amplification import BROADENING_TEMPLATES, TIMING_PAYLOADS, TIMING_TEMPLATES
from nosqlscanner.payloads.base import DbFamily
from nosqlscanner.payloads.catalog import get_family

USER_AGENT = "nosqlscanner/1.0"
JSON_HEADERS = {"Content-Type": "application/json"}
DEFAULT_HEADER_NAMES = ("X-Filter", "X-Query", "X-Search")
DEFAULT_COOKIE_NAMES = ("session", "filter", "query")
_COOKIE_SAFE = "-_.!~*'()"  # kept literal in cookie values

Gate = Callable[[Evidence], List[str]]


class _Probe(NamedTuple):
    url: str
    method: str
    param: str
    payload: Any
    headers: Optional[Dict[str, str]] = None
    body: Any = None


class Scanner:
    """
    Differential NoSQL-injection scanner.

    Every strategy fetches one baseline, then one probe per
    (injection point, payload) pair, strictly one request at a time,
    and diffs each probe against that baseline.
    """

    def __init__(
        self,
        timeout: float = 8.0,
        delay: float = 0.05,
        keywords: Optional[Iterable[str]] = None,
        headers: Optional[Dict[str, str]] = None,
        dos_threshold_ms: float = 1000,
        db_family=DbFamily.MONGODB,
        retry_max_attempts: int = 1,
        retry_base_delay: float = 0.2,
        retry_max_delay: float = 2.0,
        retry_unsafe_methods: bool = False,
        proxy: Optional[str] = None,
        on_http_attempt: Optional[Callable[[AttemptRecord], None]] = None,
        debug: bool = False,
        on_debug_event=None,
        logger=None,
        exfiltration_count: int = 5,
        manipulation_count: int = 2,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.timeout = timeout
        self.delay = max(0.0, delay)
        self.default_headers = dict(headers or {})
        self.payloads = get_family(db_family)
        self.db_family = self.payloads.family
        self.evidence = EvidenceEngine(keywords, TaggingPolicy(
            timing_threshold_ms=dos_threshold_ms,
            exfiltration_count=exfiltration_count,
            manipulation_count=manipulation_count,
        ))
        self.retry_policy = RetryPolicy(
            max_attempts=retry_max_attempts,
            base_delay=retry_base_delay,
            delay_cap=retry_max_delay,
            allow_unsafe_retry=retry_unsafe_methods,
        )
        self.proxy = proxy
        self.on_http_attempt = on_http_attempt
        self.logger = logger
        self.debug = DebugLogger(debug, on_debug_event, logger)
        self.http = HttpClient(transport=transport)

    def close(self):
        self.http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # ---------- transport ----------
    def _on_attempt(self, record: AttemptRecord):
        self.debug.emit("fetch", f"{record.method} {record.url} attempt={record.attempt}",
                        record.to_dict())
        if self.logger and os.environ.get("NOSQLSCAN_HTTP_DEBUG") == "1":
            self.logger.info(describe_attempt(record))
        if self.on_http_attempt:
            try:
                self.on_http_attempt(record)
            except Exception:
                pass

    def fetch(self, url: str, method: str = "GET", headers: Optional[Dict[str, str]] = None,
              body=None, follow_redirects: bool = False) -> ResponseSnapshot:
        """One logical request (with retries) reduced to a snapshot."""
        merged = httpx.Headers({"User-Agent": USER_AGENT})
        merged.update(self.default_headers)
        merged.update(headers or {})
        res = self.http.send(
            url, method, headers=merged, body=body, timeout=self.timeout,
            retry_policy=self.retry_policy, proxy=self.proxy,
            on_attempt=self._on_attempt, follow_redirects=follow_redirects,
        )
        return ResponseSnapshot(status=res.status, headers=res.headers, text=res.text,
                                length=len(res.text), elapsed_ms=res.elapsed_ms)

    def _sleep(self):
        if self.delay > 0:
            time.sleep(self.delay)

    # ---------- injection helpers ----------
    @staticmethod
    def build_url_with_param(url: str, param: str, value: str) -> str:
        """Set *param* to *value* in the query string, keeping every other param."""
        try:
            parts = urlsplit(url)
            query = parse_qsl(parts.query, keep_blank_values=True)
        except ValueError:
            return url
        out, replaced = [], False
        for k, v in query:
            if k == param:
                if not replaced:
                    out.append((k, value))
                    replaced = True
                continue
            out.append((k, v))
        if not replaced:
            out.append((param, value))
        return urlunsplit(parts._replace(query=urlencode(out)))

    @staticmethod
    def _merge(base_body: Dict[str, Any], partial: Dict[str, Any]) -> Dict[str, Any]:
        merged = dict(base_body)
        merged.update(partial)
        return merged

    def _run(self, baseline: ResponseSnapshot, probes: Iterator[_Probe], gate: Gate) -> List[Finding]:
        findings: List[Finding] = []
        for probe in probes:
            current = self.fetch(probe.url, probe.method, probe.headers, probe.body)
            evidence = self.evidence.diff(baseline, current)
            self.debug.emit("evidence", f"{probe.method} param={probe.param}",
                            {"payload": probe.payload, "evidence": evidence.to_dict()})
            tags = gate(evidence)
            if tags:
                findings.append(Finding(
                    url=probe.url, method=probe.method, param=probe.param,
                    payload=probe.payload, evidence=evidence, tags=tuple(tags),
                ))
                if self.logger:
                    self.logger.finding(tags, probe.method, probe.url, probe.param,
                                        probe.payload, current.status)
            self._sleep()
        return findings

    def _baseline(self, label: str, url: str, method: str = "GET", headers=None, body=None):
        base = self.fetch(url, method, headers, body)
        self.debug.emit("inject", f"{label} base {url}", {"status": base.status, "length": base.length})
        if self.logger:
            self.logger.debug(f"Baseline {method} {url} → HTTP {base.status}, {base.length} chars")
        return base

    # ---------- query ----------
    def scan_get(self, url: str, params: Sequence[str] = ()) -> List[Finding]:
        if self.logger:
            self.logger.info(f"Scanning GET {url} params={list(params)}")
        base = self._baseline("GET", url)

        def probes():
            for param in params:
                for payload in self.payloads.get_payloads():
                    yield _Probe(self.build_url_with_param(url, param, payload), "GET", param, payload)

        return self._run(base, probes(), self.evidence.tags)

    def scan_dos_get(self, url: str, params: Sequence[str] = ()) -> List[Finding]:
        if self.logger:
            self.logger.info(f"Timing scan GET {url} params={list(params)}")
        base = self._baseline("GET", url)

        def probes():
            for param in params:
                for payload in TIMING_PAYLOADS:
                    yield _Probe(self.build_url_with_param(url, param, payload), "GET", param, payload)

        return self._run(base, probes(), self.evidence.timing_tags)

    # ---------- JSON body ----------
    def _scan_templates(self, label: str, url: str, method: str, base_body: Optional[Dict[str, Any]],
                        fields: Sequence[str], templates, gate: Gate, default_value="") -> List[Finding]:
        base_body = dict(base_body or {})
        method = method.upper()
        if self.logger:
            self.logger.info(f"{label} {method} {url} fields={list(fields)}")
        base = self._baseline(method, url, method, JSON_HEADERS, base_body)

        def probes():
            for field in fields:
                for template in templates:
                    body = self._merge(base_body, template(field, base_body.get(field, default_value)))
                    yield _Probe(url, method, field, body.get(field), JSON_HEADERS, body)

        return self._run(base, probes(), gate)

    def scan_body(self, url: str, method: str = "POST", base_body: Optional[Dict[str, Any]] = None,
                  fields: Sequence[str] = ()) -> List[Finding]:
        return self._scan_templates("Scanning body", url, method, base_body, fields,
                                    self.payloads.get_templates(), self.evidence.tags)

    def scan_dos_body(self, url: str, method: str = "POST", base_body: Optional[Dict[str, Any]] = None,
                      fields: Sequence[str] = ()) -> List[Finding]:
        return self._scan_templates("Timing scan body", url, method, base_body, fields,
                                    TIMING_TEMPLATES, self.evidence.timing_tags, default_value=None)

    def scan_manipulation(self, url: str, method: str = "POST", base_body: Optional[Dict[str, Any]] = None,
                          filter_fields: Sequence[str] = ()) -> List[Finding]:
        """Broad filters against update endpoints; flags responses reporting several modified rows."""
        return self._scan_templates("Mass-update scan", url, method, base_body, filter_fields,
                                    BROADENING_TEMPLATES, self.evidence.manipulation_tags,
                                    default_value=None)

    # ---------- headers / cookies ----------
    def scan_headers(self, url: str, header_names: Sequence[str] = DEFAULT_HEADER_NAMES) -> List[Finding]:
        header_names = list(header_names or DEFAULT_HEADER_NAMES)
        if self.logger:
            self.logger.info(f"Scanning headers {url} names={header_names}")
        base = self._baseline("HEADER", url)

        def probes():
            for name in header_names:
                for payload in self.payloads.get_payloads():
                    yield _Probe(url, "GET", name, payload, {name: payload})

        return self._run(base, probes(), self.evidence.tags)

    def scan_cookies(self, url: str, cookie_names: Sequence[str] = DEFAULT_COOKIE_NAMES) -> List[Finding]:
        cookie_names = list(cookie_names or DEFAULT_COOKIE_NAMES)
        if self.logger:
            self.logger.info(f"Scanning cookies {url} names={cookie_names}")
        base = self._baseline("COOKIE", url)

        def probes():
            for name in cookie_names:
                for payload in self.payloads.get_payloads():
                    cookie = f"{name}={quote(payload, safe=_COOKIE_SAFE)}"
                    yield _Probe(url, "GET", f"Cookie:{name}", payload, {"Cookie": cookie})

        return self._run(base, probes(), self.evidence.tags)

    # ---------- GraphQL ----------
    def scan_graphql(self, url: str, operation_name: Optional[str], query: str,
                     variable_fields: Sequence[str]) -> List[Finding]:
        if self.logger:
            self.logger.info(f"Scanning GraphQL {url} variables={list(variable_fields)}")
        base = self._baseline("GRAPHQL", url, "POST", JSON_HEADERS,
                              {"operationName": operation_name, "query": query, "variables": {}})

        def probes():
            for field in variable_fields:
                for template in self.payloads.get_templates():
                    variables = dict(template(field, ""))
                    body = {"operationName": operation_name, "query": query, "variables": variables}
                    yield _Probe(url, "POST", f"graphql:variables.{field}", variables.get(field),
                                 JSON_HEADERS, body)

        return self._run(base, probes(), self.evidence.tags)

    # ---------- discovery ----------
    def crawl(self, start_url: str, max_pages: int = 50, max_depth: int = 3,
              same_origin: bool = True, renderer=None) -> List[Finding]:
        crawler = Crawler(self, logger=self.logger)
        return crawler.crawl(start_url, max_pages=max_pages, max_depth=max_depth,
                             same_origin=same_origin, renderer=renderer)

    def fingerprint(self, url: str) -> Optional[Fingerprint]:
        """Best-effort engine detection from a single fetch; None when nothing matches."""
        try:
            snap = self.fetch(url)
        except TransportError as exc:
            if self.logger:
                self.logger.warn(f"Fingerprint fetch failed: {url}: {exc}")
            return None
        found = match_fingerprint(snap)
        self.debug.emit("fingerprint", f"{url}", found.to_dict() if found else None)
        return found

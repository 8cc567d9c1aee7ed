"""Crawler: bounded BFS link/form discovery that feeds the scan strategies."""

import re
from collections import deque
from dataclasses import dataclass, field
from html.parser import HTMLParser
from typing import Callable, Deque, Dict, List, Optional, Set, Tuple
from urllib.parse import parse_qsl, urljoin, urlsplit, urlunsplit

from nosqlscanner.core.http import TransportError
from nosqlscanner.core.models import Finding


_HAS_TAG = re.compile(r"<\w+", re.I)
_DEFAULT_PORTS = {"http": 80, "https": 443}
_STATIC_EXT = (".css", ".js", ".png", ".jpg", ".jpeg", ".gif", ".svg",
               ".ico", ".woff", ".woff2", ".ttf", ".eot", ".pdf",
               ".zip", ".tar", ".gz", ".mp4", ".mp3", ".webp")

Renderer = Callable[[str], Optional[Tuple[str, str]]]


# ── HTML parsers ───────────────────────────────────────────────

@dataclass
class FormData:
    """Represents an HTML <form> with its named controls."""
    action: str = ""
    method: str = "GET"
    fields: List[str] = field(default_factory=list)


class _LinkExtractor(HTMLParser):
    """Extract <a href> links from HTML."""

    def __init__(self):
        super().__init__()
        self.links: List[str] = []

    def handle_starttag(self, tag, attrs):
        if tag == "a":
            for name, value in attrs:
                if name == "href" and value:
                    self.links.append(value)


class _FormExtractor(HTMLParser):
    """Extract <form> elements with their named input/select/textarea controls."""

    def __init__(self):
        super().__init__()
        self.forms: List[FormData] = []
        self._current_form: Optional[FormData] = None

    def handle_starttag(self, tag, attrs):
        attr_dict = dict(attrs)

        if tag == "form":
            self._finish()
            self._current_form = FormData(
                action=attr_dict.get("action") or "",
                method=(attr_dict.get("method") or "GET").upper(),
            )

        elif self._current_form is not None and tag in ("input", "select", "textarea"):
            name = attr_dict.get("name") or ""
            if name and name not in self._current_form.fields:
                self._current_form.fields.append(name)

    def handle_endtag(self, tag):
        if tag == "form":
            self._finish()

    def _finish(self):
        if self._current_form is not None:
            self.forms.append(self._current_form)
            self._current_form = None


# ── Helper functions ───────────────────────────────────────────

def extract_links(html: str) -> List[str]:
    """Extract all <a href> values from HTML."""
    parser = _LinkExtractor()
    try:
        parser.feed(html)
        parser.close()
    except Exception:
        pass
    return parser.links


def extract_forms(html: str) -> List[FormData]:
    """Extract all <form> elements; an unclosed trailing form still counts."""
    parser = _FormExtractor()
    try:
        parser.feed(html)
        parser.close()
    except Exception:
        pass
    parser._finish()
    return parser.forms


def url_origin(url: str) -> str:
    """scheme://host[:port], default ports omitted. Raises ValueError on bad URLs."""
    parts = urlsplit(url)
    host = (parts.hostname or "")
    if ":" in host:
        host = f"[{host}]"
    port = parts.port
    origin = f"{parts.scheme.lower()}://{host}"
    if port and port != _DEFAULT_PORTS.get(parts.scheme.lower()):
        origin += f":{port}"
    return origin


def is_same_origin(base_url: str, target_url: str) -> bool:
    try:
        return url_origin(base_url) == url_origin(target_url)
    except ValueError:
        return False


def normalize_url(url: str) -> str:
    """Drop the fragment, lowercase scheme/host, give an empty path '/'. Query is kept."""
    parts = urlsplit(url)
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(),
                       parts.path or "/", parts.query, ""))


def should_skip_url(url: str) -> bool:
    """Skip non-HTTP URLs and static assets."""
    parts = urlsplit(url)
    if parts.scheme.lower() not in _DEFAULT_PORTS:
        return True
    path = parts.path.lower()
    return any(path.endswith(ext) for ext in _STATIC_EXT)


def query_param_names(url: str) -> List[str]:
    names: List[str] = []
    for name, _ in parse_qsl(urlsplit(url).query, keep_blank_values=True):
        if name not in names:
            names.append(name)
    return names


def scan_signature(method: str, url: str, params) -> str:
    """(method, origin+path, sorted parameter names): one scan per signature per crawl."""
    base = url_origin(url) + (urlsplit(url).path or "/")
    return f"{method.upper()} {base}?{','.join(sorted(params))}"


# ── Traversal state ────────────────────────────────────────────

@dataclass
class CrawlFrontier:
    """Everything one crawl call mutates; thrown away when the call returns."""
    queue: Deque[Tuple[str, int]] = field(default_factory=deque)
    enqueued: Set[str] = field(default_factory=set)
    visited: Set[str] = field(default_factory=set)
    scanned: Set[str] = field(default_factory=set)

    def push(self, url: str, depth: int) -> bool:
        if url in self.enqueued or url in self.visited:
            return False
        self.enqueued.add(url)
        self.queue.append((url, depth))
        return True

    def claim(self, signature: str) -> bool:
        if signature in self.scanned:
            return False
        self.scanned.add(signature)
        return True


# ── Crawler class ──────────────────────────────────────────────

class Crawler:
    """
    BFS crawler that discovers links and forms and scans them as it goes.

    Usage:
        crawler = Crawler(scanner, logger)
        findings = crawler.crawl("http://example.com/", max_depth=2)
    """

    def __init__(self, scanner, logger=None):
        self.scanner = scanner
        self.logger = logger

    def crawl(self, start_url: str, max_pages: int = 50, max_depth: int = 3,
              same_origin: bool = True, renderer: Optional[Renderer] = None) -> List[Finding]:
        """
        Visit at most *max_pages* pages no deeper than *max_depth* links from
        *start_url*. Parameterized links and forms are scanned immediately,
        once per signature. Returns findings in discovery order.
        """
        start = normalize_url(start_url)
        frontier = CrawlFrontier()
        frontier.push(start, 0)
        findings: List[Finding] = []

        if self.logger:
            self.logger.info(f"Crawling {start} (max depth: {max_depth}, max pages: {max_pages})")

        while frontier.queue and len(frontier.visited) < max_pages:
            url, depth = frontier.queue.popleft()
            if url in frontier.visited:
                continue
            frontier.visited.add(url)

            page = self._fetch(url, renderer)
            if page is None:
                continue
            page_url, html = page
            if not _HAS_TAG.search(html):
                continue
            if self.logger:
                self.logger.debug(f"Visiting [{depth}] {page_url}")

            # ── Anchors: enqueue, and scan the parameterized ones ──
            anchors = self._anchors(page_url, html, start, same_origin)
            for link in anchors:
                if depth + 1 <= max_depth:
                    frontier.push(link, depth + 1)

            for link in anchors:
                params = query_param_names(link)
                if not params:
                    continue
                try:
                    sig = scan_signature("GET", link, params)
                except ValueError:
                    continue
                if frontier.claim(sig):
                    self.scanner.debug.emit("crawler", f"scan link {link}", {"params": params})
                    findings.extend(self._scan(self.scanner.scan_get, link, params))

            # ── Forms ──────────────────────────────────────────
            for form in extract_forms(html):
                findings.extend(self._scan_form(frontier, page_url, form, start, same_origin))

        if self.logger:
            self.logger.ok(
                f"Crawl complete: {len(frontier.visited)} pages visited, "
                f"{len(frontier.scanned)} targets scanned, {len(findings)} findings"
            )
        return findings

    # ── Internal helpers ───────────────────────────────────────

    def _fetch(self, url: str, renderer: Optional[Renderer]) -> Optional[Tuple[str, str]]:
        """Return (final_url, html) or None when the page cannot be loaded."""
        if renderer is not None:
            try:
                rendered = renderer(url)
            except Exception as exc:
                rendered = None
                if self.logger:
                    self.logger.warn(f"Render failed: {url}: {exc}")
            if rendered:
                return rendered
        try:
            snap = self.scanner.fetch(url, follow_redirects=True)
        except TransportError as exc:
            if self.logger:
                self.logger.warn(f"Crawl fetch failed: {url}: {exc}")
            return None
        self.scanner.debug.emit("crawler", f"fetched {url}", {"status": snap.status, "len": snap.length})
        return url, snap.text or ""

    def _anchors(self, page_url: str, html: str, start: str, same_origin: bool) -> List[str]:
        anchors: Dict[str, None] = {}
        for href in extract_links(html):
            try:
                abs_url = urljoin(page_url, href.strip())
                if should_skip_url(abs_url):
                    continue
                if same_origin and not is_same_origin(start, abs_url):
                    continue
                anchors[normalize_url(abs_url)] = None
            except ValueError:
                continue
        return list(anchors)

    def _scan_form(self, frontier: CrawlFrontier, page_url: str, form: FormData,
                   start: str, same_origin: bool) -> List[Finding]:
        if not form.fields or form.method == "DIALOG":
            return []
        try:
            action = urljoin(page_url, form.action or page_url)
            if same_origin and not is_same_origin(start, action):
                return []
            sig = scan_signature(form.method, action, form.fields)
        except ValueError:
            return []
        if not frontier.claim(sig):
            return []

        self.scanner.debug.emit("crawler", f"scan form {form.method} {action}", {"fields": form.fields})
        if self.logger:
            self.logger.info(f"  Found form: {form.method} {action} ({len(form.fields)} fields)")
        if form.method == "GET":
            return self._scan(self.scanner.scan_get, action, form.fields)
        base_body = {name: "a" for name in form.fields}
        return self._scan(self.scanner.scan_body, action, form.method, base_body, form.fields)

    def _scan(self, strategy, *args) -> List[Finding]:
        """Run one strategy; an unreachable target only skips this element."""
        try:
            return strategy(*args)
        except TransportError as exc:
            if self.logger:
                self.logger.warn(f"Scan skipped: {args[0]}: {exc}")
            return []

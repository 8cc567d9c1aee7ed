from typing import Any, Dict, List
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit
import json


class Request:
    def __init__(self, requestFilename: str) -> None:
        """
        POST /api/login?next=/ HTTP/1.1
        Host: example.com
        Content-Type: application/json

        {"username": "a", "password": "b"}
        """

        self.method = ""
        self.path = ""
        self.host = ""
        self.parameters: Dict[str, str] = {}
        self.headers: Dict[str, str] = {}
        self.body: Any = {}

        self.requestFilename = requestFilename

    def parse(self) -> Dict:

        with open(self.requestFilename, 'r', encoding='utf-8', errors='ignore') as f:
            raw = f.read().replace("\r\n", "\n")

        head, _, body_raw = raw.partition("\n\n")
        if not head.strip():
            raise ValueError("Request file is empty.")

        lines = [l for l in head.split("\n") if l.strip()]

        # Request line: METHOD SP PATH [SP HTTP/x.y]
        parts0 = lines[0].split()
        if len(parts0) < 2:
            raise ValueError(f"Invalid request line: {lines[0]!r}")
        self.method = parts0[0].upper()
        url_parts = urlsplit(parts0[1])
        self.path = url_parts.path or "/"
        self.parameters = dict(parse_qsl(url_parts.query, keep_blank_values=True))

        self.headers = {}
        for line in lines[1:]:
            if ':' in line:
                k, v = line.split(':', 1)
                self.headers[k.strip()] = v.strip()

        self.host = self._header("Host") or url_parts.netloc
        if not self.host:
            raise ValueError("Host header missing from request file.")

        self.body = {}
        ctype = self._header("Content-Type").lower()
        body_raw = body_raw.strip()
        if body_raw:
            if "application/json" in ctype:
                try:
                    self.body = json.loads(body_raw)
                except ValueError:
                    raise ValueError("Request body is not valid JSON.")
            elif "application/x-www-form-urlencoded" in ctype:
                self.body = dict(parse_qsl(body_raw, keep_blank_values=True))
            else:
                self.body = body_raw

        # headers the transport recomputes
        for name in list(self.headers):
            if name.lower() in ("host", "content-length", "transfer-encoding"):
                self.headers.pop(name)

        return {
            'host': self.host,
            'method': self.method,
            'path': self.path,
            'parameters': self.parameters,
            'headers': self.headers,
            'body': self.body
        }

    def _header(self, name: str) -> str:
        for k, v in self.headers.items():
            if k.lower() == name.lower():
                return v
        return ""

    def url(self, scheme: str = "https") -> str:
        query = urlencode(self.parameters)
        return urlunsplit((scheme, self.host, self.path, query, ""))

    def param_names(self) -> List[str]:
        return list(self.parameters)

    def body_fields(self) -> List[str]:
        return list(self.body) if isinstance(self.body, dict) else []

    def __str__(self) -> str:
        return f"Method: {self.method}\nPath: {self.path}\nHost: {self.host}\nParameters: {self.parameters}\nHeaders: {self.headers}\nBody: {self.body}"


def parse_request_file(path: str) -> Request:
    req = Request(path)
    req.parse()
    return req

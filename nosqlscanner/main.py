import argparse
import json
import sys

from nosqlscanner.core.engine import Scanner
from nosqlscanner.core.http import TransportError
from nosqlscanner.core.metrics import HttpMetrics
from nosqlscanner.core.models import findings_to_dicts
from nosqlscanner.parsers.request import parse_request_file
from nosqlscanner.payloads.base import DbFamily
from nosqlscanner.reporters.console import Log
from nosqlscanner.reporters.report import to_report


def _csv(value):
    return [s.strip() for s in (value or "").split(",") if s.strip()]


def _headers(values):
    out = {}
    for h in values or []:
        k, sep, v = h.partition(":")
        if sep and k.strip() and v.strip():
            out[k.strip()] = v.strip()
    return out


def report_family(db_family, fingerprint) -> str:
    """Family named in the report: explicit choice, else the fingerprinted engine, else MongoDB."""
    if db_family:
        return DbFamily.parse(db_family).value
    if fingerprint:
        return fingerprint.engine
    return DbFamily.MONGODB.value


def build_parser():
    p = argparse.ArgumentParser(prog="nosqlscan", description="Differential NoSQL injection scanner")
    p.add_argument("url", nargs="?", help="Target URL")
    p.add_argument("--request", help="Raw HTTP request file (target, params and JSON body)")
    p.add_argument("--request-proto", default="https", choices=["http", "https"])

    p.add_argument("-g", "--get-params", help="Comma-separated GET params to test")
    p.add_argument("-C", "--crawl", action="store_true", help="Crawl from URL and scan links/forms")
    p.add_argument("--max-pages", type=int, default=50)
    p.add_argument("--max-depth", type=int, default=3)
    p.add_argument("--offsite", action="store_true", help="Follow cross-origin links while crawling")
    p.add_argument("-F", "--fingerprint", action="store_true", help="Detect DB engine/version")

    p.add_argument("-X", "--method", default="POST", help="HTTP method for body scans")
    p.add_argument("-f", "--fields", help="Comma-separated JSON body fields to test")
    p.add_argument("-d", "--body", help="Base JSON body")
    p.add_argument("--dos", action="store_true", help="Add timing (DoS) payloads")
    p.add_argument("--manipulation", action="store_true", help="Try broad filters for mass update")

    p.add_argument("--headers-scan", action="store_true")
    p.add_argument("--header-names", help="Comma-separated header names to fuzz")
    p.add_argument("--cookies-scan", action="store_true")
    p.add_argument("--cookie-names", help="Comma-separated cookie names to fuzz")
    p.add_argument("--graphql-scan", action="store_true")
    p.add_argument("--graphql-query")
    p.add_argument("--graphql-opname")
    p.add_argument("--graphql-fields")

    p.add_argument("-t", "--timeout", type=float, default=8.0, help="Per-attempt timeout (s)")
    p.add_argument("-D", "--delay", type=float, default=0.05, help="Delay between probes (s)")
    p.add_argument("-H", "--header", action="append", help="Extra header, e.g. -H 'Authorization: Bearer x'")
    p.add_argument("--dos-threshold", type=float, default=1000, help="Timing threshold (ms)")
    p.add_argument("--db-family", default=None,
                   help="MongoDB | Elasticsearch | CouchDB (default: MongoDB)")
    p.add_argument("--retries", type=int, default=1, help="Max attempts per request")
    p.add_argument("--retry-base", type=float, default=0.2, help="Backoff base (s)")
    p.add_argument("--retry-cap", type=float, default=2.0, help="Backoff cap (s)")
    p.add_argument("--retry-unsafe", action="store_true", help="Retry POST/PUT/PATCH/DELETE too")
    p.add_argument("--proxy", help="Proxy (ej: http://127.0.0.1:8080)")

    p.add_argument("--format", default="raw", choices=["raw", "report"])
    p.add_argument("--metrics", action="store_true", help="Print HTTP attempt summary")
    p.add_argument("--debug", action="store_true", help="Emit debug events")
    p.add_argument("-v", "--verbose", action="count", default=1, help="-v, -vv")
    return p


def run(args, log: Log) -> int:
    extra_headers = _headers(args.header)
    url = args.url
    params, fields, base_body = _csv(args.get_params), _csv(args.fields), None
    method = args.method.upper()

    if args.request:
        req = parse_request_file(args.request)
        url = req.url(args.request_proto)
        method = req.method if req.method != "GET" else method
        params = params or req.param_names()
        if isinstance(req.body, dict):
            base_body = req.body
            fields = fields or req.body_fields()
        extra_headers = {**{k: v for k, v in req.headers.items() if k.lower() != "content-type"},
                         **extra_headers}
    if not url:
        raise ValueError("a target URL or --request file is required")

    if args.body:
        try:
            base_body = json.loads(args.body)
        except ValueError:
            raise ValueError("Invalid JSON in --body")

    metrics = HttpMetrics()
    scanner = Scanner(
        timeout=args.timeout,
        delay=args.delay,
        headers=extra_headers,
        dos_threshold_ms=args.dos_threshold,
        db_family=args.db_family or DbFamily.MONGODB,
        retry_max_attempts=args.retries,
        retry_base_delay=args.retry_base,
        retry_max_delay=args.retry_cap,
        retry_unsafe_methods=args.retry_unsafe,
        proxy=args.proxy,
        on_http_attempt=metrics.add_attempt,
        debug=args.debug,
        logger=log,
    )

    findings, fingerprint = [], None
    with scanner:
        if args.fingerprint:
            fingerprint = scanner.fingerprint(url)
            if fingerprint:
                log.ok(f"Fingerprint: {fingerprint.engine} {fingerprint.version or ''} ({fingerprint.source})")
            else:
                log.warn("Fingerprint: no engine identified")

        if args.crawl:
            findings += scanner.crawl(url, max_pages=args.max_pages, max_depth=args.max_depth,
                                      same_origin=not args.offsite)

        if params:
            findings += scanner.scan_get(url, params)
            if args.dos:
                findings += scanner.scan_dos_get(url, params)

        if fields:
            findings += scanner.scan_body(url, method, base_body, fields)
            if args.dos:
                findings += scanner.scan_dos_body(url, method, base_body, fields)
            if args.manipulation:
                findings += scanner.scan_manipulation(url, method, base_body, fields)

        if args.headers_scan:
            findings += scanner.scan_headers(url, _csv(args.header_names) or None)

        if args.cookies_scan:
            findings += scanner.scan_cookies(url, _csv(args.cookie_names) or None)

        if args.graphql_scan:
            gql_fields = _csv(args.graphql_fields)
            if args.graphql_query and gql_fields:
                findings += scanner.scan_graphql(url, args.graphql_opname, args.graphql_query, gql_fields)
            else:
                log.warn("--graphql-scan needs --graphql-query and --graphql-fields")

    if args.format == "report":
        output = to_report(findings, report_family(args.db_family, fingerprint))
    elif args.fingerprint:
        output = {"fingerprint": fingerprint.to_dict() if fingerprint else None,
                  "findings": findings_to_dicts(findings)}
    else:
        output = findings_to_dicts(findings)

    if not findings and args.format == "raw" and not args.fingerprint:
        log.fail("No obvious NoSQLi indicators found.")
    else:
        print(json.dumps(output, indent=2, default=str))

    if args.metrics:
        log.info(f"HTTP metrics: {json.dumps(metrics.summary())}")
    return 0


def main(argv=None):
    args = build_parser().parse_args(argv)
    log = Log(verbose=args.verbose, stream=sys.stderr)
    try:
        return run(args, log)
    except ValueError as exc:
        log.fail(str(exc))
        return 2
    except TransportError as exc:
        log.fail(f"{exc} (last error: {exc.error_code})")
        return 1


if __name__ == "__main__":
    sys.exit(main())

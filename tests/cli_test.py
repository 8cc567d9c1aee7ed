"""
Command-line entry point wired to the in-process VulnLab app.
"""

import functools
import io
import json
import os
import tempfile
import unittest
from unittest import mock

import httpx

from nosqlscanner import main as cli
from nosqlscanner.core.engine import Scanner
from nosqlscanner.core.models import Fingerprint
from vuln_lab.app import app


def run_cli(argv, transport=None):
    transport = transport or httpx.WSGITransport(app=app)
    scanner_cls = functools.partial(Scanner, transport=transport)
    with mock.patch.object(cli, "Scanner", scanner_cls), \
            mock.patch("sys.stdout", new_callable=io.StringIO) as out, \
            mock.patch("sys.stderr", new_callable=io.StringIO) as err:
        code = cli.main(argv)
    return code, out.getvalue(), err.getvalue()


class TestCli(unittest.TestCase):

    def test_get_scan_prints_findings(self):
        code, out, _ = run_cli(["http://lab/search?q=alice", "-g", "q", "-D", "0"])
        self.assertEqual(code, 0)
        findings = json.loads(out)
        self.assertTrue(findings)
        self.assertTrue(all(f["param"] == "q" for f in findings))

    def test_body_scan_report_format(self):
        code, out, _ = run_cli(["http://lab/login", "-f", "username", "-d", '{"username": "a"}',
                                "-D", "0", "--format", "report"])
        self.assertEqual(code, 0)
        report = json.loads(out)
        self.assertEqual(len(report), 4)
        self.assertTrue(report[0]["id"].startswith("NOSQLI-"))
        self.assertEqual(report[0]["db_family"], "MongoDB")
        self.assertEqual(report[0]["severity"], "medium")

    def test_fingerprint_output(self):
        code, out, err = run_cli(["http://lab/", "-F", "-D", "0"])
        self.assertEqual(code, 0)
        data = json.loads(out)
        self.assertEqual(data["fingerprint"]["engine"], "CouchDB")
        self.assertEqual(data["findings"], [])
        self.assertIn("Fingerprint: CouchDB", err)

    def test_crawl(self):
        code, out, _ = run_cli(["http://lab/", "-C", "--max-pages", "10", "--max-depth", "2", "-D", "0"])
        self.assertEqual(code, 0)
        self.assertEqual({f["param"] for f in json.loads(out)}, {"q", "role", "username"})

    def test_nothing_found(self):
        code, out, err = run_cli(["http://lab/search?q=alice", "--cookies-scan",
                                  "--cookie-names", "session", "-D", "0"])
        self.assertEqual(code, 0)
        self.assertEqual(out, "")
        self.assertIn("No obvious NoSQLi indicators found.", err)

    def test_metrics_summary(self):
        code, _, err = run_cli(["http://lab/search?q=alice", "-g", "q", "-D", "0", "--metrics"])
        self.assertEqual(code, 0)
        self.assertIn('"total_attempts": 11', err)

    def test_request_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "login.req")
            with open(path, "w", encoding="utf-8") as f:
                f.write("POST /login HTTP/1.1\nHost: lab\nContent-Type: application/json\n\n"
                        '{"username": "a", "password": "b"}')
            code, out, _ = run_cli(["--request", path, "--request-proto", "http", "-D", "0"])
        self.assertEqual(code, 0)
        findings = json.loads(out)
        self.assertEqual({f["param"] for f in findings}, {"username"})
        self.assertTrue(all(f["url"] == "http://lab/login" for f in findings))


class TestCliErrors(unittest.TestCase):

    def test_missing_target(self):
        code, _, err = run_cli(["-g", "q"])
        self.assertEqual(code, 2)
        self.assertIn("a target URL or --request file is required", err)

    def test_invalid_body(self):
        code, _, err = run_cli(["http://lab/login", "-f", "username", "-d", "{bad"])
        self.assertEqual(code, 2)
        self.assertIn("Invalid JSON in --body", err)

    def test_unknown_family(self):
        code, _, err = run_cli(["http://lab/search?q=a", "-g", "q", "--db-family", "Redis"])
        self.assertEqual(code, 2)
        self.assertIn("Unknown DB family", err)

    def test_unreachable_target(self):
        def refuse(request):
            raise httpx.ConnectError("[Errno 111] Connection refused", request=request)

        code, _, err = run_cli(["http://down/?q=1", "-g", "q"], transport=httpx.MockTransport(refuse))
        self.assertEqual(code, 1)
        self.assertIn("ECONNREFUSED", err)

    def test_report_family_falls_back_to_fingerprint(self):
        self.assertIsNone(cli.build_parser().parse_args(["http://t/"]).db_family)
        self.assertEqual(cli.report_family(None, Fingerprint("CouchDB", "3.3.2", "header:server")), "CouchDB")
        self.assertEqual(cli.report_family("elasticsearch", Fingerprint("CouchDB")), "Elasticsearch")
        self.assertEqual(cli.report_family(None, None), "MongoDB")

    def test_helpers(self):
        self.assertEqual(cli._csv(" a, ,b ,"), ["a", "b"])
        self.assertEqual(cli._csv(None), [])
        self.assertEqual(cli._headers(["X-A: 1", "bad", "X-B:", "Auth: Bearer a:b"]),
                         {"X-A": "1", "Auth": "Bearer a:b"})


if __name__ == "__main__":
    unittest.main()

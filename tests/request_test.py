"""
Raw HTTP request files as scan targets.
"""

import os
import tempfile
import unittest

from nosqlscanner.parsers.request import Request, parse_request_file


class RequestFileCase(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()

    def tearDown(self):
        self._tmp.cleanup()

    def write(self, text, name="req.txt"):
        path = os.path.join(self._tmp.name, name)
        with open(path, "w", encoding="utf-8", newline="") as f:
            f.write(text)
        return path


class TestParseRequest(RequestFileCase):

    def test_json_post(self):
        path = self.write(
            "POST /api/login?next=/home&x= HTTP/1.1\r\n"
            "Host: shop.local:8080\r\n"
            "Content-Type: application/json\r\n"
            "Content-Length: 40\r\n"
            "Authorization: Bearer abc\r\n"
            "\r\n"
            '{"username": "a", "password": "b"}'
        )
        req = parse_request_file(path)
        self.assertEqual(req.method, "POST")
        self.assertEqual(req.path, "/api/login")
        self.assertEqual(req.host, "shop.local:8080")
        self.assertEqual(req.param_names(), ["next", "x"])
        self.assertEqual(req.body, {"username": "a", "password": "b"})
        self.assertEqual(req.body_fields(), ["username", "password"])
        self.assertEqual(req.headers, {"Content-Type": "application/json", "Authorization": "Bearer abc"})
        self.assertEqual(req.url("http"), "http://shop.local:8080/api/login?next=%2Fhome&x=")

    def test_get_without_body(self):
        req = parse_request_file(self.write("GET /search?q=alice HTTP/1.1\nHost: lab\n\n"))
        self.assertEqual(req.method, "GET")
        self.assertEqual(req.body, {})
        self.assertEqual(req.body_fields(), [])
        self.assertEqual(req.url(), "https://lab/search?q=alice")

    def test_form_body(self):
        req = parse_request_file(self.write(
            "POST /login HTTP/1.1\nHost: lab\nContent-Type: application/x-www-form-urlencoded\n\nu=a&p=b"))
        self.assertEqual(req.body, {"u": "a", "p": "b"})

    def test_other_body_kept_as_text(self):
        req = parse_request_file(self.write("PUT /x HTTP/1.1\nHost: lab\n\nraw text"))
        self.assertEqual(req.body, "raw text")
        self.assertEqual(req.body_fields(), [])

    def test_parse_returns_summary(self):
        data = Request(self.write("get / HTTP/1.1\nHost: lab\n\n")).parse()
        self.assertEqual(data["method"], "GET")
        self.assertEqual(data["host"], "lab")
        self.assertEqual(data["path"], "/")


class TestParseErrors(RequestFileCase):

    def test_empty_file(self):
        with self.assertRaises(ValueError):
            parse_request_file(self.write(""))

    def test_bad_request_line(self):
        with self.assertRaises(ValueError):
            parse_request_file(self.write("GARBAGE\nHost: lab\n\n"))

    def test_missing_host(self):
        with self.assertRaises(ValueError):
            parse_request_file(self.write("GET /x HTTP/1.1\nAccept: */*\n\n"))

    def test_invalid_json_body(self):
        with self.assertRaises(ValueError):
            parse_request_file(self.write(
                "POST /x HTTP/1.1\nHost: lab\nContent-Type: application/json\n\n{not json"))


if __name__ == "__main__":
    unittest.main()

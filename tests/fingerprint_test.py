"""
Passive fingerprinting from a single response snapshot.
"""

import json
import unittest

from nosqlscanner.core.fingerprint import match_fingerprint
from nosqlscanner.core.models import ResponseSnapshot


def snap(text="", headers=None, status=200):
    return ResponseSnapshot.from_text(status, text, headers=headers)


class TestFingerprint(unittest.TestCase):

    def test_couchdb_server_header(self):
        fp = match_fingerprint(snap(headers={"Server": "CouchDB/3.3.2 (Erlang OTP/24)"}))
        self.assertEqual(fp.to_dict(), {"engine": "CouchDB", "version": "3.3.2", "source": "header:server"})

    def test_couchdb_version_headers(self):
        fp = match_fingerprint(snap(headers={"X-CouchDB": "CouchDB", "X-CouchDB-Version": "2.3.1"}))
        self.assertEqual((fp.engine, fp.version, fp.source), ("CouchDB", "2.3.1", "header:x-couchdb-version"))

    def test_server_header_wins_over_body(self):
        body = json.dumps({"name": "n", "version": {"number": "8.1.0"}, "tagline": "You Know, for Search"})
        fp = match_fingerprint(snap(body, headers={"Server": "CouchDB/3.1"}))
        self.assertEqual((fp.engine, fp.version), ("CouchDB", "3.1"))

    def test_elasticsearch_body_with_product_header(self):
        body = json.dumps({"name": "n", "version": {"number": "7.17.9"}})
        fp = match_fingerprint(snap(body, headers={"X-Elastic-Product": "Elasticsearch"}))
        self.assertEqual((fp.engine, fp.version, fp.source), ("Elasticsearch", "7.17.9", "body:json"))

    def test_elasticsearch_tagline_without_header(self):
        body = json.dumps({"version": {"number": "6.8.0"}, "tagline": "You Know, for Search"})
        self.assertEqual(match_fingerprint(snap(body)).version, "6.8.0")

    def test_couchdb_welcome_body(self):
        fp = match_fingerprint(snap(json.dumps({"couchdb": "Welcome", "version": "3.3.2"})))
        self.assertEqual((fp.engine, fp.version, fp.source), ("CouchDB", "3.3.2", "body:json"))

    def test_product_header_alone(self):
        fp = match_fingerprint(snap("not json", headers={"x-elastic-product": "Elasticsearch"}))
        self.assertEqual((fp.engine, fp.version, fp.source), ("Elasticsearch", None, "header:x-elastic-product"))

    def test_mongo_error_text(self):
        for text in ("MongoServerError: bad", "mongoose validation failed", "MongoError"):
            fp = match_fingerprint(snap(text, status=500))
            self.assertEqual((fp.engine, fp.version, fp.source), ("MongoDB", None, "body:text"))

    def test_no_match(self):
        self.assertIsNone(match_fingerprint(snap("<html>hello</html>")))
        self.assertIsNone(match_fingerprint(snap(json.dumps({"version": {"number": "1.0"}}))))
        self.assertIsNone(match_fingerprint(snap("")))


if __name__ == "__main__":
    unittest.main()

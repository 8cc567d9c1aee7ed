"""
Payload catalog: family lookup, ordering and template purity.
"""

import json
import unittest

from nosqlscanner.payloads.amplification import (
    BROADENING_TEMPLATES, TIMING_PAYLOADS, TIMING_TEMPLATES,
)
from nosqlscanner.payloads.base import DbFamily
from nosqlscanner.payloads.catalog import CATALOG, get_family
from nosqlscanner.payloads.couchdb import CouchDB
from nosqlscanner.payloads.elasticsearch import Elasticsearch
from nosqlscanner.payloads.mongodb import MongoDB


class TestCatalog(unittest.TestCase):

    def test_every_family_is_registered(self):
        self.assertEqual(set(CATALOG), set(DbFamily))
        self.assertIsInstance(get_family(DbFamily.MONGODB), MongoDB)
        self.assertIsInstance(get_family("Elasticsearch"), Elasticsearch)
        self.assertIsInstance(get_family("couchdb"), CouchDB)

    def test_unknown_family_is_rejected(self):
        with self.assertRaises(ValueError):
            get_family("Cassandra")
        with self.assertRaises(ValueError):
            DbFamily.parse("")

    def test_families_are_stable_between_calls(self):
        self.assertEqual(get_family("MongoDB").get_payloads(), get_family("MongoDB").get_payloads())
        self.assertIs(get_family("MongoDB"), get_family(DbFamily.MONGODB))

    def test_every_family_has_payloads_and_templates(self):
        for family in CATALOG.values():
            self.assertTrue(family.get_payloads(), family.family)
            self.assertTrue(family.get_templates(), family.family)


class TestMongoDB(unittest.TestCase):

    def setUp(self):
        self.family = MongoDB()

    def test_payload_order(self):
        payloads = self.family.get_payloads()
        self.assertEqual(payloads[0], "' || 1==1 || '")
        self.assertIn('{"$ne": null}', payloads)
        self.assertEqual(payloads[-1], '{"__proto__":{"polluted":"yes"}}')

    def test_operator_payloads_are_valid_json(self):
        for p in self.family.get_payloads():
            if p.startswith("{"):
                self.assertIsInstance(json.loads(p), dict)

    def test_templates_are_pure(self):
        ne, regex_any, in_with_empty, gt_empty, or_tautology = self.family.get_templates()
        self.assertEqual(ne("user", "alice"), {"user": {"$ne": "alice"}})
        self.assertEqual(regex_any("user", "alice"), {"user": {"$regex": ".*"}})
        self.assertEqual(in_with_empty("user", "alice"), {"user": {"$in": ["alice", ""]}})
        self.assertEqual(gt_empty("user", None), {"user": {"$gt": ""}})
        self.assertEqual(or_tautology("user", "alice"),
                         {"$or": [{"user": "alice"}, {"user": {"$ne": "alice"}}]})
        self.assertEqual(ne("user", "alice"), ne("user", "alice"))


class TestOtherFamilies(unittest.TestCase):

    def test_elasticsearch_templates(self):
        qs, wildcard, regexp = Elasticsearch().get_templates()
        self.assertEqual(qs("title", "x"), {"query": {"query_string": {"query": "title:*"}}})
        self.assertEqual(wildcard("title", "x"), {"query": {"wildcard": {"title": "*"}}})
        self.assertEqual(regexp("title", "x"), {"query": {"regexp": {"title": ".*"}}})

    def test_couchdb_templates_wrap_a_selector(self):
        for template in CouchDB().get_templates():
            self.assertIn("selector", template("name", "bob"))


class TestAmplification(unittest.TestCase):

    def test_timing_payloads(self):
        where, redos = (json.loads(p) for p in TIMING_PAYLOADS)
        self.assertIn("Date.now()-s<1500", where["$where"])
        self.assertEqual(redos, {"$regex": "^(a+)+$"})

    def test_timing_templates(self):
        where, redos = TIMING_TEMPLATES
        self.assertIn("$where", where("name", None)["name"])
        self.assertEqual(redos("name", None), {"name": {"$regex": "^(a+)+$"}})

    def test_broadening_templates(self):
        everything, tautology = BROADENING_TEMPLATES
        self.assertEqual(everything("role", "x"), {"role": {"$regex": ".*"}})
        self.assertEqual(tautology("role", None), {"$or": [{"role": None}, {"role": {"$ne": None}}]})


if __name__ == "__main__":
    unittest.main()

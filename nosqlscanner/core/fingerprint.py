"""Passive engine/version identification from one response."""

import json
import re
from typing import Optional

from nosqlscanner.core.models import Fingerprint, ResponseSnapshot


_COUCH_SERVER_RX = re.compile(r"couchdb/(\d+\.\d+(?:\.\d+)?)", re.I)
_MONGO_BODY_RX = re.compile(r"mongo(server|network)?error|mongoose", re.I)
_ES_TAGLINE = "You Know, for Search"


def _json_version(doc, es_header: bool) -> Optional[Fingerprint]:
    if not isinstance(doc, dict):
        return None
    version = doc.get("version")
    if es_header or doc.get("tagline") == _ES_TAGLINE:
        number = version.get("number") if isinstance(version, dict) else None
        if isinstance(number, str):
            return Fingerprint("Elasticsearch", number, "body:json")
    if doc.get("couchdb") == "Welcome" and isinstance(version, str):
        return Fingerprint("CouchDB", version, "body:json")
    return None


def match_fingerprint(snap: ResponseSnapshot) -> Optional[Fingerprint]:
    """First match wins: server header, product+version headers, JSON body, product header, body keywords."""
    h = snap.headers
    text = snap.text or ""

    m = _COUCH_SERVER_RX.search(h.get("server", ""))
    if m:
        return Fingerprint("CouchDB", m.group(1), "header:server")

    couch_version = h.get("x-couchdb-version", "")
    if "couchdb" in h.get("x-couchdb", "").lower() and couch_version:
        return Fingerprint("CouchDB", couch_version, "header:x-couchdb-version")

    es_header = h.get("x-elastic-product", "").lower() == "elasticsearch"
    try:
        doc = json.loads(text)
    except ValueError:
        doc = None
    found = _json_version(doc, es_header)
    if found:
        return found

    if es_header:
        return Fingerprint("Elasticsearch", None, "header:x-elastic-product")

    if _MONGO_BODY_RX.search(text):
        return Fingerprint("MongoDB", None, "body:text")
    return None

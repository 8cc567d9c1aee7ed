"""Map findings onto a structured, severity-ranked report."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from nosqlscanner.core.models import Finding


_HIGH_TAGS = ("timing", "exfiltration", "manipulation")

_REMEDIATION = {
    "MongoDB": [],
    "Elasticsearch": ["Disable dangerous scripts/Painless"],
    "CouchDB": ["Restrict Mango selectors and map/reduce inputs"],
}


def infer_severity(finding: Finding) -> str:
    if any(t in finding.tags for t in _HIGH_TAGS):
        return "high"
    if "anomaly" in finding.tags:
        return "medium"
    return "low"


def infer_confidence(finding: Finding) -> float:
    e = finding.evidence
    c = 0.3
    if e.keyword_hits:
        c += 0.3
    if e.status_delta != 0 or abs(e.length_delta) > 50:
        c += 0.2
    if e.time_delta_ms > 0:
        c += 0.1
    if e.count_delta >= 5 or e.updated_count >= 2:
        c += 0.1
    return min(1.0, round(c, 2))


def remediation(db_family: str) -> List[str]:
    return ["Strict validation", "Parameterized filters"] + _REMEDIATION.get(db_family, [])


def _diff(finding: Finding) -> Dict[str, Any]:
    e = finding.evidence
    diff: Dict[str, Any] = {
        "status": [e.base_status, e.cur_status],
        "length": [e.base_length, e.cur_length],
        "time_ms": [round(e.base_time_ms, 1), round(e.cur_time_ms, 1)],
        "count": [e.base_count, e.cur_count],
    }
    if e.keyword_hits:
        diff["keywords"] = list(e.keyword_hits)
    return diff


def to_report(findings: List[Finding], db_family: str, year: Optional[int] = None) -> List[Dict[str, Any]]:
    year = year or datetime.now().year
    report = []
    for idx, f in enumerate(findings, start=1):
        report.append({
            "id": f"NOSQLI-{year}-{idx:04d}",
            "title": f"{db_family} selector injection",
            "severity": infer_severity(f),
            "db_family": db_family,
            "endpoint": {"method": f.method, "url": f.url, "parameter": f.param},
            "payload": {"injected": f.payload},
            "tags": list(f.tags),
            "evidence": {"diff": _diff(f)},
            "remediation": remediation(db_family),
            "confidence": infer_confidence(f),
        })
    return report

"""Evidence engine: diff a probe response against its baseline and tag it."""

import json
import math
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from nosqlscanner.core.models import Evidence, ResponseSnapshot


DEFAULT_KEYWORDS = (
    # engine error signatures
    "MongoError",
    "MongoServerError",
    "MongoNetworkError",
    "E11000",
    "E11000 duplicate key error",
    "duplicate key error collection",
    "BSONTypeError",
    "UnhandledPromiseRejectionWarning",
    "TypeError:",
    "Not authorized",
    "invalid operator",
    # cast / validation phrases
    "CastError",
    "Cast to ObjectId failed",
    "CastError: Cast to ObjectId failed",
    "CastError: Cast to Number failed",
    "CastError: Cast to String failed",
    "ValidationError",
    "ValidationError: Path",
    "validator failed",
    "required",
    "Path `",
    "is required",
    # operator names echoed back
    "$where",
    "$regex",
    "ObjectId(",
)

ITEM_LIST_FIELDS = ("data", "items", "results")
UPDATED_COUNT_FIELDS = ("modifiedCount", "nModified", "updated", "updatedCount", "n")

TAG_ANOMALY = "anomaly"
TAG_TIMING = "timing"
TAG_EXFILTRATION = "exfiltration"
TAG_MANIPULATION = "manipulation"


@dataclass(frozen=True)
class TaggingPolicy:
    """Thresholds that turn evidence into tags."""
    length_threshold: int = 50
    timing_threshold_ms: float = 1000.0
    exfiltration_count: int = 5
    manipulation_count: int = 2


def _load_json(text: str):
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        return None


def item_count(text: str) -> int:
    """Number of records a JSON response appears to carry (0 if unknown)."""
    doc = _load_json(text)
    if isinstance(doc, list):
        return len(doc)
    if isinstance(doc, dict):
        for name in ITEM_LIST_FIELDS:
            if isinstance(doc.get(name), list):
                return len(doc[name])
    return 0


def _as_count(value) -> Optional[float]:
    # null, booleans and blank strings coerce to numbers
    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, str):
        if not value.strip():
            return 0
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value) or value < 0:
        return None
    return value


def updated_count(text: str) -> float:
    """Rows reported as modified by an update-style JSON response (0 if none)."""
    doc = _load_json(text)
    if not isinstance(doc, dict):
        return 0
    for name in UPDATED_COUNT_FIELDS:
        if name not in doc:
            continue
        count = _as_count(doc[name])
        if count is not None:
            return count
    return 0


class EvidenceEngine:

    def __init__(self, keywords: Optional[Iterable[str]] = None,
                 policy: Optional[TaggingPolicy] = None):
        self.keywords: Sequence[str] = tuple(keywords) if keywords is not None else DEFAULT_KEYWORDS
        self.policy = policy or TaggingPolicy()

    def keyword_hits(self, text: str) -> List[str]:
        return [k for k in self.keywords if k in text]

    def diff(self, baseline: ResponseSnapshot, current: ResponseSnapshot) -> Evidence:
        base_count = item_count(baseline.text)
        cur_count = item_count(current.text)
        return Evidence(
            status_delta=current.status - baseline.status,
            length_delta=current.length - baseline.length,
            time_delta_ms=current.elapsed_ms - baseline.elapsed_ms,
            keyword_hits=tuple(self.keyword_hits(current.text)),
            count_delta=cur_count - base_count,
            updated_count=updated_count(current.text),
            base_status=baseline.status,
            cur_status=current.status,
            base_length=baseline.length,
            cur_length=current.length,
            base_time_ms=baseline.elapsed_ms,
            cur_time_ms=current.elapsed_ms,
            base_count=base_count,
            cur_count=cur_count,
        )

    # ── tagging ────────────────────────────────────────────────

    def tags(self, ev: Evidence) -> List[str]:
        """Tags for the generic (query/body/header/cookie/GraphQL) strategies."""
        p = self.policy
        tags: List[str] = []
        if ev.status_delta != 0 or abs(ev.length_delta) > p.length_threshold or ev.keyword_hits:
            tags.append(TAG_ANOMALY)
        if ev.time_delta_ms >= p.timing_threshold_ms:
            tags.append(TAG_TIMING)
        if ev.count_delta >= p.exfiltration_count:
            tags.append(TAG_EXFILTRATION)
        return tags

    def timing_tags(self, ev: Evidence) -> List[str]:
        return [TAG_TIMING] if ev.time_delta_ms >= self.policy.timing_threshold_ms else []

    def manipulation_tags(self, ev: Evidence) -> List[str]:
        return [TAG_MANIPULATION] if ev.updated_count >= self.policy.manipulation_count else []
